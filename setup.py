from setuptools import find_packages, setup  # isort: skip


setup(
    name="ddci",
    version="0.1.0",
    description="CI Visibility client: records test sessions, modules, suites and tests and sends them to the "
    "Datadog test cycle intake",
    license="BSD-3-Clause OR Apache-2.0",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.8",
    install_requires=[
        "attrs>=20",
        "envier~=0.6",
        "msgpack>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7",
            "mock",
        ],
    },
    zip_safe=False,
)
