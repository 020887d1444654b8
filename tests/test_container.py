import pytest

from ddci.internal.container import CGroupInfo
from ddci.internal.container import get_container_id


DOCKER_ID = "3726184226f5d3147c25fdeab5b60097e378e8a720503a5e19ecfdf29f869860"
TASK_ID = "34dc0b5e626f2c5c4c5170e34b10e765-1234567890"


@pytest.mark.parametrize(
    "line,expected_container_id,expected_pod_id",
    [
        ("13:name=systemd:/docker/%s" % DOCKER_ID, DOCKER_ID, None),
        (
            "1:name=systemd:/kubepods/besteffort/pod3d274242-8ee0-11e9-a8a6-1e68d864ef1a/%s" % DOCKER_ID,
            DOCKER_ID,
            "3d274242-8ee0-11e9-a8a6-1e68d864ef1a",
        ),
        ("1:name=systemd:/ecs/%s/%s" % (TASK_ID, TASK_ID), TASK_ID, None),
        ("1:name=systemd:/system.slice/docker.service", None, None),
    ],
)
def test_from_line(line, expected_container_id, expected_pod_id):
    info = CGroupInfo.from_line(line)

    assert info is not None
    assert info.container_id == expected_container_id
    assert info.pod_id == expected_pod_id


def test_from_line_controllers():
    info = CGroupInfo.from_line("4:cpu,cpuacct:/docker/%s\n" % DOCKER_ID)

    assert info.id == "4"
    assert info.controllers == ["cpu", "cpuacct"]
    assert info.path == "/docker/%s" % DOCKER_ID


@pytest.mark.parametrize("line", ["", "not a cgroup line", "a:b:/c"])
def test_from_line_invalid(line):
    assert CGroupInfo.from_line(line) is None


def test_get_container_id(tmp_path):
    cgroup = tmp_path / "cgroup"
    cgroup.write_text("12:perf_event:/\n11:cpu,cpuacct:/docker/%s\n" % DOCKER_ID)

    assert get_container_id(str(cgroup)) == DOCKER_ID


def test_get_container_id_outside_container(tmp_path):
    cgroup = tmp_path / "cgroup"
    cgroup.write_text("0::/\n")

    assert get_container_id(str(cgroup)) is None
    assert get_container_id(str(tmp_path / "missing")) is None
