"""
Behavior every framework integration needs, built only on the recorder's public methods.

An integration derives the suite of a test from its source file, opens that suite the first time one of its tests
runs, and turns the outcome of the test body into a status.
"""

from __future__ import annotations

import os
import typing as t
import unittest

from ddci.internal.logger import get_logger
from ddci.internal.test_data import TestStatus


log = get_logger(__name__)


def suite_name_from_path(path: str, workspace: t.Optional[str] = None) -> str:
    """
    Name the suite of a source file after its path relative to `workspace` (the current directory by default).

    Falls back to the absolute path when no relative path exists, e.g. across Windows drives.
    """
    start = workspace or os.getcwd()
    try:
        relative_path = os.path.relpath(path, start=start)
    except ValueError:
        log.debug("Could not compute the path of %s relative to %s, using the absolute path", path, start)
        relative_path = os.path.abspath(path)
    return relative_path.replace(os.sep, "/")


def ensure_suite(recorder: t.Any, name: str, tags: t.Optional[t.Mapping[str, t.Any]] = None):
    """Return the active suite called `name`, starting it if needed."""
    suite = recorder.active_suite(name)
    if suite is not None:
        return suite
    return recorder.start_suite(name, tags=tags)


def finish_test_from_exception(test: t.Any, exc: t.Optional[BaseException] = None) -> t.Optional[TestStatus]:
    """
    Set the status of `test` from the outcome of its body and finish it.

    No exception means pass, ``unittest.SkipTest`` or the exception raised by ``pytest.skip`` means skip, and
    anything else means fail. A status already set on the test is kept.
    """
    if getattr(test, "status", None) is None:
        if exc is None:
            test.passed()
        elif _is_skip_exception(exc):
            test.skipped(reason=str(exc) or None)
        else:
            test.failed(exception=exc)
    test.finish()
    return test.get_status()


def _is_skip_exception(exc: BaseException) -> bool:
    if isinstance(exc, unittest.SkipTest):
        return True
    # pytest's Skipped does not derive from unittest.SkipTest.
    return type(exc).__name__ == "Skipped" and type(exc).__module__.startswith("_pytest")
