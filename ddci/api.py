"""
Collaborator-facing API used by test framework integrations and by hand-written instrumentation.

Usage::

    from ddci import api

    api.enable()
    session = api.start_session()
    suite = api.start_suite("calc")
    with api.trace_test("adds", suite_name="calc") as test:
        test.passed()
    suite.finish()
    session.finish()

Every function here catches and logs its own errors: a failure inside the library never reaches the test runner.
When CI Visibility is not enabled, the functions return handles that accept every call and record nothing.
"""

from __future__ import annotations

import atexit
import threading
import typing as t

from ddci.internal.components import Components
from ddci.internal.components import activate
from ddci.internal.logger import catch_and_log_exceptions
from ddci.internal.logger import get_logger
from ddci.internal.logger import setup_logging
from ddci.internal.recorder import NULL_SPAN
from ddci.internal.recorder import NullRecorder
from ddci.internal.recorder import Recorder
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.constants import EventType
from ddci.internal.test_data import SpanType
from ddci.settings.civis import CIConfig
from ddci.settings.civis import CIVisibilityConfig


log = get_logger(__name__)

_lock = threading.Lock()
_components: t.Optional[Components] = None
_null_recorder = NullRecorder()


def recorder() -> t.Union[Recorder, NullRecorder]:
    """The recorder of the enabled subsystem, or a recorder that drops everything."""
    components = _components
    return components.recorder if components is not None else _null_recorder


def is_enabled() -> bool:
    return recorder().enabled


@catch_and_log_exceptions(default=False)
def enable(
    ci_config: t.Optional[CIConfig] = None,
    civis_config: t.Optional[CIVisibilityConfig] = None,
    register_atexit: bool = True,
) -> bool:
    """
    Read the configuration and start the subsystem. Calling it again while enabled does nothing.

    Returns whether events are being recorded.
    """
    global _components

    with _lock:
        if _components is not None:
            log.debug("CI Visibility is already enabled")
            return _components.recorder.enabled

        civis_config = civis_config or CIVisibilityConfig()
        setup_logging(civis_config.log_level)
        _components = activate(ci_config=ci_config, civis_config=civis_config, register_atexit=register_atexit)
        return _components.recorder.enabled


@catch_and_log_exceptions()
def disable(timeout: t.Optional[float] = None) -> None:
    """Send what is still buffered and stop the subsystem."""
    global _components

    with _lock:
        components, _components = _components, None

    if components is None:
        return
    atexit.unregister(components.shutdown)
    components.shutdown(timeout)


def _record_manual_api_event(event_type: EventType) -> None:
    if recorder().enabled:
        TelemetryAPI.get().record_manual_api_event(event_type)


@catch_and_log_exceptions(default=NULL_SPAN)
def start_session(service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None):
    _record_manual_api_event(EventType.SESSION)
    return recorder().start_session(service=service, tags=tags)


@catch_and_log_exceptions(default=NULL_SPAN)
def start_module(name: str, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None):
    _record_manual_api_event(EventType.MODULE)
    return recorder().start_module(name, service=service, tags=tags)


@catch_and_log_exceptions(default=NULL_SPAN)
def start_suite(name: str, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None):
    _record_manual_api_event(EventType.SUITE)
    return recorder().start_suite(name, service=service, tags=tags)


@catch_and_log_exceptions(default=NULL_SPAN)
def trace_test(
    name: str,
    suite_name: t.Optional[str] = None,
    service: t.Optional[str] = None,
    tags: t.Optional[t.Mapping[str, t.Any]] = None,
):
    """Start a test; ``suite_name`` defaults to the ``test.suite`` entry of ``tags``."""
    _record_manual_api_event(EventType.TEST)
    return recorder().trace_test(name, suite_name=suite_name, service=service, tags=tags)


@catch_and_log_exceptions(default=NULL_SPAN)
def trace(name: str, span_type: str = SpanType.SPAN, tags: t.Optional[t.Mapping[str, t.Any]] = None):
    return recorder().trace(name, span_type=span_type, tags=tags)


@catch_and_log_exceptions()
def active_session():
    return recorder().active_session()


@catch_and_log_exceptions()
def active_module():
    return recorder().active_module()


@catch_and_log_exceptions()
def active_suite(name: str):
    return recorder().active_suite(name)


@catch_and_log_exceptions()
def active_test():
    return recorder().active_test()


@catch_and_log_exceptions()
def active_span():
    return recorder().active_span()


def deactivate_test(test: t.Any) -> None:
    """Clear the active test of this thread. Raises ``ActiveTestMismatchError`` if `test` is not the active one."""
    recorder().deactivate_test(test)


@catch_and_log_exceptions()
def deactivate_suite(name: str) -> None:
    recorder().deactivate_suite(name)


@catch_and_log_exceptions()
def deactivate_module() -> None:
    recorder().deactivate_module()


@catch_and_log_exceptions()
def deactivate_session() -> None:
    recorder().deactivate_session()
