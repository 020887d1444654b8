"""
Recorder: creates sessions, modules, suites, tests and spans, and routes finished traces to the writer.

The active session, module and suites are process-wide and live in a :class:`Context` guarded by one lock. The active
test and the stack of open spans are per thread, so tests running concurrently in different threads do not see each
other.
"""

from __future__ import annotations

import sys
import threading
from types import TracebackType
import typing as t

from ddci.internal.ci import CITag
from ddci.internal.constants import CI_APP_TEST_ORIGIN
from ddci.internal.constants import DEFAULT_SERVICE_NAME
from ddci.internal.errors import ActiveTestMismatchError
from ddci.internal.logger import get_logger
from ddci.internal.platform import get_platform_tags
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.test_data import INHERITABLE_TAGS
from ddci.internal.test_data import CISpan
from ddci.internal.test_data import Span
from ddci.internal.test_data import SpanKind
from ddci.internal.test_data import SpanType
from ddci.internal.test_data import Test
from ddci.internal.test_data import TestItem
from ddci.internal.test_data import TestModule
from ddci.internal.test_data import TestSession
from ddci.internal.test_data import TestStatus
from ddci.internal.test_data import TestSuite
from ddci.internal.test_data import TestTag
from ddci.internal.test_data import TestType
from ddci.internal.writer import TraceWriter


log = get_logger(__name__)

_test_command: t.Optional[str] = None


def get_test_command() -> str:
    """The command line this process was started with, captured on first use."""
    global _test_command
    if _test_command is None:
        _test_command = " ".join(sys.argv) or "python"
    return _test_command


class _ThreadState(threading.local):
    def __init__(self) -> None:
        self.test: t.Optional[Test] = None
        self.spans: t.List[CISpan] = []


class Context:
    """Process-wide registry of the active session, module and suites, plus the per-thread active test and spans."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session: t.Optional[TestSession] = None
        self._module: t.Optional[TestModule] = None
        self._suites: t.Dict[str, TestSuite] = {}
        self._local = _ThreadState()

    @property
    def active_session(self) -> t.Optional[TestSession]:
        return self._session

    @property
    def active_module(self) -> t.Optional[TestModule]:
        return self._module

    def active_suite(self, name: str) -> t.Optional[TestSuite]:
        return self._suites.get(name)

    @property
    def active_test(self) -> t.Optional[Test]:
        return self._local.test

    @property
    def active_span(self) -> t.Optional[CISpan]:
        spans = self._local.spans
        return spans[-1] if spans else None

    def get_or_activate_session(self, factory: t.Callable[[], TestSession]) -> t.Tuple[TestSession, bool]:
        with self._lock:
            if self._session is not None:
                return self._session, False
            self._session = factory()
            return self._session, True

    def get_or_activate_module(self, factory: t.Callable[[], TestModule]) -> t.Tuple[TestModule, bool]:
        with self._lock:
            if self._module is not None:
                return self._module, False
            self._module = factory()
            return self._module, True

    def get_or_activate_suite(self, name: str, factory: t.Callable[[], TestSuite]) -> t.Tuple[TestSuite, bool]:
        with self._lock:
            suite = self._suites.get(name)
            if suite is not None:
                return suite, False
            suite = self._suites[name] = factory()
            return suite, True

    def deactivate_session(self) -> None:
        with self._lock:
            self._session = None
            self._module = None
            self._suites = {}

    def deactivate_module(self, module: t.Optional[TestModule] = None) -> None:
        with self._lock:
            if module is None or self._module is module:
                self._module = None

    def deactivate_suite(self, name: str, suite: t.Optional[TestSuite] = None) -> None:
        with self._lock:
            if suite is None or self._suites.get(name) is suite:
                self._suites.pop(name, None)

    def activate_test(self, test: Test) -> None:
        current = self._local.test
        if current is not None and current is not test:
            log.debug("Replacing active test %r with %r in this thread", current, test)
        self._local.test = test

    def deactivate_test(self, test: Test) -> None:
        current = self._local.test
        if current is not test:
            raise ActiveTestMismatchError(f"Trying to deactivate {test!r} but the active test is {current!r}")
        self._local.test = None

    def push_span(self, span: CISpan) -> None:
        self._local.spans.append(span)

    def pop_span(self, span: CISpan) -> None:
        spans = self._local.spans
        if spans and spans[-1] is span:
            spans.pop()
        elif span in spans:
            spans.remove(span)


class Recorder:
    """
    Creates test events and hands finished traces to the writer.

    Every span gets the same base tags: ``span.kind``, the ``ciapp-test`` origin, the CI and git tags of the run,
    the platform tags and the test command. Tests inherit the framework tags of their module and session.
    """

    enabled = True

    def __init__(
        self,
        writer: TraceWriter,
        env_tags: t.Optional[t.Dict[str, str]] = None,
        service: t.Optional[str] = None,
        test_suite_level_visibility_enabled: bool = False,
        session_tags: t.Optional[t.Dict[str, str]] = None,
        test_command: t.Optional[str] = None,
    ) -> None:
        self._writer = writer
        self._env_tags = dict(env_tags or {})
        self._service = service or DEFAULT_SERVICE_NAME
        self.test_suite_level_visibility_enabled = test_suite_level_visibility_enabled
        self._session_tags = dict(session_tags or {})
        self._test_command = test_command or get_test_command()
        self._context = Context()
        self._provider = self._env_tags.get(CITag.PROVIDER_NAME)

        self._base_tags: t.Dict[str, str] = {
            TestTag.SPAN_KIND: SpanKind.TEST,
            TestTag.ORIGIN: CI_APP_TEST_ORIGIN,
            **self._env_tags,
            **get_platform_tags(),
            TestTag.TEST_COMMAND: self._test_command,
        }

    @property
    def writer(self) -> TraceWriter:
        return self._writer

    @property
    def service(self) -> str:
        return self._service

    @property
    def test_command(self) -> str:
        return self._test_command

    # Accessors.

    def active_session(self) -> t.Optional[TestSession]:
        return self._context.active_session

    def active_module(self) -> t.Optional[TestModule]:
        return self._context.active_module

    def active_suite(self, name: str) -> t.Optional[TestSuite]:
        return self._context.active_suite(name)

    def active_test(self) -> t.Optional[Test]:
        return self._context.active_test

    def active_span(self) -> t.Optional[CISpan]:
        return self._context.active_span or self._context.active_test

    # Event creation.

    def start_session(
        self, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> TestSession:
        def make_session() -> TestSession:
            session = TestSession(name=self._test_command, service=service or self._service)
            self._set_base_tags(session)
            session.set_tags(self._session_tags)
            session.set_tags(tags or {})
            session.set_tag(TestTag.TEST_SESSION_ID, session.span_id)
            session.add_on_finish(self._on_session_finished)
            return session

        session, created = self._context.get_or_activate_session(make_session)
        if created:
            self._record_created(session)
            TelemetryAPI.get().record_test_session(self._provider, auto_injected=False)
        else:
            log.debug("Session %r is already active", session)
        return session

    def start_module(
        self, name: str, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> TestModule:
        session = self._context.active_session

        def make_module() -> TestModule:
            module = TestModule(name=name, service=service or self._inherited_service(session))
            self._set_base_tags(module)
            self._inherit_tags(module, session)
            module.set_tag(TestTag.TEST_MODULE, name)
            module.set_tags(tags or {})
            if session is not None:
                module.set_tag(TestTag.TEST_SESSION_ID, session.span_id)
            module.set_tag(TestTag.TEST_MODULE_ID, module.span_id)
            module.add_on_finish(self._on_module_finished)
            return module

        module, created = self._context.get_or_activate_module(make_module)
        if created:
            if session is not None:
                session.add_child(module)
            self._record_created(module)
        elif module.name != name:
            log.debug("Module %r is still active, not starting module %r", module.name, name)
        return module

    def start_suite(
        self, name: str, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> TestSuite:
        session = self._context.active_session
        module = self._context.active_module
        parent: t.Optional[TestItem] = module or session

        def make_suite() -> TestSuite:
            suite = TestSuite(name=name, service=service or self._inherited_service(parent))
            self._set_base_tags(suite)
            self._inherit_tags(suite, session, module)
            suite.set_tag(TestTag.TEST_SUITE, name)
            if module is not None:
                suite.set_tag(TestTag.TEST_MODULE, module.name)
            suite.set_tags(tags or {})
            self._set_parent_ids(suite, session, module)
            suite.set_tag(TestTag.TEST_SUITE_ID, suite.span_id)
            suite.add_on_finish(self._on_suite_finished)
            return suite

        suite, created = self._context.get_or_activate_suite(name, make_suite)
        if created:
            if parent is not None:
                parent.add_child(suite)
            self._record_created(suite)
        return suite

    def trace_test(
        self,
        name: str,
        suite_name: t.Optional[str] = None,
        service: t.Optional[str] = None,
        tags: t.Optional[t.Mapping[str, t.Any]] = None,
    ) -> Test:
        """
        Start a test and make it the active test of the calling thread.

        The suite is `suite_name`, or the ``test.suite`` entry of `tags`. When a suite with that name is active the
        test is linked to it and counts towards its status. Use the returned test as a context manager to have it
        failed on exception and finished on exit.
        """
        tags = dict(tags or {})
        if suite_name is None:
            suite_name = tags.get(TestTag.TEST_SUITE)

        session = self._context.active_session
        module = self._context.active_module
        suite = self._context.active_suite(suite_name) if suite_name else None

        test = Test(
            name=name,
            service=service or self._inherited_service(suite or module or session),
            trace_id=session.trace_id if session is not None else None,
        )
        self._set_base_tags(test)
        self._inherit_tags(test, session, module, suite)
        test.set_tag(TestTag.TEST_NAME, name)
        if suite_name:
            test.set_tag(TestTag.TEST_SUITE, suite_name)
        if module is not None:
            test.set_tag(TestTag.TEST_MODULE, module.name)
        test.set_tags(tags)
        self._set_parent_ids(test, session, module)
        if suite is not None:
            test.set_tag(TestTag.TEST_SUITE_ID, suite.span_id)
            suite.add_child(test)

        test.add_on_finish(self._on_test_finished)
        self._context.activate_test(test)
        self._record_created(test)
        return test

    def trace(
        self, name: str, span_type: str = SpanType.SPAN, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> Span:
        """Start a span under the innermost open span of this thread, or under the active test."""
        parent = self.active_span()
        session = self._context.active_session

        if parent is not None:
            span = Span(
                name=name,
                service=parent.service,
                span_type=span_type,
                trace_id=parent.trace_id,
                parent_id=parent.span_id,
            )
            span.trace_root = parent.trace_root or parent
        else:
            span = Span(name=name, service=self._service, span_type=span_type)

        self._set_base_tags(span)
        if session is not None:
            span.set_tag(TestTag.TEST_SESSION_ID, session.span_id)
        span.set_tags(tags or {})

        span.add_on_finish(self._on_span_finished)
        self._context.push_span(span)
        return span

    # Deactivation.

    def deactivate_test(self, test: Test) -> None:
        self._context.deactivate_test(test)

    def deactivate_suite(self, name: str) -> None:
        self._context.deactivate_suite(name)

    def deactivate_module(self) -> None:
        self._context.deactivate_module()

    def deactivate_session(self) -> None:
        self._context.deactivate_session()

    def shutdown(self, timeout: t.Optional[float] = None) -> None:
        self._writer.stop(timeout)

    # Helpers.

    def _set_base_tags(self, span: CISpan) -> None:
        span.set_tags(self._base_tags)
        if isinstance(span, TestItem):
            span.set_tag(TestTag.TEST_TYPE, TestType.TEST)

    def _inherited_service(self, parent: t.Optional[CISpan]) -> str:
        return parent.service if parent is not None else self._service

    @staticmethod
    def _inherit_tags(item: TestItem, *ancestors: t.Optional[TestItem]) -> None:
        # Later ancestors are closer to the item and win.
        for ancestor in ancestors:
            if ancestor is None:
                continue
            for key in INHERITABLE_TAGS:
                value = ancestor.get_tag(key)
                if value is not None:
                    item.set_tag(key, value)

    @staticmethod
    def _set_parent_ids(item: TestItem, session: t.Optional[TestSession], module: t.Optional[TestModule]) -> None:
        if session is not None:
            item.set_tag(TestTag.TEST_SESSION_ID, session.span_id)
        if module is not None:
            item.set_tag(TestTag.TEST_MODULE_ID, module.span_id)

    def _record_created(self, item: TestItem) -> None:
        TelemetryAPI.get().record_event_created(
            item.event_type,
            item.get_framework(),
            has_codeowner=item.get_tag(TestTag.CODEOWNERS) is not None,
            is_unsupported_ci=self._provider is None,
        )

    def _record_finished(self, item: TestItem) -> None:
        is_rum = False
        browser_driver = None
        if isinstance(item, Test):
            is_rum = item.is_rum()
            browser_driver = item.get_browser_driver()

        TelemetryAPI.get().record_event_finished(
            item.event_type,
            item.get_framework(),
            has_codeowner=item.get_tag(TestTag.CODEOWNERS) is not None,
            is_unsupported_ci=self._provider is None,
            is_rum=is_rum,
            browser_driver=browser_driver,
        )

    # Finish callbacks.

    def _on_test_finished(self, span: CISpan) -> None:
        test = t.cast(Test, span)
        if self._context.active_test is test:
            self._context.deactivate_test(test)
        self._record_finished(test)
        self._writer.write(test.trace_spans())

    def _on_span_finished(self, span: CISpan) -> None:
        self._context.pop_span(span)
        root = span.trace_root
        if root is None:
            self._writer.write(span.trace_spans())
        elif not root._attach_to_trace(span):
            # The test or span it belongs to was already written.
            self._writer.write([span])

    def _on_suite_finished(self, span: CISpan) -> None:
        suite = t.cast(TestSuite, span)
        self._context.deactivate_suite(suite.name, suite)
        self._record_finished(suite)
        self._writer.write([suite])

    def _on_module_finished(self, span: CISpan) -> None:
        module = t.cast(TestModule, span)
        self._context.deactivate_module(module)
        self._record_finished(module)
        self._writer.write([module])

    def _on_session_finished(self, span: CISpan) -> None:
        session = t.cast(TestSession, span)
        self._record_finished(session)
        self._writer.write([session])
        self._context.deactivate_session()
        self.shutdown()


class NullSpan:
    """Handle returned when recording is disabled. Every method is accepted and does nothing."""

    name = ""
    service = ""
    resource = ""
    span_type = ""
    trace_id = 0
    span_id = 0
    parent_id = 0
    error = 0
    status: t.Optional[TestStatus] = None
    finished = False

    def set_tag(self, key: str, value: t.Any) -> None:
        pass

    def set_tags(self, tags: t.Mapping[str, t.Any]) -> None:
        pass

    def get_tag(self, key: str) -> t.Optional[str]:
        return None

    def get_tags(self) -> t.Dict[str, str]:
        return {}

    def set_metric(self, key: str, value: t.Union[int, float]) -> None:
        pass

    def get_metric(self, key: str) -> t.Optional[t.Union[int, float]]:
        return None

    def set_exc_info(self, exc: BaseException) -> None:
        pass

    def set_parameters(
        self, arguments: t.Mapping[str, t.Any], metadata: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> None:
        pass

    def passed(self) -> None:
        pass

    def failed(self, exception: t.Optional[BaseException] = None) -> None:
        pass

    def skipped(self, reason: t.Optional[str] = None) -> None:
        pass

    def get_status(self) -> t.Optional[TestStatus]:
        return None

    def finish(self, finish_ns: t.Optional[int] = None) -> None:
        pass

    def __enter__(self) -> NullSpan:
        return self

    def __exit__(
        self,
        exc_type: t.Optional[t.Type[BaseException]],
        exc_value: t.Optional[BaseException],
        tb: t.Optional[TracebackType],
    ) -> None:
        pass


NULL_SPAN = NullSpan()


class NullRecorder:
    """Recorder used when CI Visibility is disabled: accepts every call and records nothing."""

    enabled = False
    test_suite_level_visibility_enabled = False

    def active_session(self) -> None:
        return None

    def active_module(self) -> None:
        return None

    def active_suite(self, name: str) -> None:
        return None

    def active_test(self) -> None:
        return None

    def active_span(self) -> None:
        return None

    def start_session(
        self, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> NullSpan:
        return NULL_SPAN

    def start_module(
        self, name: str, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> NullSpan:
        return NULL_SPAN

    def start_suite(
        self, name: str, service: t.Optional[str] = None, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> NullSpan:
        return NULL_SPAN

    def trace_test(
        self,
        name: str,
        suite_name: t.Optional[str] = None,
        service: t.Optional[str] = None,
        tags: t.Optional[t.Mapping[str, t.Any]] = None,
    ) -> NullSpan:
        return NULL_SPAN

    def trace(
        self, name: str, span_type: str = SpanType.SPAN, tags: t.Optional[t.Mapping[str, t.Any]] = None
    ) -> NullSpan:
        return NULL_SPAN

    def deactivate_test(self, test: t.Any) -> None:
        pass

    def deactivate_suite(self, name: str) -> None:
        pass

    def deactivate_module(self) -> None:
        pass

    def deactivate_session(self) -> None:
        pass

    def shutdown(self, timeout: t.Optional[float] = None) -> None:
        pass
