"""
Conversion of finished spans into intake event records.

Each span of a trace is handed to a serializer, which builds the record ``content`` and validates it. Two factories
decide which spans become records: :class:`TestLevel` emits only tests and spans, :class:`TestSuiteLevel` also emits
sessions, modules and suites and links tests to them through ``test_session_id``, ``test_module_id`` and
``test_suite_id``.
"""

from __future__ import annotations

from collections import defaultdict
import typing as t

from ddci.internal.constants import MINIMUM_START_NS
from ddci.internal.test_data import CISpan
from ddci.internal.test_data import SpanType
from ddci.internal.test_data import TestTag


TOP_LEVEL_METRIC = "_dd.top_level"
SAMPLING_PRIORITY_METRIC = "_sampling_priority_v1"

ID_TAGS = (TestTag.TEST_SESSION_ID, TestTag.TEST_MODULE_ID, TestTag.TEST_SUITE_ID)

HIERARCHY_SPAN_TYPES = frozenset({SpanType.TEST, SpanType.SUITE, SpanType.MODULE, SpanType.SESSION})


class EventSerializer:
    event_type = "span"
    version = 1

    # Whether the content carries trace_id, span_id and parent_id.
    has_span_ids = True
    # Id tags moved from meta into the content as integers.
    linking_ids: t.Tuple[str, ...] = ()
    # Id tags left in meta; every other id tag is removed from it.
    kept_meta_ids: t.Tuple[str, ...] = ()
    # Content fields that must be present and non-zero.
    required_ids: t.Tuple[str, ...] = ("trace_id", "span_id")

    def __init__(self, trace: t.Sequence[CISpan], span: CISpan) -> None:
        self.trace = trace
        self.span = span
        self._content: t.Optional[t.Dict[str, t.Any]] = None
        self._errors: t.Optional[t.Dict[str, t.List[str]]] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id:{self.span.span_id},name:{self.span.name})"

    @property
    def content(self) -> t.Dict[str, t.Any]:
        if self._content is None:
            self._content = self._build_content()
        return self._content

    @property
    def errors(self) -> t.Dict[str, t.List[str]]:
        if self._errors is None:
            self._errors = self._validate()
        return self._errors

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {"type": self.event_type, "version": self.version, "content": self.content}

    def _build_content(self) -> t.Dict[str, t.Any]:
        span = self.span
        meta = dict(sorted(span.meta.items()))

        content: t.Dict[str, t.Any] = {}
        if self.has_span_ids:
            content["trace_id"] = span.trace_id
            content["span_id"] = span.span_id
            content["parent_id"] = span.parent_id or 0

        for id_tag in ID_TAGS:
            value = meta.get(id_tag) if id_tag in self.kept_meta_ids else meta.pop(id_tag, None)
            if id_tag in self.linking_ids and value:
                try:
                    content[id_tag] = int(value)
                except ValueError:
                    # Left out of the content, so validation reports the field as missing.
                    pass

        metrics = dict(sorted(span.metrics.items()))
        metrics[SAMPLING_PRIORITY_METRIC] = 1
        if not self.has_span_ids or not span.parent_id:
            metrics[TOP_LEVEL_METRIC] = 1

        content.update(
            {
                "name": span.name,
                "resource": span.resource,
                "service": span.service,
                "type": span.span_type,
                "error": span.error,
                "start": span.start_ns,
                "duration": span.duration_ns,
                "meta": meta,
                "metrics": metrics,
            }
        )
        return content

    def _validate(self) -> t.Dict[str, t.List[str]]:
        content = self.content
        errors: t.Dict[str, t.List[str]] = defaultdict(list)

        for field in ("name", "resource", "service", "type"):
            value = content.get(field)
            if not isinstance(value, str) or not value.strip():
                errors[field].append("is required")

        start = content.get("start")
        if not isinstance(start, int):
            errors["start"].append("is required")
        elif start < MINIMUM_START_NS:
            errors["start"].append(f"must be greater than or equal to {MINIMUM_START_NS}")

        duration = content.get("duration")
        if not isinstance(duration, int):
            errors["duration"].append("is required")
        elif duration < 0:
            errors["duration"].append("must be greater than or equal to 0")

        for field in self.required_ids:
            if not content.get(field):
                errors[field].append("is required")

        return dict(errors)


class SpanSerializer(EventSerializer):
    event_type = "span"


class SuiteLevelSpanSerializer(SpanSerializer):
    kept_meta_ids = (TestTag.TEST_SESSION_ID,)


class TestSerializer(EventSerializer):
    __test__ = False
    event_type = SpanType.TEST
    version = 2


class SuiteLevelTestSerializer(TestSerializer):
    linking_ids = (TestTag.TEST_SESSION_ID, TestTag.TEST_MODULE_ID, TestTag.TEST_SUITE_ID)
    required_ids = ("trace_id", "span_id", *linking_ids)


class TestSuiteSerializer(EventSerializer):
    __test__ = False
    event_type = SpanType.SUITE
    has_span_ids = False
    linking_ids = (TestTag.TEST_SESSION_ID, TestTag.TEST_MODULE_ID, TestTag.TEST_SUITE_ID)
    required_ids = linking_ids


class TestModuleSerializer(EventSerializer):
    __test__ = False
    event_type = SpanType.MODULE
    has_span_ids = False
    linking_ids = (TestTag.TEST_SESSION_ID, TestTag.TEST_MODULE_ID)
    required_ids = linking_ids


class TestSessionSerializer(EventSerializer):
    __test__ = False
    event_type = SpanType.SESSION
    has_span_ids = False
    linking_ids = (TestTag.TEST_SESSION_ID,)
    required_ids = linking_ids


class TestLevel:
    """Emits test and span records only."""

    __test__ = False
    serializers: t.Dict[str, t.Type[EventSerializer]] = {SpanType.TEST: TestSerializer}
    span_serializer: t.Type[EventSerializer] = SpanSerializer

    def serialize(self, trace: t.Sequence[CISpan], span: CISpan) -> t.Optional[EventSerializer]:
        """Return the serializer for `span`, or ``None`` if this level does not emit its kind of record."""
        serializer_class = self.serializers.get(span.span_type)
        if serializer_class is None:
            if span.span_type in HIERARCHY_SPAN_TYPES:
                return None
            serializer_class = self.span_serializer
        return serializer_class(trace, span)

    def serialize_trace(self, trace: t.Sequence[CISpan]) -> t.List[EventSerializer]:
        events = []
        for span in trace:
            event = self.serialize(trace, span)
            if event is not None:
                events.append(event)
        return events


class TestSuiteLevel(TestLevel):
    """Emits session, module, suite, test and span records."""

    __test__ = False
    serializers = {
        SpanType.TEST: SuiteLevelTestSerializer,
        SpanType.SUITE: TestSuiteSerializer,
        SpanType.MODULE: TestModuleSerializer,
        SpanType.SESSION: TestSessionSerializer,
    }
    span_serializer = SuiteLevelSpanSerializer


def get_serializers(test_suite_level_visibility_enabled: bool) -> TestLevel:
    return TestSuiteLevel() if test_suite_level_visibility_enabled else TestLevel()
