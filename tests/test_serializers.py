import pytest

from ddci.internal.constants import MINIMUM_START_NS
from ddci.internal.serializers import SAMPLING_PRIORITY_METRIC
from ddci.internal.serializers import TOP_LEVEL_METRIC
from ddci.internal.serializers import SpanSerializer
from ddci.internal.serializers import SuiteLevelSpanSerializer
from ddci.internal.serializers import SuiteLevelTestSerializer
from ddci.internal.serializers import TestLevel
from ddci.internal.serializers import TestSerializer
from ddci.internal.serializers import TestSessionSerializer
from ddci.internal.serializers import TestSuiteLevel
from ddci.internal.serializers import TestSuiteSerializer
from ddci.internal.serializers import get_serializers
from ddci.internal.test_data import Span
from ddci.internal.test_data import Test
from ddci.internal.test_data import TestModule
from ddci.internal.test_data import TestSession
from ddci.internal.test_data import TestSuite
from ddci.internal.test_data import TestTag


SESSION_ID = 11
MODULE_ID = 22
SUITE_ID = 33


def _linked(item, session=True, module=True, suite=True):
    if session:
        item.set_tag(TestTag.TEST_SESSION_ID, SESSION_ID)
    if module:
        item.set_tag(TestTag.TEST_MODULE_ID, MODULE_ID)
    if suite:
        item.set_tag(TestTag.TEST_SUITE_ID, SUITE_ID)
    item.finish()
    return item


def test_test_record_content():
    test = Test(name="adds", service="svc", resource="calc.adds")
    test.set_tag(TestTag.TEST_SUITE, "calc")
    test.set_metric("custom", 2)
    test.passed()
    test.finish()

    record = TestSerializer([test], test).to_dict()

    assert record["type"] == "test"
    assert record["version"] == 2
    content = record["content"]
    assert content["trace_id"] == test.trace_id
    assert content["span_id"] == test.span_id
    assert content["parent_id"] == 0
    assert content["name"] == "adds"
    assert content["resource"] == "calc.adds"
    assert content["service"] == "svc"
    assert content["type"] == "test"
    assert content["error"] == 0
    assert content["start"] == test.start_ns
    assert content["duration"] == test.duration_ns
    assert content["meta"] == {TestTag.TEST_SUITE: "calc", TestTag.TEST_STATUS: "pass"}
    assert content["metrics"] == {"custom": 2, SAMPLING_PRIORITY_METRIC: 1, TOP_LEVEL_METRIC: 1}


def test_meta_keys_are_sorted():
    test = Test(name="adds")
    test.set_tags({"b": "2", "a": "1", "c": "3"})
    test.finish()

    assert list(TestSerializer([test], test).content["meta"]) == ["a", "b", "c"]


def test_test_level_strips_linking_ids():
    test = _linked(Test(name="adds"))

    content = TestSerializer([test], test).content

    for id_tag in (TestTag.TEST_SESSION_ID, TestTag.TEST_MODULE_ID, TestTag.TEST_SUITE_ID):
        assert id_tag not in content
        assert id_tag not in content["meta"]


def test_suite_level_test_moves_linking_ids_to_content():
    test = _linked(Test(name="adds"))

    serializer = SuiteLevelTestSerializer([test], test)

    assert serializer.valid
    assert serializer.content["test_session_id"] == SESSION_ID
    assert serializer.content["test_module_id"] == MODULE_ID
    assert serializer.content["test_suite_id"] == SUITE_ID
    assert TestTag.TEST_SUITE_ID not in serializer.content["meta"]


def test_suite_level_test_requires_every_linking_id():
    test = _linked(Test(name="adds"), module=False)

    serializer = SuiteLevelTestSerializer([test], test)

    assert serializer.errors == {"test_module_id": ["is required"]}


def test_suite_record_has_no_span_ids():
    suite = _linked(TestSuite(name="calc"))

    record = TestSuiteSerializer([suite], suite).to_dict()

    assert record["type"] == "test_suite_end"
    assert record["version"] == 1
    content = record["content"]
    assert "trace_id" not in content
    assert "span_id" not in content
    assert "parent_id" not in content
    assert content["test_suite_id"] == SUITE_ID
    assert content["metrics"][TOP_LEVEL_METRIC] == 1


def test_session_record():
    session = _linked(TestSession(name="pytest"), module=False, suite=False)

    serializer = TestSessionSerializer([session], session)

    assert serializer.valid
    assert serializer.content["test_session_id"] == SESSION_ID
    assert serializer.content["meta"][TestTag.TEST_STATUS] == "skip"


def test_child_span_is_not_top_level():
    test = Test(name="adds")
    span = Span(name="db", trace_id=test.trace_id, parent_id=test.span_id)
    span.finish()

    content = SpanSerializer([test, span], span).content

    assert content["parent_id"] == test.span_id
    assert TOP_LEVEL_METRIC not in content["metrics"]
    assert content["metrics"][SAMPLING_PRIORITY_METRIC] == 1


def test_suite_level_span_keeps_session_id_in_meta():
    span = _linked(Span(name="db"))

    content = SuiteLevelSpanSerializer([span], span).content

    assert content["meta"][TestTag.TEST_SESSION_ID] == str(SESSION_ID)
    assert TestTag.TEST_MODULE_ID not in content["meta"]
    assert "test_session_id" not in content


def test_validation_messages():
    test = Test(name="   ", start_ns=MINIMUM_START_NS - 1)
    test.finish()

    serializer = TestSerializer([test], test)

    assert not serializer.valid
    assert serializer.errors["name"] == ["is required"]
    assert serializer.errors["resource"] == ["is required"]
    assert serializer.errors["start"] == ["must be greater than or equal to %d" % MINIMUM_START_NS]
    assert "duration" not in serializer.errors


def test_unfinished_span_has_no_duration():
    test = Test(name="adds")

    assert TestSerializer([test], test).errors == {"duration": ["is required"]}


def test_repr():
    test = Test(name="adds", span_id=42)

    assert repr(TestSerializer([test], test)) == "TestSerializer(id:42,name:adds)"


def test_test_level_skips_hierarchy_records():
    session = TestSession(name="s")
    module = TestModule(name="m")
    suite = TestSuite(name="calc")
    test = Test(name="adds")
    span = Span(name="db")

    events = TestLevel().serialize_trace([session, module, suite, test, span])

    assert [type(e) for e in events] == [TestSerializer, SpanSerializer]


def test_suite_level_emits_every_record():
    items = [TestSession(name="s"), TestModule(name="m"), TestSuite(name="calc"), Test(name="adds"), Span(name="db")]

    events = TestSuiteLevel().serialize_trace(items)

    assert [e.event_type for e in events] == [
        "test_session_end",
        "test_module_end",
        "test_suite_end",
        "test",
        "span",
    ]


@pytest.mark.parametrize("enabled,expected", [(True, TestSuiteLevel), (False, TestLevel)])
def test_get_serializers(enabled, expected):
    assert type(get_serializers(enabled)) is expected
