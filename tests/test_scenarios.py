"""End-to-end runs through the public API, the writer and a fake intake."""

import logging
import subprocess

import msgpack
import pytest

from ddci import api
from ddci.internal.constants import MINIMUM_START_NS
from ddci.internal.encoder import CIVisibilityEncoder
from ddci.internal.env_tags import get_env_tags
from ddci.internal.git import GitTag
from ddci.internal.recorder import Recorder
from ddci.internal.serializers import TestLevel
from ddci.internal.serializers import TestSerializer
from ddci.internal.serializers import TestSuiteLevel
from ddci.internal.telemetry.constants import MetricName
from ddci.internal.test_data import SpanType
from ddci.internal.test_data import Test
from ddci.internal.transport import AgentlessSetup
from ddci.internal.transport import Subdomain
from ddci.internal.writer import CIVisibilityWriter
from tests.utils import count_metric
from tests.utils import distribution_points


INTAKE_PATH = "/api/v2/citestcycle"
SMALL_METADATA = {"*": {"language": "python"}}


def _agentless_writer(max_payload_size=4 * 1024 * 1024, serializers=None):
    transport = AgentlessSetup(site="datadoghq.com", api_key="k").get_transport(Subdomain.CITESTCYCLE)
    return CIVisibilityWriter(
        transport=transport,
        serializers=serializers or TestLevel(),
        encoder=CIVisibilityEncoder(metadata=SMALL_METADATA, max_payload_size=max_payload_size),
    )


def _finished_test(name, start_ns=None, **tags):
    test = Test(name=name, service="svc", start_ns=start_ns)
    test.set_tags(tags)
    test.passed()
    test.finish()
    return test


def test_single_passing_test_agentless(monkeypatch, intake):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")
    monkeypatch.setenv("DD_CIVISIBILITY_AGENTLESS_ENABLED", "true")
    monkeypatch.setenv("DD_API_KEY", "k")
    monkeypatch.setenv("DD_SITE", "datadoghq.com")

    assert api.enable(register_atexit=False)

    session = api.start_session()
    api.start_suite("calc")
    test = api.trace_test("adds", suite_name="calc")
    test.passed()
    test.finish()
    session.finish()

    assert len(intake.requests) == 1
    request = intake.requests[0]
    assert request.verb == "POST"
    assert request.url == "https://citestcycle-intake.datadoghq.com/api/v2/citestcycle"
    assert request.headers["DD-API-KEY"] == "k"
    assert request.headers["Content-Type"] == "application/msgpack"

    payload = request.payload()
    assert payload["version"] == 1
    assert len(payload["events"]) == 1
    event = payload["events"][0]
    assert event["type"] == "test"
    assert event["content"]["name"] == "adds"
    assert event["content"]["meta"]["test.suite"] == "calc"
    assert event["content"]["meta"]["test.status"] == "pass"


def test_proxy_selection_prefers_v4(monkeypatch, intake):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")
    intake.advertise("/v0.4/traces", "/evp_proxy/v2/", "/evp_proxy/v4/")

    assert api.enable(register_atexit=False)

    session = api.start_session()
    with api.trace_test("adds", suite_name="calc") as test:
        test.passed()
    session.finish()

    info_requests = intake.requests_to("/info")
    assert len(info_requests) == 1
    assert info_requests[0].verb == "GET"
    assert info_requests[0].url == "http://localhost:8126/info"

    posts = intake.requests_to("/evp_proxy/v4/api/v2/citestcycle")
    assert len(posts) == 1
    post = posts[0]
    assert post.url == "http://localhost:8126/evp_proxy/v4/api/v2/citestcycle"
    assert post.headers["X-Datadog-EVP-Subdomain"] == "citestcycle-intake"
    assert post.headers["Content-Encoding"] == "gzip"
    assert "DD-API-KEY" not in post.headers
    assert [e["content"]["name"] for e in post.payload()["events"]] == ["adds"]


def test_chunking_splits_payloads_by_size(intake, telemetry):
    tests = [_finished_test("t%d" % i, pad="x" * 700) for i in range(4)]

    writer = _agentless_writer(max_payload_size=2000)
    event_size = len(msgpack.packb(TestSerializer(tests, tests[0]).to_dict()))
    prefix_size = len(writer._encoder._prefix)
    # Two events fit in a payload, three do not.
    assert prefix_size + 1 + 2 * event_size <= 2000 < prefix_size + 1 + 3 * event_size

    for test in tests:
        writer.write([test])
    writer.flush()

    posts = intake.requests_to(INTAKE_PATH)
    assert len(posts) == 2
    assert all(len(post.raw_body) <= 2000 for post in posts)
    events = intake.events(INTAKE_PATH)
    assert [e["content"]["name"] for e in events] == ["t0", "t1", "t2", "t3"]
    assert [e["content"]["span_id"] for e in events] == [test.span_id for test in tests]
    assert distribution_points(telemetry, MetricName.ENDPOINT_PAYLOAD_EVENTS_COUNT) == [2, 2]
    assert len(distribution_points(telemetry, MetricName.ENDPOINT_PAYLOAD_EVENTS_SERIALIZATION_MS)) == 2


def test_invalid_event_is_dropped_with_warning(intake, caplog, telemetry):
    bad = _finished_test("bad", start_ns=0)
    good = _finished_test("good")

    writer = _agentless_writer()
    writer.write([bad])
    writer.write([good])
    with caplog.at_level(logging.WARNING, logger="ddci"):
        writer.flush()

    posts = intake.requests_to(INTAKE_PATH)
    assert len(posts) == 1
    assert [e["content"]["name"] for e in posts[0].payload()["events"]] == ["good"]

    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "Invalid event skipped: TestSerializer(id:%d,name:bad)" % bad.span_id in warnings[0]
    assert "must be greater than or equal to %d" % MINIMUM_START_NS in warnings[0]
    assert count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_DROPPED, endpoint="test_cycle") == 1


def test_non_utf8_git_metadata_still_ships_events(intake, git_repo):
    subprocess.check_output([b"git", b"checkout", b"-b", b"feature-caf\xe9"], cwd=git_repo)
    env_tags = get_env_tags({}, cwd=git_repo)

    writer = _agentless_writer()
    writer.write([_finished_test("a", **env_tags)])
    writer.flush()

    (event,) = intake.events(INTAKE_PATH)
    assert event["content"]["meta"][GitTag.BRANCH] == "feature-caf\ufffd"


def test_unencodable_event_does_not_cost_the_batch(intake, telemetry):
    writer = _agentless_writer()
    writer.write([_finished_test("bad", **{GitTag.BRANCH: "feature-caf\udce9"})])
    writer.write([_finished_test("good")])
    writer.flush()

    assert [e["content"]["name"] for e in intake.events(INTAKE_PATH)] == ["good"]
    assert count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_DROPPED, endpoint="test_cycle") == 1


def test_status_aggregation_across_suite_and_session(intake):
    writer = _agentless_writer(serializers=TestSuiteLevel())
    recorder = Recorder(writer=writer, service="svc", test_suite_level_visibility_enabled=True)

    session = recorder.start_session()
    module = recorder.start_module("calc_module")
    suite = recorder.start_suite("calc")
    for name, outcome in (("adds", "passed"), ("divides", "skipped"), ("subtracts", "failed")):
        test = recorder.trace_test(name, suite_name="calc")
        getattr(test, outcome)()
        test.finish()
    suite.finish()
    module.finish()
    session.finish()

    events = intake.events(INTAKE_PATH)
    by_type = {}
    for event in events:
        by_type.setdefault(event["type"], []).append(event["content"])

    assert len(by_type["test"]) == 3
    assert [c["meta"]["test.status"] for c in by_type["test"]] == ["pass", "skip", "fail"]
    (suite_content,) = by_type[SpanType.SUITE]
    (module_content,) = by_type[SpanType.MODULE]
    (session_content,) = by_type[SpanType.SESSION]
    assert suite_content["meta"]["test.status"] == "fail"
    assert module_content["meta"]["test.status"] == "fail"
    assert session_content["meta"]["test.status"] == "fail"

    for content in by_type["test"]:
        assert content["test_session_id"] == session.span_id
        assert content["test_module_id"] == module.span_id
        assert content["test_suite_id"] == suite.span_id
    assert suite_content["test_suite_id"] == suite.span_id
    assert session_content["test_session_id"] == session.span_id


def test_git_override_beats_normalized_provider_ref(tmp_path):
    env = {
        "GITHUB_SHA": "b9f0fb3fdbb94c9d24b2c75b49663122a529e123",
        "GITHUB_REF": "refs/heads/feature/x",
        "DD_GIT_BRANCH": "main",
    }

    tags = get_env_tags(env, cwd=str(tmp_path))

    assert tags[GitTag.BRANCH] == "main"
    assert GitTag.TAG not in tags


@pytest.mark.parametrize("ref,expected", [("refs/heads/feature/x", "feature/x"), ("origin/main", "main")])
def test_provider_ref_is_normalized_without_override(tmp_path, ref, expected):
    env = {"GITHUB_SHA": "b9f0fb3fdbb94c9d24b2c75b49663122a529e123", "GITHUB_REF": ref}

    tags = get_env_tags(env, cwd=str(tmp_path))

    assert tags[GitTag.BRANCH] == expected
