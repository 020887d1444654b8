import logging
import threading
import time

import pytest

from ddci.internal.encoder import CIVisibilityEncoder
from ddci.internal.http import Response
from ddci.internal.http import ResponseKind
from ddci.internal.serializers import TestLevel
from ddci.internal.telemetry.constants import MetricName
from ddci.internal.test_data import Test
from ddci.internal.transport import AgentlessSetup
from ddci.internal.transport import Subdomain
from ddci.internal.writer import CIVisibilityWriter
from ddci.internal.writer import NullWriter
from tests.utils import count_metric
from tests.utils import distribution_points


INTAKE_PATH = "/api/v2/citestcycle"


def _trace(name="adds"):
    test = Test(name=name)
    test.passed()
    test.finish()
    return [test]


def _writer(**kwargs):
    kwargs.setdefault("interval", 60)
    return CIVisibilityWriter(
        transport=AgentlessSetup(site="datadoghq.com", api_key="k").get_transport(Subdomain.CITESTCYCLE),
        serializers=TestLevel(),
        encoder=CIVisibilityEncoder(metadata={"*": {"language": "python"}}),
        **kwargs,
    )


def _names(intake):
    return [event["content"]["name"] for event in intake.events(INTAKE_PATH)]


def _wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            pytest.fail("condition not met in %.1f seconds" % timeout)
        time.sleep(0.01)


def test_flush_sends_buffered_traces(intake, telemetry):
    writer = _writer()
    writer.write(_trace("a"))
    writer.write(_trace("b"))

    writer.flush()
    writer.flush()

    assert len(intake.requests_to(INTAKE_PATH)) == 1
    assert _names(intake) == ["a", "b"]
    assert count_metric(telemetry, MetricName.EVENTS_ENQUEUED) == 2
    assert (
        count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_REQUESTS, endpoint="test_cycle", rq_compressed="true") == 1
    )
    assert distribution_points(telemetry, MetricName.ENDPOINT_PAYLOAD_EVENTS_COUNT) == [2]
    assert len(distribution_points(telemetry, MetricName.ENDPOINT_PAYLOAD_EVENTS_SERIALIZATION_MS)) == 1


def test_full_buffer_drops_the_oldest_trace(intake, telemetry):
    writer = _writer(buffer_size=2)
    for name in ("a", "b", "c"):
        writer.write(_trace(name))

    writer.flush()

    assert _names(intake) == ["b", "c"]
    assert writer.dropped_traces == 1
    assert count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_DROPPED, endpoint="test_cycle") == 1


def test_flush_threshold_wakes_the_worker(intake):
    writer = _writer(flush_threshold=1)
    writer.start()
    try:
        writer.write(_trace("a"))
        writer.write(_trace("b"))
        _wait_for(lambda: len(_names(intake)) == 2)
    finally:
        writer.stop(timeout=5)

    assert sorted(_names(intake)) == ["a", "b"]


def test_stop_sends_remaining_traces(intake):
    writer = _writer()
    writer.start()
    writer.write(_trace("a"))

    writer.stop(timeout=5)

    assert _names(intake) == ["a"]


def test_stop_without_start_flushes_inline(intake):
    writer = _writer()
    writer.write(_trace("a"))

    writer.stop()
    writer.stop()

    assert _names(intake) == ["a"]


def test_write_after_stop_is_dropped(intake, telemetry):
    writer = _writer()
    writer.stop()

    writer.write(_trace("late"))
    writer.flush()

    assert intake.requests_to(INTAKE_PATH) == []
    assert count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_DROPPED) == 1


def test_unsupported_format_warns_once(intake, caplog):
    intake.route(INTAKE_PATH, status=415)
    writer = _writer()

    with caplog.at_level(logging.WARNING, logger="ddci"):
        for name in ("a", "b"):
            writer.write(_trace(name))
            writer.flush()

    assert len(intake.requests_to(INTAKE_PATH)) == 2
    messages = [r.getMessage() for r in caplog.records if "HTTP 415" in r.getMessage()]
    assert len(messages) == 1


def test_failed_request_is_not_retried(intake, caplog, telemetry):
    intake.route(INTAKE_PATH, status=500)
    writer = _writer()
    writer.write(_trace("a"))

    with caplog.at_level(logging.WARNING, logger="ddci"):
        writer.flush()
        writer.flush()

    assert len(intake.requests_to(INTAKE_PATH)) == 1
    assert "Failed to send 1 CI Visibility events: 500" in caplog.text
    assert (
        count_metric(
            telemetry,
            MetricName.ENDPOINT_PAYLOAD_REQUESTS_ERRORS,
            endpoint="test_cycle",
            error_type="status_code",
            status_code="500",
        )
        == 1
    )


def test_network_error_is_reported(intake, telemetry):
    intake.fail(INTAKE_PATH, ConnectionResetError("reset"))
    writer = _writer()
    writer.write(_trace("a"))

    writer.flush()

    assert count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_REQUESTS_ERRORS, error_type="network") == 1


def test_null_writer_discards():
    writer = NullWriter()
    writer.start()
    writer.write(_trace())
    writer.flush()
    writer.stop()


class BlockingTransport:
    """Holds every request until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.requests = []

    def request(self, path, payload=None, headers=None, verb="POST"):
        self.requests.append(path)
        self.entered.set()
        self.release.wait(10)
        return Response(kind=ResponseKind.OK, status_code=200)


def test_stop_drops_and_counts_what_is_left_after_the_deadline(telemetry, caplog):
    transport = BlockingTransport()
    writer = CIVisibilityWriter(
        transport=transport,
        serializers=TestLevel(),
        encoder=CIVisibilityEncoder(metadata={"*": {"language": "python"}}),
        interval=60,
        flush_threshold=1,
    )
    writer.start()
    try:
        writer.write(_trace("a"))
        assert transport.entered.wait(5)
        writer.write(_trace("b") + _trace("c"))

        with caplog.at_level(logging.WARNING, logger="ddci"):
            start = time.monotonic()
            writer.stop(timeout=0.2)
            elapsed = time.monotonic() - start
    finally:
        transport.release.set()
        writer.join(5)

    assert elapsed < 2
    assert count_metric(telemetry, MetricName.ENDPOINT_PAYLOAD_DROPPED, endpoint="test_cycle") == 2
    assert "Shutdown timed out after 0.2 seconds, dropping 2 spans" in caplog.text
    assert transport.requests == [INTAKE_PATH]
