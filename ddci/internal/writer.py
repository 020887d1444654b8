from __future__ import annotations

from collections import deque
import threading
import typing as t

import attr

from ddci.internal import periodic
from ddci.internal.constants import DEFAULT_BUFFER_SIZE
from ddci.internal.constants import DEFAULT_FLUSH_INTERVAL_SECONDS
from ddci.internal.constants import DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
from ddci.internal.constants import TEST_CYCLE_INTAKE_PATH
from ddci.internal.encoder import CIVisibilityEncoder
from ddci.internal.encoder import Payload
from ddci.internal.http import ResponseKind
from ddci.internal.logger import get_logger
from ddci.internal.serializers import EventSerializer
from ddci.internal.serializers import TestLevel
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.constants import Endpoint
from ddci.internal.test_data import CISpan
from ddci.internal.transport import Transport
from ddci.internal.utils import StopWatch


log = get_logger(__name__)

Trace = t.List[CISpan]


class TraceWriter:
    def write(self, trace: Trace) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        raise NotImplementedError

    def start(self) -> None:
        raise NotImplementedError

    def stop(self, timeout: t.Optional[float] = None) -> None:
        raise NotImplementedError


class NullWriter(TraceWriter):
    """Accepts traces and discards them."""

    def write(self, trace: Trace) -> None:
        log.debug("Discarding trace of %d spans: no intake transport available", len(trace))

    def flush(self) -> None:
        pass

    def start(self) -> None:
        pass

    def stop(self, timeout: t.Optional[float] = None) -> None:
        pass


@attr.s(eq=False)
class CIVisibilityWriter(periodic.AwakeablePeriodicService, TraceWriter):
    """
    Buffer finished traces and send them to the test cycle intake from a background thread.

    ``write()`` never blocks on I/O: traces go to a bounded buffer, dropping the oldest one when full. The worker
    thread wakes every ``interval`` seconds, or sooner once ``flush_threshold`` traces are waiting, serializes
    everything in the buffer and sends one request per payload. Failed payloads are not retried.
    """

    _transport = attr.ib(type=Transport)
    _serializers = attr.ib(type=TestLevel)
    _encoder = attr.ib(type=CIVisibilityEncoder, factory=CIVisibilityEncoder)
    _interval = attr.ib(type=float, default=DEFAULT_FLUSH_INTERVAL_SECONDS)
    _buffer_size = attr.ib(type=int, default=DEFAULT_BUFFER_SIZE)
    _flush_threshold = attr.ib(type=int, default=1000)
    _shutdown_timeout = attr.ib(type=float, default=DEFAULT_SHUTDOWN_TIMEOUT_SECONDS)

    _buffer = attr.ib(init=False, repr=False)
    _buffer_lock = attr.ib(init=False, repr=False, factory=threading.Lock)
    _flush_lock = attr.ib(init=False, repr=False, factory=threading.Lock)
    _accepting = attr.ib(init=False, default=True)
    _unsupported_warned = attr.ib(init=False, default=False)
    dropped_traces = attr.ib(init=False, default=0)

    def __attrs_post_init__(self) -> None:
        self._buffer: t.Deque[Trace] = deque()

    def write(self, trace: Trace) -> None:
        if not self._accepting:
            log.debug("Writer is shut down, discarding trace of %d spans", len(trace))
            self._record_dropped(len(trace))
            return

        with self._buffer_lock:
            if len(self._buffer) >= self._buffer_size:
                dropped = self._buffer.popleft()
                self.dropped_traces += 1
                log.debug("Writer buffer full, dropping the oldest trace of %d spans", len(dropped))
                self._record_dropped(len(dropped))
            self._buffer.append(trace)
            pending = len(self._buffer)

        if pending >= self._flush_threshold:
            self.awake()

    def _record_dropped(self, count: int) -> None:
        TelemetryAPI.get().record_event_payload_dropped(self._encoder.ENDPOINT_TYPE, count)

    def _pop_traces(self) -> t.List[Trace]:
        with self._buffer_lock:
            traces = list(self._buffer)
            self._buffer.clear()
        return traces

    def periodic(self) -> None:
        try:
            self.flush()
        except Exception:
            log.error("Error flushing CI Visibility events", exc_info=True)

    def on_shutdown(self) -> None:
        self.periodic()

    def flush(self) -> None:
        """Serialize and send everything currently buffered, in the calling thread."""
        with self._flush_lock:
            traces = self._pop_traces()
            if not traces:
                return

            with StopWatch() as stopwatch:
                events = self._serialize(traces)
            seconds_per_event = stopwatch.elapsed() / len(events) if events else 0.0

            for payload in self._encoder.encode(events):
                TelemetryAPI.get().record_event_payload_serialization_seconds(
                    self._encoder.ENDPOINT_TYPE,
                    payload.serialization_seconds + seconds_per_event * payload.events_count,
                )
                self._send_payload(payload)

    def _serialize(self, traces: t.List[Trace]) -> t.List[t.Dict[str, t.Any]]:
        events: t.List[t.Dict[str, t.Any]] = []
        for trace in traces:
            for event in self._serializers.serialize_trace(trace):
                if self._check_event(event):
                    events.append(event.to_dict())
        TelemetryAPI.get().record_events_enqueued(len(events))
        return events

    def _check_event(self, event: EventSerializer) -> bool:
        if event.valid:
            return True
        log.warning("Invalid event skipped: %r Errors: %s", event, event.errors)
        TelemetryAPI.get().record_event_payload_dropped(self._encoder.ENDPOINT_TYPE)
        return False

    def _send_payload(self, payload: Payload) -> None:
        response = self._transport.request(TEST_CYCLE_INTAKE_PATH, payload.data)

        TelemetryAPI.get().record_event_payload(
            endpoint=Endpoint.TEST_CYCLE,
            payload_size=response.request_size,
            request_seconds=response.elapsed_seconds,
            events_count=payload.events_count,
            compressed=response.request_compressed,
            error=response.error_type,
            status_code=response.status_code,
        )

        if response.ok:
            log.debug("Sent %d events (%d bytes)", payload.events_count, len(payload.data))
        elif response.kind == ResponseKind.UNSUPPORTED:
            if not self._unsupported_warned:
                self._unsupported_warned = True
                log.warning(
                    "The intake does not support this payload format (HTTP 415); CI Visibility events are being "
                    "dropped"
                )
        else:
            log.warning(
                "Failed to send %d CI Visibility events: %s", payload.events_count, response.error_description
            )

    def stop(self, timeout: t.Optional[float] = None) -> None:
        """Stop accepting traces, then give the worker until `timeout` seconds to send what is buffered."""
        self._accepting = False
        if timeout is None:
            timeout = self._shutdown_timeout

        if self.status == periodic.ServiceStatus.RUNNING:
            super().stop()
            self.join(timeout)
        else:
            self.periodic()

        if self._worker is not None and self._worker.is_alive():
            remaining = self._pop_traces()
            if remaining:
                count = sum(len(trace) for trace in remaining)
                log.warning("Shutdown timed out after %.1f seconds, dropping %d spans", timeout, count)
                self._record_dropped(count)

    shutdown = stop
