"""Test doubles shared by the test suite."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
import gzip
import json
import threading
import typing as t

import msgpack

from ddci.internal.test_data import CISpan
from ddci.internal.writer import TraceWriter


@dataclass
class RecordedRequest:
    verb: str
    base_url: str
    path: str
    headers: t.Dict[str, str]
    body: t.Optional[bytes]

    @property
    def url(self) -> str:
        return self.base_url + self.path

    @property
    def raw_body(self) -> bytes:
        assert self.body is not None
        if self.headers.get("Content-Encoding") == "gzip":
            return gzip.decompress(self.body)
        return self.body

    def payload(self) -> t.Dict[str, t.Any]:
        return msgpack.unpackb(self.raw_body, raw=False, strict_map_key=False)

    def json(self) -> t.Any:
        return json.loads(self.raw_body)


@dataclass
class FakeResponse:
    status: int = 200
    body: bytes = b""
    reason: str = "OK"
    headers: t.Dict[str, str] = field(default_factory=dict)

    def read(self) -> bytes:
        return self.body


class FakeConnection:
    """Stands in for ``http.client.HTTPConnection``; every request goes to the owning :class:`FakeIntake`."""

    def __init__(self, intake: FakeIntake, base_url: str) -> None:
        self.intake = intake
        self.base_url = base_url
        self._response: t.Optional[FakeResponse] = None
        self.closed = False

    def request(self, verb: str, url: str, body: t.Optional[bytes] = None, headers: t.Optional[dict] = None) -> None:
        request = RecordedRequest(verb=verb, base_url=self.base_url, path=url, headers=dict(headers or {}), body=body)
        self._response = self.intake.handle(request)

    def getresponse(self) -> FakeResponse:
        assert self._response is not None
        response, self._response = self._response, None
        return response

    def close(self) -> None:
        self.closed = True


class FakeIntake:
    """
    Records every request made through patched HTTP connections and answers from a routing table.

    Routes map a request path to a response, or to an exception raised by the connection. Unrouted requests get an
    empty 200 response.
    """

    def __init__(self) -> None:
        self.requests: t.List[RecordedRequest] = []
        self.routes: t.Dict[str, t.Union[FakeResponse, BaseException]] = {}
        self._lock = threading.Lock()

    def route(self, path: str, status: int = 200, body: t.Any = b"", headers: t.Optional[dict] = None) -> None:
        if not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self.routes[path] = FakeResponse(status=status, body=body, headers=dict(headers or {}))

    def fail(self, path: str, exc: BaseException) -> None:
        self.routes[path] = exc

    def advertise(self, *endpoints: str) -> None:
        self.route("/info", body={"endpoints": list(endpoints)})

    def handle(self, request: RecordedRequest) -> FakeResponse:
        with self._lock:
            self.requests.append(request)
        response = self.routes.get(request.path, FakeResponse())
        if isinstance(response, BaseException):
            raise response
        return response

    def connect(self, parsed_url: t.Any) -> FakeConnection:
        return FakeConnection(self, "%s://%s" % (parsed_url.scheme, parsed_url.netloc))

    def requests_to(self, path: str) -> t.List[RecordedRequest]:
        with self._lock:
            return [r for r in self.requests if r.path == path]

    def events(self, path: str) -> t.List[t.Dict[str, t.Any]]:
        """Every event record posted to `path`, in request order."""
        return [event for request in self.requests_to(path) for event in request.payload()["events"]]


class CapturingWriter(TraceWriter):
    """Keeps the traces it is given."""

    def __init__(self) -> None:
        self.traces: t.List[t.List[CISpan]] = []
        self.started = False
        self.stopped = 0

    def write(self, trace: t.List[CISpan]) -> None:
        self.traces.append(list(trace))

    def flush(self) -> None:
        pass

    def start(self) -> None:
        self.started = True

    def stop(self, timeout: t.Optional[float] = None) -> None:
        self.stopped += 1

    @property
    def spans(self) -> t.List[CISpan]:
        return [span for trace in self.traces for span in trace]


def count_metric(writer: t.Any, name: str, **tags: str) -> float:
    """Sum of the count metric `name` over the series whose tags include `tags`."""
    total = 0.0
    for metric in writer.get_count_metrics("civisibility"):
        if metric.name == name and all(metric.tags.get(k) == v for k, v in tags.items()):
            total += metric.value
    return total


def distribution_points(writer: t.Any, name: str) -> t.List[float]:
    points: t.List[float] = []
    for metric in writer.get_distribution_metrics("civisibility"):
        if metric.name == name:
            points.extend(metric.value)
    return points
