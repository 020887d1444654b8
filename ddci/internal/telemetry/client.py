from __future__ import annotations

import itertools
import platform
import socket
import time
import typing as t

from ddci.internal.encoder import get_runtime_id
from ddci.internal.http import Response
from ddci.internal.logger import get_logger
from ddci.internal.transport import Transport
from ddci.internal.transport import TransportSetup
from ddci.version import __version__


log = get_logger(__name__)

MESSAGE_BATCH = "message-batch"


class TelemetryClient:
    """Posts drained telemetry series to the instrumentation telemetry intake as one ``message-batch`` request."""

    def __init__(self, transport: Transport, path: str, service: str, env: t.Optional[str] = None) -> None:
        self._transport = transport
        self._path = path
        self._service = service
        self._env = env
        self._sequence = itertools.count(1)

    @classmethod
    def from_setup(cls, setup: TransportSetup, service: str, env: t.Optional[str] = None) -> TelemetryClient:
        return cls(setup.get_telemetry_transport(), setup.telemetry_path, service, env)

    def _headers(self) -> t.Dict[str, str]:
        return {
            "DD-Client-Library-Language": "python",
            "DD-Client-Library-Version": __version__,
            "DD-Telemetry-API-Version": "v2",
            "DD-Telemetry-Request-Type": MESSAGE_BATCH,
            "DD-Telemetry-Debug-Enabled": "false",
        }

    def _application(self) -> t.Dict[str, t.Any]:
        return {
            "service_name": self._service,
            "env": self._env or "",
            "language_name": "python",
            "language_version": platform.python_version(),
            "tracer_version": __version__,
            "runtime_name": platform.python_implementation(),
            "runtime_version": platform.python_version(),
        }

    def build_request(self, series: t.Dict[str, t.Dict[str, t.List[t.Dict[str, t.Any]]]]) -> t.Dict[str, t.Any]:
        events = [
            {"request_type": payload_type, "payload": {"namespace": namespace, "series": metrics}}
            for payload_type, namespaces in series.items()
            for namespace, metrics in namespaces.items()
        ]
        return {
            "tracer_time": int(time.time()),
            "runtime_id": get_runtime_id(),
            "api_version": "v2",
            "seq_id": next(self._sequence),
            "debug": False,
            "application": self._application(),
            "host": {"hostname": socket.gethostname()},
            "payload": events,
            "request_type": MESSAGE_BATCH,
        }

    def send(self, series: t.Dict[str, t.Dict[str, t.List[t.Dict[str, t.Any]]]]) -> Response:
        request = self.build_request(series)
        response = self._transport.post_json(self._path, request, headers=self._headers())
        if response.ok:
            log.debug("Telemetry sent %d events to %s", len(request["payload"]), self._path)
        else:
            log.debug("Failed to send telemetry to %s: %s", self._path, response.error_description)
        return response

    def close(self) -> None:
        self._transport.close()
