from __future__ import annotations

from dataclasses import dataclass
import typing as t
import uuid

import msgpack

from ddci.internal.constants import DEFAULT_MAX_PAYLOAD_SIZE
from ddci.internal.logger import get_logger
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.constants import Endpoint
from ddci.internal.utils import StopWatch
from ddci.version import __version__


log = get_logger(__name__)

PAYLOAD_FORMAT_VERSION = 1

_runtime_id = uuid.uuid4().hex


def get_runtime_id() -> str:
    return _runtime_id


def build_metadata(env: t.Optional[str] = None) -> t.Dict[str, t.Dict[str, str]]:
    metadata = {
        "runtime-id": get_runtime_id(),
        "language": "python",
        "library_version": __version__,
    }
    if env:
        metadata["env"] = env
    return {"*": metadata}


def _array_header_size(count: int) -> int:
    if count < 16:
        return 1
    if count < 2**16:
        return 3
    return 5


@dataclass
class Payload:
    data: bytes
    events_count: int
    serialization_seconds: float = 0.0


class CIVisibilityEncoder:
    """
    Pack event records into size-bounded msgpack payloads.

    Every payload is a map ``{"version": 1, "metadata": ..., "events": [...]}`` whose packed size is at most
    ``max_payload_size`` bytes. Events are packed one by one and appended greedily; an event that does not fit in an
    empty payload is dropped.
    """

    ENDPOINT_TYPE = Endpoint.TEST_CYCLE

    def __init__(
        self,
        metadata: t.Optional[t.Dict[str, t.Dict[str, str]]] = None,
        max_payload_size: int = DEFAULT_MAX_PAYLOAD_SIZE,
    ) -> None:
        self.metadata = metadata if metadata is not None else build_metadata()
        self.max_payload_size = max_payload_size
        self._prefix = self._pack_prefix()

    def _pack_prefix(self) -> bytes:
        packer = msgpack.Packer()
        return b"".join(
            [
                packer.pack_map_header(3),
                packer.pack("version"),
                packer.pack(PAYLOAD_FORMAT_VERSION),
                packer.pack("metadata"),
                packer.pack(self.metadata),
                packer.pack("events"),
            ]
        )

    def _payload_size(self, events_count: int, events_size: int) -> int:
        return len(self._prefix) + _array_header_size(events_count) + events_size

    def _build_payload(self, packed_events: t.List[bytes], serialization_seconds: float = 0.0) -> Payload:
        header = msgpack.Packer().pack_array_header(len(packed_events))
        return Payload(
            data=b"".join([self._prefix, header, *packed_events]),
            events_count=len(packed_events),
            serialization_seconds=serialization_seconds,
        )

    def encode(self, events: t.Sequence[t.Dict[str, t.Any]]) -> t.List[Payload]:
        payloads: t.List[Payload] = []
        current: t.List[bytes] = []
        current_size = 0
        current_seconds = 0.0

        for event in events:
            try:
                with StopWatch() as stopwatch:
                    packed = msgpack.packb(event)
            except (TypeError, ValueError, OverflowError) as e:
                log.warning("Dropping event that cannot be encoded: %s", e)
                TelemetryAPI.get().record_event_payload_dropped(self.ENDPOINT_TYPE)
                continue

            if self._payload_size(1, len(packed)) > self.max_payload_size:
                log.warning(
                    "Dropping event of %d bytes: it does not fit in a payload of at most %d bytes",
                    len(packed),
                    self.max_payload_size,
                )
                TelemetryAPI.get().record_event_payload_dropped(self.ENDPOINT_TYPE)
                continue

            if current and self._payload_size(len(current) + 1, current_size + len(packed)) > self.max_payload_size:
                payloads.append(self._build_payload(current, current_seconds))
                current = []
                current_size = 0
                current_seconds = 0.0

            current.append(packed)
            current_size += len(packed)
            current_seconds += stopwatch.elapsed()

        if current:
            payloads.append(self._build_payload(current, current_seconds))

        return payloads


def decode(payload: bytes) -> t.Dict[str, t.Any]:
    """Unpack a payload produced by :class:`CIVisibilityEncoder`."""
    return msgpack.unpackb(payload, raw=False, strict_map_key=False)
