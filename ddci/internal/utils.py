from __future__ import annotations

import random
import re
import time
from types import TracebackType
import typing as t


def rand64bits() -> int:
    # Zero is reserved to mean "no id".
    value = 0
    while value == 0:
        value = random.getrandbits(64)  # nosec: B311
    return value


def asbool(value: t.Union[str, bool, None]) -> bool:
    if value is None:
        return False

    if isinstance(value, bool):
        return value

    return value.lower() in ("true", "1")


_RE_URL = re.compile(r"(https?://|ssh://)[^/]*@")


def _filter_sensitive_info(url: t.Optional[str]) -> t.Optional[str]:
    return _RE_URL.sub("\\1", url) if url is not None else None


class StopWatch:
    """A simple timer/stopwatch helper class.

    Not thread-safe (when a single watch is mutated by multiple threads at the same time). Thread-safe when used by a
    single thread (not shared) or when operations are performed in a thread-safe manner on these objects by wrapping
    those operations with locks.
    """

    def __init__(self) -> None:
        self._started_at: t.Optional[float] = None
        self._stopped_at: t.Optional[float] = None

    def start(self) -> StopWatch:
        """Starts the watch."""
        self._started_at = time.monotonic()
        return self

    def elapsed(self) -> float:
        """Get how many seconds have elapsed.

        :return: Number of seconds elapsed
        :rtype: float
        """
        if self._started_at is None:
            raise RuntimeError("Can not get the elapsed time of a stopwatch if it has not been started/stopped")
        if self._stopped_at is None:
            now = time.monotonic()
        else:
            now = self._stopped_at
        return now - self._started_at

    def __enter__(self) -> StopWatch:
        """Starts the watch."""
        self.start()
        return self

    def __exit__(
        self,
        tp: t.Optional[t.Type[BaseException]],
        value: t.Optional[BaseException],
        traceback: t.Optional[TracebackType],
    ) -> None:
        """Stops the watch."""
        self.stop()

    def stop(self) -> StopWatch:
        """Stops the watch."""
        if self._started_at is None:
            raise RuntimeError("Can not stop a stopwatch that has not been started")
        self._stopped_at = time.monotonic()
        return self
