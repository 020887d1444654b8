"""
Logging utilities for internal use.

Usage:
    from ddci.internal.logger import get_logger
    log = get_logger(__name__)

Every logger returned by ``get_logger`` carries a rate limiter: a given log call site (pathname/lineno) emits at
most one record every ``DD_TRACE_LOGGING_RATE`` seconds (60 by default, 0 disables the limit). Records dropped by
the limiter are counted and reported on the next record that gets through, e.g.::

    WARNING Invalid event skipped: TestSerializer(id:1,name:adds) Errors: {...} [3 skipped]

No limit is applied while the logger is set to DEBUG.
"""

import collections
from functools import wraps
import logging
import os
import time
import typing as t

from ddci.internal.utils import asbool


F = t.TypeVar("F", bound=t.Callable[..., t.Any])

ROOT_LOGGER_NAME = "ddci"


def get_logger(name: str) -> logging.Logger:
    """
    Retrieve or create a ``Logger`` instance with consistent behavior for internal use.

    Configure all loggers with a rate limiter filter to prevent excessive logging.
    """
    logger = logging.getLogger(name)
    # addFilter will only add the filter if it is not already present
    logger.addFilter(log_filter)
    return logger


# Keeps track of a log call site's current time bucket and the number of records skipped in it
class LoggingBucket:
    def __init__(self, bucket: float, skipped: int):
        self.bucket = bucket
        self.skipped = skipped

    def __repr__(self) -> str:
        return f"LoggingBucket({self.bucket}, {self.skipped})"

    def is_sampled(self, record: logging.LogRecord, rate: float) -> bool:
        current = time.monotonic()
        if current - self.bucket >= rate:
            self.bucket = current
            record.skipped = self.skipped
            self.skipped = 0
            return True
        self.skipped += 1
        return False


_MINF = float("-inf")

_buckets: t.DefaultDict[t.Tuple[str, int], LoggingBucket] = collections.defaultdict(
    lambda: LoggingBucket(_MINF, 0)
)

_rate_limit = int(os.getenv("DD_TRACE_LOGGING_RATE", default=60))


def log_filter(record: logging.LogRecord) -> bool:
    """
    Decide whether a log record should be emitted (True) or skipped (False).

    Records are rate limited by pathname and line number.
    """
    logger = logging.getLogger(record.name)
    if not _rate_limit or logger.getEffectiveLevel() == logging.DEBUG:
        return True
    return _buckets[(record.pathname, record.lineno)].is_sampled(record, _rate_limit)


class DDFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        skipped = getattr(record, "skipped", 0)
        skip_str = f" [{skipped} skipped]" if skipped else ""
        return f"{super().format(record)}{skip_str}"


root_logger = logging.getLogger(ROOT_LOGGER_NAME)


def setup_logging(log_level: t.Optional[str] = None) -> None:
    """Attach the package handler to the ``ddci`` logger and set its level."""
    root_logger.propagate = False

    if asbool(os.getenv("DD_TRACE_DEBUG")):
        level = logging.DEBUG
    else:
        level = logging.getLevelName((log_level or "info").upper())
        if not isinstance(level, int):
            level = logging.INFO
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(
        DDFormatter("[Datadog CI Visibility] %(levelname)-8s %(name)s:%(filename)s:%(lineno)d %(message)s")
    )
    root_logger.addHandler(handler)


def catch_and_log_exceptions(default: t.Any = None) -> t.Callable[[F], F]:
    """Log any exception raised by the decorated function and return `default` instead."""

    def decorator(f: F) -> F:
        @wraps(f)
        def wrapper(*args: t.Any, **kwargs: t.Any) -> t.Any:
            try:
                return f(*args, **kwargs)
            except Exception:
                root_logger.exception("Error while calling %s", f.__name__)
                return default

        return t.cast(F, wrapper)

    return decorator
