"""Time helpers with monotonic clocks."""

from __future__ import annotations

from datetime import UTC, datetime
import time as _time

__all__ = ["monotonic_ms", "now_utc", "elapsed_ms"]


def now_utc() -> datetime:
    """Return the current UTC time with timezone information."""

    return datetime.now(UTC)


def monotonic_ms() -> int:
    """Return a monotonic timestamp in milliseconds."""

    return _time.monotonic_ns() // 1_000_000


def elapsed_ms(started_ms: int) -> int:
    return max(0, monotonic_ms() - started_ms)
