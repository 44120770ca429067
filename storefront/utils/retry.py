"""Backoff helpers for callers that choose to retry platform calls."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from storefront.platform.safe_call import CallResult

T = TypeVar("T")


def exp_backoff_delays(base_ms: int, max_attempts: int, jitter_pct: int) -> list[int]:
    """Return exponential backoff delays in milliseconds.

    Jitter is applied deterministically here so nominal delays can be
    inspected in tests; random jitter is applied when actually sleeping.
    """

    base = max(1, int(base_ms))
    attempts = max(0, int(max_attempts))
    pct = max(0, int(jitter_pct))
    delays: list[int] = []
    for index in range(attempts):
        delay = base * (2**index)
        if pct:
            delay += int(delay * pct / 100)
        delays.append(delay)
    return delays


def _jitter_delay_ms(delay_ms: int, jitter_pct: int, rng: random.Random) -> float:
    delay = max(0, int(delay_ms))
    pct = max(0, int(jitter_pct))
    if delay <= 0 or pct <= 0:
        return float(delay)
    jitter = delay * pct / 100.0
    return rng.uniform(max(0.0, delay - jitter), delay + jitter)


async def retry_call_result(
    call: Callable[[], Awaitable["CallResult[T]"]],
    *,
    retries: int,
    base_ms: int,
    jitter_pct: int,
    rng: random.Random | None = None,
) -> "CallResult[T]":
    """Re-run ``call`` while it fails with a retriable :class:`CallError`.

    ``call`` performs one safe platform invocation per run. At most
    ``retries`` additional attempts are made; the last result is returned
    whether or not it succeeded.
    """

    max_retries = max(0, int(retries))
    delays = exp_backoff_delays(base_ms, max_retries, 0)
    generator = rng or random.Random()
    result = await call()
    for delay_ms in delays:
        if result.ok or result.error is None or not result.error.retriable:
            return result
        sleep_ms = _jitter_delay_ms(delay_ms, jitter_pct, generator)
        if sleep_ms > 0:
            await asyncio.sleep(sleep_ms / 1000.0)
        result = await call()
    return result


__all__ = ["exp_backoff_delays", "retry_call_result"]
