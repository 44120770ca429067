"""Single-attempt wrapper turning platform exceptions into typed results."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from storefront.config import PlatformCallConfig, get_settings
from storefront.errors import CallError
from storefront.logging import get_logger
from storefront.logging_events import log_event
from storefront.metrics import counter
from storefront.platform.contracts import (
    PlatformArgumentError,
    PlatformUnavailableError,
)
from storefront.utils.time import elapsed_ms, monotonic_ms

T = TypeVar("T")

logger = get_logger(__name__)

_RETRIABLE_TYPES: tuple[type[BaseException], ...] = (
    PlatformUnavailableError,
    ConnectionError,
    TimeoutError,
    OSError,
)
_NON_RETRIABLE_TYPES: tuple[type[BaseException], ...] = (
    PlatformArgumentError,
    ValueError,
    TypeError,
    KeyError,
)


@dataclass(slots=True, frozen=True)
class CallResult(Generic[T]):
    """Outcome of one platform call: either ``value`` or ``error``."""

    value: T | None = None
    error: CallError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T | None:
        """Return the value, raising the captured :class:`CallError` on failure."""

        if self.error is not None:
            raise self.error
        return self.value


def classify_error(exc: BaseException) -> bool:
    """Return whether a failed platform call is worth retrying."""

    declared = getattr(exc, "retriable", None)
    if isinstance(declared, bool):
        return declared
    if isinstance(exc, _NON_RETRIABLE_TYPES):
        return False
    if isinstance(exc, _RETRIABLE_TYPES):
        return True
    return False


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return text
    return exc.__class__.__name__


class SafeCall:
    """Invoke platform service callables without letting exceptions escape.

    One attempt per invocation. A configured ``timeout_ms`` only bounds
    awaitable calls; a timeout becomes a retriable :class:`CallError`.
    """

    def __init__(self, *, config: PlatformCallConfig | None = None) -> None:
        resolved = config or get_settings().platform
        self._timeout_ms = resolved.timeout_ms

    @property
    def timeout_ms(self) -> int | None:
        return self._timeout_ms

    async def invoke(
        self,
        fn: Callable[..., Any],
        *args: Any,
        operation: str | None = None,
        **kwargs: Any,
    ) -> CallResult[Any]:
        name = operation or getattr(fn, "__name__", "platform_call")
        started = monotonic_ms()
        try:
            value = fn(*args, **kwargs)
            if inspect.isawaitable(value):
                if self._timeout_ms:
                    try:
                        value = await asyncio.wait_for(value, self._timeout_ms / 1000.0)
                    except TimeoutError as exc:
                        error = CallError(
                            f"{name} timed out after {self._timeout_ms}ms",
                            retriable=True,
                            operation=name,
                            cause=exc,
                        )
                        self._record(name, started, error)
                        return CallResult(error=error)
                else:
                    value = await value
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = CallError(
                _describe(exc),
                retriable=classify_error(exc),
                operation=name,
                cause=exc,
            )
            self._record(name, started, error)
            return CallResult(error=error)
        self._record(name, started, None)
        return CallResult(value=value)

    @staticmethod
    def _record(operation: str, started: int, error: CallError | None) -> None:
        status = "ok" if error is None else "error"
        counter(
            "storefront_platform_calls_total",
            "Platform service calls grouped by operation and status",
            label_names=("operation", "status"),
        ).labels(operation=operation, status=status).inc()
        payload: dict[str, Any] = {
            "component": "safe_call",
            "operation": operation,
            "status": status,
            "duration_ms": elapsed_ms(started),
        }
        if error is not None:
            cause = error.cause
            payload["meta"] = {
                "error": cause.__class__.__name__ if cause is not None else "CallError",
                "retriable": error.retriable,
                "detail": error.message,
            }
            log_event(logger, "marketplace.call", level="warning", **payload)
            return
        log_event(logger, "marketplace.call", level="debug", **payload)


__all__ = ["CallResult", "SafeCall", "classify_error"]
