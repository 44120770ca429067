"""Error taxonomy for the storefront package."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes attached to storefront exceptions."""

    PLATFORM_CALL_FAILED = "PLATFORM_CALL_FAILED"
    ITEM_TIMEOUT = "ITEM_TIMEOUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SUBSCRIPTION_FAILED = "SUBSCRIPTION_FAILED"
    SHUTTING_DOWN = "SHUTTING_DOWN"


class StorefrontError(Exception):
    """Base exception for storefront specific failures."""

    __slots__ = ("message", "code", "meta")

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.meta = meta


class CallError(StorefrontError):
    """A single platform call failed.

    ``retriable`` is true for communication failures (service unavailable,
    network, timeouts) and false for calls the platform rejected outright.
    """

    __slots__ = ("retriable", "operation", "cause")

    def __init__(
        self,
        message: str,
        *,
        retriable: bool,
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        meta: dict[str, Any] = {"retriable": retriable}
        if operation:
            meta["operation"] = operation
        super().__init__(message, code=ErrorCode.PLATFORM_CALL_FAILED, meta=meta)
        self.retriable = retriable
        self.operation = operation
        self.cause = cause


class ItemTimeoutError(StorefrontError):
    """An item did not resolve within its ``timeout_ms`` bound."""

    __slots__ = ("timeout_ms",)

    def __init__(self, timeout_ms: int, *, waiting_for: str = "purchase notification") -> None:
        super().__init__(
            f"no {waiting_for} within {timeout_ms}ms",
            code=ErrorCode.ITEM_TIMEOUT,
            meta={"timeout_ms": timeout_ms, "waiting_for": waiting_for},
        )
        self.timeout_ms = timeout_ms


class BatchValidationError(StorefrontError):
    """A bulk purchase request was malformed."""

    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION_ERROR, meta=meta)


class SubscriptionError(StorefrontError):
    """A notification listener could not be registered."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message, code=ErrorCode.SUBSCRIPTION_FAILED)
        self.__cause__ = cause


class OrchestratorShutdownError(StorefrontError):
    """The bulk purchase orchestrator no longer accepts batches."""

    def __init__(self, message: str = "bulk purchase orchestrator is shutting down") -> None:
        super().__init__(message, code=ErrorCode.SHUTTING_DOWN)


__all__ = [
    "BatchValidationError",
    "CallError",
    "ErrorCode",
    "ItemTimeoutError",
    "OrchestratorShutdownError",
    "StorefrontError",
    "SubscriptionError",
]
