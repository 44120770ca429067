"""Environment driven configuration for the storefront package."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_CALL_TIMEOUT_MS = 0
DEFAULT_ITEM_TIMEOUT_MS = 0
DEFAULT_STOP_ON_FAILURE = False
DEFAULT_MAX_BATCH_ITEMS = 50
DEFAULT_REJECT_DUPLICATES = True
DEFAULT_INFO_RETRY_MAX = 0
DEFAULT_INFO_BACKOFF_BASE_MS = 250
DEFAULT_INFO_JITTER_PCT = 20
DEFAULT_LOG_LEVEL = "INFO"


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bounded_int(
    value: Any,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    resolved = _coerce_int(value, default=default)
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _optional_ms(value: Any, *, default: int) -> int | None:
    """Parse a millisecond bound where ``0`` (or less) disables it."""

    resolved = _bounded_int(value, default=default, minimum=0)
    return resolved or None


@dataclass(slots=True, frozen=True)
class PlatformCallConfig:
    timeout_ms: int | None

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> PlatformCallConfig:
        return cls(
            timeout_ms=_optional_ms(
                env.get("STOREFRONT_CALL_TIMEOUT_MS"), default=DEFAULT_CALL_TIMEOUT_MS
            )
        )


@dataclass(slots=True, frozen=True)
class BulkPurchaseConfig:
    item_timeout_ms: int | None
    stop_on_failure: bool
    max_batch_items: int
    reject_duplicate_items: bool

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> BulkPurchaseConfig:
        stop_raw = env.get("STOREFRONT_STOP_ON_FAILURE")
        duplicates_raw = env.get("STOREFRONT_REJECT_DUPLICATES")
        return cls(
            item_timeout_ms=_optional_ms(
                env.get("STOREFRONT_ITEM_TIMEOUT_MS"), default=DEFAULT_ITEM_TIMEOUT_MS
            ),
            stop_on_failure=_as_bool(
                str(stop_raw) if stop_raw is not None else None,
                default=DEFAULT_STOP_ON_FAILURE,
            ),
            max_batch_items=_bounded_int(
                env.get("STOREFRONT_MAX_BATCH_ITEMS"),
                default=DEFAULT_MAX_BATCH_ITEMS,
                minimum=1,
            ),
            reject_duplicate_items=_as_bool(
                str(duplicates_raw) if duplicates_raw is not None else None,
                default=DEFAULT_REJECT_DUPLICATES,
            ),
        )


@dataclass(slots=True, frozen=True)
class ProductInfoConfig:
    retry_max: int
    backoff_base_ms: int
    jitter_pct: int

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> ProductInfoConfig:
        return cls(
            retry_max=_bounded_int(
                env.get("STOREFRONT_INFO_RETRY_MAX"),
                default=DEFAULT_INFO_RETRY_MAX,
                minimum=0,
                maximum=10,
            ),
            backoff_base_ms=_bounded_int(
                env.get("STOREFRONT_INFO_BACKOFF_BASE_MS"),
                default=DEFAULT_INFO_BACKOFF_BASE_MS,
                minimum=1,
            ),
            jitter_pct=_bounded_int(
                env.get("STOREFRONT_INFO_JITTER_PCT"),
                default=DEFAULT_INFO_JITTER_PCT,
                minimum=0,
                maximum=100,
            ),
        )


@dataclass(slots=True, frozen=True)
class StorefrontConfig:
    platform: PlatformCallConfig
    bulk: BulkPurchaseConfig
    product_info: ProductInfoConfig
    log_level: str

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> StorefrontConfig:
        log_level = str(env.get("STOREFRONT_LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
        return cls(
            platform=PlatformCallConfig.from_env(env),
            bulk=BulkPurchaseConfig.from_env(env),
            product_info=ProductInfoConfig.from_env(env),
            log_level=log_level or DEFAULT_LOG_LEVEL,
        )


def load_config(env: Mapping[str, Any] | None = None) -> StorefrontConfig:
    """Build a configuration snapshot from ``env`` (defaults to ``os.environ``)."""

    return StorefrontConfig.from_env(os.environ if env is None else env)


_settings: StorefrontConfig | None = None


def get_settings() -> StorefrontConfig:
    """Return the process configuration, loading it on first access."""

    global _settings
    if _settings is None:
        _settings = load_config()
    return _settings


def reset_settings() -> None:
    """Drop the cached configuration so the next access re-reads the environment."""

    global _settings
    _settings = None


__all__ = [
    "BulkPurchaseConfig",
    "PlatformCallConfig",
    "ProductInfoConfig",
    "StorefrontConfig",
    "get_settings",
    "load_config",
    "reset_settings",
]
