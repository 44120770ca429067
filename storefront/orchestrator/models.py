"""Data models and enums for bulk purchase batches."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from storefront.notifications import NotificationKind
from storefront.platform.contracts import Requester
from storefront.utils.time import now_utc


class ItemKind(str, Enum):
    """Purchasable unit types accepted in a batch."""

    PASS = "pass"
    PRODUCT = "product"
    BUNDLE = "bundle"
    SUBSCRIPTION = "subscription"

    @property
    def notification_kind(self) -> NotificationKind:
        return NotificationKind(self.value)


class ItemState(str, Enum):
    """Lifecycle of a single item while its batch runs."""

    PENDING = "pending"
    PROMPTED = "prompted"
    PURCHASED = "purchased"
    DECLINED = "declined"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"


class ItemStatus(str, Enum):
    """Terminal outcome recorded for an item."""

    PURCHASED = "purchased"
    DECLINED = "declined"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


class BatchState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class BatchStatus(str, Enum):
    """Aggregated terminal state for a batch."""

    ALL_PURCHASED = "all_purchased"
    PARTIAL = "partial"
    ALL_FAILED = "all_failed"
    ABORTED = "aborted"


@dataclass(slots=True, frozen=True)
class PurchaseItem:
    kind: ItemKind
    id: int

    @classmethod
    def pass_(cls, pass_id: int) -> PurchaseItem:
        return cls(ItemKind.PASS, pass_id)

    @classmethod
    def product(cls, product_id: int) -> PurchaseItem:
        return cls(ItemKind.PRODUCT, product_id)

    @classmethod
    def bundle(cls, bundle_id: int) -> PurchaseItem:
        return cls(ItemKind.BUNDLE, bundle_id)

    @classmethod
    def subscription(cls, subscription_id: int) -> PurchaseItem:
        return cls(ItemKind.SUBSCRIPTION, subscription_id)


@dataclass(slots=True, frozen=True)
class BatchOptions:
    """Per-invocation options.

    ``timeout_ms`` bounds each item from its prompt call until its completion
    notification, so a stalled prompt also times out. ``None`` waits until
    the notification arrives.
    """

    stop_on_failure: bool = False
    timeout_ms: int | None = None


@dataclass(slots=True, frozen=True)
class BatchRequest:
    """Request envelope owned by one bulk purchase invocation."""

    batch_id: str
    requester: Requester
    items: tuple[PurchaseItem, ...]
    options: BatchOptions


@dataclass(slots=True, frozen=True)
class ItemOutcome:
    item: PurchaseItem
    status: ItemStatus
    detail: str | None = None

    @property
    def purchased(self) -> bool:
        return self.status is ItemStatus.PURCHASED


@dataclass(slots=True, frozen=True)
class BatchResult:
    """Terminal batch result, computed once."""

    batch_id: str
    requester: Requester
    outcomes: tuple[ItemOutcome, ...]
    overall_status: BatchStatus
    started_at: datetime = field(default_factory=now_utc)
    completed_at: datetime = field(default_factory=now_utc)

    @property
    def purchased(self) -> tuple[ItemOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.purchased)

    @property
    def failed(self) -> tuple[ItemOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if not outcome.purchased)


def overall_status(outcomes: Sequence[ItemOutcome]) -> BatchStatus:
    """Aggregate completed outcomes; an empty batch is vacuously all purchased."""

    succeeded = sum(1 for outcome in outcomes if outcome.purchased)
    if succeeded == len(outcomes):
        return BatchStatus.ALL_PURCHASED
    if succeeded == 0:
        return BatchStatus.ALL_FAILED
    return BatchStatus.PARTIAL


__all__ = [
    "BatchOptions",
    "BatchRequest",
    "BatchResult",
    "BatchState",
    "BatchStatus",
    "ItemKind",
    "ItemOutcome",
    "ItemState",
    "ItemStatus",
    "PurchaseItem",
    "overall_status",
]
