"""Bulk purchase orchestration."""

from .aggregation import BatchAggregator, BatchTracker
from .bulk import BatchHandle, BatchListener, BulkPurchaseOrchestrator
from .models import (
    BatchOptions,
    BatchRequest,
    BatchResult,
    BatchState,
    BatchStatus,
    ItemKind,
    ItemOutcome,
    ItemState,
    ItemStatus,
    PurchaseItem,
    overall_status,
)

__all__ = [
    "BatchAggregator",
    "BatchHandle",
    "BatchListener",
    "BatchOptions",
    "BatchRequest",
    "BatchResult",
    "BatchState",
    "BatchStatus",
    "BatchTracker",
    "BulkPurchaseOrchestrator",
    "ItemKind",
    "ItemOutcome",
    "ItemState",
    "ItemStatus",
    "PurchaseItem",
    "overall_status",
]
