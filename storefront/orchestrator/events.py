"""Structured logging helpers for bulk purchase batches."""

from __future__ import annotations

from typing import Any

from storefront.logging_events import log_event

from .models import PurchaseItem


def emit_batch_started(
    logger: Any,
    *,
    batch_id: str,
    user_id: int,
    items_total: int,
    stop_on_failure: bool,
    timeout_ms: int | None,
) -> None:
    payload: dict[str, Any] = {
        "batch_id": batch_id,
        "user_id": user_id,
        "status": "running",
        "items_total": items_total,
        "stop_on_failure": stop_on_failure,
    }
    if timeout_ms is not None:
        payload["timeout_ms"] = timeout_ms
    _emit_event(logger, "bulk.batch.started", payload)


def emit_item_resolved(
    logger: Any,
    *,
    batch_id: str,
    user_id: int,
    index: int,
    item: PurchaseItem,
    status: str,
    detail: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "batch_id": batch_id,
        "user_id": user_id,
        "index": index,
        "kind": item.kind.value,
        "item_id": item.id,
        "status": status,
    }
    if detail:
        payload["detail"] = detail
    _emit_event(logger, "bulk.item.resolved", payload)


def emit_batch_completed(
    logger: Any,
    *,
    batch_id: str,
    user_id: int,
    status: str,
    items_total: int,
    outcomes: int,
    purchased: int,
    duration_ms: int,
    reason: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "batch_id": batch_id,
        "user_id": user_id,
        "status": status,
        "items_total": items_total,
        "outcomes": outcomes,
        "purchased": purchased,
        "duration_ms": duration_ms,
    }
    if reason:
        payload["reason"] = reason
    _emit_event(logger, "bulk.batch.completed", payload)


def _emit_event(logger: Any, event: str, payload: dict[str, Any]) -> None:
    log_event(logger, event, component="bulk_orchestrator", **payload)


__all__ = [
    "emit_batch_completed",
    "emit_batch_started",
    "emit_item_resolved",
]
