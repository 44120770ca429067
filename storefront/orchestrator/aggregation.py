"""Per-batch outcome bookkeeping for the bulk purchase orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from storefront.logging import get_logger
from storefront.metrics import counter, histogram
from storefront.utils.time import now_utc

from . import events as bulk_events
from .models import (
    BatchRequest,
    BatchResult,
    BatchState,
    BatchStatus,
    ItemOutcome,
    ItemState,
    overall_status,
)

_logger = get_logger(__name__)


def _item_counter():
    return counter(
        "storefront_batch_items_total",
        "Bulk purchase items by terminal status",
        label_names=("status",),
    )


def _batch_counter():
    return counter(
        "storefront_batches_total",
        "Bulk purchase batches by overall status",
        label_names=("status",),
    )


def _wait_histogram():
    return histogram(
        "storefront_item_wait_seconds",
        "Time between prompting an item and its resolution",
    )


@dataclass(slots=True)
class BatchTracker:
    """Mutable state of one running batch.

    ``outcomes`` is append-only; once ``result`` is set nothing else is
    recorded.
    """

    request: BatchRequest
    started_at: datetime = field(default_factory=now_utc)
    state: BatchState = BatchState.RUNNING
    item_states: dict[int, ItemState] = field(default_factory=dict)
    outcomes: list[ItemOutcome] = field(default_factory=list)
    result: BatchResult | None = None
    completed_event: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        for index in range(len(self.request.items)):
            self.item_states[index] = ItemState.PENDING

    @property
    def batch_id(self) -> str:
        return self.request.batch_id

    @property
    def finalised(self) -> bool:
        return self.result is not None


class BatchAggregator:
    """Record item outcomes and produce exactly one result per batch."""

    def __init__(self, *, on_finalised: Callable[[BatchResult], None] | None = None) -> None:
        self._batches: dict[str, BatchTracker] = {}
        self._on_finalised = on_finalised

    def create_batch(self, request: BatchRequest) -> BatchTracker:
        if request.batch_id in self._batches:
            raise KeyError(f"batch {request.batch_id!r} already exists")
        tracker = BatchTracker(request=request)
        self._batches[request.batch_id] = tracker
        bulk_events.emit_batch_started(
            _logger,
            batch_id=request.batch_id,
            user_id=request.requester.user_id,
            items_total=len(request.items),
            stop_on_failure=request.options.stop_on_failure,
            timeout_ms=request.options.timeout_ms,
        )
        return tracker

    def active_batches(self) -> list[BatchTracker]:
        return [tracker for tracker in self._batches.values() if not tracker.finalised]

    def mark_prompted(self, tracker: BatchTracker, index: int) -> None:
        if tracker.finalised:
            return
        tracker.item_states[index] = ItemState.PROMPTED

    def record_outcome(
        self,
        tracker: BatchTracker,
        index: int,
        outcome: ItemOutcome,
        *,
        wait_seconds: float | None = None,
    ) -> bool:
        """Append ``outcome`` for item ``index``; ignored once the batch is final."""

        if tracker.finalised:
            return False
        if len(tracker.outcomes) != index:
            raise RuntimeError(
                f"outcome for item {index} recorded out of order in batch {tracker.batch_id}"
            )
        tracker.outcomes.append(outcome)
        tracker.item_states[index] = ItemState(outcome.status.value)
        _item_counter().labels(status=outcome.status.value).inc()
        if wait_seconds is not None:
            _wait_histogram().observe(max(wait_seconds, 0.0))
        bulk_events.emit_item_resolved(
            _logger,
            batch_id=tracker.batch_id,
            user_id=tracker.request.requester.user_id,
            index=index,
            item=outcome.item,
            status=outcome.status.value,
            detail=outcome.detail,
        )
        return True

    def finalise(
        self, tracker: BatchTracker, *, aborted: bool, reason: str | None = None
    ) -> BatchResult:
        """Compute the terminal result once; later calls return the same result."""

        if tracker.result is not None:
            return tracker.result
        outcomes = tuple(tracker.outcomes)
        if aborted:
            status = BatchStatus.ABORTED
            tracker.state = BatchState.ABORTED
        else:
            status = overall_status(outcomes)
            tracker.state = BatchState.COMPLETED
        result = BatchResult(
            batch_id=tracker.batch_id,
            requester=tracker.request.requester,
            outcomes=outcomes,
            overall_status=status,
            started_at=tracker.started_at,
            completed_at=now_utc(),
        )
        tracker.result = result
        self._batches.pop(tracker.batch_id, None)
        _batch_counter().labels(status=status.value).inc()
        bulk_events.emit_batch_completed(
            _logger,
            batch_id=tracker.batch_id,
            user_id=tracker.request.requester.user_id,
            status=status.value,
            items_total=len(tracker.request.items),
            outcomes=len(outcomes),
            purchased=len(result.purchased),
            duration_ms=int((result.completed_at - result.started_at).total_seconds() * 1000),
            reason=reason,
        )
        tracker.completed_event.set()
        if self._on_finalised is not None:
            self._on_finalised(result)
        return result

    async def wait_for_result(self, tracker: BatchTracker) -> BatchResult:
        await tracker.completed_event.wait()
        if tracker.result is None:  # pragma: no cover - event is only set after result
            raise RuntimeError(f"batch {tracker.batch_id} signalled without a result")
        return tracker.result


__all__ = ["BatchAggregator", "BatchTracker"]
