"""Bulk purchase orchestrator driving one prompt at a time per requester."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
import uuid

from storefront.config import BulkPurchaseConfig, get_settings
from storefront.errors import (
    BatchValidationError,
    ItemTimeoutError,
    OrchestratorShutdownError,
    SubscriptionError,
)
from storefront.logging import get_logger
from storefront.notifications import EventBus, for_purchase
from storefront.platform.contracts import Requester
from storefront.platform.safe_call import CallResult
from storefront.prompts import PromptStatus, PurchasePrompter
from storefront.subscriptions import ListenerRegistry, Subscription
from storefront.utils.tasks import CallbackTasks
from storefront.utils.time import elapsed_ms, monotonic_ms

from .aggregation import BatchAggregator, BatchTracker
from .models import (
    BatchOptions,
    BatchRequest,
    BatchResult,
    ItemKind,
    ItemOutcome,
    ItemStatus,
    PurchaseItem,
)

BatchListener = Callable[[BatchResult], Any]

_BATCH_FINISHED = "batch_finished"


class BatchHandle:
    """Handle returned to callers of :meth:`BulkPurchaseOrchestrator.submit`.

    It owns the optional completion listener passed to ``submit``; calling
    :meth:`disconnect` releases that listener without affecting the batch.
    """

    __slots__ = (
        "batch_id",
        "requester",
        "items_total",
        "_aggregator",
        "_tracker",
        "_task",
        "_subscription",
    )

    def __init__(
        self,
        *,
        aggregator: BatchAggregator,
        tracker: BatchTracker,
        task: asyncio.Task[None] | None,
        subscription: Subscription | None,
    ) -> None:
        self.batch_id = tracker.batch_id
        self.requester = tracker.request.requester
        self.items_total = len(tracker.request.items)
        self._aggregator = aggregator
        self._tracker = tracker
        self._task = task
        self._subscription = subscription

    @property
    def done(self) -> bool:
        return self._tracker.finalised

    @property
    def result(self) -> BatchResult | None:
        return self._tracker.result

    @property
    def connected(self) -> bool:
        return self._subscription is not None and self._subscription.connected

    async def wait(self) -> BatchResult:
        """Wait until the batch has finished and return its result."""

        return await self._aggregator.wait_for_result(self._tracker)

    def cancel(self) -> bool:
        """Abort the batch; returns ``False`` if it already finished."""

        if self._tracker.finalised or self._task is None or self._task.done():
            return False
        return self._task.cancel()

    def disconnect(self) -> None:
        if self._subscription is not None:
            self._subscription.disconnect()

    def __repr__(self) -> str:
        return (
            f"<BatchHandle batch_id={self.batch_id} user_id={self.requester.user_id} "
            f"items={self.items_total} done={self.done}>"
        )


class BulkPurchaseOrchestrator:
    """Prompt a list of items sequentially and report one result per batch.

    Each item is prompted only after the previous one resolved. Batches of
    the same requester never interleave; they run in submission order.
    """

    def __init__(
        self,
        prompter: PurchasePrompter,
        bus: EventBus,
        *,
        config: BulkPurchaseConfig | None = None,
    ) -> None:
        self._prompter = prompter
        self._bus = bus
        self._config = config or get_settings().bulk
        self._listeners: ListenerRegistry[BatchListener] = ListenerRegistry()
        self._aggregator = BatchAggregator(on_finalised=self._deliver)
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._stopping = False
        self._logger = get_logger("storefront.orchestrator")
        self._listener_tasks = CallbackTasks(self._logger, event="bulk.listener.failed")
        self._listener_tasks.bind()

    @property
    def config(self) -> BulkPurchaseConfig:
        return self._config

    def active_batches(self) -> list[str]:
        return [tracker.batch_id for tracker in self._aggregator.active_batches()]

    def on_batch_finished(
        self, handler: BatchListener, *, batch_id: str | None = None
    ) -> Subscription:
        """Listen for terminal batch results.

        With ``batch_id`` the listener fires at most once for that batch;
        without it every finished batch is delivered.
        """

        if batch_id is None:
            return self._listeners.add(_BATCH_FINISHED, handler)
        return self._listeners.add(
            _BATCH_FINISHED,
            handler,
            predicate=lambda result: result.batch_id == batch_id,
            once=True,
        )

    async def submit(
        self,
        requester: Requester,
        items: Iterable[PurchaseItem],
        options: BatchOptions | None = None,
        *,
        on_finished: BatchListener | None = None,
        batch_id: str | None = None,
    ) -> BatchHandle:
        """Validate and start a batch, returning immediately.

        Raises :class:`BatchValidationError` for malformed requests and
        :class:`SubscriptionError` if a completion signal needed by the batch
        cannot be connected. Nothing is prompted in either case.
        """

        if self._stopping:
            raise OrchestratorShutdownError()
        self._listener_tasks.bind()
        request = self._build_request(requester, items, options, batch_id)
        for kind in dict.fromkeys(item.kind for item in request.items):
            self._bus.ensure_connected(kind.notification_kind)

        subscription = None
        if on_finished is not None:
            subscription = self.on_batch_finished(on_finished, batch_id=request.batch_id)
        tracker = self._aggregator.create_batch(request)
        if not request.items:
            self._aggregator.finalise(tracker, aborted=False, reason="empty")
            return BatchHandle(
                aggregator=self._aggregator,
                tracker=tracker,
                task=None,
                subscription=subscription,
            )

        task = asyncio.create_task(
            self._run(tracker), name=f"storefront-bulk-{request.batch_id}"
        )
        self._tasks[request.batch_id] = task
        task.add_done_callback(lambda done, tracker=tracker: self._on_task_done(done, tracker))
        return BatchHandle(
            aggregator=self._aggregator,
            tracker=tracker,
            task=task,
            subscription=subscription,
        )

    async def shutdown(self) -> None:
        """Stop accepting batches and abort the ones still running."""

        self._stopping = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                continue
        self._tasks.clear()
        self._listeners.clear()

    async def _run(self, tracker: BatchTracker) -> None:
        request = tracker.request
        aborted = False
        reason: str | None = None
        try:
            async with self._requester_lock(request.requester.user_id):
                for index, item in enumerate(request.items):
                    outcome, waited = await self._process_item(tracker, index, item)
                    self._aggregator.record_outcome(
                        tracker, index, outcome, wait_seconds=waited
                    )
                    if request.options.stop_on_failure and not outcome.purchased:
                        aborted = True
                        reason = "stop_on_failure"
                        break
        except asyncio.CancelledError:
            self._aggregator.finalise(tracker, aborted=True, reason="cancelled")
            raise
        except Exception:
            self._logger.exception(
                "Bulk purchase batch crashed",
                extra={"event": "bulk.batch.crashed", "batch_id": tracker.batch_id},
            )
            self._aggregator.finalise(tracker, aborted=True, reason="internal_error")
            return
        self._aggregator.finalise(tracker, aborted=aborted, reason=reason)

    async def _process_item(
        self, tracker: BatchTracker, index: int, item: PurchaseItem
    ) -> tuple[ItemOutcome, float | None]:
        requester = tracker.request.requester
        loop = asyncio.get_running_loop()
        completion: asyncio.Future[bool] = loop.create_future()

        def _settle(was_purchased: bool) -> None:
            if not completion.done():
                completion.set_result(was_purchased)

        def _on_notification(
            _requester: Requester,
            _item_id: int | None,
            was_purchased: bool,
            _extra: Mapping[str, Any] | None,
        ) -> None:
            loop.call_soon_threadsafe(_settle, bool(was_purchased))

        # Listen before prompting; the platform may report completion
        # before the prompt call returns.
        try:
            subscription = self._bus.subscribe(
                item.kind.notification_kind,
                _on_notification,
                predicate=for_purchase(requester.user_id, item.id),
                once=True,
            )
        except SubscriptionError as exc:
            return ItemOutcome(item, ItemStatus.ERRORED, detail=exc.message), None

        timeout_ms = tracker.request.options.timeout_ms
        deadline = None if timeout_ms is None else loop.time() + timeout_ms / 1000
        try:
            self._aggregator.mark_prompted(tracker, index)
            started = monotonic_ms()
            try:
                prompt = await asyncio.wait_for(
                    self._prompt(requester, item), _remaining(loop, deadline)
                )
            except asyncio.TimeoutError:
                error = ItemTimeoutError(timeout_ms or 0, waiting_for="prompt response")
                waited = elapsed_ms(started) / 1000
                return ItemOutcome(item, ItemStatus.TIMED_OUT, detail=error.message), waited
            if not prompt.ok:
                detail = prompt.error.message if prompt.error else "prompt failed"
                return ItemOutcome(item, ItemStatus.ERRORED, detail=detail), None
            if prompt.value is PromptStatus.ALREADY_OWNED:
                return ItemOutcome(item, ItemStatus.PURCHASED, detail="already_owned"), None

            try:
                was_purchased = await asyncio.wait_for(completion, _remaining(loop, deadline))
            except asyncio.TimeoutError:
                error = ItemTimeoutError(timeout_ms or 0)
                waited = elapsed_ms(started) / 1000
                return ItemOutcome(item, ItemStatus.TIMED_OUT, detail=error.message), waited
            status = ItemStatus.PURCHASED if was_purchased else ItemStatus.DECLINED
            return ItemOutcome(item, status), elapsed_ms(started) / 1000
        finally:
            subscription.disconnect()
            if not completion.done():
                completion.cancel()

    async def _prompt(self, requester: Requester, item: PurchaseItem) -> CallResult[PromptStatus]:
        if item.kind is ItemKind.PASS:
            return await self._prompter.prompt_pass(requester, item.id)
        if item.kind is ItemKind.PRODUCT:
            return await self._prompter.prompt_product(requester, item.id)
        if item.kind is ItemKind.BUNDLE:
            return await self._prompter.prompt_bundle(requester, item.id)
        return await self._prompter.prompt_subscription(requester, item.id)

    @asynccontextmanager
    async def _requester_lock(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[user_id] - 1
            if remaining:
                self._lock_users[user_id] = remaining
            else:
                self._lock_users.pop(user_id, None)
                self._locks.pop(user_id, None)

    def _on_task_done(self, task: asyncio.Task[None], tracker: BatchTracker) -> None:
        self._tasks.pop(tracker.batch_id, None)
        if not tracker.finalised:
            # Cancelled before the task body ever ran.
            self._aggregator.finalise(tracker, aborted=True, reason="cancelled")

    def _deliver(self, result: BatchResult) -> None:
        for handler in self._listeners.claim(_BATCH_FINISHED, result):
            try:
                outcome = handler(result)
                if inspect.isawaitable(outcome):
                    self._listener_tasks.schedule(outcome, batch_id=result.batch_id)
            except Exception:
                self._logger.exception(
                    "Batch completion listener failed",
                    extra={"event": "bulk.listener.failed", "batch_id": result.batch_id},
                )

    def _build_request(
        self,
        requester: Requester,
        items: Iterable[PurchaseItem],
        options: BatchOptions | None,
        batch_id: str | None,
    ) -> BatchRequest:
        if not isinstance(requester, Requester):
            raise BatchValidationError("requester must expose a user_id")
        if isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
            raise BatchValidationError("items must be a sequence of purchase items")
        normalised = tuple(self._normalise_item(index, item) for index, item in enumerate(items))
        if len(normalised) > self._config.max_batch_items:
            raise BatchValidationError(
                "batch size exceeds configured limit",
                meta={"items": len(normalised), "limit": self._config.max_batch_items},
            )
        if self._config.reject_duplicate_items:
            seen: set[PurchaseItem] = set()
            for index, item in enumerate(normalised):
                if item in seen:
                    raise BatchValidationError(
                        f"duplicate item {item.kind.value}:{item.id}",
                        meta={"index": index},
                    )
                seen.add(item)

        resolved_options = self._resolve_options(options)
        resolved_id = batch_id or uuid.uuid4().hex
        if resolved_id in self._tasks or any(
            tracker.batch_id == resolved_id for tracker in self._aggregator.active_batches()
        ):
            raise BatchValidationError(f"batch {resolved_id!r} is already running")
        return BatchRequest(
            batch_id=resolved_id,
            requester=requester,
            items=normalised,
            options=resolved_options,
        )

    def _resolve_options(self, options: BatchOptions | None) -> BatchOptions:
        if options is None:
            return BatchOptions(
                stop_on_failure=self._config.stop_on_failure,
                timeout_ms=self._config.item_timeout_ms,
            )
        if not isinstance(options, BatchOptions):
            raise BatchValidationError("options must be BatchOptions")
        timeout_ms = options.timeout_ms
        if timeout_ms is not None and (
            isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0
        ):
            raise BatchValidationError(
                "timeout_ms must be a positive integer", meta={"timeout_ms": timeout_ms}
            )
        return options

    @staticmethod
    def _normalise_item(index: int, item: Any) -> PurchaseItem:
        if not isinstance(item, PurchaseItem):
            raise BatchValidationError(
                "items must be PurchaseItem instances", meta={"index": index}
            )
        try:
            kind = ItemKind(item.kind)
        except ValueError as exc:
            raise BatchValidationError(
                f"unknown item kind {item.kind!r}", meta={"index": index}
            ) from exc
        item_id = item.id
        if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
            raise BatchValidationError(
                "item id must be a positive integer", meta={"index": index, "id": item_id}
            )
        return PurchaseItem(kind, item_id)


def _remaining(loop: asyncio.AbstractEventLoop, deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(0.0, deadline - loop.time())


__all__ =["BatchHandle", "BatchListener", "BulkPurchaseOrchestrator"]
