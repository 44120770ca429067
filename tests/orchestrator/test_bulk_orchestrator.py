"""Behaviour of the bulk purchase orchestrator against a scripted platform."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

import pytest

from storefront.config import BulkPurchaseConfig, PlatformCallConfig
from storefront.errors import BatchValidationError, OrchestratorShutdownError, SubscriptionError
from storefront.metrics import get_registry
from storefront.notifications import EventBus
from storefront.orchestrator import (
    BatchHandle,
    BatchOptions,
    BatchResult,
    BatchStatus,
    BulkPurchaseOrchestrator,
    ItemOutcome,
    ItemStatus,
    PurchaseItem,
)
from storefront.platform import NativeSignal, PlatformArgumentError, PromptKind, SafeCall
from storefront.prompts import PurchasePrompter
from tests._fakes import FakeMarketplaceService, FakePlayer, wait_for_prompts


def _build(
    service: FakeMarketplaceService,
    bulk_config: BulkPurchaseConfig,
    platform_config: PlatformCallConfig,
) -> tuple[BulkPurchaseOrchestrator, EventBus]:
    bus = EventBus(service)
    prompter = PurchasePrompter(service, SafeCall(config=platform_config))
    return BulkPurchaseOrchestrator(prompter, bus, config=bulk_config), bus


@pytest.fixture
def bus(service: FakeMarketplaceService) -> EventBus:
    return EventBus(service)


@pytest.fixture
def orchestrator(
    service: FakeMarketplaceService,
    bus: EventBus,
    bulk_config: BulkPurchaseConfig,
    platform_config: PlatformCallConfig,
) -> BulkPurchaseOrchestrator:
    prompter = PurchasePrompter(service, SafeCall(config=platform_config))
    return BulkPurchaseOrchestrator(prompter, bus, config=bulk_config)


async def _finish(handle: BatchHandle) -> BatchResult:
    return await asyncio.wait_for(handle.wait(), timeout=2)


@pytest.mark.asyncio
async def test_all_items_purchased_in_order(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    items = [PurchaseItem.pass_(1), PurchaseItem.product(2), PurchaseItem.bundle(3)]
    for kind, target in ((PromptKind.PASS, 1), (PromptKind.PRODUCT, 2), (PromptKind.BUNDLE, 3)):
        service.responses[(kind, target)] = True

    result = await _finish(await orchestrator.submit(player, items))

    assert result.overall_status is BatchStatus.ALL_PURCHASED
    assert [outcome.item for outcome in result.outcomes] == items
    assert all(outcome.status is ItemStatus.PURCHASED for outcome in result.outcomes)
    assert [prompt.target_id for prompt in service.prompts] == [1, 2, 3]
    assert result.requester is player
    assert result.completed_at >= result.started_at


@pytest.mark.asyncio
async def test_mixed_outcomes_are_partial(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.responses[(PromptKind.PASS, 1)] = True
    service.responses[(PromptKind.PASS, 2)] = False

    result = await _finish(
        await orchestrator.submit(player, [PurchaseItem.pass_(1), PurchaseItem.pass_(2)])
    )

    assert result.overall_status is BatchStatus.PARTIAL
    assert [outcome.status for outcome in result.outcomes] == [
        ItemStatus.PURCHASED,
        ItemStatus.DECLINED,
    ]
    assert [outcome.item.id for outcome in result.failed] == [2]


@pytest.mark.asyncio
async def test_all_declined_is_all_failed(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.responses[(PromptKind.SUBSCRIPTION, 8)] = False
    service.responses[(PromptKind.PRODUCT, 9)] = False

    result = await _finish(
        await orchestrator.submit(
            player, [PurchaseItem.subscription(8), PurchaseItem.product(9)]
        )
    )

    assert result.overall_status is BatchStatus.ALL_FAILED
    assert result.purchased == ()


@pytest.mark.asyncio
async def test_stop_on_failure_aborts_after_first_failure(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.responses[(PromptKind.PASS, 1)] = True
    service.responses[(PromptKind.PASS, 2)] = False
    service.responses[(PromptKind.PASS, 3)] = True
    items = [PurchaseItem.pass_(1), PurchaseItem.pass_(2), PurchaseItem.pass_(3)]

    result = await _finish(
        await orchestrator.submit(player, items, BatchOptions(stop_on_failure=True))
    )

    assert result.overall_status is BatchStatus.ABORTED
    assert [outcome.status for outcome in result.outcomes] == [
        ItemStatus.PURCHASED,
        ItemStatus.DECLINED,
    ]
    assert [prompt.target_id for prompt in service.prompts] == [1, 2]


@pytest.mark.asyncio
async def test_missing_notification_times_out(
    orchestrator: BulkPurchaseOrchestrator,
    bus: EventBus,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.responses[(PromptKind.PRODUCT, 2)] = True

    handle = await orchestrator.submit(
        player,
        [PurchaseItem.product(1), PurchaseItem.product(2)],
        BatchOptions(timeout_ms=20),
    )
    result = await _finish(handle)

    assert result.outcomes[0].status is ItemStatus.TIMED_OUT
    assert result.outcomes[0].detail is not None and "20ms" in result.outcomes[0].detail
    assert result.outcomes[1].status is ItemStatus.PURCHASED
    assert result.overall_status is BatchStatus.PARTIAL
    assert bus.subscription_count() == 0


@pytest.mark.asyncio
async def test_configured_item_timeout_applies_without_options(
    service: FakeMarketplaceService,
    bulk_config: BulkPurchaseConfig,
    platform_config: PlatformCallConfig,
    player: FakePlayer,
) -> None:
    orchestrator, _ = _build(service, replace(bulk_config, item_timeout_ms=15), platform_config)

    result = await _finish(await orchestrator.submit(player, [PurchaseItem.bundle(4)]))

    assert result.outcomes == (
        ItemOutcome(
            PurchaseItem.bundle(4),
            ItemStatus.TIMED_OUT,
            "no purchase notification within 15ms",
        ),
    )
    assert result.overall_status is BatchStatus.ALL_FAILED


@pytest.mark.asyncio
async def test_stalled_prompt_times_out_within_item_bound(
    orchestrator: BulkPurchaseOrchestrator,
    bus: EventBus,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.stalled_prompts.add(1)
    service.responses[(PromptKind.PRODUCT, 2)] = True

    result = await _finish(
        await orchestrator.submit(
            player,
            [PurchaseItem.product(1), PurchaseItem.product(2)],
            BatchOptions(timeout_ms=20),
        )
    )

    assert result.outcomes[0] == ItemOutcome(
        PurchaseItem.product(1), ItemStatus.TIMED_OUT, "no prompt response within 20ms"
    )
    assert result.outcomes[1].status is ItemStatus.PURCHASED
    assert bus.subscription_count() == 0


@pytest.mark.asyncio
async def test_prompt_error_is_recorded_without_waiting(
    orchestrator: BulkPurchaseOrchestrator,
    bus: EventBus,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.prompt_errors[1] = PlatformArgumentError("product is not for sale")
    service.responses[(PromptKind.PRODUCT, 2)] = True

    result = await _finish(
        await orchestrator.submit(player, [PurchaseItem.product(1), PurchaseItem.product(2)])
    )

    assert result.outcomes[0].status is ItemStatus.ERRORED
    assert result.outcomes[0].detail == "product is not for sale"
    assert result.outcomes[1].status is ItemStatus.PURCHASED
    assert bus.subscription_count() == 0


@pytest.mark.asyncio
async def test_owned_pass_resolves_without_prompt(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.owned.add((player.user_id, 1))

    result = await _finish(await orchestrator.submit(player, [PurchaseItem.pass_(1)]))

    assert result.outcomes == (
        ItemOutcome(PurchaseItem.pass_(1), ItemStatus.PURCHASED, "already_owned"),
    )
    assert service.prompts == []


@pytest.mark.asyncio
async def test_notification_raised_during_prompt_is_not_lost(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.respond_inline = True
    service.responses[(PromptKind.PASS, 1)] = True

    result = await _finish(
        await orchestrator.submit(player, [PurchaseItem.pass_(1)], BatchOptions(timeout_ms=500))
    )

    assert result.outcomes[0].status is ItemStatus.PURCHASED


@pytest.mark.asyncio
async def test_next_item_waits_for_previous_resolution(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    handle = await orchestrator.submit(player, [PurchaseItem.pass_(1), PurchaseItem.pass_(2)])

    await wait_for_prompts(service, 1)
    for _ in range(10):
        await asyncio.sleep(0)
    assert [prompt.target_id for prompt in service.prompts] == [1]

    service.finish(PromptKind.PASS, player, 1, True)
    await wait_for_prompts(service, 2)
    service.finish(PromptKind.PASS, player, 2, False)

    result = await _finish(handle)
    assert result.overall_status is BatchStatus.PARTIAL


@pytest.mark.asyncio
async def test_notifications_for_other_requesters_are_ignored(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    stranger = FakePlayer(user_id=2002, name="bob")
    handle = await orchestrator.submit(player, [PurchaseItem.product(5)])
    await wait_for_prompts(service, 1)

    service.emit(NativeSignal.PRODUCT_PURCHASE_FINISHED, stranger.user_id, 5, True)
    service.emit(NativeSignal.PRODUCT_PURCHASE_FINISHED, player.user_id, 6, True)
    for _ in range(10):
        await asyncio.sleep(0)
    assert not handle.done

    service.emit(NativeSignal.PRODUCT_PURCHASE_FINISHED, player.user_id, 5, False)
    result = await _finish(handle)
    assert result.outcomes[0].status is ItemStatus.DECLINED


@pytest.mark.asyncio
async def test_batches_for_one_requester_never_interleave(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    first = await orchestrator.submit(player, [PurchaseItem.pass_(1)])
    second = await orchestrator.submit(player, [PurchaseItem.pass_(2)])

    await wait_for_prompts(service, 1)
    for _ in range(10):
        await asyncio.sleep(0)
    assert [prompt.target_id for prompt in service.prompts] == [1]

    service.finish(PromptKind.PASS, player, 1, True)
    await _finish(first)
    await wait_for_prompts(service, 2)
    service.finish(PromptKind.PASS, player, 2, True)

    assert (await _finish(second)).overall_status is BatchStatus.ALL_PURCHASED
    assert [prompt.target_id for prompt in service.prompts] == [1, 2]


@pytest.mark.asyncio
async def test_batches_for_different_requesters_run_concurrently(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    other = FakePlayer(user_id=2002, name="bob")
    first = await orchestrator.submit(player, [PurchaseItem.pass_(1)])
    second = await orchestrator.submit(other, [PurchaseItem.pass_(1)])

    await wait_for_prompts(service, 2)
    assert {prompt.user_id for prompt in service.prompts} == {player.user_id, other.user_id}

    service.finish(PromptKind.PASS, other, 1, True)
    service.finish(PromptKind.PASS, player, 1, False)

    assert (await _finish(first)).overall_status is BatchStatus.ALL_FAILED
    assert (await _finish(second)).overall_status is BatchStatus.ALL_PURCHASED


@pytest.mark.asyncio
async def test_empty_batch_completes_immediately(
    orchestrator: BulkPurchaseOrchestrator, player: FakePlayer
) -> None:
    delivered: list[BatchResult] = []

    handle = await orchestrator.submit(player, [], on_finished=delivered.append)

    assert handle.done
    assert len(delivered) == 1
    assert delivered[0].outcomes == ()
    assert delivered[0].overall_status is BatchStatus.ALL_PURCHASED
    assert await _finish(handle) is delivered[0]


@pytest.mark.asyncio
async def test_terminal_result_is_emitted_exactly_once(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    per_batch: list[BatchResult] = []
    every_batch: list[BatchResult] = []
    orchestrator.on_batch_finished(every_batch.append)
    service.responses[(PromptKind.PASS, 1)] = True

    handle = await orchestrator.submit(
        player, [PurchaseItem.pass_(1)], on_finished=per_batch.append
    )
    result = await _finish(handle)
    service.finish(PromptKind.PASS, player, 1, False)
    for _ in range(5):
        await asyncio.sleep(0)

    assert per_batch == [result]
    assert every_batch == [result]
    assert result.outcomes[0].status is ItemStatus.PURCHASED
    assert not handle.connected
    assert (
        get_registry().get_sample_value(
            "storefront_batches_total", {"status": BatchStatus.ALL_PURCHASED.value}
        )
        == 1.0
    )


@pytest.mark.asyncio
async def test_cancel_aborts_with_processed_prefix(
    orchestrator: BulkPurchaseOrchestrator,
    bus: EventBus,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    delivered: list[BatchResult] = []
    service.responses[(PromptKind.PASS, 1)] = True
    handle = await orchestrator.submit(
        player,
        [PurchaseItem.pass_(1), PurchaseItem.pass_(2), PurchaseItem.pass_(3)],
        on_finished=delivered.append,
    )
    await wait_for_prompts(service, 2)

    assert handle.cancel()
    result = await _finish(handle)
    service.finish(PromptKind.PASS, player, 2, True)
    for _ in range(5):
        await asyncio.sleep(0)

    assert result.overall_status is BatchStatus.ABORTED
    assert [outcome.item.id for outcome in result.outcomes] == [1]
    assert delivered == [result]
    assert handle.result is result
    assert not handle.cancel()
    assert bus.subscription_count() == 0
    assert [prompt.target_id for prompt in service.prompts] == [1, 2]


@pytest.mark.asyncio
async def test_cancelled_batch_task_ends_cancelled(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    handle = await orchestrator.submit(player, [PurchaseItem.bundle(1)])
    await wait_for_prompts(service, 1)
    (task,) = [
        task
        for task in asyncio.all_tasks()
        if task.get_name() == f"storefront-bulk-{handle.batch_id}"
    ]

    assert handle.cancel()
    result = await _finish(handle)
    await asyncio.wait({task}, timeout=1)

    assert task.cancelled()
    assert result.overall_status is BatchStatus.ABORTED
    assert orchestrator.active_batches() == []


@pytest.mark.asyncio
async def test_cancel_before_first_prompt(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    handle = await orchestrator.submit(player, [PurchaseItem.pass_(1)])

    handle.cancel()
    result = await _finish(handle)

    assert result.overall_status is BatchStatus.ABORTED
    assert result.outcomes == ()
    assert service.prompts == []


@pytest.mark.asyncio
async def test_disconnected_handle_skips_callback(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    delivered: list[BatchResult] = []
    service.responses[(PromptKind.PASS, 1)] = True
    handle = await orchestrator.submit(
        player, [PurchaseItem.pass_(1)], on_finished=delivered.append
    )

    assert handle.connected
    handle.disconnect()
    await _finish(handle)

    assert delivered == []


@pytest.mark.asyncio
async def test_failing_completion_listener_is_isolated(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    delivered: list[BatchResult] = []

    def _broken(_: BatchResult) -> None:
        raise RuntimeError("listener bug")

    orchestrator.on_batch_finished(_broken)
    orchestrator.on_batch_finished(delivered.append)
    service.responses[(PromptKind.PASS, 1)] = True

    result = await _finish(await orchestrator.submit(player, [PurchaseItem.pass_(1)]))

    assert delivered == [result]


@pytest.mark.asyncio
async def test_async_completion_listener_is_awaited_and_failures_logged(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
    caplog: pytest.LogCaptureFixture,
) -> None:
    delivered: list[BatchResult] = []
    called = asyncio.Event()

    async def _record(result: BatchResult) -> None:
        delivered.append(result)

    async def _broken(_: BatchResult) -> None:
        called.set()
        raise RuntimeError("listener bug")

    orchestrator.on_batch_finished(_record)
    orchestrator.on_batch_finished(_broken)
    service.responses[(PromptKind.PASS, 1)] = True

    with caplog.at_level(logging.ERROR, logger="storefront.orchestrator"):
        result = await _finish(await orchestrator.submit(player, [PurchaseItem.pass_(1)]))
        await asyncio.wait_for(called.wait(), timeout=1)
        for _ in range(3):
            await asyncio.sleep(0)

    assert delivered == [result]
    failures = [
        record
        for record in caplog.records
        if getattr(record, "event", None) == "bulk.listener.failed"
    ]
    assert len(failures) == 1
    assert failures[0].batch_id == result.batch_id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("items", "options"),
    [
        ([("pass", 1)], None),
        ([PurchaseItem.pass_(0)], None),
        ([PurchaseItem.product(-3)], None),
        ([PurchaseItem.pass_(1), PurchaseItem.pass_(1)], None),
        ([PurchaseItem.pass_(1)], BatchOptions(timeout_ms=0)),
        ("pass", None),
    ],
)
async def test_malformed_requests_are_rejected(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
    items: object,
    options: BatchOptions | None,
) -> None:
    with pytest.raises(BatchValidationError):
        await orchestrator.submit(player, items, options)  # type: ignore[arg-type]

    assert service.prompts == []
    assert orchestrator.active_batches() == []


@pytest.mark.asyncio
async def test_requester_without_user_id_is_rejected(
    orchestrator: BulkPurchaseOrchestrator,
) -> None:
    with pytest.raises(BatchValidationError):
        await orchestrator.submit(object(), [PurchaseItem.pass_(1)])  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_batch_size_limit(
    service: FakeMarketplaceService,
    bulk_config: BulkPurchaseConfig,
    platform_config: PlatformCallConfig,
    player: FakePlayer,
) -> None:
    orchestrator, _ = _build(service, replace(bulk_config, max_batch_items=2), platform_config)

    with pytest.raises(BatchValidationError) as excinfo:
        await orchestrator.submit(
            player, [PurchaseItem.pass_(1), PurchaseItem.pass_(2), PurchaseItem.pass_(3)]
        )

    assert excinfo.value.meta == {"items": 3, "limit": 2}


@pytest.mark.asyncio
async def test_duplicates_allowed_when_configured(
    service: FakeMarketplaceService,
    bulk_config: BulkPurchaseConfig,
    platform_config: PlatformCallConfig,
    player: FakePlayer,
) -> None:
    orchestrator, _ = _build(
        service, replace(bulk_config, reject_duplicate_items=False), platform_config
    )
    service.responses[(PromptKind.PRODUCT, 7)] = True

    result = await _finish(
        await orchestrator.submit(player, [PurchaseItem.product(7), PurchaseItem.product(7)])
    )

    assert len(result.outcomes) == 2
    assert result.overall_status is BatchStatus.ALL_PURCHASED


@pytest.mark.asyncio
async def test_signal_connection_failure_rejects_submit(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    service.connect_errors[NativeSignal.BUNDLE_PURCHASE_FINISHED] = RuntimeError("no signal")

    with pytest.raises(SubscriptionError):
        await orchestrator.submit(player, [PurchaseItem.bundle(1)])

    assert service.prompts == []


@pytest.mark.asyncio
async def test_closed_bus_mid_batch_marks_later_items_errored(
    service: FakeMarketplaceService,
    bulk_config: BulkPurchaseConfig,
    platform_config: PlatformCallConfig,
    player: FakePlayer,
) -> None:
    orchestrator, bus = _build(service, bulk_config, platform_config)
    handle = await orchestrator.submit(
        player,
        [PurchaseItem.pass_(1), PurchaseItem.pass_(2)],
        BatchOptions(timeout_ms=30),
    )
    await wait_for_prompts(service, 1)

    bus.close()
    result = await _finish(handle)

    assert [outcome.status for outcome in result.outcomes] == [
        ItemStatus.TIMED_OUT,
        ItemStatus.ERRORED,
    ]
    assert result.outcomes[1].detail == "event bus is closed"
    assert [prompt.target_id for prompt in service.prompts] == [1]


@pytest.mark.asyncio
async def test_shutdown_aborts_running_batches(
    orchestrator: BulkPurchaseOrchestrator,
    service: FakeMarketplaceService,
    player: FakePlayer,
) -> None:
    handle = await orchestrator.submit(player, [PurchaseItem.pass_(1)])
    await wait_for_prompts(service, 1)

    await orchestrator.shutdown()

    assert handle.result is not None
    assert handle.result.overall_status is BatchStatus.ABORTED
    with pytest.raises(OrchestratorShutdownError):
        await orchestrator.submit(player, [PurchaseItem.pass_(2)])
