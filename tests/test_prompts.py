from __future__ import annotations

import logging

import pytest

from storefront.config import PlatformCallConfig
from storefront.platform import PlatformArgumentError, PlatformUnavailableError, PromptKind, SafeCall
from storefront.prompts import PromptStatus, PurchasePrompter
from tests._fakes import FakeMarketplaceService, FakePlayer, PromptCall


@pytest.fixture
def prompter(
    service: FakeMarketplaceService, platform_config: PlatformCallConfig
) -> PurchasePrompter:
    return PurchasePrompter(service, SafeCall(config=platform_config))


@pytest.mark.asyncio
async def test_has_pass_reports_ownership(
    prompter: PurchasePrompter, service: FakeMarketplaceService, player: FakePlayer
) -> None:
    service.owned.add((player.user_id, 10))

    owned = await prompter.has_pass(player, 10)
    missing = await prompter.has_pass(player, 11)

    assert owned.ok and owned.value is True
    assert missing.ok and missing.value is False


@pytest.mark.asyncio
async def test_has_pass_surfaces_call_errors(
    prompter: PurchasePrompter, service: FakeMarketplaceService, player: FakePlayer
) -> None:
    service.ownership_error = PlatformUnavailableError("ownership service down")

    result = await prompter.has_pass(player, 10)

    assert not result.ok
    assert result.error is not None and result.error.retriable


@pytest.mark.asyncio
async def test_prompt_pass_skips_owned_passes(
    prompter: PurchasePrompter, service: FakeMarketplaceService, player: FakePlayer
) -> None:
    service.owned.add((player.user_id, 10))

    result = await prompter.prompt_pass(player, 10)

    assert result.value is PromptStatus.ALREADY_OWNED
    assert service.prompts == []


@pytest.mark.asyncio
async def test_prompt_pass_prompts_when_ownership_is_unknown(
    prompter: PurchasePrompter,
    service: FakeMarketplaceService,
    player: FakePlayer,
    caplog: pytest.LogCaptureFixture,
) -> None:
    service.ownership_error = PlatformUnavailableError("flaky")

    with caplog.at_level(logging.WARNING, logger="storefront.prompts"):
        result = await prompter.prompt_pass(player, 10)

    assert result.value is PromptStatus.ISSUED
    assert service.prompts == [PromptCall(PromptKind.PASS, player.user_id, 10)]
    assert any(getattr(record, "status", None) == "ownership_unknown" for record in caplog.records)


@pytest.mark.asyncio
async def test_each_prompt_kind_reaches_the_platform(
    prompter: PurchasePrompter, service: FakeMarketplaceService, player: FakePlayer
) -> None:
    await prompter.prompt_product(player, 1)
    await prompter.prompt_bundle(player, 2)
    await prompter.prompt_premium(player)
    await prompter.prompt_subscription(player, 3)
    await prompter.prompt_subscription_cancel(player, 3)

    assert service.prompts == [
        PromptCall(PromptKind.PRODUCT, player.user_id, 1),
        PromptCall(PromptKind.BUNDLE, player.user_id, 2),
        PromptCall(PromptKind.PREMIUM, player.user_id, None),
        PromptCall(PromptKind.SUBSCRIPTION, player.user_id, 3),
        PromptCall(PromptKind.SUBSCRIPTION_CANCEL, player.user_id, 3),
    ]


@pytest.mark.asyncio
async def test_rejected_prompt_returns_error(
    prompter: PurchasePrompter, service: FakeMarketplaceService, player: FakePlayer
) -> None:
    service.prompt_errors[99] = PlatformArgumentError("invalid product id")

    result = await prompter.prompt_product(player, 99)

    assert not result.ok
    assert result.error is not None
    assert result.error.retriable is False
    assert result.error.operation == "prompt_product"
