"""Application-facing facade over one marketplace service instance."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from storefront.config import StorefrontConfig, get_settings
from storefront.logging import get_logger
from storefront.notifications import (
    EventBus,
    NotificationKind,
    PurchaseHandler,
    PurchasePredicate,
    RequesterResolver,
)
from storefront.orchestrator import (
    BatchHandle,
    BatchListener,
    BatchOptions,
    BulkPurchaseOrchestrator,
    PurchaseItem,
)
from storefront.platform.contracts import InfoType, MarketplaceService, Requester
from storefront.platform.safe_call import CallResult, SafeCall
from storefront.product_info import ProductInfo, ProductInfoResolver
from storefront.prompts import PromptStatus, PurchasePrompter
from storefront.subscriptions import Subscription

logger = get_logger(__name__)


class MarketplaceClient:
    """Wire the storefront components around ``service``.

    The client owns its :class:`EventBus`; :meth:`close` disconnects every
    native signal and aborts running batches.
    """

    def __init__(
        self,
        service: MarketplaceService,
        *,
        config: StorefrontConfig | None = None,
        requester_resolver: RequesterResolver | None = None,
    ) -> None:
        self._config = config or get_settings()
        self._safe_call = SafeCall(config=self._config.platform)
        self._bus = EventBus(service, requester_resolver=requester_resolver)
        self._prompter = PurchasePrompter(service, self._safe_call)
        self._product_info = ProductInfoResolver(
            service, self._safe_call, config=self._config.product_info
        )
        self._orchestrator = BulkPurchaseOrchestrator(
            self._prompter, self._bus, config=self._config.bulk
        )
        self._closed = False

    @property
    def config(self) -> StorefrontConfig:
        return self._config

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def orchestrator(self) -> BulkPurchaseOrchestrator:
        return self._orchestrator

    @property
    def closed(self) -> bool:
        return self._closed

    async def has_pass(self, requester: Requester, pass_id: int) -> CallResult[bool]:
        return await self._prompter.has_pass(requester, pass_id)

    async def prompt_pass(self, requester: Requester, pass_id: int) -> CallResult[PromptStatus]:
        return await self._prompter.prompt_pass(requester, pass_id)

    async def prompt_product(
        self, requester: Requester, product_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompter.prompt_product(requester, product_id)

    async def prompt_bundle(
        self, requester: Requester, bundle_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompter.prompt_bundle(requester, bundle_id)

    async def prompt_premium_purchase(self, requester: Requester) -> CallResult[PromptStatus]:
        return await self._prompter.prompt_premium(requester)

    async def prompt_subscription(
        self, requester: Requester, subscription_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompter.prompt_subscription(requester, subscription_id)

    async def prompt_subscription_cancel(
        self, requester: Requester, subscription_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompter.prompt_subscription_cancel(requester, subscription_id)

    async def get_product_info(
        self, product_id: int, info_type: InfoType | str = InfoType.ASSET
    ) -> CallResult[ProductInfo | None]:
        return await self._product_info.get_info(product_id, info_type)

    async def bulk_purchase(
        self,
        requester: Requester,
        items: Iterable[PurchaseItem],
        options: BatchOptions | None = None,
        on_finished: BatchListener | None = None,
    ) -> BatchHandle:
        """Prompt ``items`` one after another; see :class:`BulkPurchaseOrchestrator`."""

        return await self._orchestrator.submit(
            requester, items, options, on_finished=on_finished
        )

    def on_asset_purchase_finished(
        self, handler: PurchaseHandler, *, predicate: PurchasePredicate | None = None
    ) -> Subscription:
        return self._bus.subscribe(NotificationKind.ASSET, handler, predicate=predicate)

    def on_pass_purchase_finished(
        self, handler: PurchaseHandler, *, predicate: PurchasePredicate | None = None
    ) -> Subscription:
        return self._bus.subscribe(NotificationKind.PASS, handler, predicate=predicate)

    def on_bundle_purchase_finished(
        self, handler: PurchaseHandler, *, predicate: PurchasePredicate | None = None
    ) -> Subscription:
        return self._bus.subscribe(NotificationKind.BUNDLE, handler, predicate=predicate)

    def on_product_purchase_finished(
        self, handler: PurchaseHandler, *, predicate: PurchasePredicate | None = None
    ) -> Subscription:
        return self._bus.subscribe(NotificationKind.PRODUCT, handler, predicate=predicate)

    def on_subscription_purchase_finished(
        self, handler: PurchaseHandler, *, predicate: PurchasePredicate | None = None
    ) -> Subscription:
        return self._bus.subscribe(NotificationKind.SUBSCRIPTION, handler, predicate=predicate)

    def on_premium_purchase_finished(
        self, handler: PurchaseHandler, *, predicate: PurchasePredicate | None = None
    ) -> Subscription:
        return self._bus.subscribe(NotificationKind.PREMIUM, handler, predicate=predicate)

    def on_bulk_purchase_finished(
        self, handler: BatchListener, *, batch_id: str | None = None
    ) -> Subscription:
        return self._orchestrator.on_batch_finished(handler, batch_id=batch_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._orchestrator.shutdown()
        self._bus.close()
        logger.debug("Marketplace client closed", extra={"event": "marketplace.closed"})

    async def __aenter__(self) -> MarketplaceClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


__all__ = ["MarketplaceClient"]
