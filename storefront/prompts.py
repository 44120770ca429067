"""Individual purchase prompts issued through :class:`SafeCall`."""

from __future__ import annotations

from enum import Enum

from storefront.logging import get_logger
from storefront.logging_events import log_event
from storefront.platform.contracts import MarketplaceService, PromptKind, Requester
from storefront.platform.safe_call import CallResult, SafeCall

logger = get_logger(__name__)


class PromptStatus(str, Enum):
    """What a successful prompt call did."""

    ISSUED = "issued"
    ALREADY_OWNED = "already_owned"


class PurchasePrompter:
    """Issue purchase prompts for one platform service."""

    def __init__(self, service: MarketplaceService, safe_call: SafeCall) -> None:
        self._service = service
        self._safe_call = safe_call

    async def has_pass(self, requester: Requester, pass_id: int) -> CallResult[bool]:
        result = await self._safe_call.invoke(
            self._service.check_ownership,
            requester.user_id,
            pass_id,
            operation="check_ownership",
        )
        if not result.ok:
            return result
        return CallResult(value=bool(result.value))

    async def prompt_pass(self, requester: Requester, pass_id: int) -> CallResult[PromptStatus]:
        """Prompt for a pass unless the requester already owns it.

        A failed ownership check is treated as "not owned": the prompt is
        still issued so a flaky check never blocks a real purchase.
        """

        owned = await self.has_pass(requester, pass_id)
        if owned.ok and owned.value:
            self._log(PromptKind.PASS, requester, pass_id, PromptStatus.ALREADY_OWNED.value)
            return CallResult(value=PromptStatus.ALREADY_OWNED)
        if not owned.ok:
            log_event(
                logger,
                "marketplace.prompt",
                level="warning",
                component="prompter",
                kind=PromptKind.PASS.value,
                user_id=requester.user_id,
                item_id=pass_id,
                status="ownership_unknown",
                meta={"error": owned.error.message if owned.error else None},
            )
        return await self._prompt(PromptKind.PASS, requester, pass_id)

    async def prompt_product(
        self, requester: Requester, product_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompt(PromptKind.PRODUCT, requester, product_id)

    async def prompt_bundle(self, requester: Requester, bundle_id: int) -> CallResult[PromptStatus]:
        return await self._prompt(PromptKind.BUNDLE, requester, bundle_id)

    async def prompt_premium(self, requester: Requester) -> CallResult[PromptStatus]:
        return await self._prompt(PromptKind.PREMIUM, requester, None)

    async def prompt_subscription(
        self, requester: Requester, subscription_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompt(PromptKind.SUBSCRIPTION, requester, subscription_id)

    async def prompt_subscription_cancel(
        self, requester: Requester, subscription_id: int
    ) -> CallResult[PromptStatus]:
        return await self._prompt(PromptKind.SUBSCRIPTION_CANCEL, requester, subscription_id)

    async def _prompt(
        self, kind: PromptKind, requester: Requester, target_id: int | None
    ) -> CallResult[PromptStatus]:
        result = await self._safe_call.invoke(
            self._service.prompt_purchase,
            kind,
            requester,
            target_id,
            operation=f"prompt_{kind.value}",
        )
        if not result.ok:
            self._log(kind, requester, target_id, "error")
            return CallResult(error=result.error)
        self._log(kind, requester, target_id, PromptStatus.ISSUED.value)
        return CallResult(value=PromptStatus.ISSUED)

    @staticmethod
    def _log(kind: PromptKind, requester: Requester, target_id: int | None, status: str) -> None:
        log_event(
            logger,
            "marketplace.prompt",
            component="prompter",
            kind=kind.value,
            user_id=requester.user_id,
            item_id=target_id,
            status=status,
        )


__all__ = ["PromptStatus", "PurchasePrompter"]
