"""Contracts describing the marketplace platform service boundary."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Requester(Protocol):
    """Platform identity on whose behalf a purchase is prompted."""

    @property
    def user_id(self) -> int: ...


@dataclass(slots=True, frozen=True)
class UserRef:
    """Minimal requester used when the platform only reports a user id."""

    user_id: int


class PromptKind(str, Enum):
    """Purchase prompts the platform can display."""

    PASS = "pass"
    PRODUCT = "product"
    BUNDLE = "bundle"
    PREMIUM = "premium"
    SUBSCRIPTION = "subscription"
    SUBSCRIPTION_CANCEL = "subscription_cancel"


class NativeSignal(str, Enum):
    """Broadcast completion signals raised by the platform."""

    ASSET_PURCHASE_FINISHED = "asset_purchase_finished"
    PASS_PURCHASE_FINISHED = "pass_purchase_finished"
    BUNDLE_PURCHASE_FINISHED = "bundle_purchase_finished"
    PRODUCT_PURCHASE_FINISHED = "product_purchase_finished"
    SUBSCRIPTION_PURCHASE_FINISHED = "subscription_purchase_finished"
    PREMIUM_PURCHASE_FINISHED = "premium_purchase_finished"


class InfoType(str, Enum):
    """Catalog namespaces accepted by product info queries."""

    ASSET = "asset"
    PRODUCT = "product"
    PASS = "pass"
    SUBSCRIPTION = "subscription"
    BUNDLE = "bundle"


class Connection(Protocol):
    def disconnect(self) -> None: ...


class MarketplaceService(Protocol):
    """Interface of the hosting platform's marketplace service.

    Every method may raise at any time. Methods may be plain or coroutine
    functions; callers go through :class:`~storefront.platform.safe_call.SafeCall`.
    """

    def check_ownership(self, user_id: int, pass_id: int) -> bool | Awaitable[bool]:
        """Return whether ``user_id`` owns the pass ``pass_id``."""

    def prompt_purchase(
        self, kind: PromptKind, requester: Requester, target_id: int | None
    ) -> None | Awaitable[None]:
        """Show a purchase prompt; the outcome arrives later as a signal."""

    def get_product_info(
        self, target_id: int, info_type: InfoType
    ) -> Mapping[str, Any] | None | Awaitable[Mapping[str, Any] | None]:
        """Return the raw catalog record for ``target_id``."""

    def connect(self, signal: NativeSignal, callback: Callable[..., Any]) -> Connection:
        """Attach ``callback`` to a broadcast completion signal."""


class PlatformError(RuntimeError):
    """Base class for exceptions raised by the platform service."""


class PlatformUnavailableError(PlatformError):
    """The platform could not be reached or is temporarily unavailable."""


class PlatformArgumentError(PlatformError):
    """The platform rejected the call arguments."""


class PlatformNotFoundError(PlatformError):
    """The queried catalog entry does not exist."""


class ProductPurchaseDecision(str, Enum):
    """Values a receipt processor returns to the platform."""

    PURCHASE_GRANTED = "purchase_granted"
    NOT_PROCESSED_YET = "not_processed_yet"


@dataclass(slots=True, frozen=True)
class PurchaseReceipt:
    """Receipt record handed to an application's receipt processor."""

    purchase_id: str
    user_id: int
    product_id: int
    currency_spent: int
    place_id: int | None = None


class ReceiptProcessor(Protocol):
    """Application hook registered directly with the platform.

    Granting rewards is the application's job; this package only documents
    the contract and never calls it.
    """

    def __call__(self, receipt: PurchaseReceipt) -> ProductPurchaseDecision: ...


__all__ = [
    "Connection",
    "InfoType",
    "MarketplaceService",
    "NativeSignal",
    "PlatformArgumentError",
    "PlatformError",
    "PlatformNotFoundError",
    "PlatformUnavailableError",
    "ProductPurchaseDecision",
    "PromptKind",
    "PurchaseReceipt",
    "ReceiptProcessor",
    "Requester",
    "UserRef",
]
