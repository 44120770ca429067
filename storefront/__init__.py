"""Purchase prompting and bulk purchase orchestration for a hosted marketplace."""

from storefront.client import MarketplaceClient
from storefront.config import StorefrontConfig, get_settings, load_config
from storefront.errors import (
    BatchValidationError,
    CallError,
    ErrorCode,
    ItemTimeoutError,
    OrchestratorShutdownError,
    StorefrontError,
    SubscriptionError,
)
from storefront.notifications import EventBus, NotificationKind, for_purchase
from storefront.orchestrator import (
    BatchHandle,
    BatchOptions,
    BatchResult,
    BatchStatus,
    BulkPurchaseOrchestrator,
    ItemKind,
    ItemOutcome,
    ItemStatus,
    PurchaseItem,
)
from storefront.platform import CallResult, InfoType, MarketplaceService, Requester, UserRef
from storefront.product_info import ProductInfo
from storefront.prompts import PromptStatus
from storefront.subscriptions import Subscription

__all__ = [
    "BatchHandle",
    "BatchOptions",
    "BatchResult",
    "BatchStatus",
    "BatchValidationError",
    "BulkPurchaseOrchestrator",
    "CallError",
    "CallResult",
    "ErrorCode",
    "EventBus",
    "InfoType",
    "ItemKind",
    "ItemOutcome",
    "ItemStatus",
    "ItemTimeoutError",
    "MarketplaceClient",
    "MarketplaceService",
    "NotificationKind",
    "OrchestratorShutdownError",
    "ProductInfo",
    "PromptStatus",
    "PurchaseItem",
    "Requester",
    "StorefrontConfig",
    "StorefrontError",
    "Subscription",
    "SubscriptionError",
    "UserRef",
    "for_purchase",
    "get_settings",
    "load_config",
]
