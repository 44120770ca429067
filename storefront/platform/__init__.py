"""Marketplace platform boundary: service contract and safe invocation."""

from .contracts import (
    Connection,
    InfoType,
    MarketplaceService,
    NativeSignal,
    PlatformArgumentError,
    PlatformError,
    PlatformNotFoundError,
    PlatformUnavailableError,
    ProductPurchaseDecision,
    PromptKind,
    PurchaseReceipt,
    ReceiptProcessor,
    Requester,
    UserRef,
)
from .safe_call import CallResult, SafeCall, classify_error

__all__ = [
    "CallResult",
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
    "SafeCall",
    "UserRef",
    "classify_error",
]
