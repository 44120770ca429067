"""Uniform subscription interface over the platform's purchase signals.

The platform broadcasts every completion signal to all of its listeners, so a
caller waiting on one particular purchase has to filter. :class:`EventBus`
connects once per signal and fans each normalised notification out to its
own subscriptions, each with an optional predicate and one-shot flag.
"""

from __future__ import annotations

import inspect
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from storefront.errors import SubscriptionError
from storefront.logging import get_logger
from storefront.logging_events import log_event
from storefront.platform.contracts import (
    Connection,
    MarketplaceService,
    NativeSignal,
    Requester,
    UserRef,
)
from storefront.subscriptions import ListenerRegistry, Subscription
from storefront.utils.tasks import CallbackTasks

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    ASSET = "asset"
    PASS = "pass"
    BUNDLE = "bundle"
    PRODUCT = "product"
    SUBSCRIPTION = "subscription"
    PREMIUM = "premium"


PurchaseHandler = Callable[[Requester, int | None, bool, Mapping[str, Any] | None], Any]
PurchasePredicate = Callable[[Requester, int | None], bool]
RequesterResolver = Callable[[int], Requester | None]

_SIGNALS: Mapping[NotificationKind, NativeSignal] = {
    NotificationKind.ASSET: NativeSignal.ASSET_PURCHASE_FINISHED,
    NotificationKind.PASS: NativeSignal.PASS_PURCHASE_FINISHED,
    NotificationKind.BUNDLE: NativeSignal.BUNDLE_PURCHASE_FINISHED,
    NotificationKind.PRODUCT: NativeSignal.PRODUCT_PURCHASE_FINISHED,
    NotificationKind.SUBSCRIPTION: NativeSignal.SUBSCRIPTION_PURCHASE_FINISHED,
    NotificationKind.PREMIUM: NativeSignal.PREMIUM_PURCHASE_FINISHED,
}


@dataclass(slots=True, frozen=True)
class PurchaseNotification:
    """Normalised purchase completion notification."""

    kind: NotificationKind
    requester: Requester
    item_id: int | None
    was_purchased: bool
    extra: Mapping[str, Any] | None = field(default=None)

    @property
    def user_id(self) -> int:
        return int(self.requester.user_id)


def for_purchase(user_id: int | None = None, item_id: int | None = None) -> PurchasePredicate:
    """Build a predicate matching a requester id and/or an item id."""

    def _matches(requester: Requester, notified_item: int | None) -> bool:
        if user_id is not None and getattr(requester, "user_id", None) != user_id:
            return False
        if item_id is not None and notified_item != item_id:
            return False
        return True

    return _matches


class EventBus:
    """Owned notification hub bound to one platform service instance."""

    def __init__(
        self,
        service: MarketplaceService,
        *,
        requester_resolver: RequesterResolver | None = None,
    ) -> None:
        self._service = service
        self._resolver = requester_resolver
        self._registry: ListenerRegistry[PurchaseHandler] = ListenerRegistry()
        self._connections: dict[NotificationKind, Connection] = {}
        self._connect_lock = threading.Lock()
        self._closed = False
        self._handler_tasks = CallbackTasks(logger, event="notifications.handler_failed")
        self._handler_tasks.bind()

    @property
    def closed(self) -> bool:
        return self._closed

    def subscription_count(self) -> int:
        return len(self._registry)

    def subscribe(
        self,
        kind: NotificationKind | str,
        handler: PurchaseHandler,
        *,
        predicate: PurchasePredicate | None = None,
        once: bool = False,
    ) -> Subscription:
        """Register ``handler`` for ``kind`` notifications.

        ``handler`` receives ``(requester, item_id, was_purchased, extra)``.
        Raises :class:`SubscriptionError` if the bus is closed or the native
        signal could not be connected.
        """

        resolved = NotificationKind(kind)
        self.ensure_connected(resolved)
        with self._connect_lock:
            # close() may have run since the signal was connected.
            if self._closed:
                raise SubscriptionError("event bus is closed")
            subscription = self._registry.add(
                resolved.value, handler, predicate=predicate, once=once
            )
        self._handler_tasks.bind()
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.disconnect()

    def close(self) -> None:
        """Disconnect every native signal and drop all subscriptions."""

        with self._connect_lock:
            self._closed = True
            connections = list(self._connections.items())
            self._connections.clear()
        for kind, connection in connections:
            try:
                connection.disconnect()
            except Exception:
                logger.exception(
                    "Failed to disconnect native signal",
                    extra={"event": "notifications.disconnect_failed", "kind": kind.value},
                )
        self._registry.clear()

    def publish(self, notification: PurchaseNotification) -> int:
        """Deliver ``notification`` to matching subscriptions.

        Returns the number of handlers invoked. A failing handler is logged
        and does not stop delivery to the others.
        """

        handlers = self._registry.claim(
            notification.kind.value, notification.requester, notification.item_id
        )
        log_event(
            logger,
            "marketplace.notification",
            level="debug",
            component="event_bus",
            kind=notification.kind.value,
            user_id=notification.user_id,
            item_id=notification.item_id,
            was_purchased=notification.was_purchased,
            handlers=len(handlers),
        )
        for handler in handlers:
            self._invoke(handler, notification)
        return len(handlers)

    def ensure_connected(self, kind: NotificationKind | str) -> None:
        """Attach the native signal for ``kind`` if not yet connected."""

        kind = NotificationKind(kind)
        with self._connect_lock:
            if self._closed:
                raise SubscriptionError("event bus is closed")
            if kind in self._connections:
                return
            signal = _SIGNALS[kind]
            try:
                connection = self._service.connect(signal, self._native_callback(kind))
            except Exception as exc:
                raise SubscriptionError(
                    f"failed to connect native signal {signal.value}", cause=exc
                ) from exc
            self._connections[kind] = connection

    def _native_callback(self, kind: NotificationKind) -> Callable[..., None]:
        def _on_signal(*args: Any) -> None:
            try:
                notification = self._normalise(kind, args)
            except (TypeError, ValueError, IndexError):
                logger.exception(
                    "Dropping malformed platform notification",
                    extra={"event": "notifications.malformed", "kind": kind.value},
                )
                return
            self.publish(notification)

        return _on_signal

    def _normalise(self, kind: NotificationKind, args: tuple[Any, ...]) -> PurchaseNotification:
        if kind is NotificationKind.PREMIUM:
            (requester,) = args[:1]
            if not isinstance(requester, Requester):
                raise TypeError("premium notification without a requester")
            return PurchaseNotification(
                kind=kind, requester=requester, item_id=None, was_purchased=True
            )
        if kind is NotificationKind.PRODUCT:
            user_id, product_id, is_purchased = args[:3]
            currency_spent = args[3] if len(args) > 3 else None
            extra = {"currency_spent": currency_spent} if currency_spent is not None else None
            return PurchaseNotification(
                kind=kind,
                requester=self._resolve_requester(int(user_id)),
                item_id=int(product_id),
                was_purchased=bool(is_purchased),
                extra=extra,
            )
        requester, item_id, purchased = args[:3]
        if not isinstance(requester, Requester):
            raise TypeError(f"{kind.value} notification without a requester")
        return PurchaseNotification(
            kind=kind,
            requester=requester,
            item_id=int(item_id),
            was_purchased=bool(purchased),
        )

    def _resolve_requester(self, user_id: int) -> Requester:
        if self._resolver is not None:
            resolved = self._resolver(user_id)
            if resolved is not None:
                return resolved
        return UserRef(user_id)

    def _invoke(self, handler: PurchaseHandler, notification: PurchaseNotification) -> None:
        try:
            result = handler(
                notification.requester,
                notification.item_id,
                notification.was_purchased,
                notification.extra,
            )
            if inspect.isawaitable(result):
                self._handler_tasks.schedule(
                    result, kind=notification.kind.value, item_id=notification.item_id
                )
        except Exception:
            logger.exception(
                "Purchase notification handler failed",
                extra={
                    "event": "notifications.handler_failed",
                    "kind": notification.kind.value,
                    "item_id": notification.item_id,
                },
            )


__all__ = [
    "EventBus",
    "NotificationKind",
    "PurchaseHandler",
    "PurchaseNotification",
    "PurchasePredicate",
    "RequesterResolver",
    "for_purchase",
]
