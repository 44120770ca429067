"""Disposable listener registrations keyed by subscription id."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from storefront.logging import get_logger

H = TypeVar("H", bound=Callable[..., Any])

_ids = itertools.count(1)

logger = get_logger(__name__)


class Subscription:
    """Handle owning exactly one listener registration.

    ``disconnect()`` is the only way to release the registration; calling it
    again has no effect.
    """

    __slots__ = ("_id", "_kind", "_registry", "__weakref__")

    def __init__(self, registry: "ListenerRegistry[Any]", kind: str) -> None:
        self._id = next(_ids)
        self._kind = kind
        self._registry: ListenerRegistry[Any] | None = registry

    @property
    def id(self) -> int:
        return self._id

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def connected(self) -> bool:
        registry = self._registry
        return registry is not None and registry.contains(self)

    def disconnect(self) -> None:
        registry = self._registry
        if registry is None:
            return
        self._registry = None
        registry.remove(self)

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<Subscription id={self._id} kind={self._kind} {state}>"


@dataclass(slots=True)
class _Entry(Generic[H]):
    subscription: Subscription
    handler: H
    predicate: Callable[..., bool] | None
    once: bool


class ListenerRegistry(Generic[H]):
    """Thread-safe table of listeners, one entry per subscription."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[int, _Entry[H]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(
        self,
        kind: str,
        handler: H,
        *,
        predicate: Callable[..., bool] | None = None,
        once: bool = False,
    ) -> Subscription:
        if not callable(handler):
            raise TypeError("handler must be callable")
        if predicate is not None and not callable(predicate):
            raise TypeError("predicate must be callable")
        subscription = Subscription(self, kind)
        with self._lock:
            self._entries[subscription.id] = _Entry(
                subscription=subscription,
                handler=handler,
                predicate=predicate,
                once=once,
            )
        return subscription

    def contains(self, subscription: Subscription) -> bool:
        with self._lock:
            return subscription.id in self._entries

    def remove(self, subscription: Subscription) -> bool:
        with self._lock:
            return self._entries.pop(subscription.id, None) is not None

    def clear(self) -> list[Subscription]:
        with self._lock:
            removed = [entry.subscription for entry in self._entries.values()]
            self._entries.clear()
        for subscription in removed:
            subscription.disconnect()
        return removed

    def claim(self, kind: str, *args: Any) -> list[H]:
        """Return handlers of ``kind`` whose predicate accepts ``args``.

        One-shot entries are removed while the lock is held so that a
        concurrent delivery can never fire them twice.
        """

        with self._lock:
            candidates = [
                entry for entry in self._entries.values() if entry.subscription.kind == kind
            ]
        matched: list[H] = []
        for entry in candidates:
            if not self._accepts(entry, args):
                continue
            if entry.once:
                with self._lock:
                    if self._entries.pop(entry.subscription.id, None) is None:
                        continue
                entry.subscription.disconnect()
            elif not self.contains(entry.subscription):
                continue
            matched.append(entry.handler)
        return matched

    @staticmethod
    def _accepts(entry: _Entry[H], args: tuple[Any, ...]) -> bool:
        predicate = entry.predicate
        if predicate is None:
            return True
        try:
            return bool(predicate(*args))
        except Exception:
            logger.exception(
                "Listener predicate failed; skipping delivery",
                extra={
                    "event": "subscriptions.predicate_failed",
                    "subscription_id": entry.subscription.id,
                },
            )
            return False


__all__ = ["ListenerRegistry", "Subscription"]
