from __future__ import annotations

from storefront.subscriptions import ListenerRegistry


def test_disconnect_is_idempotent() -> None:
    registry: ListenerRegistry = ListenerRegistry()
    subscription = registry.add("pass", lambda *_: None)

    assert subscription.connected
    subscription.disconnect()
    subscription.disconnect()

    assert not subscription.connected
    assert len(registry) == 0


def test_claim_filters_by_kind_and_predicate() -> None:
    registry: ListenerRegistry = ListenerRegistry()
    calls: list[str] = []
    registry.add("pass", lambda: calls.append("any-pass"))
    registry.add("pass", lambda: calls.append("pass-7"), predicate=lambda item: item == 7)
    registry.add("product", lambda: calls.append("product"))

    for handler in registry.claim("pass", 7):
        handler()
    for handler in registry.claim("pass", 8):
        handler()

    assert calls == ["any-pass", "pass-7", "any-pass"]


def test_once_entries_are_released_on_first_match() -> None:
    registry: ListenerRegistry = ListenerRegistry()
    subscription = registry.add("bundle", lambda: None, once=True)

    assert len(registry.claim("bundle")) == 1
    assert registry.claim("bundle") == []
    assert not subscription.connected


def test_failing_predicate_skips_only_that_entry() -> None:
    registry: ListenerRegistry = ListenerRegistry()

    def _broken(_: int) -> bool:
        raise RuntimeError("predicate bug")

    registry.add("pass", lambda: "broken", predicate=_broken)
    registry.add("pass", lambda: "healthy")

    handlers = registry.claim("pass", 1)

    assert [handler() for handler in handlers] == ["healthy"]


def test_clear_disconnects_every_subscription() -> None:
    registry: ListenerRegistry = ListenerRegistry()
    first = registry.add("pass", lambda: None)
    second = registry.add("asset", lambda: None)

    removed = registry.clear()

    assert set(removed) == {first, second}
    assert not first.connected and not second.connected
