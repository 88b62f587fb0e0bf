"""Tests for the subscription registry."""

from __future__ import annotations

import threading

import anyio
import pytest

from notification_service.infrastructure.notifications import SubscriptionRegistry


class Handle:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"Handle({self.name})"


def test_register_groups_connections_by_recipient(registry) -> None:
    tab_one, tab_two, other = Handle("a1"), Handle("a2"), Handle("b1")

    registry.register("alice", tab_one)
    registry.register("alice", tab_two)
    registry.register("bob", other)

    assert set(registry.connections_for("alice")) == {tab_one, tab_two}
    assert registry.connections_for("bob") == (other,)
    assert registry.connections_for("carol") == ()
    assert registry.count() == 3


def test_register_twice_keeps_a_single_entry(registry) -> None:
    handle = Handle("a1")

    registry.register("alice", handle)
    registry.register("alice", handle)

    assert registry.connections_for("alice") == (handle,)


def test_unregister_is_idempotent(registry) -> None:
    handle = Handle("a1")
    registry.register("alice", handle)

    assert registry.unregister(handle) is True
    assert registry.unregister(handle) is False
    assert registry.connections_for("alice") == ()
    assert registry.count() == 0


def test_unregister_unknown_handle_is_harmless(registry) -> None:
    assert registry.unregister(Handle("ghost")) is False


def test_snapshot_is_not_affected_by_later_changes(registry) -> None:
    first, second = Handle("a1"), Handle("a2")
    registry.register("alice", first)

    snapshot = registry.connections_for("alice")
    registry.register("alice", second)
    registry.unregister(first)

    assert snapshot == (first,)
    assert registry.connections_for("alice") == (second,)


def test_subscriptions_carry_registration_time(registry) -> None:
    handle = Handle("a1")
    subscription = registry.register("alice", handle)

    assert registry.subscriptions_for("alice") == (subscription,)
    assert subscription.connected_at is not None


def test_rejects_non_positive_stripe_count() -> None:
    with pytest.raises(ValueError):
        SubscriptionRegistry(stripes=0)


def test_concurrent_register_and_unregister(registry) -> None:
    handles = [Handle(str(index)) for index in range(200)]

    def churn(chunk) -> None:
        for handle in chunk:
            registry.register(f"user-{int(handle.name) % 5}", handle)
        for handle in chunk[::2]:
            registry.unregister(handle)

    threads = [threading.Thread(target=churn, args=(handles[i::4],)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    remaining = sum(len(registry.connections_for(f"user-{index}")) for index in range(5))
    assert remaining == registry.count() == 100


@pytest.mark.anyio
async def test_follow_unregisters_reported_handles(registry) -> None:
    handle, survivor = Handle("a1"), Handle("a2")
    registry.register("alice", handle)
    registry.register("alice", survivor)
    send, receive = anyio.create_memory_object_stream(10)

    async with anyio.create_task_group() as group:
        group.start_soon(registry.follow, receive)
        await send.send(handle)
        await send.aclose()

    assert registry.connections_for("alice") == (survivor,)
