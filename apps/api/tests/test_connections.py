"""Tests for the connection registry and per-connection delivery."""
from __future__ import annotations

import asyncio

import pytest

from app.services.connections import ConnectionRegistry


class DummyConnection:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_register_assigns_unique_ids():
    registry = ConnectionRegistry()

    ids = {registry.register(DummyConnection().send) for _ in range(10)}

    assert len(ids) == 10
    assert len(registry) == 10
    assert set(registry.ids()) == ids


@pytest.mark.asyncio
async def test_slow_recipient_does_not_block_others():
    registry = ConnectionRegistry()
    gate = asyncio.Event()

    async def slow_send(message: dict) -> None:
        await gate.wait()

    fast = DummyConnection()
    slow_id = registry.register(slow_send)
    fast_id = registry.register(fast.send)

    assert registry.deliver(slow_id, {"type": "ping"})
    assert registry.deliver(fast_id, {"type": "ping"})
    await _settle()

    assert fast.messages == [{"type": "ping"}]

    gate.set()
    await registry.drain(timeout=1)


@pytest.mark.asyncio
async def test_full_queue_drops_for_that_recipient_only():
    registry = ConnectionRegistry(queue_size=1)
    blocked = DummyConnection()
    connection_id = registry.register(blocked.send)

    accepted = [registry.deliver(connection_id, {"type": "n", "data": index}) for index in range(3)]

    assert accepted == [True, False, False]
    await registry.drain(timeout=1)
    assert blocked.messages == [{"type": "n", "data": 0}]


@pytest.mark.asyncio
async def test_failed_send_does_not_stop_later_deliveries():
    registry = ConnectionRegistry()
    received: list[dict] = []

    async def flaky_send(message: dict) -> None:
        if message["type"] == "boom":
            raise RuntimeError("socket closed")
        received.append(message)

    connection_id = registry.register(flaky_send)
    registry.deliver(connection_id, {"type": "boom"})
    registry.deliver(connection_id, {"type": "after"})
    await registry.drain(timeout=1)

    assert received == [{"type": "after"}]


@pytest.mark.asyncio
async def test_unregister_runs_listeners_before_returning():
    registry = ConnectionRegistry()
    seen: list[tuple[str, bool]] = []

    async def listener(connection_id: str) -> None:
        seen.append((connection_id, connection_id in registry))

    registry.add_disconnect_listener(listener)
    connection_id = registry.register(DummyConnection().send)

    await registry.unregister(connection_id)

    assert seen == [(connection_id, False)]
    assert registry.deliver(connection_id, {"type": "late"}) is False

    await registry.unregister(connection_id)
    await registry.unregister("never-registered")
    assert seen == [(connection_id, False)]


@pytest.mark.asyncio
async def test_failing_listener_does_not_skip_cleanup():
    registry = ConnectionRegistry()
    seen: list[str] = []

    async def broken(connection_id: str) -> None:
        raise RuntimeError("listener exploded")

    async def listener(connection_id: str) -> None:
        seen.append(connection_id)

    registry.add_disconnect_listener(broken)
    registry.add_disconnect_listener(listener)
    connection_id = registry.register(DummyConnection().send)
    connection = registry._connections[connection_id]

    await registry.unregister(connection_id)

    assert seen == [connection_id]
    assert connection.closed is True
    assert connection._writer is None
    assert connection_id not in registry
