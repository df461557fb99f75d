"""Presence protocol tests driven through the signaling hub."""
from __future__ import annotations

import asyncio

import pytest

from app.core.config import ROOM_CODE_ALPHABET, Settings
from app.services import rooms
from app.services.signaling import SignalingHub


class DummyConnection:
    def __init__(self, hub: SignalingHub) -> None:
        self.messages: list[dict] = []
        self.id = hub.connect(self.send)

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def events(self, event_type: str) -> list:
        return [message["data"] for message in self.messages if message["type"] == event_type]

    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


async def _flush(hub: SignalingHub) -> None:
    await hub.connections.drain(timeout=1)


@pytest.mark.asyncio
async def test_join_sends_snapshot_then_room_info():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)

    await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomId": "standup", "username": "alice"}})
    await _flush(hub)

    assert alice.types() == ["connected", "existing-users", "room-info"]
    assert alice.events("connected") == [{"id": alice.id}]
    assert alice.events("existing-users") == [[]]
    assert alice.events("room-info") == [{"roomId": "standup", "userCount": 1}]


@pytest.mark.asyncio
async def test_n_joins_give_consistent_snapshots_and_single_notifications():
    hub = SignalingHub(Settings())
    clients = [DummyConnection(hub) for _ in range(4)]

    for index, client in enumerate(clients):
        await hub.presence.join_room(client.id, "standup", f"user-{index}")
    await _flush(hub)

    for index, client in enumerate(clients):
        existing = client.events("existing-users")[0]
        assert [item["id"] for item in existing] == [prior.id for prior in clients[:index]]
        assert client.events("room-info") == [{"roomId": "standup", "userCount": index + 1}]

        joined = client.events("user-joined")
        later = clients[index + 1 :]
        assert [item["id"] for item in joined] == [other.id for other in later]
        for offset, item in enumerate(joined):
            assert item["userCount"] == index + 2 + offset


@pytest.mark.asyncio
async def test_concurrent_joins_and_leaves_report_live_counts():
    hub = SignalingHub(Settings())
    clients = [DummyConnection(hub) for _ in range(6)]
    await asyncio.gather(*(hub.presence.join_room(client.id, "busy") for client in clients))
    await asyncio.gather(*(hub.presence.leave_room(client.id, "busy") for client in clients[:3]))
    await _flush(hub)

    survivor = clients[-1]
    counts = [item["userCount"] for item in survivor.events("user-left")]
    assert counts == [5, 4, 3]
    assert len(hub.rooms.get("busy")) == 3


@pytest.mark.asyncio
async def test_join_unknown_room_without_auto_create_reports_error():
    hub = SignalingHub(Settings(auto_create_rooms=False))
    alice = DummyConnection(hub)

    handled = await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomId": "ghost-town"}})
    await _flush(hub)

    assert handled is True
    assert alice.events("room-error") == [
        {"code": "room-not-found", "message": "Room ghost-town does not exist", "roomId": "ghost-town"}
    ]
    assert len(hub.rooms) == 0
    assert hub.rooms.rooms_of(alice.id) == []


@pytest.mark.asyncio
async def test_create_then_join_by_code(monkeypatch):
    monkeypatch.setattr(rooms, "generate_room_code", lambda length, alphabet: "7K4P9M")
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)

    await hub.handle_message(alice.id, {"type": "create-room", "data": {"username": "alice"}})
    await hub.handle_message(bob.id, {"type": "join-room", "data": {"roomCode": "7k4p9m", "username": "bob"}})
    await _flush(hub)

    assert alice.events("room-created") == [{"roomCode": "7K4P9M", "userCount": 1}]
    assert alice.events("user-joined") == [{"id": bob.id, "username": "bob", "userCount": 2}]
    assert bob.events("existing-users") == [[{"id": alice.id, "username": "alice", "isSharing": False}]]
    assert bob.events("room-joined") == [{"roomCode": "7K4P9M", "userCount": 2}]


@pytest.mark.asyncio
async def test_join_unknown_code_never_creates():
    hub = SignalingHub(Settings(auto_create_rooms=True))
    alice = DummyConnection(hub)

    await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomCode": "ABCDEF"}})
    await _flush(hub)

    assert [item["code"] for item in alice.events("room-error")] == ["room-not-found"]
    assert "ABCDEF" not in hub.rooms


@pytest.mark.asyncio
async def test_create_with_taken_id_reports_conflict():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "standup")

    await hub.handle_message(bob.id, {"type": "create-room", "data": {"roomId": "standup"}})
    await _flush(hub)

    assert [item["code"] for item in bob.events("room-error")] == ["room-conflict"]
    assert len(hub.rooms.get("standup")) == 1


@pytest.mark.asyncio
async def test_create_conflict_keeps_requester_in_current_room():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    carol = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "lobby", "alice")
    await hub.presence.join_room(bob.id, "lobby", "bob")
    await hub.presence.join_room(carol.id, "standup", "carol")

    await hub.handle_message(alice.id, {"type": "create-room", "data": {"roomId": "standup"}})
    await _flush(hub)

    assert [item["code"] for item in alice.events("room-error")] == ["room-conflict"]
    assert hub.rooms.rooms_of(alice.id) == ["lobby"]
    assert len(hub.rooms.get("lobby")) == 2
    assert len(hub.rooms.get("standup")) == 1
    assert bob.events("user-left") == []
    assert carol.events("user-joined") == []


@pytest.mark.asyncio
async def test_exhausted_room_codes_keep_requester_in_current_room(monkeypatch):
    monkeypatch.setattr(rooms, "generate_room_code", lambda length, alphabet: "A" * length)
    hub = SignalingHub(Settings(room_code_max_attempts=2))
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    hub.rooms.create_room("conn-x", "x", desired_id="AAAAAA")
    hub.rooms.create_room("conn-y", "y", desired_id="AAAAAAAA")
    await hub.presence.join_room(alice.id, "lobby", "alice")
    await hub.presence.join_room(bob.id, "lobby", "bob")

    await hub.handle_message(alice.id, {"type": "create-room", "data": {"username": "alice"}})
    await _flush(hub)

    errors = alice.events("room-error")
    assert [item["code"] for item in errors] == ["room-code-unavailable"]
    assert errors[0]["roomId"] is None
    assert alice.events("room-created") == []
    assert hub.rooms.rooms_of(alice.id) == ["lobby"]
    assert len(hub.rooms.get("lobby")) == 2
    assert bob.events("user-left") == []
    assert len(hub.rooms) == 3


@pytest.mark.asyncio
async def test_concurrent_creates_get_distinct_codes():
    hub = SignalingHub(Settings())
    clients = [DummyConnection(hub) for _ in range(50)]

    results = await asyncio.gather(*(hub.presence.create_room(client.id) for client in clients))

    codes = [result.room.room_id for result in results]
    assert len(set(codes)) == 50
    for code in codes:
        assert len(code) == 6
        assert set(code) <= set(ROOM_CODE_ALPHABET)


@pytest.mark.asyncio
async def test_code_join_moves_connection_out_of_previous_room():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    carol = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "old-room")
    await hub.presence.join_room(carol.id, "old-room")
    created = await hub.presence.create_room(bob.id)

    await hub.presence.join_code(alice.id, created.room.room_id)
    await _flush(hub)

    assert hub.rooms.rooms_of(alice.id) == [created.room.room_id]
    assert carol.events("user-left") == [
        {"id": alice.id, "username": f"User-{alice.id[:6]}", "userCount": 1, "reason": "left"}
    ]


@pytest.mark.asyncio
async def test_rejoin_with_new_name_notifies_other_members():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "lobby", "alice")
    await hub.presence.join_room(bob.id, "lobby", "bob")

    await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomId": "lobby", "username": "Alice B."}})
    await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomId": "lobby", "username": "Alice B."}})
    await _flush(hub)

    assert bob.events("user-updated") == [{"id": alice.id, "username": "Alice B.", "isSharing": False}]
    assert bob.events("user-joined") == []
    assert alice.events("user-updated") == []
    assert alice.events("room-info")[-1] == {"roomId": "lobby", "userCount": 2}


@pytest.mark.asyncio
async def test_padded_room_ids_reach_the_joined_room():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomId": " demo ", "username": "alice"}})
    await hub.handle_message(bob.id, {"type": "join-room", "data": {"roomId": "demo", "username": "bob"}})

    await hub.handle_message(alice.id, {"type": "start-sharing", "data": {"roomId": " demo "}})
    await hub.handle_message(alice.id, {"type": "chat-message", "data": {"roomId": "demo ", "message": "hi"}})
    await hub.handle_message(bob.id, {"type": "request-stream", "data": {"roomId": " demo", "targetId": alice.id}})
    await hub.handle_message(alice.id, {"type": "leave-room", "data": {"roomId": " demo "}})
    await _flush(hub)

    assert bob.events("user-sharing") == [{"id": alice.id, "username": "alice", "isSharing": True}]
    assert [item["message"] for item in bob.events("chat-message")] == ["hi"]
    assert alice.events("request-stream") == [{"from": bob.id, "roomId": "demo"}]
    assert [item["reason"] for item in bob.events("user-left")] == ["left"]
    assert hub.rooms.rooms_of(alice.id) == []


@pytest.mark.asyncio
async def test_disconnect_cleanup_finishes_when_caller_is_cancelled():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "lobby", "alice")
    await hub.presence.join_room(bob.id, "lobby", "bob")

    await hub.rooms.lock.acquire()
    try:
        pending = asyncio.create_task(hub.disconnect(alice.id))
        for _ in range(5):
            await asyncio.sleep(0)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
    finally:
        hub.rooms.lock.release()
    await _flush(hub)

    assert alice.id not in hub.connections
    assert hub.rooms.rooms_of(alice.id) == []
    assert list(hub.rooms.get("lobby").members) == [bob.id]
    assert bob.events("user-left") == [
        {"id": alice.id, "username": "alice", "userCount": 1, "reason": "disconnected"}
    ]


@pytest.mark.asyncio
async def test_disconnect_leaves_every_room_once():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    carol = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "r1", "alice")
    await hub.presence.join_room(alice.id, "r2", "alice")
    await hub.presence.join_room(bob.id, "r1", "bob")
    await hub.presence.join_room(carol.id, "r2", "carol")

    await hub.disconnect(alice.id)
    await _flush(hub)

    expected = {"id": alice.id, "username": "alice", "userCount": 1, "reason": "disconnected"}
    assert bob.events("user-left") == [expected]
    assert carol.events("user-left") == [expected]
    assert hub.rooms.rooms_of(alice.id) == []
    assert alice.id not in hub.connections


@pytest.mark.asyncio
async def test_last_disconnect_removes_room_and_code_is_fresh():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    created = await hub.presence.create_room(alice.id)
    code = created.room.room_id

    await hub.disconnect(alice.id)

    assert code not in hub.rooms

    bob = DummyConnection(hub)
    await hub.handle_message(bob.id, {"type": "join-room", "data": {"roomCode": code}})
    await _flush(hub)
    assert [item["code"] for item in bob.events("room-error")] == ["room-not-found"]


@pytest.mark.asyncio
async def test_explicit_leave_of_all_rooms():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "r1")
    await hub.presence.join_room(alice.id, "r2")
    await hub.presence.join_room(bob.id, "r1")

    await hub.handle_message(alice.id, {"type": "leave-room", "data": {}})
    await _flush(hub)

    assert hub.rooms.rooms_of(alice.id) == []
    assert "r2" not in hub.rooms
    assert [item["reason"] for item in bob.events("user-left")] == ["left"]


@pytest.mark.asyncio
async def test_sharing_toggles_reach_everyone_in_order():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "demo", "alice")
    await hub.presence.join_room(bob.id, "demo", "bob")

    for event_type in ("start-sharing", "stop-sharing", "start-sharing", "start-sharing"):
        await hub.handle_message(alice.id, {"type": event_type, "data": {"roomId": "demo"}})
    await _flush(hub)

    expected = [
        {"id": alice.id, "username": "alice", "isSharing": True},
        {"id": alice.id, "username": "alice", "isSharing": False},
        {"id": alice.id, "username": "alice", "isSharing": True},
    ]
    assert alice.events("user-sharing") == expected
    assert bob.events("user-sharing") == expected
    assert hub.rooms.get("demo").members[alice.id].is_sharing is True


@pytest.mark.asyncio
async def test_sharing_for_unknown_room_is_silent():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)

    assert await hub.presence.set_sharing(alice.id, "nowhere", True) is False
    await _flush(hub)

    assert alice.types() == ["connected"]


@pytest.mark.asyncio
async def test_chat_is_stamped_and_sent_to_whole_room(monkeypatch):
    from app.services import presence

    monkeypatch.setattr(presence.time, "time", lambda: 1700000000.5)
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)
    bob = DummyConnection(hub)
    outsider = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "demo", "alice")
    await hub.presence.join_room(bob.id, "demo", "bob")

    await hub.handle_message(alice.id, {"type": "chat-message", "data": {"roomId": "demo", "message": "  hi all "}})
    await hub.handle_message(outsider.id, {"type": "chat-message", "data": {"roomId": "demo", "message": "spam"}})
    await _flush(hub)

    expected = [{"senderId": alice.id, "username": "alice", "message": "hi all", "timestamp": 1700000000500}]
    assert alice.events("chat-message") == expected
    assert bob.events("chat-message") == expected
    assert outsider.events("chat-message") == []


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped():
    hub = SignalingHub(Settings())
    alice = DummyConnection(hub)

    assert await hub.handle_message(alice.id, {"type": "teleport"}) is False
    assert await hub.handle_message(alice.id, ["join-room"]) is False
    assert await hub.handle_message(alice.id, {"type": "join-room", "data": {}}) is False
    assert (
        await hub.handle_message(alice.id, {"type": "join-room", "data": {"roomId": "a", "roomCode": "B"}})
        is False
    )
    assert await hub.handle_message(alice.id, {"type": "chat-message", "data": {"roomId": "a", "message": "   "}}) is False
    assert await hub.handle_message(alice.id, {"type": "start-sharing", "data": {"roomId": "   "}}) is False
    await _flush(hub)

    assert alice.types() == ["connected"]
    assert len(hub.rooms) == 0


@pytest.mark.asyncio
async def test_sweeper_runs_in_background():
    hub = SignalingHub(Settings(room_eviction="sweep", room_empty_ttl_seconds=0, room_sweep_interval_seconds=0.01))
    alice = DummyConnection(hub)
    await hub.presence.join_room(alice.id, "demo")
    await hub.presence.leave_room(alice.id, "demo")
    assert "demo" in hub.rooms

    await hub.start()
    for _ in range(50):
        if "demo" not in hub.rooms:
            break
        await asyncio.sleep(0.01)
    await hub.shutdown()

    assert "demo" not in hub.rooms
