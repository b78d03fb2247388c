"""
Tests for presence announcements and persistence.

Covers:
- user-online to others, online-users snapshot to the newcomer
- user-offline on disconnect
- Supersession keeps the user online (no user-offline)
- Repository failures never block announcements
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from chat_gateway.components.data.presence_repository import (
    InMemoryPresenceRepository,
    PresenceRepository,
)
from chat_gateway.connection_manager import ConnectionManager
from tests.conftest import FakeWebSocket


class SlowWebSocket(FakeWebSocket):
    """FakeWebSocket whose sends yield to the event loop."""

    async def send_json(self, data):
        await asyncio.sleep(0.01)
        await super().send_json(data)


class TestPresenceAnnouncements:

    @pytest.mark.asyncio
    async def test_newcomer_gets_snapshot_and_others_get_user_online(self, connect_user):
        alice = await connect_user("alice", "Alice")
        bob = await connect_user("bob", "Bob")

        assert alice.events("user-online") == [{"userId": "bob", "displayName": "Bob"}]
        snapshot = bob.events("online-users")[-1]
        assert sorted(u["userId"] for u in snapshot) == ["alice", "bob"]
        # The newcomer is not told about itself
        assert bob.events("user-online") == []

    @pytest.mark.asyncio
    async def test_disconnect_announces_offline(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")

        await manager.disconnect(bob)

        assert alice.events("user-offline") == [{"userId": "bob"}]
        assert "bob" not in manager.registry

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")

        await manager.disconnect(bob)
        await manager.disconnect(bob)

        assert alice.events("user-offline") == [{"userId": "bob"}]
        assert manager.total_connections == 1

    @pytest.mark.asyncio
    async def test_supersession_does_not_announce_offline(self, manager, connect_user):
        alice = await connect_user("alice")
        first = await connect_user("bob")
        alice.clear()

        second = await connect_user("bob")
        # Late disconnect of the superseded socket
        await manager.disconnect(first)

        assert first.close_code == 4009
        assert alice.events("user-offline") == []
        assert manager.registry.lookup("bob").handle is second
        assert manager.metrics.get_snapshot()["connections_superseded"] == 1

    @pytest.mark.asyncio
    async def test_reconnect_during_call_teardown_stays_online(self, manager, connect_user):
        bob = SlowWebSocket()
        await manager.connect(bob, user_id="bob", display_name="Bob")
        first = await connect_user("alice", "Alice")
        caller = manager.registry.lookup("alice")
        await manager.calls.initiate(caller, "bob", False)
        bob.clear()

        second = FakeWebSocket()
        # Disconnect yields while telling bob the call ended; the refresh lands then
        await asyncio.gather(
            manager.disconnect(first),
            manager.connect(second, user_id="alice", display_name="Alice"),
        )

        assert manager.registry.lookup("alice").handle is second
        presence = [name for name in bob.event_names() if name in ("user-online", "user-offline")]
        assert presence == ["user-online"]
        state = await manager.presence.repository.get("alice")
        assert state.is_online is True

    @pytest.mark.asyncio
    async def test_superseded_socket_leaves_its_rooms(self, manager, connect_user):
        first = await connect_user("bob")
        manager.rooms.join(first, "chat-1")

        second = await connect_user("bob")

        assert manager.rooms.rooms_of(first) == set()
        assert manager.rooms.members("bob") == {second}


class TestPresencePersistence:

    @pytest.mark.asyncio
    async def test_repository_tracks_online_and_last_seen(self, manager, connect_user):
        bob = await connect_user("bob")
        repository = manager.presence.repository

        state = await repository.get("bob")
        assert state.is_online is True

        await manager.disconnect(bob)

        state = await repository.get("bob")
        assert state.is_online is False
        assert state.last_seen is not None

    def test_in_memory_repository_satisfies_protocol(self):
        assert isinstance(InMemoryPresenceRepository(), PresenceRepository)

    @pytest.mark.asyncio
    async def test_failing_repository_does_not_block_presence(self):
        repository = AsyncMock()
        repository.mark_online.side_effect = RuntimeError("database down")
        repository.mark_offline.side_effect = RuntimeError("database down")
        manager = ConnectionManager(presence_repository=repository)
        alice, bob = FakeWebSocket(), FakeWebSocket()

        await manager.connect(alice, user_id="alice", display_name="Alice")
        await manager.connect(bob, user_id="bob", display_name="Bob")
        await manager.disconnect(bob)

        assert alice.events("user-online") == [{"userId": "bob", "displayName": "Bob"}]
        assert alice.events("user-offline") == [{"userId": "bob"}]

    @pytest.mark.asyncio
    async def test_slow_repository_times_out(self):
        async def hang(user_id, at=None):
            await asyncio.sleep(10)

        repository = AsyncMock()
        repository.mark_online.side_effect = hang
        manager = ConnectionManager(presence_repository=repository)
        manager.presence._repository_timeout = 0.01
        ws = FakeWebSocket()

        await asyncio.wait_for(manager.connect(ws, user_id="alice", display_name="Alice"), timeout=1.0)

        assert ws.events("online-users") == [[{"userId": "alice", "displayName": "Alice"}]]
