"""
Tests for the connection registry.

Covers:
- One record per user, handle-aware unregister
- Supersession: old socket closed with 4009, callback runs before the new
  record is visible
- Property: after any registration sequence each user maps to its last handle
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from chat_gateway.components.connection.registry import ConnectionRegistry, SUPERSEDED_REASON
from chat_gateway.components.core.constants import WSCloseCode
from tests.conftest import FakeWebSocket


async def _open_socket() -> FakeWebSocket:
    ws = FakeWebSocket()
    await ws.accept()
    return ws


class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_and_lookup(self):
        registry = ConnectionRegistry()
        ws = await _open_socket()

        superseded = await registry.register("alice", ws, "Alice")

        assert superseded is None
        record = registry.lookup("alice")
        assert record.handle is ws
        assert record.to_presence() == {"userId": "alice", "displayName": "Alice"}
        assert registry.user_for(ws) == "alice"
        assert "alice" in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_lookup_unknown_user_returns_none(self):
        registry = ConnectionRegistry()
        assert registry.lookup("ghost") is None
        assert registry.lookup_live("ghost") is None

    @pytest.mark.asyncio
    async def test_lookup_live_skips_closed_handle(self):
        registry = ConnectionRegistry()
        ws = await _open_socket()
        await registry.register("alice", ws, "Alice")

        ws.drop()

        assert registry.lookup("alice") is not None
        assert registry.lookup_live("alice") is None

    @pytest.mark.asyncio
    async def test_reregistering_same_handle_is_not_supersession(self):
        registry = ConnectionRegistry()
        ws = await _open_socket()
        await registry.register("alice", ws, "Alice")

        superseded = await registry.register("alice", ws, "Alice Renamed")

        assert superseded is None
        assert not ws.closed
        assert registry.lookup("alice").display_name == "Alice Renamed"

    @pytest.mark.asyncio
    async def test_list_online(self):
        registry = ConnectionRegistry()
        await registry.register("alice", await _open_socket(), "Alice")
        await registry.register("bob", await _open_socket(), "Bob")

        assert registry.list_online() == {"alice", "bob"}


class TestUnregister:

    @pytest.mark.asyncio
    async def test_unregister_removes_record(self):
        registry = ConnectionRegistry()
        ws = await _open_socket()
        await registry.register("alice", ws, "Alice")

        removed = await registry.unregister("alice", handle=ws)

        assert removed is not None
        assert registry.lookup("alice") is None
        assert registry.user_for(ws) is None

    @pytest.mark.asyncio
    async def test_stale_handle_does_not_evict_successor(self):
        registry = ConnectionRegistry()
        old = await _open_socket()
        new = await _open_socket()
        await registry.register("alice", old, "Alice")
        await registry.register("alice", new, "Alice")

        removed = await registry.unregister("alice", handle=old)

        assert removed is None
        assert registry.lookup("alice").handle is new

    @pytest.mark.asyncio
    async def test_unregister_unknown_user_is_noop(self):
        registry = ConnectionRegistry()
        assert await registry.unregister("ghost") is None


class TestSupersession:

    @pytest.mark.asyncio
    async def test_old_socket_closed_with_superseded_code(self):
        registry = ConnectionRegistry()
        old = await _open_socket()
        new = await _open_socket()
        await registry.register("alice", old, "Alice")

        superseded = await registry.register("alice", new, "Alice")

        assert superseded.handle is old
        assert old.close_code == WSCloseCode.SUPERSEDED
        assert old.close_reason == SUPERSEDED_REASON
        assert not new.closed
        assert registry.lookup("alice").handle is new
        assert registry.user_for(old) is None
        assert registry.get_stats()["supersessions_total"] == 1

    @pytest.mark.asyncio
    async def test_callback_runs_before_new_record_is_visible(self):
        observed = []

        async def on_superseded(record):
            observed.append((record.handle, registry.lookup("alice")))

        registry = ConnectionRegistry(on_superseded=on_superseded)
        old = await _open_socket()
        await registry.register("alice", old, "Alice")
        await registry.register("alice", await _open_socket(), "Alice")

        assert observed == [(old, None)]

    @pytest.mark.asyncio
    async def test_already_closed_socket_is_not_closed_again(self):
        registry = ConnectionRegistry()
        old = await _open_socket()
        await registry.register("alice", old, "Alice")
        old.drop()

        await registry.register("alice", await _open_socket(), "Alice")

        assert old.close_code is None

    @pytest.mark.asyncio
    async def test_concurrent_registrations_leave_one_record(self):
        registry = ConnectionRegistry()
        sockets = [await _open_socket() for _ in range(5)]

        await asyncio.gather(*[registry.register("alice", ws, "Alice") for ws in sockets])

        live = registry.lookup("alice").handle
        assert live in sockets
        assert sum(1 for ws in sockets if not ws.closed) == 1
        assert not live.closed


class TestSupersessionProperty:

    @given(users=st.lists(st.sampled_from(["alice", "bob", "carol"]), min_size=1, max_size=20))
    @settings(max_examples=50, deadline=None)
    def test_each_user_maps_to_last_handle(self, users):
        """Property: the newest handle wins; every older one is closed."""

        async def scenario():
            registry = ConnectionRegistry()
            handles: dict[str, list[FakeWebSocket]] = {}
            for user_id in users:
                ws = await _open_socket()
                handles.setdefault(user_id, []).append(ws)
                await registry.register(user_id, ws, user_id)
            return registry, handles

        registry, handles = asyncio.run(scenario())

        assert registry.list_online() == set(users)
        for user_id, sockets in handles.items():
            assert registry.lookup(user_id).handle is sockets[-1]
            assert not sockets[-1].closed
            assert all(ws.close_code == WSCloseCode.SUPERSEDED for ws in sockets[:-1])
        assert registry.get_stats()["supersessions_total"] == len(users) - len(handles)
