"""
Tests for the call session manager.

Covers:
- Initiate failures (offline, stale handle, self-call, missing target,
  duplicate call ID)
- Ring timeout, and its cancellation on accept
- Accept after reject, reject by a non-participant
- Disconnect during a connected call
- Sweep of stale sessions
"""

import asyncio

import pytest

from chat_gateway.components.calls import CallStatus, NO_ANSWER, generate_call_id
from tests.conftest import OFFER_DELAY, RING_TIMEOUT


async def _ring(manager, caller_ws, callee_id, is_video=False, call_id=None):
    caller = manager.registry.lookup(manager.registry.user_for(caller_ws))
    return await manager.calls.initiate(caller, callee_id, is_video, call_id)


class TestInitiate:

    @pytest.mark.asyncio
    async def test_initiate_rings_callee(self, manager, connect_user):
        alice = await connect_user("alice", "Alice")
        bob = await connect_user("bob", "Bob")

        session = await _ring(manager, alice, "bob", is_video=True)

        assert session.status is CallStatus.RINGING
        assert bob.events("incoming-call") == [{
            "from": "alice",
            "fromName": "Alice",
            "isVideo": True,
            "callId": session.call_id,
        }]
        assert alice.events("call-sent") == [{"to": "bob", "callId": session.call_id, "isVideo": True}]
        assert manager.calls.get(session.call_id) is session

    @pytest.mark.asyncio
    async def test_client_supplied_call_id_is_kept(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")

        session = await _ring(manager, alice, "bob", call_id="call-123")

        assert session.call_id == "call-123"

    @pytest.mark.asyncio
    async def test_offline_callee(self, manager, connect_user):
        alice = await connect_user("alice")

        session = await _ring(manager, alice, "bob")

        assert session is None
        assert alice.events("call-user-offline") == [{"targetId": "bob", "reason": "offline"}]
        assert manager.calls.active_count == 0

    @pytest.mark.asyncio
    async def test_stale_callee_handle_is_cleaned_up(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        bob.drop()

        session = await _ring(manager, alice, "bob")

        assert session is None
        assert alice.events("call-user-offline") == [{"targetId": "bob", "reason": "connection_lost"}]
        assert "bob" not in manager.registry
        assert alice.events("user-offline") == [{"userId": "bob"}]

    @pytest.mark.asyncio
    async def test_self_call_fails(self, manager, connect_user):
        alice = await connect_user("alice")

        session = await _ring(manager, alice, "alice")

        assert session is None
        failed = alice.events("call-failed")
        assert failed[0]["reason"] == "self_call"
        assert manager.calls.active_count == 0

    @pytest.mark.asyncio
    async def test_missing_target_fails(self, manager, connect_user):
        alice = await connect_user("alice")

        await _ring(manager, alice, None)

        assert alice.events("call-failed")[0]["reason"] == "missing_target"

    @pytest.mark.asyncio
    async def test_duplicate_call_id_fails(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        await _ring(manager, alice, "bob", call_id="call-1")
        bob.clear()

        second = await _ring(manager, alice, "bob", call_id="call-1")

        assert second is None
        assert alice.events("call-failed") == [{
            "reason": "duplicate_call_id",
            "message": "Duplicate call ID",
            "callId": "call-1",
        }]
        assert bob.events("incoming-call") == []

    def test_generated_call_ids_are_unique(self):
        ids = {generate_call_id("alice", "bob", now=1000.0) for _ in range(100)}
        assert len(ids) == 100
        assert all(call_id.startswith("alice-bob-1000000-") for call_id in ids)


class TestRingTimeout:

    @pytest.mark.asyncio
    async def test_unanswered_call_times_out(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        session = await _ring(manager, alice, "bob")

        await asyncio.sleep(RING_TIMEOUT * 3)

        failed = alice.events("call-failed")
        assert len(failed) == 1
        assert failed[0]["reason"] == NO_ANSWER
        assert failed[0]["callId"] == session.call_id
        assert bob.events("call-ended") == [{"from": "alice", "callId": session.call_id, "reason": "timeout"}]
        assert manager.calls.get(session.call_id) is None
        assert session.status is CallStatus.ENDED

    @pytest.mark.asyncio
    async def test_accept_cancels_ring_timer(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        session = await _ring(manager, alice, "bob", is_video=True)

        await manager.calls.accept("bob", "alice", session.call_id)
        await asyncio.sleep(RING_TIMEOUT * 3)

        assert alice.events("call-failed") == []
        assert alice.events("call-accepted") == [{"from": "bob", "callId": session.call_id, "isVideo": True}]
        assert alice.events("start-webrtc-offer") == [{"from": "bob", "callId": session.call_id, "isVideo": True}]
        assert manager.calls.get(session.call_id).status is CallStatus.ACCEPTED


class TestAcceptReject:

    @pytest.mark.asyncio
    async def test_reject_relays_and_destroys_session(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        session = await _ring(manager, alice, "bob")

        await manager.calls.reject("bob", "alice", session.call_id, reason="busy")

        assert alice.events("call-rejected") == [{"from": "bob", "callId": session.call_id, "reason": "busy"}]
        assert manager.calls.get(session.call_id) is None

    @pytest.mark.asyncio
    async def test_accept_after_reject_creates_nothing(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        session = await _ring(manager, alice, "bob")
        await manager.calls.reject("bob", "alice", session.call_id)

        result = await manager.calls.accept("bob", "alice", session.call_id)
        await asyncio.sleep(OFFER_DELAY * 5)

        assert result is None
        assert manager.calls.active_count == 0
        # Relayed best-effort, but the offer is never kicked off
        assert len(alice.events("call-accepted")) == 1
        assert alice.events("start-webrtc-offer") == []

    @pytest.mark.asyncio
    async def test_accept_by_non_participant_fails(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        carol = await connect_user("carol")
        session = await _ring(manager, alice, "bob")

        result = await manager.calls.accept("carol", "alice", session.call_id)

        assert result is None
        assert carol.events("call-failed")[0]["reason"] == "not_participant"
        assert manager.calls.get(session.call_id).status is CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_reject_by_non_participant_is_refused(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        carol = await connect_user("carol")
        session = await _ring(manager, alice, "bob")
        await manager.calls.accept("bob", "alice", session.call_id)

        result = await manager.calls.reject("carol", "alice", session.call_id)

        assert result is None
        assert alice.events("call-rejected") == []
        assert carol.events("call-failed") == [{
            "reason": "not_participant",
            "message": "Not a participant of this call",
            "callId": session.call_id,
        }]
        assert manager.calls.get(session.call_id).status is CallStatus.ACCEPTED
        assert bob.events("call-rejected") == []

    @pytest.mark.asyncio
    async def test_second_accept_is_ignored(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        session = await _ring(manager, alice, "bob")

        await manager.calls.accept("bob", "alice", session.call_id)
        await manager.calls.accept("bob", "alice", session.call_id)

        assert len(alice.events("call-accepted")) == 1


class TestDisconnectDuringCall:

    @pytest.mark.asyncio
    async def test_counterpart_gets_call_ended_with_duration(self, manager, connect_user, clock):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        session = await _ring(manager, alice, "bob")
        await manager.calls.accept("bob", "alice", session.call_id)
        assert manager.calls.mark_connected(session.call_id) is True
        clock.advance(12.5)

        await manager.disconnect(bob)

        assert alice.events("call-ended") == [{
            "from": "bob",
            "callId": session.call_id,
            "reason": "disconnect",
            "duration": 12500,
        }]
        assert manager.calls.active_count == 0

    @pytest.mark.asyncio
    async def test_ringing_call_ends_without_duration(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        session = await _ring(manager, alice, "bob")

        await manager.disconnect(alice)

        assert bob.events("call-ended") == [{"from": "alice", "callId": session.call_id, "reason": "disconnect"}]

    @pytest.mark.asyncio
    async def test_supersession_ends_calls(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        session = await _ring(manager, alice, "bob")

        await connect_user("bob")

        assert alice.events("call-ended") == [{"from": "bob", "callId": session.call_id, "reason": "disconnect"}]
        assert manager.calls.active_count == 0


class TestEndAndSweep:

    @pytest.mark.asyncio
    async def test_end_without_call_id_finds_session_by_pair(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        session = await _ring(manager, alice, "bob")

        ended = await manager.calls.end_call("alice", "bob")

        assert ended is session
        assert bob.events("call-ended") == [{"from": "alice", "callId": session.call_id}]

    @pytest.mark.asyncio
    async def test_end_unknown_call_still_relays(self, manager, connect_user):
        await connect_user("alice")
        bob = await connect_user("bob")

        ended = await manager.calls.end_call("alice", "bob", "gone")

        assert ended is None
        assert bob.events("call-ended") == [{"from": "alice", "callId": "gone"}]

    @pytest.mark.asyncio
    async def test_end_by_non_participant_keeps_call_alive(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        carol = await connect_user("carol")
        session = await _ring(manager, alice, "bob")
        await manager.calls.accept("bob", "alice", session.call_id)
        manager.calls.mark_connected(session.call_id)

        ended = await manager.calls.end_call("carol", "bob", session.call_id)

        assert ended is None
        assert bob.events("call-ended") == []
        assert alice.events("call-ended") == []
        assert carol.events("call-failed")[0]["reason"] == "not_participant"
        assert manager.calls.get(session.call_id).status is CallStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_sweep_drops_old_sessions_silently(self, manager, connect_user, clock):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        session = await _ring(manager, alice, "bob")
        await manager.calls.accept("bob", "alice", session.call_id)
        manager.calls.mark_connected(session.call_id)
        alice.clear()
        bob.clear()

        assert manager.calls.sweep_stale(now=clock() + 60) == 0
        assert manager.sweep_calls() == 0
        clock.advance(3601)
        assert manager.sweep_calls() == 1

        assert manager.calls.active_count == 0
        assert alice.sent == [] and bob.sent == []
        assert manager.metrics.get_snapshot()["calls_swept"] == 1
