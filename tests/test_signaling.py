"""Tests for WebRTC signaling relay and read receipts."""

import pytest

from chat_gateway.components.calls import CallStatus
from chat_gateway.components.events.types import InboundCommand


class TestSignalingRelay:

    @pytest.mark.asyncio
    async def test_offer_is_relayed_verbatim(self, manager, connect_user):
        await connect_user("alice")
        bob = await connect_user("bob")
        sdp = {"type": "offer", "sdp": "v=0..."}

        delivered = await manager.signaling.relay(InboundCommand.OFFER, "alice", "bob", sdp, "call-1")

        assert delivered is True
        assert bob.events("offer") == [{"from": "alice", "payload": sdp, "callId": "call-1"}]

    @pytest.mark.asyncio
    async def test_ice_candidate_to_offline_user_is_dropped(self, manager, connect_user):
        alice = await connect_user("alice")

        delivered = await manager.signaling.relay(
            InboundCommand.ICE_CANDIDATE, "alice", "bob", {"candidate": "x"},
        )

        assert delivered is False
        assert alice.events("ice-candidate") == []
        assert manager.metrics.get_snapshot()["commands_signals_dropped"] == 1

    @pytest.mark.asyncio
    async def test_signal_to_closed_handle_is_dropped(self, manager, connect_user):
        await connect_user("alice")
        bob = await connect_user("bob")
        bob.drop()

        delivered = await manager.signaling.relay(InboundCommand.OFFER, "alice", "bob", {})

        assert delivered is False
        assert bob.events("offer") == []

    @pytest.mark.asyncio
    async def test_answer_marks_call_connected(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        caller = manager.registry.lookup("alice")
        session = await manager.calls.initiate(caller, "bob", False)
        await manager.calls.accept("bob", "alice", session.call_id)

        await manager.signaling.relay(InboundCommand.ANSWER, "bob", "alice", {"sdp": "..."}, session.call_id)

        assert session.status is CallStatus.CONNECTED
        assert session.connected_at is not None
        assert alice.events("answer")[0]["callId"] == session.call_id

    @pytest.mark.asyncio
    async def test_answer_while_ringing_implies_accepted(self, manager, connect_user):
        alice = await connect_user("alice")
        await connect_user("bob")
        session = await manager.calls.initiate(manager.registry.lookup("alice"), "bob", False)

        await manager.signaling.relay(InboundCommand.ANSWER, "bob", "alice", {}, session.call_id)

        assert session.status is CallStatus.CONNECTED
        assert session.accepted_at is not None

    @pytest.mark.asyncio
    async def test_non_signal_command_is_rejected(self, manager):
        with pytest.raises(ValueError):
            await manager.signaling.relay(InboundCommand.TYPING, "alice", "bob", {})


class TestReadReceipts:

    @pytest.mark.asyncio
    async def test_read_receipt_goes_to_other_room_members(self, manager, connect_user):
        alice = await connect_user("alice")
        bob = await connect_user("bob")
        manager.rooms.join(alice, "chat-1")
        manager.rooms.join(bob, "chat-1")

        notified = await manager.signaling.relay_read_receipt("chat-1", "msg-9", "bob", exclude=bob)

        assert notified == 1
        assert alice.events("message read") == [{"messageId": "msg-9", "readBy": "bob"}]
        assert bob.events("message read") == []
