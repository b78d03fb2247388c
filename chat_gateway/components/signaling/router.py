"""
Signaling Router.

Stateless relay of WebRTC signaling between two users. Payloads are opaque
to the gateway and forwarded verbatim with the sender attached.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.errors import RecipientUnreachable
from chat_gateway.components.events.types import InboundCommand, OutboundEvent

if TYPE_CHECKING:
    from fastapi import WebSocket
    from chat_gateway.components.calls.manager import CallSessionManager
    from chat_gateway.components.connection.registry import ConnectionRegistry
    from chat_gateway.components.metrics.collector import MetricsCollector
    from chat_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


class SignalingRouter:
    """
    Relays ``offer`` / ``answer`` / ``ice-candidate`` to a target user.

    An unreachable target is dropped silently: only call initiation gives a
    waiting human feedback, and that lives in the CallSessionManager.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        broadcaster: "ConnectionBroadcaster",
        calls: "CallSessionManager",
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._calls = calls
        self._metrics = metrics

    async def relay(
        self,
        kind: InboundCommand,
        from_id: str,
        to_id: str,
        payload: Any,
        call_id: str | None = None,
    ) -> bool:
        """
        Forward one signaling message.

        An ``answer`` also marks the call connected.

        Returns:
            True if the message was delivered.
        """
        match kind:
            case InboundCommand.OFFER:
                event = OutboundEvent.OFFER
            case InboundCommand.ANSWER:
                event = OutboundEvent.ANSWER
            case InboundCommand.ICE_CANDIDATE:
                event = OutboundEvent.ICE_CANDIDATE
            case _:
                raise ValueError(f"{kind.value} is not a signaling command")

        try:
            record = self._registry.lookup_live(to_id)
            if record is None:
                raise RecipientUnreachable(to_id, reason="offline", signal=kind.value)
        except RecipientUnreachable:
            self._count("signals_dropped")
            return False

        if kind is InboundCommand.ANSWER:
            self._calls.mark_connected(call_id)

        delivered = await self._broadcaster.send(
            record.handle,
            event,
            {"from": from_id, "payload": payload, "callId": call_id},
        )
        self._count("signals_relayed" if delivered else "signals_dropped")
        return delivered

    async def relay_read_receipt(
        self,
        room_id: str,
        message_id: str,
        reader_id: str,
        exclude: "WebSocket | None" = None,
    ) -> int:
        """
        Tell the other members of a conversation that ``reader_id`` read a message.

        Returns:
            Number of connections notified.
        """
        return await self._broadcaster.send_to_room(
            room_id,
            OutboundEvent.MESSAGE_READ,
            {"messageId": message_id, "readBy": reader_id},
            exclude=exclude,
        )

    def _count(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment("commands", name)
