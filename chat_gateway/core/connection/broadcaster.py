"""
Connection Broadcaster.

Handles sending event envelopes to WebSocket connections: a single
connection, a user's live connection, a room, or everyone online.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.connection.registry import is_ws_connected
from chat_gateway.components.events.types import OutboundEvent, envelope

if TYPE_CHECKING:
    from fastapi import WebSocket
    from chat_gateway.components.connection.registry import ConnectionRegistry
    from chat_gateway.components.connection.rooms import RoomMembership
    from chat_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class ConnectionBroadcaster:
    """
    Sends outbound events to connections.

    Every send is best-effort: a failed or closed connection is reported
    through ``mark_dead_callback`` and skipped; no send raises.
    Fan-outs run in batches of ``batch_size`` concurrent sends.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        rooms: "RoomMembership",
        metrics: "MetricsCollector",
        mark_dead_callback: Callable[["WebSocket"], Awaitable[None]] | None = None,
        batch_size: int = 50,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._metrics = metrics
        self._mark_dead = mark_dead_callback
        self._batch_size = batch_size

    async def send(self, ws: "WebSocket", event: OutboundEvent | str, data: Any) -> bool:
        """
        Send one event to one connection.

        Returns:
            True if sent successfully, False otherwise.
        """
        return await self._send_payload(ws, envelope(event, data))

    async def _send_payload(self, ws: "WebSocket", payload: dict[str, Any]) -> bool:
        if not is_ws_connected(ws):
            await self._report_dead(ws)
            return False
        try:
            await ws.send_json(payload)
        except Exception as e:
            logger.debug("Send failed", event=payload.get("event"), error=str(e))
            await self._report_dead(ws)
            return False
        self._metrics.increment("delivery", "sent")
        return True

    async def _report_dead(self, ws: "WebSocket") -> None:
        self._metrics.increment("delivery", "failed")
        if self._mark_dead is not None:
            await self._mark_dead(ws)

    async def send_to_user(self, user_id: str, event: OutboundEvent | str, data: Any) -> bool:
        """
        Send to the live connection of ``user_id``.

        Returns:
            False if the user is not registered or the send failed.
        """
        record = self._registry.lookup(user_id)
        if record is None:
            return False
        return await self.send(record.handle, event, data)

    async def send_to_room(
        self,
        room_id: str,
        event: OutboundEvent | str,
        data: Any,
        exclude: "WebSocket | None" = None,
    ) -> int:
        """
        Send to every member of a room except ``exclude``.

        Returns:
            Number of connections that received the event.
        """
        members = [ws for ws in self._rooms.members(room_id) if ws is not exclude]
        self._metrics.increment("delivery", "room_fanouts")
        return await self._send_to_connections(members, envelope(event, data), f"room:{room_id}")

    async def broadcast(
        self,
        event: OutboundEvent | str,
        data: Any,
        exclude: "WebSocket | None" = None,
    ) -> int:
        """
        Send to every registered connection except ``exclude``.

        Returns:
            Number of connections that received the event.
        """
        connections = [
            record.handle for record in self._registry.all_records()
            if record.handle is not exclude
        ]
        self._metrics.increment("delivery", "broadcasts")
        return await self._send_to_connections(connections, envelope(event, data), "broadcast")

    async def _send_to_connections(
        self,
        connections: Iterable["WebSocket"],
        payload: dict[str, Any],
        context: str,
    ) -> int:
        connections = list(connections)
        if not connections:
            return 0

        sent = 0
        failed = 0
        for i in range(0, len(connections), self._batch_size):
            batch = connections[i : i + self._batch_size]
            results = await asyncio.gather(
                *[self._send_payload(ws, payload) for ws in batch],
                return_exceptions=True,
            )
            for result in results:
                if result is True:
                    sent += 1
                else:
                    failed += 1
                    if isinstance(result, Exception):
                        logger.debug("Batch send exception", context=context, error=str(result))

        if failed:
            logger.debug(
                "Fan-out completed with failures",
                context=context,
                sent=sent,
                failed=failed,
                total=len(connections),
            )
        return sent
