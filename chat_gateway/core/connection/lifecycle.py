"""
Connection Lifecycle Management.

Handles WebSocket acceptance, registration, supersession and disconnection.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSCloseCode, WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket
    from chat_gateway.components.calls.manager import CallSessionManager
    from chat_gateway.components.connection.heartbeat import HeartbeatTracker
    from chat_gateway.components.connection.locks import LockManager
    from chat_gateway.components.connection.rate_limiter import WebSocketRateLimiter
    from chat_gateway.components.connection.registry import ConnectionRecord, ConnectionRegistry
    from chat_gateway.components.connection.rooms import RoomMembership
    from chat_gateway.components.metrics.collector import MetricsCollector
    from chat_gateway.components.presence.broadcaster import PresenceBroadcaster

logger = get_logger(__name__)


class ConnectionLifecycle:
    """
    Manages the lifecycle of chat connections.

    Connect: capacity check -> accept -> registry (superseding any older
    socket of the same user) -> personal room -> presence.

    Disconnect: rooms left -> registry entry removed (only if it still
    belongs to this socket) -> calls torn down -> offline announced.

    Lock ordering:
    1. connection_counter_lock (global)
    2. user_lock (per-user, taken by the registry)
    3. dead_connections_lock (global)
    """

    def __init__(
        self,
        lock_manager: "LockManager",
        metrics: "MetricsCollector",
        heartbeat_tracker: "HeartbeatTracker",
        rate_limiter: "WebSocketRateLimiter",
        registry: "ConnectionRegistry",
        rooms: "RoomMembership",
        presence: "PresenceBroadcaster",
        calls: "CallSessionManager",
        max_total_connections: int,
    ) -> None:
        self._lock_manager = lock_manager
        self._metrics = metrics
        self._heartbeat_tracker = heartbeat_tracker
        self._rate_limiter = rate_limiter
        self._registry = registry
        self._rooms = rooms
        self._presence = presence
        self._calls = calls
        self._max_total_connections = max_total_connections

        # Accepted sockets, superseded ones included until their loop exits
        self._accepted: set[WebSocket] = set()
        self._shutdown = False

    @property
    def total_connections(self) -> int:
        return len(self._accepted)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def set_shutdown(self, value: bool) -> None:
        self._shutdown = value

    async def connect(
        self,
        websocket: "WebSocket",
        user_id: str,
        display_name: str,
        email: str | None = None,
        timeout: float = WSConstants.WS_ACCEPT_TIMEOUT,
    ) -> "ConnectionRecord":
        """
        Accept a WebSocket connection and register it.

        Raises:
            ConnectionError: If the server is at capacity, shutting down, or
                the handshake fails.
        """
        if self._shutdown:
            raise ConnectionError("Server is shutting down")

        async with self._lock_manager.connection_counter_lock:
            if len(self._accepted) >= self._max_total_connections:
                self._metrics.increment("connections", "rejected_limit")
                await self._close_quietly(websocket, WSCloseCode.SERVER_OVERLOADED, "Server at capacity")
                raise ConnectionError(
                    f"Server at capacity ({self._max_total_connections} connections)"
                )
            self._accepted.add(websocket)

        try:
            await asyncio.wait_for(websocket.accept(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._release(websocket)
            raise ConnectionError("WebSocket accept timed out")
        except Exception as e:
            await self._release(websocket)
            raise ConnectionError(f"WebSocket accept failed: {e}")

        self._heartbeat_tracker.record(websocket)
        superseded = await self._registry.register(user_id, websocket, display_name, email)
        if superseded is not None:
            self._metrics.increment("connections", "superseded")

        record = self._registry.lookup(user_id)
        self._rooms.join(websocket, user_id)
        self._metrics.increment("connections", "accepted")
        await self._presence.announce_online(record)
        return record

    async def on_superseded(self, record: "ConnectionRecord") -> None:
        """
        Cleanup for a socket replaced by a newer one of the same user.

        Runs inside the registry's user lock, after the old socket is
        closed and before the new record is visible. No offline
        announcement: the user stays online.
        """
        old = record.handle
        self._heartbeat_tracker.remove(old)
        self._rate_limiter.remove_connection(old)
        self._rooms.leave_all(old)
        await self._calls.handle_disconnect(record.user_id)
        logger.info("Superseded connection cleaned up", user_id=record.user_id)

    async def disconnect(self, websocket: "WebSocket") -> bool:
        """
        Remove a WebSocket connection from all registrations.

        Idempotent; a superseded socket only releases its own resources.

        Returns:
            True if the user went offline because of this call.
        """
        self._heartbeat_tracker.remove(websocket)
        self._rate_limiter.remove_connection(websocket)
        self._rooms.leave_all(websocket)
        await self._release(websocket)

        user_id = self._registry.user_for(websocket)
        if user_id is None:
            return False

        removed = await self._registry.unregister(user_id, handle=websocket)
        if removed is None:
            return False

        await self._calls.handle_disconnect(user_id)

        # A reconnect may have registered while call teardown was sending
        lock = await self._lock_manager.get_user_lock(user_id)
        async with lock:
            if user_id in self._registry:
                logger.debug("User reconnected, skipping offline announcement", user_id=user_id)
                return False
            await self._presence.announce_offline(user_id)
        return True

    async def close_all(self, code: int = WSCloseCode.GOING_AWAY, reason: str = "Server shutting down") -> int:
        """
        Close every registered socket.

        Returns:
            Number of sockets closed.
        """
        records = self._registry.all_records()
        for record in records:
            await self._close_quietly(record.handle, code, reason)
        return len(records)

    async def _release(self, websocket: "WebSocket") -> None:
        async with self._lock_manager.connection_counter_lock:
            self._accepted.discard(websocket)

    @staticmethod
    async def _close_quietly(websocket: "WebSocket", code: int, reason: str) -> None:
        try:
            await websocket.close(code=code, reason=reason)
        except (ConnectionError, RuntimeError, OSError) as e:
            logger.debug("Close failed", error=str(e))
