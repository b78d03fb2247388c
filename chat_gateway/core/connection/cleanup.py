"""
Background reaping of sockets that stopped responding.

Two sources feed it: the heartbeat tracker (silent sockets) and failed sends
(dead sockets marked by the broadcaster). Both end in the owner's full
disconnect path.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable, TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSCloseCode, WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket
    from chat_gateway.components.connection.heartbeat import HeartbeatTracker
    from chat_gateway.components.connection.locks import LockManager
    from chat_gateway.components.connection.registry import ConnectionRegistry

logger = get_logger(__name__)


class ConnectionCleanup:
    """
    Dead marks are kept with their mark time; the set is capped at
    ``max_dead_connections`` and the oldest mark is dropped first.
    """

    def __init__(
        self,
        lock_manager: "LockManager",
        heartbeat_tracker: "HeartbeatTracker",
        registry: "ConnectionRegistry",
        disconnect_callback: Callable[["WebSocket"], Awaitable[None]],
        max_dead_connections: int = WSConstants.MAX_DEAD_CONNECTIONS,
    ) -> None:
        self._lock_manager = lock_manager
        self._heartbeat_tracker = heartbeat_tracker
        self._registry = registry
        self._disconnect = disconnect_callback
        self._max_dead_connections = max_dead_connections

        self._dead_connections: dict["WebSocket", float] = {}

    @property
    def dead_connections_count(self) -> int:
        return len(self._dead_connections)

    async def cleanup_stale_connections(self) -> int:
        """Close (1001) and disconnect every socket past the heartbeat timeout."""
        stale = self._heartbeat_tracker.cleanup_stale()
        for ws in stale:
            try:
                await ws.close(code=WSCloseCode.GOING_AWAY, reason="Heartbeat timeout")
            except (ConnectionError, RuntimeError, OSError) as e:
                logger.debug("Stale socket already closed", error=str(e))
            await self._disconnect(ws)
        return len(stale)

    async def mark_dead_connection(self, ws: "WebSocket") -> None:
        async with self._lock_manager.dead_connections_lock:
            if ws in self._dead_connections:
                return

            if len(self._dead_connections) >= self._max_dead_connections:
                oldest = min(self._dead_connections, key=self._dead_connections.__getitem__)
                del self._dead_connections[oldest]
                logger.warning(
                    "Dead connection set full, dropped oldest mark",
                    current_size=len(self._dead_connections),
                    max_size=self._max_dead_connections,
                )

            self._dead_connections[ws] = time.time()

    async def cleanup_dead_connections(self) -> int:
        """Disconnect every marked socket; the marks are cleared first."""
        async with self._lock_manager.dead_connections_lock:
            dead = list(self._dead_connections)
            self._dead_connections.clear()

        for ws in dead:
            await self._disconnect(ws)
        return len(dead)

    async def cleanup_locks(self) -> int:
        return await self._lock_manager.cleanup_stale_locks(self._registry.list_online())
