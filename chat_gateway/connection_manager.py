"""
Chat Connection Manager.

Thin orchestrator that composes the connection, presence and call
components:
- ConnectionLifecycle: Connect/disconnect/supersession
- ConnectionBroadcaster: Event delivery
- ConnectionCleanup: Stale/dead connection cleanup
- ConnectionStats: Statistics aggregation
- PresenceBroadcaster, CallSessionManager, SignalingRouter, CommandRouter
"""

from __future__ import annotations

import time
from typing import Any, Callable, TYPE_CHECKING

from shared.config.logging import get_logger
from shared.config.settings import settings
from chat_gateway.components.auth.strategies import AuthStrategy, JWTAuthStrategy
from chat_gateway.components.calls.manager import CallSessionManager
from chat_gateway.components.connection.heartbeat import HeartbeatTracker
from chat_gateway.components.connection.locks import LockManager
from chat_gateway.components.connection.rate_limiter import WebSocketRateLimiter
from chat_gateway.components.connection.registry import ConnectionRecord, ConnectionRegistry
from chat_gateway.components.connection.rooms import RoomMembership
from chat_gateway.components.core.constants import WSCloseCode, WSConstants
from chat_gateway.components.data.presence_repository import PresenceRepository
from chat_gateway.components.events.router import CommandResult, CommandRouter
from chat_gateway.components.metrics.collector import MetricsCollector
from chat_gateway.components.presence.broadcaster import PresenceBroadcaster
from chat_gateway.components.signaling.router import SignalingRouter
from chat_gateway.core.connection import (
    ConnectionBroadcaster,
    ConnectionCleanup,
    ConnectionLifecycle,
    ConnectionStats,
)

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)

__all__ = ["ConnectionManager"]


class ConnectionManager:
    """
    Manages chat WebSocket connections, presence and calls.

    Configuration from settings (each overridable per instance):
    - ws_max_total_connections: Global connection limit
    - ws_heartbeat_timeout: Seconds before a connection is stale
    - ws_message_rate_limit / ws_message_rate_window: Per-socket rate limit
    - ws_broadcast_batch_size: Parallel send batch size
    - call_ring_timeout / call_offer_delay / call_stale_after: Call timers

    Lock Ordering (to prevent deadlocks):
    1. connection_counter_lock (global)
    2. user_lock (per-user)
    3. dead_connections_lock (global)
    """

    def __init__(
        self,
        *,
        auth_strategy: AuthStrategy | None = None,
        presence_repository: PresenceRepository | None = None,
        max_total_connections: int | None = None,
        heartbeat_timeout: float | None = None,
        ring_timeout: float | None = None,
        offer_delay: float | None = None,
        stale_after: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_total_connections = (
            max_total_connections if max_total_connections is not None
            else settings.ws_max_total_connections
        )

        # Core components
        self._lock_manager = LockManager()
        self._metrics = MetricsCollector()
        self._heartbeat_tracker = HeartbeatTracker(
            timeout_seconds=heartbeat_timeout if heartbeat_timeout is not None
            else settings.ws_heartbeat_timeout,
        )
        self._rate_limiter = WebSocketRateLimiter(
            max_messages=settings.ws_message_rate_limit,
            window_seconds=settings.ws_message_rate_window,
        )
        self._registry = ConnectionRegistry(lock_manager=self._lock_manager)
        self._rooms = RoomMembership()
        self._auth_strategy = auth_strategy or JWTAuthStrategy()

        # Cleanup component (disconnect resolves the lifecycle at call time)
        self._cleanup = ConnectionCleanup(
            lock_manager=self._lock_manager,
            heartbeat_tracker=self._heartbeat_tracker,
            registry=self._registry,
            disconnect_callback=self.disconnect,
        )

        # Broadcaster component (needs mark_dead callback)
        self._broadcaster = ConnectionBroadcaster(
            registry=self._registry,
            rooms=self._rooms,
            metrics=self._metrics,
            mark_dead_callback=self._cleanup.mark_dead_connection,
            batch_size=settings.ws_broadcast_batch_size,
        )

        # Domain components
        self._presence = PresenceBroadcaster(
            registry=self._registry,
            broadcaster=self._broadcaster,
            repository=presence_repository,
        )
        self._calls = CallSessionManager(
            registry=self._registry,
            broadcaster=self._broadcaster,
            metrics=self._metrics,
            ring_timeout=ring_timeout if ring_timeout is not None else settings.call_ring_timeout,
            offer_delay=offer_delay if offer_delay is not None else settings.call_offer_delay,
            stale_after=stale_after if stale_after is not None else settings.call_stale_after,
            clock=clock,
        )
        self._signaling = SignalingRouter(
            registry=self._registry,
            broadcaster=self._broadcaster,
            calls=self._calls,
            metrics=self._metrics,
        )
        self._router = CommandRouter(
            registry=self._registry,
            rooms=self._rooms,
            broadcaster=self._broadcaster,
            presence=self._presence,
            calls=self._calls,
            signaling=self._signaling,
            metrics=self._metrics,
        )

        # Lifecycle component
        self._lifecycle = ConnectionLifecycle(
            lock_manager=self._lock_manager,
            metrics=self._metrics,
            heartbeat_tracker=self._heartbeat_tracker,
            rate_limiter=self._rate_limiter,
            registry=self._registry,
            rooms=self._rooms,
            presence=self._presence,
            calls=self._calls,
            max_total_connections=self._max_total_connections,
        )
        self._registry.set_superseded_callback(self._lifecycle.on_superseded)
        self._calls.set_stale_connection_callback(self._on_stale_connection)

        # Stats component
        self._stats = ConnectionStats(
            lock_manager=self._lock_manager,
            metrics=self._metrics,
            heartbeat_tracker=self._heartbeat_tracker,
            rate_limiter=self._rate_limiter,
            registry=self._registry,
            rooms=self._rooms,
            calls=self._calls,
            get_total_connections=lambda: self._lifecycle.total_connections,
            get_dead_connections_count=lambda: self._cleanup.dead_connections_count,
            max_total_connections=self._max_total_connections,
        )

    # =========================================================================
    # Public components
    # =========================================================================

    @property
    def auth_strategy(self) -> AuthStrategy:
        return self._auth_strategy

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def rooms(self) -> RoomMembership:
        return self._rooms

    @property
    def broadcaster(self) -> ConnectionBroadcaster:
        return self._broadcaster

    @property
    def presence(self) -> PresenceBroadcaster:
        return self._presence

    @property
    def calls(self) -> CallSessionManager:
        return self._calls

    @property
    def signaling(self) -> SignalingRouter:
        return self._signaling

    @property
    def router(self) -> CommandRouter:
        return self._router

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def rate_limiter(self) -> WebSocketRateLimiter:
        return self._rate_limiter

    @property
    def total_connections(self) -> int:
        """Accepted sockets, superseded ones included until they exit."""
        return self._lifecycle.total_connections

    # =========================================================================
    # Connection management (delegate to lifecycle)
    # =========================================================================

    async def connect(
        self,
        websocket: "WebSocket",
        user_id: str,
        display_name: str,
        email: str | None = None,
        timeout: float = WSConstants.WS_ACCEPT_TIMEOUT,
    ) -> ConnectionRecord:
        """Accept and register a new WebSocket connection."""
        return await self._lifecycle.connect(
            websocket=websocket,
            user_id=user_id,
            display_name=display_name,
            email=email,
            timeout=timeout,
        )

    async def disconnect(self, websocket: "WebSocket") -> None:
        """Remove a WebSocket connection from all registrations."""
        await self._lifecycle.disconnect(websocket)

    async def _on_stale_connection(self, record: ConnectionRecord) -> None:
        """A registered handle was found closed while routing a call."""
        logger.info("Removing stale connection", user_id=record.user_id)
        await self._lifecycle.disconnect(record.handle)

    # =========================================================================
    # Inbound frames
    # =========================================================================

    async def dispatch(self, websocket: "WebSocket", user_id: str, raw: str) -> CommandResult:
        """Route one text frame from ``websocket``."""
        return await self._router.dispatch(websocket, user_id, raw)

    # =========================================================================
    # Rate limiting, heartbeat and rejection metrics
    # =========================================================================

    def check_rate_limit(self, websocket: "WebSocket") -> bool:
        """Check if a message from this connection is allowed."""
        return self._rate_limiter.is_allowed(websocket)

    def record_rate_limit_rejection(self) -> None:
        self._metrics.increment("connections", "rejected_rate_limit")

    def record_auth_rejection(self, reason: str | None = None) -> None:
        if reason == "invalid_origin":
            self._metrics.increment("connections", "rejected_origin")
        else:
            self._metrics.increment("connections", "rejected_auth")

    def record_timeout(self) -> None:
        self._metrics.increment("connections", "timeouts")

    def record_heartbeat(self, websocket: "WebSocket") -> None:
        self._heartbeat_tracker.record(websocket)

    # =========================================================================
    # Cleanup (delegate to cleanup and calls)
    # =========================================================================

    async def cleanup_stale_connections(self) -> int:
        """Close and remove connections without a recent heartbeat."""
        return await self._cleanup.cleanup_stale_connections()

    async def cleanup_dead_connections(self) -> int:
        """Clean up connections marked as dead during send operations."""
        return await self._cleanup.cleanup_dead_connections()

    async def cleanup_locks(self) -> int:
        return await self._cleanup.cleanup_locks()

    def cleanup_rate_limiter(self) -> int:
        return self._rate_limiter.cleanup_stale()

    def sweep_calls(self) -> int:
        """Drop call sessions older than the stale threshold."""
        return self._calls.sweep_stale()

    # =========================================================================
    # Stats and shutdown
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        return self._stats.get_stats()

    async def shutdown(self) -> None:
        """Refuse new connections, close open ones and stop call timers."""
        self._lifecycle.set_shutdown(True)
        closed = await self._lifecycle.close_all(WSCloseCode.GOING_AWAY, "Server shutting down")
        await self._calls.shutdown()
        logger.info("Connection manager shut down", closed=closed)
