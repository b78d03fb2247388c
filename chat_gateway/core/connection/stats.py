"""
Connection Statistics.

Aggregates statistics from the connection, presence and call components
for the health endpoint.
"""

from __future__ import annotations

from typing import Any, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from chat_gateway.components.calls.manager import CallSessionManager
    from chat_gateway.components.connection.heartbeat import HeartbeatTracker
    from chat_gateway.components.connection.locks import LockManager
    from chat_gateway.components.connection.rate_limiter import WebSocketRateLimiter
    from chat_gateway.components.connection.registry import ConnectionRegistry
    from chat_gateway.components.connection.rooms import RoomMembership
    from chat_gateway.components.metrics.collector import MetricsCollector


class ConnectionStats:
    """Read-only aggregation over the composed components."""

    def __init__(
        self,
        lock_manager: "LockManager",
        metrics: "MetricsCollector",
        heartbeat_tracker: "HeartbeatTracker",
        rate_limiter: "WebSocketRateLimiter",
        registry: "ConnectionRegistry",
        rooms: "RoomMembership",
        calls: "CallSessionManager",
        get_total_connections: Callable[[], int],
        get_dead_connections_count: Callable[[], int],
        max_total_connections: int,
    ) -> None:
        self._lock_manager = lock_manager
        self._metrics = metrics
        self._heartbeat_tracker = heartbeat_tracker
        self._rate_limiter = rate_limiter
        self._registry = registry
        self._rooms = rooms
        self._calls = calls
        self._get_total_connections = get_total_connections
        self._get_dead_connections_count = get_dead_connections_count
        self._max_total_connections = max_total_connections

    def get_stats(self) -> dict[str, Any]:
        total = self._get_total_connections()
        registry_stats = self._registry.get_stats()
        room_stats = self._rooms.get_stats()

        return {
            "total_connections": total,
            "max_connections": self._max_total_connections,
            "utilization_percent": round(
                total / max(1, self._max_total_connections) * 100, 1
            ),
            "users_online": registry_stats["online_users"],
            "supersessions_total": registry_stats["supersessions_total"],
            "rooms": room_stats["rooms"],
            "room_memberships": room_stats["memberships"],
            "active_calls": self._calls.active_count,
            "dead_connections_pending": self._get_dead_connections_count(),
            "rate_limiter_tracked": self._rate_limiter.get_stats()["tracked_connections"],
            "user_locks_count": self._lock_manager.get_stats()["user_locks_count"],
            "heartbeat_stats": self._heartbeat_tracker.get_stats(),
            "metrics": self._metrics.get_snapshot(),
        }
