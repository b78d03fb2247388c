"""
Connection management components.
"""

from chat_gateway.components.connection.locks import LockManager
from chat_gateway.components.connection.heartbeat import HeartbeatTracker, handle_heartbeat
from chat_gateway.components.connection.rate_limiter import WebSocketRateLimiter
from chat_gateway.components.connection.registry import (
    ConnectionRecord,
    ConnectionRegistry,
    is_ws_connected,
)
from chat_gateway.components.connection.rooms import RoomMembership

__all__ = [
    "LockManager",
    "HeartbeatTracker",
    "handle_heartbeat",
    "WebSocketRateLimiter",
    "ConnectionRecord",
    "ConnectionRegistry",
    "is_ws_connected",
    "RoomMembership",
]
