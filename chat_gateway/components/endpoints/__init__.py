"""
WebSocket endpoint components.
"""

from chat_gateway.components.endpoints.base import (
    WebSocketEndpointBase,
    JWTWebSocketEndpoint,
)
from chat_gateway.components.endpoints.mixins import (
    MessageValidationMixin,
    JWTRevalidationMixin,
    HeartbeatMixin,
    ConnectionLifecycleMixin,
)
from chat_gateway.components.endpoints.handlers import ChatEndpoint

__all__ = [
    "WebSocketEndpointBase",
    "JWTWebSocketEndpoint",
    "MessageValidationMixin",
    "JWTRevalidationMixin",
    "HeartbeatMixin",
    "ConnectionLifecycleMixin",
    "ChatEndpoint",
]
