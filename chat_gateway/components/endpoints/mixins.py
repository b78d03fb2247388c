"""
Single-concern building blocks for socket endpoints.

The endpoint base class mixes these in; each one only relies on the
attributes named in its protocol below.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Protocol

from fastapi import WebSocket

from shared.config.logging import get_logger
from shared.config.settings import settings
from chat_gateway.components.core.constants import WSCloseCode

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager
    from chat_gateway.components.core.context import WebSocketContext

logger = get_logger(__name__)


class HasWebSocket(Protocol):
    websocket: WebSocket
    endpoint_name: str
    context: "WebSocketContext | None"


class HasManager(Protocol):
    manager: "ConnectionManager"


class HasToken(Protocol):
    token: str
    manager: "ConnectionManager"
    jwt_revalidation_interval: float
    _last_jwt_revalidation: float


def _who(endpoint: HasWebSocket) -> str:
    return endpoint.context.identifier if endpoint.context else "unknown"


class MessageValidationMixin:
    """Frame size cap and per-socket rate limit. Both close the socket when tripped."""

    async def validate_message_size(self: HasWebSocket, data: str) -> bool:
        limit = settings.ws_max_message_size
        if len(data) <= limit:
            return True

        logger.warning(
            "Frame too large, closing",
            endpoint=self.endpoint_name,
            identifier=_who(self),
            size=len(data),
            max_size=limit,
        )
        await self.websocket.close(code=WSCloseCode.MESSAGE_TOO_BIG, reason="Message too large")
        return False

    async def check_rate_limit(self: "HasWebSocket & HasManager") -> bool:
        if self.manager.check_rate_limit(self.websocket):
            return True

        logger.warning("Frame rate exceeded, closing", endpoint=self.endpoint_name, identifier=_who(self))
        self.manager.record_rate_limit_rejection()
        await self.websocket.close(code=WSCloseCode.RATE_LIMITED, reason="Rate limit exceeded")
        return False


class JWTRevalidationMixin:
    """Re-checks the handshake token every ``jwt_revalidation_interval`` seconds."""

    async def revalidate_jwt_if_needed(self: HasToken) -> bool:
        """False once the token has expired or been revoked."""
        now = time.time()
        if now - self._last_jwt_revalidation < self.jwt_revalidation_interval:
            return True
        if not await self.manager.auth_strategy.revalidate(self.token):
            return False
        self._last_jwt_revalidation = now
        return True

    def reset_jwt_revalidation_timer(self: HasToken) -> None:
        self._last_jwt_revalidation = time.time()


class HeartbeatMixin:

    def record_heartbeat(self: "HasWebSocket & HasManager") -> None:
        self.manager.record_heartbeat(self.websocket)


class ConnectionLifecycleMixin:
    """Application log line plus audit record for connect and disconnect."""

    def log_connect(self: HasWebSocket) -> None:
        if self.context is None:
            return
        logger.info("Chat socket connected", **self.context.to_audit_dict("CONNECT"))
        self.context.audit("CONNECT")

    def log_disconnect(self: HasWebSocket, reason: str = "client_disconnect") -> None:
        if self.context is None:
            return
        logger.info("Chat socket disconnected", **self.context.to_audit_dict("DISCONNECT", reason=reason))
        self.context.audit("DISCONNECT", reason=reason)

    def log_connect_rejected(self: HasWebSocket, reason: str) -> None:
        logger.warning(
            "Registration refused",
            endpoint=self.endpoint_name,
            identifier=_who(self),
            reason=reason,
        )
        if self.context is not None:
            self.context.audit("CONNECT_REJECTED", reason=reason)


__all__ = [
    "MessageValidationMixin",
    "JWTRevalidationMixin",
    "HeartbeatMixin",
    "ConnectionLifecycleMixin",
    "HasWebSocket",
    "HasManager",
    "HasToken",
]
