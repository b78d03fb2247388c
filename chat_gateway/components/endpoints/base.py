"""
Socket endpoint skeleton: handshake, registration, receive loop, teardown.

Concrete endpoints fill in the identity and message handling.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.logging import audit_auth_event, get_logger
from shared.infrastructure.correlation import correlation_scope
from chat_gateway.components.core.constants import WSCloseCode, WSConstants
from chat_gateway.components.connection.heartbeat import handle_heartbeat
from chat_gateway.components.core.context import WebSocketContext, sanitize_log_data
from chat_gateway.components.endpoints.mixins import (
    MessageValidationMixin,
    JWTRevalidationMixin,
    HeartbeatMixin,
    ConnectionLifecycleMixin,
)

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class WebSocketEndpointBase(
    MessageValidationMixin,
    HeartbeatMixin,
    ConnectionLifecycleMixin,
    ABC,
):
    """
    Template for one socket's lifetime.

    ``validate_auth`` closes the socket itself on failure. Every text frame
    other than a ping reaches ``handle_message``; an exception raised there
    is logged and the loop carries on.

    Usage:
        endpoint = ChatEndpoint(websocket, manager, token)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        endpoint_name: str,
        receive_timeout: float = WSConstants.WS_RECEIVE_TIMEOUT,
        jwt_revalidation_interval: float = WSConstants.JWT_REVALIDATION_INTERVAL,
    ):
        self.websocket = websocket
        self.manager = manager
        self.endpoint_name = endpoint_name
        self.receive_timeout = receive_timeout
        self.jwt_revalidation_interval = jwt_revalidation_interval

        self.context: WebSocketContext | None = None
        self._last_jwt_revalidation = time.time()
        self._is_running = False

    @property
    def identifier(self) -> str:
        return self.context.identifier if self.context else "unknown"

    @abstractmethod
    async def validate_auth(self) -> dict[str, Any] | None:
        """Identity dict, or None after closing the socket."""

    @abstractmethod
    async def create_context(self, auth_data: dict[str, Any], connection_id: str) -> WebSocketContext:
        """Audit context for the authenticated identity."""

    @abstractmethod
    async def register_connection(self, context: WebSocketContext) -> None:
        """Raises ConnectionError when the gateway refuses the socket."""

    @abstractmethod
    async def unregister_connection(self, context: WebSocketContext) -> None:
        """Always awaited once the loop ends, however it ended."""

    async def handle_message(self, data: str) -> None:
        logger.debug(
            "Frame ignored by endpoint",
            endpoint=self.endpoint_name,
            identifier=self.identifier,
            message=sanitize_log_data(data),
        )

    async def run(self) -> None:
        """Serve the socket until it closes, under one correlation ID."""
        with correlation_scope() as connection_id:
            await self._run(connection_id)

    async def _run(self, connection_id: str) -> None:
        auth_data = await self.validate_auth()
        if auth_data is None:
            return

        self.context = await self.create_context(auth_data, connection_id)

        try:
            await self.register_connection(self.context)
        except ConnectionError as e:
            self.log_connect_rejected(str(e))
            return

        self.log_connect()

        self._is_running = True
        reason = "server_close"
        try:
            reason = await self._message_loop()
        except WebSocketDisconnect as e:
            reason = "client_disconnect" if e.code in (WSCloseCode.NORMAL, WSCloseCode.GOING_AWAY) else f"closed:{e.code}"
        except RuntimeError as e:
            # Socket closed by the server (supersession, shutdown) mid-receive
            logger.debug("Receive on closed socket", identifier=self.identifier, error=str(e))
        finally:
            self._is_running = False
            self.log_disconnect(reason)
            await self.unregister_connection(self.context)

    async def _pre_message_hook(self) -> bool:
        """Runs before each frame is handled; False stops the loop."""
        return True

    async def _message_loop(self) -> str:
        """Returns why the loop stopped, for the disconnect log line."""
        while self._is_running:
            try:
                data = await self._receive_with_timeout()
            except KeyError:
                # Binary frame; only text frames carry commands
                logger.debug("Ignoring non-text frame", identifier=self.identifier)
                continue
            if data is None:
                logger.info(
                    "No frames within receive timeout, closing",
                    endpoint=self.endpoint_name,
                    identifier=self.identifier,
                    timeout=self.receive_timeout,
                )
                self.manager.record_timeout()
                await self.websocket.close(code=WSCloseCode.NORMAL, reason="Connection timeout")
                return "timeout"

            if not await self.validate_message_size(data):
                return "message_too_big"

            if not await self.check_rate_limit():
                return "rate_limited"

            self.record_heartbeat()

            if not await self._pre_message_hook():
                return "token_expired"

            if await handle_heartbeat(self.websocket, data):
                continue

            try:
                await self.handle_message(data)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.error(
                    "Error handling message",
                    endpoint=self.endpoint_name,
                    identifier=self.identifier,
                    error=str(e),
                    exc_info=True,
                )
        return "server_close"

    async def _receive_with_timeout(self) -> str | None:
        try:
            return await asyncio.wait_for(
                self.websocket.receive_text(),
                timeout=self.receive_timeout,
            )
        except asyncio.TimeoutError:
            return None


class JWTWebSocketEndpoint(JWTRevalidationMixin, WebSocketEndpointBase):
    """
    Endpoint whose ``?token=`` goes through the manager's AuthStrategy at
    the handshake and again every ``jwt_revalidation_interval`` seconds.
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        endpoint_name: str,
        token: str,
        **kwargs: Any,
    ):
        super().__init__(websocket, manager, endpoint_name, **kwargs)
        self.token = token
        self._claims: dict[str, Any] | None = None

    async def validate_auth(self) -> dict[str, Any] | None:
        origin = self.websocket.headers.get("origin")
        result = await self.manager.auth_strategy.authenticate(self.websocket, self.token)
        if not result.success:
            audit_auth_event(
                "TOKEN_REJECTED",
                success=False,
                reason=result.audit_reason,
                endpoint=self.endpoint_name,
                origin=origin,
            )
            self.manager.record_auth_rejection(result.audit_reason)
            await self.websocket.close(
                code=result.close_code,
                reason=result.error_message or "Authentication failed",
            )
            return None

        audit_auth_event(
            "TOKEN_VERIFIED",
            user_id=result.data["user_id"],
            email=result.data.get("email"),
            endpoint=self.endpoint_name,
        )
        self._claims = result.claims
        self.reset_jwt_revalidation_timer()
        return result.data

    async def _pre_message_hook(self) -> bool:
        if not await self.revalidate_jwt_if_needed():
            logger.warning(
                "Token no longer valid, closing",
                identifier=self.identifier,
            )
            await self.websocket.close(
                code=WSCloseCode.AUTH_FAILED,
                reason="Token expired or revoked",
            )
            return False
        return True
