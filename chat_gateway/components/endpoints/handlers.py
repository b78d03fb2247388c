"""
Concrete WebSocket Endpoint Implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import WebSocket

from shared.config.logging import get_logger
from shared.config.settings import settings
from chat_gateway.components.core.context import WebSocketContext
from chat_gateway.components.endpoints.base import JWTWebSocketEndpoint

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class ChatEndpoint(JWTWebSocketEndpoint):
    """
    WebSocket endpoint for chat users.

    Features:
    - JWT authentication (any user with a valid access token)
    - Presence, rooms, calls and signaling through the command router
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        token: str,
    ):
        super().__init__(
            websocket=websocket,
            manager=manager,
            endpoint_name="/ws/chat",
            token=token,
            receive_timeout=settings.ws_receive_timeout,
        )
        self._user_id: str = ""

    async def create_context(self, auth_data: dict[str, Any], connection_id: str) -> WebSocketContext:
        self._user_id = auth_data["user_id"]
        return WebSocketContext.from_identity(
            self.websocket,
            auth_data,
            self.endpoint_name,
            connection_id=connection_id,
        )

    async def register_connection(self, context: WebSocketContext) -> None:
        await self.manager.connect(
            self.websocket,
            user_id=context.user_id,
            display_name=context.display_name,
            email=context.email,
        )

    async def unregister_connection(self, context: WebSocketContext) -> None:
        await self.manager.disconnect(self.websocket)

    async def handle_message(self, data: str) -> None:
        await self.manager.dispatch(self.websocket, self._user_id, data)
