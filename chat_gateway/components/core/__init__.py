"""
Core chat gateway components.

Foundational components: constants, context and errors.
"""

from chat_gateway.components.core.constants import WSCloseCode, WSConstants
from chat_gateway.components.core.context import WebSocketContext, sanitize_log_data
from chat_gateway.components.core.errors import (
    ChatGatewayError,
    AuthError,
    RecipientUnreachable,
    InvalidCallRequest,
    StaleSession,
    UnknownCommand,
)

__all__ = [
    # Constants
    "WSCloseCode",
    "WSConstants",
    # Context
    "WebSocketContext",
    "sanitize_log_data",
    # Errors
    "ChatGatewayError",
    "AuthError",
    "RecipientUnreachable",
    "InvalidCallRequest",
    "StaleSession",
    "UnknownCommand",
]
