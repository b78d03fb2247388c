"""
Event handling components.

Inbound command and outbound event types, and the command router.
"""

from chat_gateway.components.events.types import (
    InboundCommand,
    OutboundEvent,
    InboundFrame,
    CALL_COMMANDS,
    envelope,
    parse_frame,
)
from chat_gateway.components.events.router import CommandRouter, CommandResult

__all__ = [
    "InboundCommand",
    "OutboundEvent",
    "InboundFrame",
    "CALL_COMMANDS",
    "envelope",
    "parse_frame",
    "CommandRouter",
    "CommandResult",
]
