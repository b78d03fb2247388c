"""
Data access components.
"""

from chat_gateway.components.data.presence_repository import (
    PresenceState,
    PresenceRepository,
    InMemoryPresenceRepository,
)

__all__ = [
    "PresenceState",
    "PresenceRepository",
    "InMemoryPresenceRepository",
]
