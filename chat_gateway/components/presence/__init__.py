"""
Presence components.
"""

from chat_gateway.components.presence.broadcaster import PresenceBroadcaster

__all__ = ["PresenceBroadcaster"]
