"""
Connection management modules.

Composed by ConnectionManager:
- ConnectionLifecycle: Connect/disconnect/supersession
- ConnectionBroadcaster: Event delivery
- ConnectionCleanup: Stale/dead connection cleanup
- ConnectionStats: Statistics aggregation
"""

from chat_gateway.core.connection.lifecycle import ConnectionLifecycle
from chat_gateway.core.connection.broadcaster import ConnectionBroadcaster
from chat_gateway.core.connection.cleanup import ConnectionCleanup
from chat_gateway.core.connection.stats import ConnectionStats

__all__ = [
    "ConnectionLifecycle",
    "ConnectionBroadcaster",
    "ConnectionCleanup",
    "ConnectionStats",
]
