"""
Socket liveness.

Every received frame counts as activity; a socket silent for longer than the
timeout is stale and gets closed by the cleanup loop. Ping frames are
answered here so they never reach the command router.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import MSG_PING_PLAIN, MSG_PING_JSON, MSG_PONG_JSON

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)

_PING_FRAMES = frozenset({MSG_PING_PLAIN, MSG_PING_JSON})


class HeartbeatTracker:
    """Last-activity time per socket. Event-loop only, so unlocked."""

    def __init__(self, timeout_seconds: float = 60.0):
        self._timeout = timeout_seconds
        self._last_seen: dict[WebSocket, float] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def tracked_count(self) -> int:
        return len(self._last_seen)

    def record(self, websocket: WebSocket, timestamp: float | None = None) -> None:
        self._last_seen[websocket] = time.time() if timestamp is None else timestamp

    def remove(self, websocket: WebSocket) -> None:
        self._last_seen.pop(websocket, None)

    def get_last_activity(self, websocket: WebSocket) -> float | None:
        return self._last_seen.get(websocket)

    def is_stale(self, websocket: WebSocket) -> bool:
        """Untracked sockets count as stale."""
        seen = self._last_seen.get(websocket)
        return seen is None or time.time() - seen > self._timeout

    def cleanup_stale(self) -> list[WebSocket]:
        """Stop tracking stale sockets and return them for closing."""
        cutoff = time.time() - self._timeout
        stale = [ws for ws, seen in self._last_seen.items() if seen < cutoff]
        for ws in stale:
            del self._last_seen[ws]
        return stale

    def get_stats(self) -> dict[str, float | int]:
        now = time.time()
        ages = [now - seen for seen in self._last_seen.values()]
        return {
            "tracked_connections": len(ages),
            "timeout_seconds": self._timeout,
            "oldest_heartbeat_age": max(ages, default=0),
            "average_heartbeat_age": sum(ages) / len(ages) if ages else 0,
        }


async def handle_heartbeat(ws: WebSocket, data: str) -> bool:
    """
    Reply ``pong`` to a plain or JSON ping.

    Returns:
        True if ``data`` was a ping, whether or not the reply got through.
    """
    if data not in _PING_FRAMES:
        return False
    try:
        await ws.send_text(MSG_PONG_JSON)
    except (ConnectionError, RuntimeError, OSError) as e:
        # The receive loop notices the closed socket on its own
        logger.debug("Pong not delivered", error=str(e))
    return True
