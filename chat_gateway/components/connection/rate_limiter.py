"""
Frame rate limiting per socket.

Each socket keeps the timestamps of its frames inside the last window; a
frame is refused once the window is full.
"""

from __future__ import annotations

import time
from collections import deque
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


class WebSocketRateLimiter:
    """
    Sliding window over frame timestamps.

    At most ``max_tracked`` sockets are remembered; when a new one would
    exceed that, the least recently active share is dropped in one go.
    """

    def __init__(
        self,
        max_messages: int,
        window_seconds: float,
        max_tracked: int = WSConstants.MAX_TRACKED_CONNECTIONS,
    ):
        self._max_messages = max_messages
        self._window_seconds = window_seconds
        self._max_tracked = max_tracked

        self._counters: dict[WebSocket, deque[float]] = {}
        self._overflow_warning_logged = False

        self._total_allowed = 0
        self._total_rejected = 0
        self._evictions = 0

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def tracked_count(self) -> int:
        return len(self._counters)

    def is_allowed(self, ws: WebSocket, now: float | None = None) -> bool:
        """Count a frame from ``ws``; False if its window is already full."""
        now = time.time() if now is None else now
        window_start = now - self._window_seconds

        timestamps = self._counters.get(ws)
        if timestamps is None:
            if len(self._counters) >= self._max_tracked:
                self._evict_oldest_entries()
            timestamps = self._counters[ws] = deque()

        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= self._max_messages:
            self._total_rejected += 1
            return False

        timestamps.append(now)
        self._total_allowed += 1
        return True

    def _evict_oldest_entries(self) -> None:
        if not self._overflow_warning_logged:
            logger.warning(
                "Rate limiter full, dropping least active sockets",
                max_tracked=self._max_tracked,
                current_tracked=len(self._counters),
            )
            self._overflow_warning_logged = True

        entries_to_remove = max(1, self._max_tracked * WSConstants.EVICTION_PERCENTAGE // 100)
        by_last_activity = sorted(
            self._counters.items(),
            key=lambda item: item[1][-1] if item[1] else 0.0,
        )
        for ws, _ in by_last_activity[:entries_to_remove]:
            del self._counters[ws]
            self._evictions += 1

    def remove_connection(self, ws: WebSocket) -> None:
        self._counters.pop(ws, None)

    def cleanup_stale(self, now: float | None = None) -> int:
        """Forget sockets with no frame in the current window; returns how many."""
        now = time.time() if now is None else now
        window_start = now - self._window_seconds

        stale = [
            ws for ws, timestamps in self._counters.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ws in stale:
            del self._counters[ws]

        if len(self._counters) < self._max_tracked * 0.9:
            self._overflow_warning_logged = False
        return len(stale)

    def get_stats(self) -> dict[str, int | float]:
        return {
            "tracked_connections": len(self._counters),
            "max_tracked": self._max_tracked,
            "max_messages_per_window": self._max_messages,
            "window_seconds": self._window_seconds,
            "total_allowed": self._total_allowed,
            "total_rejected": self._total_rejected,
            "evictions": self._evictions,
        }
