"""
Lock Manager for the chat gateway.

Provides per-user asyncio locks so that registration, supersession and
unregistration of the same user never interleave across an await.
"""

from __future__ import annotations

import asyncio
from typing import Set

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSConstants

logger = get_logger(__name__)


def _is_idle(lock: asyncio.Lock) -> bool:
    """
    True if nobody holds or waits for ``lock``.

    A just-released lock reads as unlocked until its next waiter resumes,
    so the waiter queue is checked too.
    """
    return not lock.locked() and not getattr(lock, "_waiters", None)


class LockManager:
    """
    Centralized lock management for the connection registry.

    Lock acquisition order (to prevent deadlocks):
    1. connection_counter_lock (global)
    2. user_lock (per-user, acquired in sorted order if several)
    3. dead_connections_lock (global)

    The registry never holds more than one user lock at a time, so in
    practice only rules 1 and 3 matter.
    """

    def __init__(self, max_cached_locks: int = WSConstants.MAX_CACHED_LOCKS):
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._meta_lock = asyncio.Lock()

        self.connection_counter_lock = asyncio.Lock()
        self.dead_connections_lock = asyncio.Lock()

        self._max_cached_locks = max_cached_locks
        # Drop idle locks once 80% of the cache is in use
        self._cleanup_threshold = int(max_cached_locks * 0.8)
        self._locks_cleaned = 0

    async def get_user_lock(self, user_id: str) -> asyncio.Lock:
        """
        Get or create the lock for a user.

        The meta lock is always taken for dictionary access, so cleanup
        never races with creation.
        """
        async with self._meta_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                if len(self._user_locks) >= self._cleanup_threshold:
                    self._locks_cleaned += self._drop_idle_locks()
                lock = asyncio.Lock()
                self._user_locks[user_id] = lock
            return lock

    def _drop_idle_locks(self) -> int:
        """Remove the oldest idle locks down to half the threshold."""
        target_count = self._cleanup_threshold // 2
        to_remove = len(self._user_locks) - target_count
        if to_remove <= 0:
            return 0

        keys = [
            key for key, lock in list(self._user_locks.items())
            if _is_idle(lock)
        ][:to_remove]
        for key in keys:
            del self._user_locks[key]

        if keys:
            logger.debug("Dropped idle user locks", count=len(keys))
        return len(keys)

    async def cleanup_stale_locks(self, active_users: Set[str]) -> int:
        """
        Remove locks for users with no active connection.

        Held or awaited locks are never removed.

        Args:
            active_users: User IDs currently registered.

        Returns:
            Number of locks cleaned up.
        """
        async with self._meta_lock:
            stale = [uid for uid in self._user_locks if uid not in active_users]
            cleaned = 0
            for uid in stale:
                lock = self._user_locks.get(uid)
                if lock is not None and _is_idle(lock):
                    del self._user_locks[uid]
                    cleaned += 1

        if cleaned:
            self._locks_cleaned += cleaned
            logger.info("Cleaned up stale locks", user_locks_cleaned=cleaned)
        return cleaned

    def get_stats(self) -> dict[str, int]:
        """Get lock manager statistics."""
        return {
            "user_locks_count": len(self._user_locks),
            "locks_cleaned_total": self._locks_cleaned,
            "max_cached_locks": self._max_cached_locks,
            "cleanup_threshold": self._cleanup_threshold,
        }
