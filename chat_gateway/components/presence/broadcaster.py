"""
Presence Broadcaster.

Announces online/offline transitions to every other connection and hands a
newly registered connection the snapshot of who is online.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.data.presence_repository import (
    InMemoryPresenceRepository,
    PresenceRepository,
)
from chat_gateway.components.events.types import OutboundEvent

if TYPE_CHECKING:
    from chat_gateway.components.connection.registry import ConnectionRecord, ConnectionRegistry
    from chat_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


class PresenceBroadcaster:
    """
    Best-effort, at-most-once presence announcements.

    A failed delivery is not retried; the client reconciles from the next
    ``online-users`` snapshot. Repository writes are bounded by
    ``repository_timeout`` and never block an announcement.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        broadcaster: "ConnectionBroadcaster",
        repository: PresenceRepository | None = None,
        repository_timeout: float = 2.0,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._repository = repository or InMemoryPresenceRepository()
        self._repository_timeout = repository_timeout

    @property
    def repository(self) -> PresenceRepository:
        return self._repository

    def snapshot(self) -> list[dict[str, str]]:
        """``[{userId, displayName}, ...]`` for every registered user."""
        return [record.to_presence() for record in self._registry.all_records()]

    async def send_snapshot(self, record: "ConnectionRecord") -> bool:
        return await self._broadcaster.send(
            record.handle, OutboundEvent.ONLINE_USERS, self.snapshot(),
        )

    async def announce_online(self, record: "ConnectionRecord") -> int:
        """
        Tell everyone else that ``record.user_id`` came online, then send the
        new connection the current snapshot.

        Returns:
            Number of other connections notified.
        """
        await self._persist(record.user_id, online=True)
        notified = await self._broadcaster.broadcast(
            OutboundEvent.USER_ONLINE,
            record.to_presence(),
            exclude=record.handle,
        )
        await self.send_snapshot(record)
        logger.debug("Announced online", user_id=record.user_id, notified=notified)
        return notified

    async def announce_offline(self, user_id: str) -> int:
        """
        Tell every remaining connection that ``user_id`` went offline.

        Returns:
            Number of connections notified.
        """
        await self._persist(user_id, online=False)
        notified = await self._broadcaster.broadcast(
            OutboundEvent.USER_OFFLINE, {"userId": user_id},
        )
        logger.debug("Announced offline", user_id=user_id, notified=notified)
        return notified

    async def _persist(self, user_id: str, online: bool) -> None:
        update = self._repository.mark_online if online else self._repository.mark_offline
        try:
            await asyncio.wait_for(update(user_id), timeout=self._repository_timeout)
        except asyncio.TimeoutError:
            logger.warning("Presence update timed out", user_id=user_id, online=online)
        except Exception as e:
            logger.error("Presence update failed", user_id=user_id, online=online, error=str(e))
