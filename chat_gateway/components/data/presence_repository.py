"""
Repository for user presence state.

Mirrors the ``isOnline`` / ``lastSeen`` fields of the account service's
user record. The gateway ships an in-memory implementation; a deployment
backed by the user database provides its own object with the same methods.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from shared.config.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PresenceState:
    """Last known presence of one user."""

    user_id: str
    is_online: bool
    last_seen: float


@runtime_checkable
class PresenceRepository(Protocol):
    """Storage for presence state."""

    async def mark_online(self, user_id: str, at: float | None = None) -> None: ...

    async def mark_offline(self, user_id: str, at: float | None = None) -> None: ...

    async def get(self, user_id: str) -> PresenceState | None: ...


class InMemoryPresenceRepository:
    """
    Process-local presence store.

    Usage:
        repo = InMemoryPresenceRepository()
        await repo.mark_online("u1")
        state = await repo.get("u1")
    """

    def __init__(self) -> None:
        self._states: dict[str, PresenceState] = {}

    async def mark_online(self, user_id: str, at: float | None = None) -> None:
        self._set(user_id, True, at)

    async def mark_offline(self, user_id: str, at: float | None = None) -> None:
        self._set(user_id, False, at)

    async def get(self, user_id: str) -> PresenceState | None:
        return self._states.get(user_id)

    def _set(self, user_id: str, online: bool, at: float | None) -> None:
        self._states[user_id] = PresenceState(
            user_id=user_id,
            is_online=online,
            last_seen=time.time() if at is None else at,
        )

    def online_users(self) -> set[str]:
        return {uid for uid, state in self._states.items() if state.is_online}

    def get_stats(self) -> dict[str, int]:
        online = sum(1 for state in self._states.values() if state.is_online)
        return {"tracked_users": len(self._states), "online": online}
