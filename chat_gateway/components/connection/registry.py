"""
Connection Registry.

Source of truth for who is online: maps each user ID to exactly one live
connection record. A second registration for the same user supersedes the
first; the old socket is closed and its cleanup runs before the new record
becomes visible.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from starlette.websockets import WebSocketState

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSCloseCode
from chat_gateway.components.connection.locks import LockManager

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)

SUPERSEDED_REASON = "Superseded by a newer connection"


def is_ws_connected(ws: Any) -> bool:
    """True while both sides of the socket still consider it open."""
    client_state = getattr(ws, "client_state", None)
    application_state = getattr(ws, "application_state", None)
    return (
        client_state == WebSocketState.CONNECTED
        and application_state == WebSocketState.CONNECTED
    )


@dataclass
class ConnectionRecord:
    """The live connection of one user."""

    user_id: str
    handle: "WebSocket"
    display_name: str
    connected_at: float = field(default_factory=time.time)
    email: str | None = None

    @property
    def is_open(self) -> bool:
        return is_ws_connected(self.handle)

    def to_presence(self) -> dict[str, str]:
        return {"userId": self.user_id, "displayName": self.display_name}


SupersededCallback = Callable[[ConnectionRecord], Awaitable[None]]


class ConnectionRegistry:
    """
    Maps user IDs to their single live connection.

    Mutations of one user's entry are serialised through the user lock of
    the LockManager. Lookups are plain dict reads and never raise for
    unknown users.
    """

    def __init__(
        self,
        lock_manager: LockManager | None = None,
        on_superseded: SupersededCallback | None = None,
    ) -> None:
        self._lock_manager = lock_manager or LockManager()
        self._on_superseded = on_superseded
        self._by_user: dict[str, ConnectionRecord] = {}
        self._by_handle: dict["WebSocket", str] = {}
        self._supersessions = 0

    @property
    def lock_manager(self) -> LockManager:
        return self._lock_manager

    @property
    def records(self) -> MappingProxyType[str, ConnectionRecord]:
        """Records indexed by user ID (immutable view)."""
        return MappingProxyType(self._by_user)

    def set_superseded_callback(self, callback: SupersededCallback | None) -> None:
        self._on_superseded = callback

    async def register(
        self,
        user_id: str,
        handle: "WebSocket",
        display_name: str,
        email: str | None = None,
    ) -> ConnectionRecord | None:
        """
        Record ``handle`` as the live connection of ``user_id``.

        If the user already has a record with a different handle, that
        record is removed, its handle closed with 4009 and the supersession
        callback awaited, all before the new record is stored.

        Returns:
            The superseded record, or None.
        """
        lock = await self._lock_manager.get_user_lock(user_id)
        async with lock:
            superseded = None
            existing = self._by_user.get(user_id)
            if existing is not None and existing.handle is not handle:
                superseded = self._remove(existing)
                self._supersessions += 1
                logger.info(
                    "Superseding existing connection",
                    user_id=user_id,
                    previous_connected_at=existing.connected_at,
                )
                await self._close_superseded(existing)
                if self._on_superseded is not None:
                    await self._on_superseded(existing)

            record = ConnectionRecord(
                user_id=user_id,
                handle=handle,
                display_name=display_name,
                email=email,
            )
            self._by_user[user_id] = record
            self._by_handle[handle] = user_id
            logger.debug("Connection registered", user_id=user_id, online=len(self._by_user))
            return superseded

    async def _close_superseded(self, record: ConnectionRecord) -> None:
        if not is_ws_connected(record.handle):
            return
        try:
            await record.handle.close(code=WSCloseCode.SUPERSEDED, reason=SUPERSEDED_REASON)
        except (ConnectionError, RuntimeError, OSError) as e:
            logger.debug("Superseded socket already closed", user_id=record.user_id, error=str(e))

    async def unregister(
        self,
        user_id: str,
        handle: "WebSocket | None" = None,
    ) -> ConnectionRecord | None:
        """
        Remove the record of ``user_id``.

        When ``handle`` is given the record is only removed if it still
        belongs to that handle, so a superseded socket's late disconnect
        never evicts its successor.

        Returns:
            The removed record, or None if nothing was removed.
        """
        lock = await self._lock_manager.get_user_lock(user_id)
        async with lock:
            existing = self._by_user.get(user_id)
            if existing is None:
                return None
            if handle is not None and existing.handle is not handle:
                return None
            return self._remove(existing)

    def _remove(self, record: ConnectionRecord) -> ConnectionRecord:
        self._by_user.pop(record.user_id, None)
        if self._by_handle.get(record.handle) == record.user_id:
            del self._by_handle[record.handle]
        return record

    def lookup(self, user_id: str) -> ConnectionRecord | None:
        return self._by_user.get(user_id)

    def lookup_live(self, user_id: str) -> ConnectionRecord | None:
        """Return the record only if its handle is still open."""
        record = self._by_user.get(user_id)
        if record is None or not record.is_open:
            return None
        return record

    def list_online(self) -> set[str]:
        return set(self._by_user)

    def user_for(self, handle: "WebSocket") -> str | None:
        return self._by_handle.get(handle)

    def all_records(self) -> list[ConnectionRecord]:
        return list(self._by_user.values())

    def __len__(self) -> int:
        return len(self._by_user)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._by_user

    def get_stats(self) -> dict[str, int]:
        return {
            "online_users": len(self._by_user),
            "supersessions_total": self._supersessions,
        }
