"""
Room Membership.

Keeps the relation between connections and rooms: one room per
conversation, plus one personal room per user named after the user ID.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from shared.config.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


class RoomMembership:
    """
    Bidirectional index of room members.

    Indices maintained:
    - by_room: room_id -> set[WebSocket]
    - ws_to_rooms: WebSocket -> set[room_id] (reverse mapping for disconnect)

    Empty rooms are dropped so the index never grows with dead conversations.
    """

    def __init__(self) -> None:
        self._by_room: dict[str, set[WebSocket]] = {}
        self._ws_to_rooms: dict[WebSocket, set[str]] = {}

    @property
    def by_room(self) -> MappingProxyType[str, set["WebSocket"]]:
        """Connections indexed by room ID (immutable view)."""
        return MappingProxyType(self._by_room)

    def join(self, handle: "WebSocket", room_id: str) -> bool:
        """
        Add ``handle`` to ``room_id``.

        Returns:
            True if the handle was not a member yet.
        """
        room_id = str(room_id)
        members = self._by_room.setdefault(room_id, set())
        if handle in members:
            return False
        members.add(handle)
        self._ws_to_rooms.setdefault(handle, set()).add(room_id)
        return True

    def leave(self, handle: "WebSocket", room_id: str) -> bool:
        """
        Remove ``handle`` from ``room_id``.

        Returns:
            True if the handle was a member.
        """
        room_id = str(room_id)
        members = self._by_room.get(room_id)
        if members is None or handle not in members:
            return False
        members.discard(handle)
        if not members:
            del self._by_room[room_id]

        rooms = self._ws_to_rooms.get(handle)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._ws_to_rooms[handle]
        return True

    def leave_all(self, handle: "WebSocket") -> set[str]:
        """
        Remove ``handle`` from every room.

        Returns:
            The rooms that were left.
        """
        rooms = self._ws_to_rooms.pop(handle, set())
        for room_id in rooms:
            members = self._by_room.get(room_id)
            if members is None:
                continue
            members.discard(handle)
            if not members:
                del self._by_room[room_id]
        if rooms:
            logger.debug("Left all rooms", room_count=len(rooms))
        return rooms

    def members(self, room_id: str) -> set["WebSocket"]:
        """Snapshot of the members of a room."""
        return set(self._by_room.get(str(room_id), ()))

    def rooms_of(self, handle: "WebSocket") -> set[str]:
        return set(self._ws_to_rooms.get(handle, ()))

    def is_member(self, handle: "WebSocket", room_id: str) -> bool:
        return handle in self._by_room.get(str(room_id), ())

    def get_stats(self) -> dict[str, int]:
        return {
            "rooms": len(self._by_room),
            "memberships": sum(len(m) for m in self._by_room.values()),
        }
