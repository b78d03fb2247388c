"""
Per-socket identity and audit context, plus log sanitizing for
client-supplied strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from shared.config.logging import audit_ws_connection, mask_email

if TYPE_CHECKING:
    from fastapi import WebSocket


# C0/C1 controls, zero-width and bidi override characters
_UNSAFE_CHARS = re.compile(
    r"[\x00-\x1f\x7f-\x9f\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Make a client string safe to embed in a log line.

    The input is cut to ``max_length`` before cleaning, so the result length
    is bounded; an ellipsis marks a cut.
    """
    head = data[:max_length]
    cleaned = _UNSAFE_CHARS.sub("", head).replace("\\", "\\\\").replace('"', '\\"')
    return cleaned + "..." if len(data) > max_length else cleaned


@dataclass
class WebSocketContext:
    """
    Who is on the other end of a chat socket.

    Built once after authentication and reused for every audit record of
    that socket.
    """

    endpoint: str
    origin: str | None = None
    user_id: str | None = None
    display_name: str | None = None
    email: str | None = None
    connection_id: str | None = None

    @classmethod
    def from_identity(
        cls,
        websocket: "WebSocket",
        identity: dict[str, Any],
        endpoint: str,
        connection_id: str | None = None,
    ) -> "WebSocketContext":
        user_id = identity["user_id"]
        return cls(
            endpoint=endpoint,
            origin=websocket.headers.get("origin"),
            user_id=user_id,
            display_name=identity.get("display_name") or user_id,
            email=identity.get("email"),
            connection_id=connection_id,
        )

    @property
    def identifier(self) -> str:
        return f"user:{self.user_id}" if self.user_id else "anonymous"

    def to_audit_dict(self, event_type: str, **extra: Any) -> dict[str, Any]:
        """Audit fields; unset attributes are left out and the email is masked."""
        fields: dict[str, Any] = {"event_type": event_type, "endpoint": self.endpoint}
        optional = {
            "origin": self.origin,
            "user_id": self.user_id,
            "email": mask_email(self.email) if self.email else None,
            "connection_id": self.connection_id,
        }
        fields.update({key: value for key, value in optional.items() if value})
        fields.update(extra)
        return fields

    def audit(self, event_type: str, **extra: Any) -> None:
        audit_ws_connection(**self.to_audit_dict(event_type, **extra))
