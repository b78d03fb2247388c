"""
Call session value objects.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum


class CallStatus(str, Enum):
    """Lifecycle of a call: ringing -> accepted -> connected -> ended."""

    RINGING = "ringing"
    ACCEPTED = "accepted"
    CONNECTED = "connected"
    ENDED = "ended"


# Any state may end; otherwise the lifecycle only moves forward
_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.RINGING: frozenset({CallStatus.ACCEPTED, CallStatus.ENDED}),
    CallStatus.ACCEPTED: frozenset({CallStatus.CONNECTED, CallStatus.ENDED}),
    CallStatus.CONNECTED: frozenset({CallStatus.ENDED}),
    CallStatus.ENDED: frozenset(),
}


def generate_call_id(caller_id: str, callee_id: str, now: float | None = None) -> str:
    """Call ID built from both participants, a millisecond timestamp and a random token."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"{caller_id}-{callee_id}-{millis}-{secrets.token_hex(4)}"


@dataclass
class CallSession:
    """
    One call between a caller and a callee.

    ``caller_id``, ``callee_id`` and ``is_video`` never change after
    creation. Timestamps are Unix seconds.
    """

    call_id: str
    caller_id: str
    callee_id: str
    is_video: bool
    status: CallStatus = CallStatus.RINGING
    started_at: float = field(default_factory=time.time)
    accepted_at: float | None = None
    connected_at: float | None = None
    ended_at: float | None = None

    def involves(self, user_id: str) -> bool:
        return user_id == self.caller_id or user_id == self.callee_id

    def counterpart(self, user_id: str) -> str:
        """The other participant of the call."""
        return self.callee_id if user_id == self.caller_id else self.caller_id

    def can_transition(self, status: CallStatus) -> bool:
        return status in _TRANSITIONS[self.status]

    def transition(self, status: CallStatus, at: float) -> None:
        """
        Move to ``status`` and stamp the matching timestamp.

        Raises:
            ValueError: If the lifecycle does not allow the move.
        """
        if not self.can_transition(status):
            raise ValueError(f"Cannot move call {self.call_id} from {self.status.value} to {status.value}")
        self.status = status
        if status is CallStatus.ACCEPTED:
            self.accepted_at = at
        elif status is CallStatus.CONNECTED:
            self.connected_at = at
        elif status is CallStatus.ENDED:
            self.ended_at = at

    def duration_ms(self, now: float) -> int | None:
        """Milliseconds since the media connection came up, if it did."""
        if self.connected_at is None:
            return None
        return max(0, int((now - self.connected_at) * 1000))
