"""
Inbound command and outbound event types for the chat gateway.

Frames on the wire are JSON envelopes ``{"event": <name>, "data": <payload>}``.
Both directions use closed enums; inbound payloads are validated by the
pydantic models below before any handler runs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from chat_gateway.components.core.errors import UnknownCommand


class InboundCommand(str, Enum):
    """Commands a client may send."""

    SETUP = "setup"
    JOIN_CHAT = "join chat"
    LEAVE_CHAT = "leave chat"

    # Calls
    INITIATE_CALL = "initiate-call"
    ACCEPT_CALL = "accept-call"
    REJECT_CALL = "reject-call"
    END_CALL = "end-call"

    # WebRTC signaling
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"

    # Conversation
    NEW_MESSAGE = "new message"
    NEW_FILE_MESSAGE = "new file message"
    MESSAGE_READ = "message read"
    TYPING = "typing"
    STOP_TYPING = "stop typing"


class OutboundEvent(str, Enum):
    """Events the gateway emits."""

    CONNECTED = "connected"

    # Presence
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    ONLINE_USERS = "online-users"

    # Calls
    INCOMING_CALL = "incoming-call"
    CALL_SENT = "call-sent"
    CALL_ACCEPTED = "call-accepted"
    START_WEBRTC_OFFER = "start-webrtc-offer"
    CALL_REJECTED = "call-rejected"
    CALL_FAILED = "call-failed"
    CALL_USER_OFFLINE = "call-user-offline"
    CALL_ENDED = "call-ended"

    # WebRTC signaling
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"

    # Conversation
    MESSAGE_RECEIVED = "message received"
    NEW_MESSAGE_NOTIFICATION = "new message notification"
    FILE_MESSAGE_RECEIVED = "file message received"
    NEW_FILE_NOTIFICATION = "new file notification"
    MESSAGE_READ = "message read"
    TYPING = "typing"
    STOP_TYPING = "stop typing"


# Commands whose validation failure is reported back as call-failed
CALL_COMMANDS: frozenset[InboundCommand] = frozenset({
    InboundCommand.INITIATE_CALL,
    InboundCommand.ACCEPT_CALL,
    InboundCommand.REJECT_CALL,
    InboundCommand.END_CALL,
})


def envelope(event: OutboundEvent | str, data: Any) -> dict[str, Any]:
    """Build the wire frame for an outbound event."""
    name = event.value if isinstance(event, OutboundEvent) else event
    return {"event": name, "data": data}


# =============================================================================
# Inbound payload models
# =============================================================================


class _Payload(BaseModel):
    model_config = {"populate_by_name": True, "extra": "allow"}


class RoomPayload(_Payload):
    """``join chat`` / ``leave chat`` / ``typing`` / ``stop typing``."""

    room: str = Field(min_length=1)

    @field_validator("room", mode="before")
    @classmethod
    def _coerce_room(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class InitiateCallPayload(_Payload):
    to: str | None = None
    is_video: bool = Field(default=False, alias="isVideo")
    call_id: str | None = Field(default=None, alias="callId")


class AcceptCallPayload(_Payload):
    to: str = Field(min_length=1)
    is_video: bool = Field(default=False, alias="isVideo")
    call_id: str | None = Field(default=None, alias="callId")


class RejectCallPayload(_Payload):
    to: str = Field(min_length=1)
    call_id: str | None = Field(default=None, alias="callId")
    reason: str | None = None


class EndCallPayload(_Payload):
    to: str = Field(min_length=1)
    call_id: str | None = Field(default=None, alias="callId")


class SignalPayload(_Payload):
    """``offer`` / ``answer`` / ``ice-candidate``; ``payload`` is opaque."""

    to: str = Field(min_length=1)
    payload: Any = None
    call_id: str | None = Field(default=None, alias="callId")


class ChatRef(_Payload):
    """The conversation a message belongs to."""

    id: str = Field(alias="_id", min_length=1)
    users: list[Any] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class NewMessagePayload(_Payload):
    """
    ``new message`` / ``new file message``.

    The message itself is persisted by the REST API; the socket only fans
    it out. ``receiver`` names the recipient for the personal notification.
    """

    chat: ChatRef
    receiver: Any = None

    def receiver_id(self) -> str | None:
        receiver = self.receiver
        if isinstance(receiver, dict):
            receiver = receiver.get("_id") or receiver.get("id")
        if receiver is None or receiver == "":
            return None
        return str(receiver)


class MessageReadPayload(_Payload):
    room: str = Field(min_length=1)
    message_id: str = Field(alias="messageId", min_length=1)


# =============================================================================
# Frame parsing
# =============================================================================


@dataclass(frozen=True, slots=True)
class InboundFrame:
    """A decoded inbound envelope whose command is known."""

    command: InboundCommand
    data: Any


def parse_frame(raw: str) -> InboundFrame:
    """
    Decode a text frame into an InboundFrame.

    Raises:
        UnknownCommand: If the frame is not JSON, not an envelope, or names
            no known command.
    """
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        raise UnknownCommand("Frame is not valid JSON") from None

    if not isinstance(decoded, dict) or not isinstance(decoded.get("event"), str):
        raise UnknownCommand("Frame is not an event envelope")

    try:
        command = InboundCommand(decoded["event"])
    except ValueError:
        raise UnknownCommand("Unknown command", event=decoded["event"][:50]) from None

    return InboundFrame(command=command, data=decoded.get("data"))
