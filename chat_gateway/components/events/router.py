"""
Command Router - dispatches inbound commands to the owning component.

Usage:
    router = CommandRouter(registry, rooms, broadcaster, presence, calls, signaling)
    result = await router.dispatch(websocket, user_id, raw_text)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from shared.config.logging import get_logger
from chat_gateway.components.core.context import sanitize_log_data
from chat_gateway.components.core.errors import InvalidCallRequest, UnknownCommand
from chat_gateway.components.events.types import (
    CALL_COMMANDS,
    AcceptCallPayload,
    EndCallPayload,
    InboundCommand,
    InitiateCallPayload,
    MessageReadPayload,
    NewMessagePayload,
    OutboundEvent,
    RejectCallPayload,
    RoomPayload,
    SignalPayload,
    parse_frame,
)

if TYPE_CHECKING:
    from fastapi import WebSocket
    from chat_gateway.components.calls.manager import CallSessionManager
    from chat_gateway.components.connection.registry import ConnectionRecord, ConnectionRegistry
    from chat_gateway.components.connection.rooms import RoomMembership
    from chat_gateway.components.metrics.collector import MetricsCollector
    from chat_gateway.components.presence.broadcaster import PresenceBroadcaster
    from chat_gateway.components.signaling.router import SignalingRouter
    from chat_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Result of dispatching one frame."""

    command: InboundCommand | None
    handled: bool = True
    error: str | None = None


def _user_ref_id(value: Any) -> str | None:
    """User ID from either a bare ID or a populated user object."""
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    if value is None or value == "":
        return None
    return str(value)


class CommandRouter:
    """
    Routes inbound commands to presence, rooms, calls and signaling.

    Malformed frames are logged and dropped. The only exception is a call
    command with an invalid payload: the sender is waiting for feedback, so
    it gets ``call-failed``. Nothing here closes the connection.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        rooms: "RoomMembership",
        broadcaster: "ConnectionBroadcaster",
        presence: "PresenceBroadcaster",
        calls: "CallSessionManager",
        signaling: "SignalingRouter",
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._broadcaster = broadcaster
        self._presence = presence
        self._calls = calls
        self._signaling = signaling
        self._metrics = metrics

    async def dispatch(self, ws: "WebSocket", user_id: str, raw: str) -> CommandResult:
        """Decode a text frame and handle it."""
        try:
            frame = parse_frame(raw)
        except UnknownCommand as e:
            self._count("invalid")
            logger.debug("Dropping frame", user_id=user_id, reason=e.detail, frame=sanitize_log_data(raw))
            return CommandResult(command=None, handled=False, error=e.reason)
        return await self.handle(ws, user_id, frame.command, frame.data)

    async def handle(
        self,
        ws: "WebSocket",
        user_id: str,
        command: InboundCommand,
        data: Any,
    ) -> CommandResult:
        """Handle one decoded command from ``ws``."""
        record = self._registry.lookup(user_id)
        if record is None or record.handle is not ws:
            # Superseded or already unregistered socket
            logger.debug("Ignoring command from unregistered socket", user_id=user_id, command=command.value)
            return CommandResult(command=command, handled=False, error="not_registered")

        try:
            await self._route(record, command, data)
        except InvalidCallRequest as e:
            self._count("invalid")
            await self._broadcaster.send(
                ws,
                OutboundEvent.CALL_FAILED,
                {"reason": e.reason, "message": e.message, "callId": self._call_id_of(data)},
            )
            return CommandResult(command=command, handled=False, error=e.reason)
        except ValidationError as e:
            self._count("invalid")
            logger.debug(
                "Dropping command with invalid payload",
                user_id=user_id,
                command=command.value,
                errors=e.error_count(),
            )
            return CommandResult(command=command, handled=False, error="invalid_payload")

        self._count("processed")
        return CommandResult(command=command)

    async def _route(self, record: "ConnectionRecord", command: InboundCommand, data: Any) -> None:
        ws = record.handle
        user_id = record.user_id

        match command:
            case InboundCommand.SETUP:
                self._rooms.join(ws, user_id)
                await self._broadcaster.send(ws, OutboundEvent.CONNECTED, record.to_presence())
                await self._presence.send_snapshot(record)

            case InboundCommand.JOIN_CHAT:
                room = self._validate(command, RoomPayload, self._room_data(data)).room
                self._rooms.join(ws, room)
                logger.debug("Joined room", user_id=user_id, room=sanitize_log_data(room))

            case InboundCommand.LEAVE_CHAT:
                room = self._validate(command, RoomPayload, self._room_data(data)).room
                self._rooms.leave(ws, room)

            case InboundCommand.INITIATE_CALL:
                payload = self._validate(command, InitiateCallPayload, data)
                await self._calls.initiate(record, payload.to, payload.is_video, payload.call_id)

            case InboundCommand.ACCEPT_CALL:
                payload = self._validate(command, AcceptCallPayload, data)
                await self._calls.accept(user_id, payload.to, payload.call_id, payload.is_video)

            case InboundCommand.REJECT_CALL:
                payload = self._validate(command, RejectCallPayload, data)
                await self._calls.reject(user_id, payload.to, payload.call_id, payload.reason)

            case InboundCommand.END_CALL:
                payload = self._validate(command, EndCallPayload, data)
                await self._calls.end_call(user_id, payload.to, payload.call_id)

            case InboundCommand.OFFER | InboundCommand.ANSWER | InboundCommand.ICE_CANDIDATE:
                payload = self._validate(command, SignalPayload, data)
                await self._signaling.relay(command, user_id, payload.to, payload.payload, payload.call_id)

            case InboundCommand.NEW_MESSAGE:
                await self._fan_out_message(
                    record, data,
                    OutboundEvent.MESSAGE_RECEIVED,
                    OutboundEvent.NEW_MESSAGE_NOTIFICATION,
                )

            case InboundCommand.NEW_FILE_MESSAGE:
                await self._fan_out_message(
                    record, data,
                    OutboundEvent.FILE_MESSAGE_RECEIVED,
                    OutboundEvent.NEW_FILE_NOTIFICATION,
                )

            case InboundCommand.MESSAGE_READ:
                payload = self._validate(command, MessageReadPayload, data)
                await self._signaling.relay_read_receipt(
                    payload.room, payload.message_id, user_id, exclude=ws,
                )

            case InboundCommand.TYPING | InboundCommand.STOP_TYPING:
                room = self._validate(command, RoomPayload, self._room_data(data)).room
                event = (
                    OutboundEvent.TYPING if command is InboundCommand.TYPING
                    else OutboundEvent.STOP_TYPING
                )
                await self._broadcaster.send_to_room(
                    room, event, {"room": room, "user": user_id}, exclude=ws,
                )

    async def _fan_out_message(
        self,
        record: "ConnectionRecord",
        data: Any,
        room_event: OutboundEvent,
        notification_event: OutboundEvent,
    ) -> None:
        """
        Deliver a persisted message to its conversation room and notify the
        receivers in their personal rooms.

        The receiver is the message's ``receiver`` when given, otherwise
        every chat member except the sender.
        """
        payload = NewMessagePayload.model_validate(data)
        chat_id = payload.chat.id

        await self._broadcaster.send_to_room(chat_id, room_event, data, exclude=record.handle)

        receiver = payload.receiver_id()
        if receiver is not None:
            receivers = [receiver]
        else:
            receivers = [_user_ref_id(user) for user in payload.chat.users]
        for receiver_id in dict.fromkeys(receivers):
            if receiver_id is None or receiver_id == record.user_id:
                continue
            await self._broadcaster.send_to_room(
                receiver_id,
                notification_event,
                {"chatId": chat_id, "message": data},
            )

    @staticmethod
    def _validate(command: InboundCommand, model: type[BaseModel], data: Any) -> Any:
        """
        Validate ``data`` against ``model``.

        Raises:
            InvalidCallRequest: For call commands with an invalid payload.
            ValidationError: For every other command.
        """
        try:
            return model.model_validate(data)
        except ValidationError as e:
            if command in CALL_COMMANDS:
                raise InvalidCallRequest(
                    "Malformed call request",
                    reason="malformed_payload",
                    command=command.value,
                    errors=e.error_count(),
                ) from e
            raise

    @staticmethod
    def _room_data(data: Any) -> Any:
        """Accept a bare room ID in place of ``{"room": ...}``."""
        if isinstance(data, (str, int)) and not isinstance(data, bool):
            return {"room": data}
        return data

    @staticmethod
    def _call_id_of(data: Any) -> str | None:
        if isinstance(data, dict):
            call_id = data.get("callId")
            if isinstance(call_id, str):
                return call_id
        return None

    def _count(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment("commands", name)
