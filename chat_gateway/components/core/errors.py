"""
Gateway error taxonomy.

Every failure inside the presence and call core is one of these. They are
raised at the point of detection and caught by the owning component, which
converts them into a targeted event for the affected connection; none of
them closes a socket except AuthError, which is raised before registration.
"""

from __future__ import annotations

from typing import Any

from shared.utils.exceptions import AppException, AuthError

__all__ = [
    "ChatGatewayError",
    "AuthError",
    "RecipientUnreachable",
    "InvalidCallRequest",
    "StaleSession",
    "UnknownCommand",
]


class ChatGatewayError(AppException):
    """Base class for errors recovered inside the gateway."""

    default_reason = "gateway_error"


class RecipientUnreachable(ChatGatewayError):
    """
    Target user is absent from the registry or its handle is closed.

    Surfaced to a call initiator as ``call-user-offline``; passive relays
    (typing, ICE) drop silently.
    """

    default_reason = "offline"

    def __init__(self, target_id: str, reason: str | None = None, **log_context: Any):
        self.target_id = target_id
        super().__init__(
            f"User {target_id} is not reachable",
            reason=reason,
            log_level="info",
            target_id=target_id,
            **log_context,
        )


class InvalidCallRequest(ChatGatewayError):
    """
    Self-call, missing target, duplicate call ID or malformed payload.

    Surfaced to the sender as ``call-failed`` with ``message`` as the
    human-readable text.
    """

    default_reason = "invalid_request"

    def __init__(self, message: str, reason: str | None = None, **log_context: Any):
        self.message = message
        super().__init__(message, reason=reason, log_level="info", **log_context)


class StaleSession(ChatGatewayError):
    """
    Operation references a call ID that is no longer tracked.

    Treated as a best-effort no-op, or forwarded anyway when the
    counterpart still benefits from a terminal signal.
    """

    default_reason = "stale_session"

    def __init__(self, call_id: str | None, **log_context: Any):
        self.call_id = call_id
        super().__init__(
            f"Call {call_id} is not active",
            log_level="debug",
            call_id=call_id,
            **log_context,
        )


class UnknownCommand(ChatGatewayError):
    """Frame that does not name a known inbound command, or is not valid JSON."""

    default_reason = "unknown_command"

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(detail, log_level="debug", **log_context)
