"""
Centralized exceptions for consistent error handling.

Usage:
    from shared.utils.exceptions import AuthError

    raise AuthError("Token has expired", reason="token_expired")
"""

from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(Exception):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging and a machine-readable reason.

    Attributes:
        detail: Human-readable message (safe to show to the client).
        reason: Short reason code used in events and audit logs.
        log_context: Structured fields logged alongside the message.
    """

    default_reason = "error"

    def __init__(
        self,
        detail: str,
        reason: str | None = None,
        log_level: str = "warning",
        **log_context: Any,
    ):
        self.detail = detail
        self.reason = reason or self.default_reason
        self.log_context = log_context

        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, error=type(self).__name__, reason=self.reason, **log_context)

        super().__init__(detail)


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(AppException):
    """
    Credential rejected during the connection handshake.

    Fatal to the connection attempt: the socket is closed before the user
    is registered.

    Usage:
        raise AuthError("Invalid token")
        raise AuthError("Token has expired", reason="token_expired")
    """

    default_reason = "auth_failed"

    def __init__(self, detail: str = "Authentication failed", reason: str | None = None, **log_context: Any):
        super().__init__(detail, reason=reason, log_level="warning", **log_context)
