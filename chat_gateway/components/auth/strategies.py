"""
Handshake authentication for chat sockets.

An ``AuthStrategy`` turns the socket headers and the ``?token=`` credential
into an identity or a refusal with its close code. ``JWTAuthStrategy``
verifies access tokens minted by the account service.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.security.auth import identity_from_claims, verify_jwt
from shared.utils.exceptions import AuthError
from chat_gateway.components.core.constants import WSCloseCode, validate_websocket_origin

if TYPE_CHECKING:
    from fastapi import WebSocket


logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Outcome of a handshake.

    On success ``data`` holds ``{"user_id", "display_name", "email"}`` and
    ``claims`` the verified token. On failure the socket is closed with
    ``close_code``; ``audit_reason`` is the short code that goes into the
    audit trail and the rejection metrics.
    """

    success: bool
    data: dict[str, Any] | None = None
    claims: dict[str, Any] | None = None
    error_message: str | None = None
    close_code: int = WSCloseCode.AUTH_FAILED
    audit_reason: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any], claims: dict[str, Any] | None = None) -> "AuthResult":
        return cls(success=True, data=data, claims=claims)

    @classmethod
    def fail(
        cls,
        message: str,
        close_code: int = WSCloseCode.AUTH_FAILED,
        audit_reason: str = "auth_failed",
    ) -> "AuthResult":
        return cls(False, error_message=message, close_code=close_code, audit_reason=audit_reason)

    @classmethod
    def forbidden(cls, message: str, audit_reason: str = "forbidden") -> "AuthResult":
        return cls.fail(message, close_code=WSCloseCode.FORBIDDEN, audit_reason=audit_reason)


class AuthStrategy(ABC):
    """
    Usage:
        result = await strategy.authenticate(websocket, token)
        if not result.success:
            await websocket.close(code=result.close_code)
    """

    @abstractmethod
    async def authenticate(self, websocket: "WebSocket", token: str) -> AuthResult:
        """Check the handshake; ``websocket`` is only read for headers."""

    @abstractmethod
    async def revalidate(self, token: str) -> bool:
        """Periodic re-check of an open socket's token. False closes the socket."""


class OriginValidationMixin:

    def validate_origin(self, websocket: "WebSocket") -> bool:
        return validate_websocket_origin(websocket.headers.get("origin"), settings)


class JWTAuthStrategy(AuthStrategy, OriginValidationMixin):
    """
    Origin allow-list first, then the token: signature, issuer, audience and
    expiry through ``verify_jwt``. Refresh tokens are refused unless
    ``reject_refresh_tokens`` is off.
    """

    def __init__(self, reject_refresh_tokens: bool = True) -> None:
        self._reject_refresh_tokens = reject_refresh_tokens

    def _is_refresh(self, claims: dict[str, Any]) -> bool:
        return self._reject_refresh_tokens and claims.get("type") == "refresh"

    async def authenticate(self, websocket: "WebSocket", token: str) -> AuthResult:
        if not self.validate_origin(websocket):
            logger.warning("Chat socket from disallowed origin", origin=websocket.headers.get("origin"))
            return AuthResult.forbidden("Origin not allowed", audit_reason="invalid_origin")

        try:
            claims = verify_jwt(token)
        except AuthError as e:
            return AuthResult.fail(e.detail, audit_reason=e.reason)

        if self._is_refresh(claims):
            logger.warning("Refresh token presented at chat handshake", user_id=claims.get("sub"))
            return AuthResult.fail("Authentication failed", audit_reason="refresh_token_used")

        return AuthResult.ok(identity_from_claims(claims), claims=claims)

    async def revalidate(self, token: str) -> bool:
        try:
            claims = verify_jwt(token)
        except AuthError:
            return False
        return not self._is_refresh(claims)
