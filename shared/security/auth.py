"""
Authentication utilities.
Verifies the JWT bearer tokens issued by the account service.

Token claims:
    sub:   User ID (opaque string)
    name:  Display name
    email: Email address (optional)
    type:  "access" (refresh tokens are rejected by the gateway)
"""

from __future__ import annotations

import time
import uuid
from typing import Any

import jwt

from shared.config.settings import (
    JWT_SECRET,
    JWT_ISSUER,
    JWT_AUDIENCE,
    settings,
)
from shared.config.logging import get_logger
from shared.utils.exceptions import AuthError

logger = get_logger(__name__)


# =============================================================================
# JWT Functions
# =============================================================================


def sign_jwt(
    payload: dict[str, Any],
    ttl_seconds: int | None = None,
    token_type: str = "access",
) -> str:
    """
    Sign a JWT token with the given payload.

    Used by tests and local tooling; production tokens come from the
    account service with the same secret, issuer and audience.

    Args:
        payload: Claims to include in the token (sub, name, email).
        ttl_seconds: Token lifetime in seconds. Defaults to access token expiry.
        token_type: Type of token ("access" or "refresh").

    Returns:
        Signed JWT token string.
    """
    if ttl_seconds is None:
        ttl_seconds = settings.jwt_access_token_expire_minutes * 60

    now = int(time.time())
    data = {
        **payload,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "exp": now + ttl_seconds,
        "type": token_type,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(data, JWT_SECRET, algorithm="HS256")


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: The JWT token string.

    Returns:
        Decoded token claims.

    Raises:
        AuthError: If the token is missing, invalid, expired or malformed.
    """
    if not token:
        raise AuthError("Missing token", reason="missing_token")

    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=["HS256"],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired", reason="token_expired")
    except jwt.InvalidTokenError as e:
        # Log the actual error, return a generic message to the client
        logger.warning("JWT validation failed", error=str(e))
        raise AuthError("Invalid token", reason="invalid_token")

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.strip():
        raise AuthError("Invalid token: missing subject claim", reason="malformed_claims")

    token_type = payload.get("type")
    if token_type not in ("access", "refresh", None):  # None for legacy tokens
        raise AuthError("Invalid token: invalid type claim", reason="malformed_claims")

    return payload


def identity_from_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """
    Extract the identity the gateway needs from verified claims.

    Returns:
        {"user_id", "display_name", "email"}; display name falls back to the
        user ID when the token carries no name.
    """
    user_id = str(claims["sub"])
    return {
        "user_id": user_id,
        "display_name": claims.get("name") or user_id,
        "email": claims.get("email"),
    }
