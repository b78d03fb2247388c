"""
Close codes, defaults and wire constants of the chat gateway.
"""

from enum import IntEnum
from typing import Final

from shared.config.logging import get_logger

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
]

logger = get_logger(__name__)


class WSCloseCode(IntEnum):
    """RFC 6455 codes below 2000; gateway-specific codes in the 4000 range."""

    NORMAL = 1000
    GOING_AWAY = 1001  # shutdown, heartbeat timeout
    MESSAGE_TOO_BIG = 1009
    SERVER_OVERLOADED = 1013  # connection cap reached

    AUTH_FAILED = 4001  # bad, expired or refresh token
    FORBIDDEN = 4003  # origin not allowed
    SUPERSEDED = 4009  # same user connected again elsewhere
    RATE_LIMITED = 4029  # see ws_message_rate_limit


class WSConstants:
    """
    Fallback values for components built without explicit arguments.

    The manager reads the tunable ones from settings instead.
    """

    # Seconds
    WS_RECEIVE_TIMEOUT: Final[float] = 90.0  # 3x the client ping interval
    WS_ACCEPT_TIMEOUT: Final[float] = 5.0
    JWT_REVALIDATION_INTERVAL: Final[float] = 300.0
    HEARTBEAT_CLEANUP_INTERVAL: Final[float] = 30.0

    CALL_RING_TIMEOUT: Final[float] = 30.0
    # Both clients switch to the in-call screen before the caller builds the offer
    CALL_OFFER_DELAY: Final[float] = 1.0
    CALL_STALE_AFTER: Final[float] = 7200.0

    # Heartbeat cleanup cycles between lock cleanups
    LOCK_CLEANUP_CYCLE: Final[int] = 5

    # Sizes
    MAX_CACHED_LOCKS: Final[int] = 2000
    MAX_TRACKED_CONNECTIONS: Final[int] = 2000  # rate limiter entries
    EVICTION_PERCENTAGE: Final[int] = 10  # share of rate limiter entries dropped when full
    MAX_DEAD_CONNECTIONS: Final[int] = 500


# Heartbeat frames
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'


# Local dev servers, used when ALLOWED_ORIGINS is empty
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000", "http://localhost:5173",
    "http://127.0.0.1:3000", "http://127.0.0.1:5173",
)


def validate_websocket_origin(origin: str | None, settings: object) -> bool:
    """
    Check the handshake Origin header against ``settings.allowed_origins``.

    Sockets without an Origin header (native apps, test clients) pass in
    development only. ``*`` in the list allows everything.
    """
    configured = getattr(settings, "allowed_origins", None) or ""
    allowed = [o.strip() for o in configured.split(",") if o.strip()] or list(DEFAULT_ALLOWED_ORIGINS)

    if not origin:
        if getattr(settings, "environment", "production") == "development":
            return True
        logger.warning("Chat socket without Origin header refused")
        return False

    if origin in allowed or "*" in allowed:
        return True

    logger.warning("Chat socket origin not allowed", origin=origin, allowed_count=len(allowed))
    return False
