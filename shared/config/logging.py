"""
Logging setup for the chat gateway.

Loggers accept keyword fields (``logger.info("Call ended", call_id=...)``)
which end up on ``record.extra_data``. Production writes one JSON object per
line; development writes colored single-line records. Both include the
connection's correlation ID when one is bound.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings


def _correlation_of(record: logging.LogRecord) -> str | None:
    value = getattr(record, "correlation_id", None)
    if not value or value == "-":
        return None
    return value


class StructuredFormatter(logging.Formatter):
    """One JSON document per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = _correlation_of(record)
        if correlation_id:
            document["correlation_id"] = correlation_id

        fields = getattr(record, "extra_data", None)
        if fields:
            document["data"] = fields

        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)

        if settings.debug:
            document["source"] = f"{record.filename}:{record.lineno} in {record.funcName}"

        return json.dumps(document, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Colored ``HH:MM:SS LEVEL [corr] logger: message (k=v, ...)`` lines."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, self.RESET)
        parts = [
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET}",
        ]

        correlation_id = _correlation_of(record)
        if correlation_id:
            parts.append(f"{self.DIM}[{correlation_id[:8]}]{self.RESET}")

        parts.append(f"{record.name}: {record.getMessage()}")
        line = " ".join(parts)

        fields = getattr(record, "extra_data", None)
        if fields:
            line += " (" + ", ".join(f"{key}={value}" for key, value in fields.items()) + ")"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """
    Logger taking structured fields as keyword arguments.

        logger.info("Call accepted", call_id=call_id, caller=caller_id)
    """

    def _log_with_data(
        self,
        level: int,
        msg: str,
        args: tuple,
        exc_info: Any = None,
        extra: dict | None = None,
        **fields: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        extra = dict(extra or {})
        extra["extra_data"] = fields or None
        super()._log(level, msg, args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.ERROR, msg, args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.CRITICAL, msg, args, **kwargs)


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """Install the stdout handler on the root logger. Called once from the app lifespan."""
    # Deferred: correlation imports this module
    from shared.infrastructure.correlation import CorrelationIdFilter

    level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        StructuredFormatter() if settings.environment == "production" else DevelopmentFormatter()
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name, quiet_level in (
        ("uvicorn.access", logging.WARNING),
        ("uvicorn.error", logging.INFO),
        ("httpx", logging.WARNING),
        ("httpcore", logging.WARNING),
    ):
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> StructuredLogger:
    """
    Usage:
        logger = get_logger(__name__)
        logger.warning("Presence update timed out", user_id=user_id)
    """
    return logging.getLogger(name)  # type: ignore


def mask_email(email: str | None) -> str:
    """Keep the first two characters of the local part: ``al***@example.com``."""
    if not email:
        return "<no-email>"
    local, sep, domain = email.partition("@")
    if not sep or not local:
        return "***@invalid"
    return f"{local[:2]}***@{domain}"


chat_gateway_logger = get_logger("chat_gateway")
calls_logger = get_logger("chat_gateway.calls")
security_audit_logger = get_logger("security.audit")


# =============================================================================
# Audit trail
# =============================================================================


def audit_ws_connection(
    event_type: str,
    endpoint: str,
    user_id: str | None = None,
    origin: str | None = None,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """Socket lifecycle audit record (CONNECT, DISCONNECT, CONNECT_REJECTED)."""
    security_audit_logger.info(
        f"WS_AUDIT: {event_type}",
        event_type=event_type,
        endpoint=endpoint,
        user_id=user_id,
        origin=origin,
        reason=reason,
        **extra,
    )


def audit_call_event(
    event_type: str,
    call_id: str,
    caller_id: str,
    callee_id: str,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """Call transition audit record (INITIATED, ACCEPTED, CONNECTED, ENDED, ...)."""
    calls_logger.info(
        f"CALL_AUDIT: {event_type}",
        event_type=event_type,
        call_id=call_id,
        caller_id=caller_id,
        callee_id=callee_id,
        reason=reason,
        **extra,
    )


def audit_auth_event(
    event_type: str,
    user_id: str | None = None,
    email: str | None = None,
    success: bool = True,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """
    Handshake token audit record (TOKEN_VERIFIED, TOKEN_REJECTED).

    Failures are logged at WARNING; the email is masked.
    """
    log = security_audit_logger.info if success else security_audit_logger.warning
    log(
        f"AUTH_AUDIT: {event_type}",
        event_type=event_type,
        user_id=user_id,
        email=mask_email(email) if email else None,
        success=success,
        reason=reason,
        **extra,
    )
