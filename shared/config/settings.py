"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # JWT Configuration
    # Tokens are issued by the account service; the gateway only verifies them.
    jwt_secret: str = "dev-secret-change-me-in-production"
    jwt_issuer: str = "chat-accounts"
    jwt_audience: str = "chat-users"
    jwt_access_token_expire_minutes: int = 60

    # Comma-separated list of allowed origins (empty uses default localhost list)
    allowed_origins: str = ""

    # Server
    gateway_port: int = 5000

    # Environment
    environment: str = "development"
    debug: bool = True

    # WebSocket limits
    ws_max_total_connections: int = 1000  # Maximum concurrent WebSocket connections
    ws_heartbeat_timeout: int = 60  # Consider connection dead after this many seconds
    ws_receive_timeout: float = 90.0  # Close sockets silent for this long
    ws_max_message_size: int = 64 * 1024  # 64 KB, SDP offers are a few KB
    ws_message_rate_limit: int = 30  # Max messages per window per connection
    ws_message_rate_window: int = 1  # Window in seconds
    ws_broadcast_batch_size: int = 50  # Connections to send to in parallel

    # Calls
    call_ring_timeout: float = 30.0  # Unanswered calls end after this many seconds
    call_offer_delay: float = 1.0  # Pause between accept and start-webrtc-offer
    call_sweep_interval: float = 300.0  # Background sweep period for leaked sessions
    call_stale_after: float = 7200.0  # Sessions older than this are swept regardless of status

    def validate_production_secrets(self) -> list[str]:
        """
        Validate that secrets are properly configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        WEAK_SECRETS = {
            "dev-secret-change-me-in-production",
            "secret",
            "password",
            "changeme",
            "default",
        }

        if self.environment == "production":
            if self.jwt_secret in WEAK_SECRETS or len(self.jwt_secret) < 32:
                errors.append(
                    "JWT_SECRET must be at least 32 characters and not a default value in production"
                )

            if self.debug:
                errors.append("DEBUG must be False in production")

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        if self.call_offer_delay >= self.call_ring_timeout:
            errors.append("CALL_OFFER_DELAY must be shorter than CALL_RING_TIMEOUT")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

JWT_SECRET = settings.jwt_secret
JWT_ISSUER = settings.jwt_issuer
JWT_AUDIENCE = settings.jwt_audience
