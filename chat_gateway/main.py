"""
Chat Gateway main application.

Serves the authenticated chat WebSocket and a health endpoint. Background
tasks clean up stale connections and sweep leaked call sessions.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import Settings, settings
from shared.config.logging import setup_logging, chat_gateway_logger as logger
from shared.infrastructure.correlation import CorrelationIdMiddleware
from chat_gateway.connection_manager import ConnectionManager
from chat_gateway.components.core.constants import WSConstants, DEFAULT_ALLOWED_ORIGINS
from chat_gateway.components.endpoints.handlers import ChatEndpoint


# =============================================================================
# Background tasks
# =============================================================================


async def start_heartbeat_cleanup(manager: ConnectionManager) -> None:
    """
    Periodically clean up stale connections and resources.

    Each cycle checks for:
    - Connections without recent heartbeats
    - Dead connections marked during send operations
    - Rate limiter entries for disconnected connections
    - Stale user locks (every LOCK_CLEANUP_CYCLE cycles)
    """
    cleanup_cycle = 0

    while True:
        try:
            await asyncio.sleep(WSConstants.HEARTBEAT_CLEANUP_INTERVAL)
            cleanup_cycle += 1

            stale_cleaned = await manager.cleanup_stale_connections()
            if stale_cleaned > 0:
                logger.info("Cleaned up stale connections", count=stale_cleaned)

            dead_cleaned = await manager.cleanup_dead_connections()
            if dead_cleaned > 0:
                logger.info("Cleaned up dead connections", count=dead_cleaned)

            rate_limiter_cleaned = manager.cleanup_rate_limiter()
            if rate_limiter_cleaned > 0:
                logger.debug("Cleaned up rate limiter entries", count=rate_limiter_cleaned)

            if cleanup_cycle % WSConstants.LOCK_CLEANUP_CYCLE == 0:
                locks_cleaned = await manager.cleanup_locks()
                if locks_cleaned > 0:
                    logger.info("Cleaned up stale locks", count=locks_cleaned)

        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Error in heartbeat cleanup", error=str(e))


async def start_call_sweep(manager: ConnectionManager, interval: float) -> None:
    """Drop call sessions that missed their terminal transition."""
    while True:
        try:
            await asyncio.sleep(interval)
            swept = manager.sweep_calls()
            if swept > 0:
                logger.info("Swept stale call sessions", count=swept)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Error in call sweep", error=str(e))


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


# =============================================================================
# FastAPI Application
# =============================================================================


def check_configuration(config: Settings) -> list[str]:
    """
    Log configuration errors; refuse to start with them in production.

    Raises:
        RuntimeError: If ``config`` is a production config with errors.
    """
    errors = config.validate_production_secrets()
    if not errors:
        return errors

    for error in errors:
        logger.error("Configuration error", error=error)
    if config.environment == "production":
        raise RuntimeError(
            f"Production configuration errors: {'; '.join(errors)}. "
            "Gateway will not start with insecure configuration."
        )
    logger.warning("Running with insecure defaults (acceptable for development only)")
    return errors


def _cors_origins() -> list[str]:
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    # Add HTTPS variants of the development defaults
    return list(DEFAULT_ALLOWED_ORIGINS) + [
        origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
    ]


def create_app(manager: ConnectionManager | None = None) -> FastAPI:
    """
    Build the gateway application around ``manager``.

    Tests pass their own manager; production uses the module-level one.
    """
    manager = manager or ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        check_configuration(settings)
        logger.info(
            "Starting Chat Gateway",
            port=settings.gateway_port,
            env=settings.environment,
        )

        cleanup_task = asyncio.create_task(start_heartbeat_cleanup(manager), name="heartbeat_cleanup")
        sweep_task = asyncio.create_task(
            start_call_sweep(manager, settings.call_sweep_interval), name="call_sweep",
        )

        yield

        logger.info("Shutting down Chat Gateway")
        await _stop(cleanup_task)
        await _stop(sweep_task)
        await manager.shutdown()

    app = FastAPI(
        title="Chat Gateway",
        description="Real-time presence, chat relay and call signaling",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.manager = manager

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.get("/ws/health")
    def health_check():
        """Basic health check endpoint."""
        try:
            stats = manager.get_stats()
        except Exception as e:
            logger.warning("Failed to get stats in health check", error=str(e))
            stats = {"error": "stats_unavailable"}

        return {
            "status": "healthy",
            "service": "chat-gateway",
            "version": app.version,
            "environment": settings.environment,
            **stats,
        }

    @app.websocket("/ws/chat")
    async def chat_websocket(
        websocket: WebSocket,
        token: str = Query("", description="JWT access token"),
    ):
        """
        Chat WebSocket endpoint.

        A missing or invalid token closes the socket with 4001 before it is
        accepted.
        """
        endpoint = ChatEndpoint(websocket, manager, token)
        await endpoint.run()

    return app


app = create_app()
