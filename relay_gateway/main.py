"""
Signal Relay main application.

Accepts peer WebSocket connections on a single path, assigns each one an id
and relays signaling messages between them.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from shared.config.settings import Settings, get_settings
from shared.config.logging import setup_logging, relay_logger as logger
from relay_gateway import __version__
from relay_gateway.connection_manager import RelayManager
from relay_gateway.components.endpoints.peer import PeerEndpoint
from relay_gateway.components.metrics.prometheus import generate_prometheus_metrics


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Starts the liveness monitor; on exit notifies and closes every peer.
    """
    config: Settings = app.state.settings
    manager: RelayManager = app.state.manager

    setup_logging(config)
    for problem in config.validate_production_settings():
        logger.warning("Configuration problem", problem=problem)

    logger.info(
        "Starting Signal Relay",
        port=config.port,
        path=config.ws_path,
        max_clients=config.max_clients,
        env=config.environment,
    )
    manager.start_monitor()

    yield

    logger.info("Shutting down Signal Relay")
    await manager.shutdown()


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(config: Settings | None = None) -> FastAPI:
    """
    Build the relay application.

    Each application owns its own RelayManager, reachable as
    ``app.state.manager``.

    Args:
        config: Settings to use. Defaults to the cached environment settings.
    """
    config = config or get_settings()

    app = FastAPI(
        title="Signal Relay",
        description="WebSocket rendezvous and signaling relay",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.manager = RelayManager(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.origins or ["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # =========================================================================
    # HTTP routes
    # =========================================================================

    @app.get("/ws/health")
    def health_check():
        """Basic health check endpoint."""
        try:
            stats = app.state.manager.get_stats()
        except Exception as e:
            logger.warning("Failed to get stats in health check", error=str(e))
            stats = {"error": "stats_unavailable"}
        return {
            "status": "healthy",
            "service": "signal-relay",
            "version": app.version,
            "environment": config.environment,
            **stats,
        }

    @app.get("/ws/metrics")
    def prometheus_metrics():
        """
        Prometheus-compatible metrics endpoint.

        Usage:
            curl http://localhost:5000/ws/metrics
        """
        return PlainTextResponse(
            content=generate_prometheus_metrics(app.state.manager),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # The relay path only speaks WebSocket; a plain GET on it is refused
    @app.get(config.ws_path, include_in_schema=False)
    def websocket_only():
        return PlainTextResponse("Forbidden - WebSocket connections only", status_code=403)

    # =========================================================================
    # WebSocket endpoint
    # =========================================================================

    @app.websocket(config.ws_path)
    async def relay_websocket(websocket: WebSocket):
        """WebSocket endpoint for relay peers."""
        endpoint = PeerEndpoint(websocket, app.state.manager, config.ws_path)
        await endpoint.run()

    return app


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "relay_gateway.main:create_app",
        factory=True,
        host=get_settings().host,
        port=get_settings().port,
        reload=True,
    )
