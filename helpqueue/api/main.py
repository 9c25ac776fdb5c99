"""
FastAPI application entry point.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware

from helpqueue import __version__
from helpqueue.api.routes import commands_router, health_router, servers_router
from helpqueue.api.websocket import EventStreamExtension, WebSocketManager, websocket_handler
from helpqueue.config import get_settings
from helpqueue.core.registry import ServerRegistry
from helpqueue.extensions.metrics import MetricsExtension
from helpqueue.observability.logging import setup_logging
from helpqueue.observability.metrics import setup_metrics
from helpqueue.observability.tracing import instrument_fastapi, setup_tracing
from helpqueue.scheduler.main import PeriodicUpdater

logger = logging.getLogger(__name__)


def default_extensions(ws_manager: WebSocketManager) -> Callable[[str], list[object]]:
    """
    Build the extension factory for every joined server.

    The event stream is always on; the metrics extension is skipped when
    extensions are disabled.
    """

    def factory(server_id: str) -> list[object]:
        extensions: list[object] = [EventStreamExtension(ws_manager)]
        if not get_settings().disable_extensions:
            extensions.append(MetricsExtension())
        return extensions

    return factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    settings = get_settings()
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)

    registry: ServerRegistry = app.state.registry
    updater = PeriodicUpdater(registry)
    updater_task = asyncio.create_task(updater.start())

    logger.info("Application started")

    yield

    # Shutdown
    await updater.stop()
    await updater_task
    await registry.close()
    logger.info("Application shutdown")


def create_app(
    registry: ServerRegistry | None = None,
    ws_manager: WebSocketManager | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        registry: Server registry to serve. A fresh one with the default
            extensions if not provided.
        ws_manager: Connection manager for live updates. The default
            extensions of a fresh registry stream to it.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Help Queue API",
        description="Office-hours help queues for chat communities",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if ws_manager is None:
        ws_manager = WebSocketManager()
    if registry is None:
        registry = ServerRegistry(extension_factory=default_extensions(ws_manager))
    app.state.registry = registry
    app.state.ws_manager = ws_manager

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(servers_router)
    app.include_router(commands_router)

    # WebSocket endpoint
    @app.websocket("/ws/servers/{server_id}")
    async def server_websocket(websocket: WebSocket, server_id: str):
        """
        WebSocket endpoint for live queue updates.

        Every lifecycle event of the server is pushed to the client.
        """
        if server_id not in app.state.registry:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket_handler(websocket, server_id, app.state.ws_manager)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
