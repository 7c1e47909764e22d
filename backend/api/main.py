"""
LiveMorph API Main Application.

FastAPI application with CORS, error handling, and lifecycle management.
Requires Python 3.11+.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from streaming.registry import StreamRegistry
from utils.config import Settings, get_settings
from utils.logger import get_logger
from watcher.file_watcher import WatchOptions, start_watcher
from watcher.models import ChangeEvent

logger = get_logger("api")

FILECHANGE_EVENT = "filechange"


def make_change_callback(registry: StreamRegistry):
    """Broadcast callback handed to the file watcher."""

    def on_change(event: ChangeEvent) -> None:
        delivered = registry.broadcast(FILECHANGE_EVENT, event.to_payload())
        logger.info(
            "change_broadcast",
            file=event.file,
            action=event.action.value,
            clients=delivered,
        )

    return on_change


class StreamExemptCORSMiddleware(CORSMiddleware):
    """
    CORS middleware that leaves the streaming endpoint alone.

    The event stream answers its own preflight with 204 and sends its own
    CORS headers, so requests to the exempt paths bypass the middleware.
    """

    def __init__(self, app: ASGIApp, exempt_paths: tuple[str, ...] = (), **kwargs: Any) -> None:
        super().__init__(app, **kwargs)
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] in self.exempt_paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Starts the file watcher on startup; on shutdown stops it and closes
    every open stream.
    """
    settings: Settings = app.state.settings
    registry: StreamRegistry = app.state.registry
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        root=str(settings.watch.root),
    )

    watcher = None
    if settings.watch.enabled:
        try:
            watcher = start_watcher(
                WatchOptions.from_settings(settings),
                make_change_callback(registry),
            )
        except OSError as e:
            # Serve files without live updates
            logger.error("file_watcher_unavailable", error=str(e))
    app.state.watcher = watcher

    yield

    # Cleanup
    logger.info("shutting_down_application")
    if watcher is not None:
        watcher.close()
    registry.close_all()


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings snapshot (defaults to get_settings())

    Returns:
        Configured FastAPI instance
    """
    settings = settings or get_settings()

    application = FastAPI(
        title=settings.app_name,
        description="Live file-change propagation to browsers",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    application.state.settings = settings
    application.state.registry = StreamRegistry()
    application.state.watcher = None

    # CORS middleware
    application.add_middleware(
        StreamExemptCORSMiddleware,
        exempt_paths=(settings.server.events_path,),
        allow_origins=settings.server.cors_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    # Global exception handler
    @application.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )

    # Health check endpoint
    @application.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        watcher = application.state.watcher
        return {
            "status": "healthy",
            "version": settings.app_version,
            "clients": application.state.registry.connection_count,
            "watching": watcher is not None and watcher.is_running,
        }

    # Import and include routers here to avoid circular imports
    from api.routes import events, static

    application.include_router(events.router, prefix=settings.server.events_path, tags=["Events"])
    # Static catch-all must come last
    application.include_router(static.router, tags=["Static"])

    return application
