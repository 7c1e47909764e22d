"""
LiveMorph Event Stream Routes.

Real-time change notifications via Server-Sent Events.
Requires Python 3.11+.
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import StreamingResponse

from api.dependencies import get_app_settings, get_registry
from streaming.channel import SSE_HEADERS, SSEChannel, create_sse_response
from streaming.registry import StreamRegistry
from utils.config import Settings
from utils.logger import get_logger

router = APIRouter()
logger = get_logger("api.events")

CONNECTED_MESSAGE = "Connected to LiveMorph server"

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": SSE_HEADERS["Access-Control-Allow-Origin"],
    "Access-Control-Allow-Methods": SSE_HEADERS["Access-Control-Allow-Methods"],
    "Access-Control-Allow-Headers": "*",
}


def make_client_handler(registry: StreamRegistry, settings: Settings):
    """
    Build the per-connection handler.

    The handler greets the client with the ``connected`` event carrying
    the client configuration, registers the channel for broadcasts, and
    idles with keepalives until the client goes away.
    """

    async def handle_client(channel: SSEChannel) -> None:
        channel.event(
            "connected",
            {"message": CONNECTED_MESSAGE, "config": settings.client_config()},
        )
        registry.register(channel)
        await channel.idle(settings.server.keepalive_seconds)

    return handle_client


@router.get("")
async def event_stream(
    registry: StreamRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """
    Main streaming endpoint for change notifications.

    Clients receive:
    - ``connected`` once, with the server configuration
    - ``filechange`` for every debounced file change
    - comment keepalives while idle
    """
    logger.debug("stream_requested")
    return create_sse_response(
        make_client_handler(registry, settings),
        on_close=registry.unregister,
    )


@router.options("")
async def event_stream_preflight() -> Response:
    """Cross-origin preflight: no content."""
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)
