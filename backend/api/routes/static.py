"""
LiveMorph Static File Routes.

Serves project files from disk and the browser client script.
Requires Python 3.11+.
"""

from collections.abc import Sequence
from html import escape
from pathlib import Path

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import FileResponse, PlainTextResponse

from api.dependencies import get_app_settings
from utils.config import Settings
from utils.logger import get_logger

router = APIRouter()
logger = get_logger("api.static")

CLIENT_SCRIPT_PATH = "/__livemorph/livemorph.js"
CLIENT_SCRIPT_FILE = Path(__file__).resolve().parents[2] / "client" / "static" / "livemorph.js"

CLIENT_SCRIPT_TAG = f'<script src="{CLIENT_SCRIPT_PATH}" data-livemorph></script>'

MIME_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
}

DEFAULT_MIME = "application/octet-stream"

NO_CACHE = {"Cache-Control": "no-cache"}


def content_type_for(path: Path) -> str:
    """MIME type for a file, by extension."""
    return MIME_TYPES.get(path.suffix.lower(), DEFAULT_MIME)


def inject_client_script(html: str, dependencies: Sequence[str] = ()) -> str:
    """
    Insert the client script tag before ``</body>``, or append it.

    Args:
        html: Page markup
        dependencies: Script URLs loaded ahead of the client, e.g. Idiomorph

    Returns:
        Markup with the tags inserted, unchanged if already present
    """
    if "data-livemorph" in html:
        return html
    tags = "".join(
        f'<script src="{escape(url)}" data-livemorph-dependency></script>\n'
        for url in dependencies
    ) + CLIENT_SCRIPT_TAG
    for marker in ("</body>", "</html>"):
        index = html.lower().rfind(marker)
        if index != -1:
            return html[:index] + tags + "\n" + html[index:]
    return html + tags


def _dependencies(settings: Settings) -> tuple[str, ...]:
    url = settings.static.idiomorph_url
    return (url,) if url else ()


def serve_static(url_path: str, settings: Settings) -> Response | None:
    """
    Resolve a request path to a file response.

    Args:
        url_path: Request path, e.g. ``/css/app.css``
        settings: Settings snapshot (static root, index file)

    Returns:
        File response, 403 for traversal attempts, or None when no file exists
    """
    if ".." in url_path:
        return PlainTextResponse("Forbidden", status_code=403)

    root = settings.static_root.resolve()
    relative = url_path.lstrip("/") or settings.static.index_file
    file_path = (root / relative).resolve()

    if file_path.is_dir():
        file_path = file_path / settings.static.index_file

    try:
        file_path.relative_to(root)
    except ValueError:
        return PlainTextResponse("Forbidden", status_code=403)

    if not file_path.is_file():
        return None

    content_type = content_type_for(file_path)

    if content_type == "text/html" and settings.static.inject_client:
        try:
            html = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("static_file_read_failed", path=str(file_path), error=str(e))
            return PlainTextResponse("Server Error", status_code=500)
        return Response(
            content=inject_client_script(html, _dependencies(settings)),
            media_type=content_type,
            headers=NO_CACHE,
        )

    return FileResponse(file_path, media_type=content_type, headers=NO_CACHE)


@router.get(CLIENT_SCRIPT_PATH)
async def client_script() -> FileResponse:
    """The browser client agent."""
    return FileResponse(CLIENT_SCRIPT_FILE, media_type=MIME_TYPES[".js"], headers=NO_CACHE)


@router.get("/{path:path}")
async def static_file(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Serve a project file, falling back to 404."""
    response = serve_static(request.url.path, settings)
    if response is None:
        return PlainTextResponse("Not found", status_code=404)
    return response
