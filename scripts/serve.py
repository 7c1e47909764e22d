#!/usr/bin/env python3
"""
LiveMorph Development Server Script.

Serves a project directory and pushes file changes to connected browsers.
Requires Python 3.11+.

Usage:
    python scripts/serve.py /path/to/site --port 4321
"""

import argparse
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import uvicorn

from api.main import create_app
from utils.config import Settings, load_config, set_settings
from utils.logger import configure_logging, get_logger

logger = get_logger("serve")


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply command-line overrides on top of the loaded configuration."""
    server = {
        key: value
        for key, value in (("host", args.host), ("port", args.port))
        if value is not None
    }
    updates: dict = {}
    if server:
        updates["server"] = settings.server.model_copy(update=server)
    if args.log_level:
        updates["logging"] = settings.logging.model_copy(update={"level": args.log_level})
    return settings.model_copy(update=updates) if updates else settings


def run(settings: Settings) -> None:
    """Run the server until interrupted."""
    ssl_options = {}
    if settings.server.https:
        if settings.server.ssl_certfile and settings.server.ssl_keyfile:
            ssl_options = {
                "ssl_certfile": str(settings.server.ssl_certfile),
                "ssl_keyfile": str(settings.server.ssl_keyfile),
            }
        else:
            logger.warning("https_without_certificates", hint="serving plain HTTP")

    app = create_app(settings)
    scheme = "https" if ssl_options else "http"
    logger.info(
        "server_starting",
        url=f"{scheme}://{settings.server.host}:{settings.server.port}",
        root=str(settings.watch.root),
    )

    try:
        uvicorn.run(
            app,
            host=settings.server.host,
            port=settings.server.port,
            log_config=None,
            **ssl_options,
        )
    except SystemExit as e:
        if e.code not in (0, None):
            logger.error(
                "server_start_failed",
                host=settings.server.host,
                port=settings.server.port,
                hint="is the port already in use?",
            )
        raise


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Serve a directory and live-update browsers on file changes"
    )
    parser.add_argument(
        "root",
        type=Path,
        nargs="?",
        default=Path.cwd(),
        help="Project directory to watch and serve",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: <root>/livemorph.config.json)",
    )
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()

    if not args.root.is_dir():
        print(f"Error: {args.root} is not a directory", file=sys.stderr)
        sys.exit(1)

    settings = apply_overrides(load_config(args.root, args.config), args)
    set_settings(settings)
    configure_logging(settings)

    run(settings)


if __name__ == "__main__":
    main()
