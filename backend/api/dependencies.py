"""
LiveMorph API Dependencies.

Shared dependencies for FastAPI routes.
Requires Python 3.11+.
"""

from fastapi import Request

from streaming.registry import StreamRegistry
from utils.config import Settings


def get_registry(request: Request) -> StreamRegistry:
    """The stream registry owned by the running application."""
    return request.app.state.registry


def get_app_settings(request: Request) -> Settings:
    """The settings snapshot the application was created with."""
    return request.app.state.settings
