"""
LiveMorph Backend Utilities Package.

Common utilities shared across all backend modules.
Requires Python 3.11+.
"""

from utils.config import Settings, get_settings, load_config, set_settings
from utils.logger import configure_logging, get_logger, logger, LoggerMixin

__all__ = [
    "Settings",
    "get_settings",
    "load_config",
    "set_settings",
    "configure_logging",
    "get_logger",
    "logger",
    "LoggerMixin",
]
