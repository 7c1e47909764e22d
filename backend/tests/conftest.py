"""
LiveMorph Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

from pathlib import Path
from typing import Any

import pytest

from utils.config import Settings, StaticSettings, WatchSettings


class RecordingChannel:
    """Stand-in connection that records the events it is sent."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[tuple[str, Any]] = []
        self.closed = False
        self.close_calls = 0

    def event(self, name: str, data: Any) -> None:
        if self.fail:
            raise ConnectionResetError("client went away")
        self.events.append((name, data))

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def site_root(tmp_path: Path) -> Path:
    """A small site with a page, a stylesheet and a script."""
    (tmp_path / "index.html").write_text(
        "<!DOCTYPE html>\n<html><head>"
        '<link rel="stylesheet" href="/app.css">'
        "</head><body>"
        '<main id="main"><h1>Hello</h1><div id="events"></div></main>'
        "</body></html>\n"
    )
    (tmp_path / "app.css").write_text("body { margin: 0; }\n")
    (tmp_path / "app.js").write_text("console.log('hi');\n")
    (tmp_path / "notes.txt").write_text("plain text\n")
    return tmp_path


@pytest.fixture
def settings(site_root: Path) -> Settings:
    """Settings rooted at the test site, with the file watcher disabled."""
    return Settings(
        watch=WatchSettings(root=site_root, enabled=False, debounce_delay_ms=50),
        static=StaticSettings(root=site_root),
        actions={"*.css": "reload-css", "*.html": "morph-html"},
        fragments={"main": "#main"},
    )


@pytest.fixture
def recording_channel() -> RecordingChannel:
    """A connection that records events."""
    return RecordingChannel()
