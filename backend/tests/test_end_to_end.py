"""
End-to-end test: file change to client action.

Requires Python 3.11+.
"""

import asyncio
import re

import httpx
import pytest

from api.main import make_change_callback
from api.routes.events import make_client_handler
from client.agent import HeadlessPage, LiveMorphClient, SSEParser
from client.dom import parse_html
from streaming.channel import SSEChannel
from streaming.registry import StreamRegistry
from watcher.file_watcher import FileWatcher, WatchOptions


async def deliver(stream, client: LiveMorphClient, count: int) -> list[str]:
    """Feed ``count`` messages from a channel stream into a client agent."""
    parser = SSEParser()
    names = []
    while len(names) < count:
        chunk = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
        for line in chunk.split("\n"):
            message = parser.feed_line(line)
            if message is not None:
                names.append(message.event)
                await client.handle_message(message)
    return names


class TestChangePropagation:
    """A stylesheet save reaches every connected page as one CSS reload."""

    @pytest.mark.asyncio
    async def test_css_change_reloads_stylesheets(self, settings, site_root):
        registry = StreamRegistry()
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        clients = []
        for _ in range(2):
            channel = SSEChannel()
            channel.on_close(registry.unregister)
            channel.start(make_client_handler(registry, settings))
            page = HeadlessPage(
                "http://localhost:4321/",
                http,
                parse_html((site_root / "index.html").read_text()),
            )
            client = LiveMorphClient(page, http_client=http)
            clients.append((channel, channel.stream(), page, client))

        for _, stream, _, client in clients:
            assert await deliver(stream, client, 1) == ["connected"]
        assert registry.connection_count == 2

        watcher = FileWatcher(
            WatchOptions.from_settings(settings),
            make_change_callback(registry),
            loop=asyncio.get_running_loop(),
        )
        watcher.handle_raw_event(str(site_root / "app.css"), "modify")
        await asyncio.sleep(0.02)
        watcher.handle_raw_event(str(site_root / "app.css"), "modify")

        for channel, stream, page, client in clients:
            assert await deliver(stream, client, 1) == ["filechange"]
            link = page.document.query_selector('link[rel="stylesheet"]')
            assert re.fullmatch(r"/app\.css\?\d+", link.get("href"))
            assert page.reload_count == 0

        # Nothing further was queued for either client
        await asyncio.sleep(0.1)
        for channel, stream, _, _ in clients:
            assert channel._queue.empty()
            channel.close()

        watcher.close()
        await http.aclose()
