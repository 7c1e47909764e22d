"""
LiveMorph Client Agent.

Connects to the event stream, reconnects with exponential backoff and
performs the page action for each file change.
Requires Python 3.11+.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from client.dom import Element, parse_html
from client.morph import is_events_container, morph
from utils.logger import LoggerMixin

DEFAULT_RECONNECT_DELAY_MS = 2000
MAX_RECONNECT_DELAY_MS = 30000
BACKOFF_FACTOR = 1.5

DEFAULT_FRAGMENTS = {"main": "#main"}


def backoff_delay(
    attempts: int,
    base_ms: float = DEFAULT_RECONNECT_DELAY_MS,
    cap_ms: float = MAX_RECONNECT_DELAY_MS,
) -> float:
    """
    Reconnect delay after ``attempts`` consecutive failures.

    Returns:
        ``min(base_ms * 1.5 ** attempts, cap_ms)`` in milliseconds
    """
    if attempts < 0:
        raise ValueError("attempts must be non-negative")
    # Past this point the product overflows float range
    if attempts > 1000:
        return cap_ms
    return min(base_ms * BACKOFF_FACTOR ** attempts, cap_ms)


@dataclass
class SSEMessage:
    """One dispatched server-sent message."""

    event: str = "message"
    data: str = ""
    id: str | None = None

    def json(self) -> Any:
        return json.loads(self.data)


class SSEParser:
    """
    Incremental parser for the ``text/event-stream`` format.

    Feed it lines without their terminators; a blank line dispatches the
    message accumulated so far.
    """

    def __init__(self) -> None:
        self.last_event_id: str | None = None
        self.retry_ms: int | None = None
        self._event: str | None = None
        self._data: list[str] = []

    def feed_line(self, line: str) -> SSEMessage | None:
        """Consume one line; return a message when one is complete."""
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self.retry_ms = int(value)
        return None

    def _dispatch(self) -> SSEMessage | None:
        event, data = self._event, self._data
        self._event, self._data = None, []
        if not data:
            return None
        return SSEMessage(event=event or "message", data="\n".join(data), id=self.last_event_id)


class Page(Protocol):
    """The page a client agent acts on."""

    async def reload(self) -> None: ...

    async def reload_css(self) -> None: ...

    async def morph_html(self, fragments: Mapping[str, str]) -> None: ...


@dataclass
class ClientState:
    """Connection state of one client agent."""

    server_config: dict[str, Any] | None = None
    connected: bool = False
    connect_attempts: int = 0
    transport: httpx.Response | None = field(default=None, repr=False)


class LiveMorphClient(LoggerMixin):
    """
    Client agent for the LiveMorph event stream.

    State machine: connecting -> open -> error/closed -> connecting ...
    ``connect_attempts`` counts consecutive failures since the last
    successful open and drives the reconnect backoff.
    """

    def __init__(
        self,
        page: Page,
        host: str = "localhost",
        port: int = 4321,
        https: bool = False,
        events_path: str = "/events",
        reconnect_delay_ms: float = DEFAULT_RECONNECT_DELAY_MS,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the client.

        Args:
            page: Target of reload / CSS / morph actions
            host: Server host, until the server advertises its own
            port: Server port, until the server advertises its own
            https: Whether to connect over TLS
            events_path: Path of the streaming endpoint
            reconnect_delay_ms: Backoff base delay
            http_client: Shared httpx client (one is created if omitted)
            sleep: Awaitable used to wait out the backoff delay
        """
        self.page = page
        self.host = host
        self.port = port
        self.https = https
        self.events_path = events_path
        self.reconnect_delay_ms = reconnect_delay_ms
        self.state = ClientState()
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        self._owns_http = http_client is None
        self._sleep = sleep
        self._stopped = False

    @property
    def url(self) -> str:
        """Streaming endpoint URL, honouring server-advertised settings."""
        scheme = "https" if self.https else "http"
        return f"{scheme}://{self.host}:{self.port}{self.events_path}"

    @property
    def fragments(self) -> dict[str, str]:
        """Fragment selectors advertised by the server."""
        fragments = (self.state.server_config or {}).get("fragments")
        if isinstance(fragments, Mapping) and fragments:
            return dict(fragments)
        return dict(DEFAULT_FRAGMENTS)

    def next_delay(self) -> float:
        """Delay before the next reconnect, in milliseconds."""
        return backoff_delay(self.state.connect_attempts, self.reconnect_delay_ms)

    async def run(self) -> None:
        """Connect and keep reconnecting until stop() is called."""
        while not self._stopped:
            await self.connect_once()
            if self._stopped:
                break
            delay = self.on_error()
            await self._sleep(delay / 1000.0)

    async def connect_once(self) -> None:
        """Open one stream and process it until it ends or fails."""
        self.log.debug("connecting", url=self.url)
        try:
            async with self._http.stream(
                "GET", self.url, headers={"Accept": "text/event-stream"}
            ) as response:
                response.raise_for_status()
                self.state.transport = response
                self.on_open()
                parser = SSEParser()
                async for line in response.aiter_lines():
                    message = parser.feed_line(line)
                    if parser.retry_ms is not None:
                        self.reconnect_delay_ms = parser.retry_ms
                    if message is not None:
                        await self.handle_message(message)
                    if self._stopped:
                        break
        except (httpx.HTTPError, httpx.StreamError) as e:
            self.log.debug("connection_error", url=self.url, error=str(e))
        finally:
            self.state.transport = None

    def on_open(self) -> None:
        """Transport opened."""
        self.log.debug("connection_established", url=self.url)
        self.state.connected = True
        self.state.connect_attempts = 0

    def on_error(self) -> float:
        """
        Transport failed or ended.

        Returns:
            Delay in milliseconds before reconnecting
        """
        self.state.connected = False
        delay = self.next_delay()
        self.state.connect_attempts += 1
        self.log.debug("reconnecting", delay_ms=delay, attempts=self.state.connect_attempts)
        return delay

    async def handle_message(self, message: SSEMessage) -> None:
        """
        Dispatch one message by event name.

        Payloads that are not JSON objects are logged and skipped.
        """
        if message.event not in ("connected", "filechange"):
            self.log.debug("event_ignored", event=message.event)
            return

        try:
            data = message.json()
        except ValueError as e:
            self.log.warning("malformed_message", event=message.event, error=str(e))
            return
        if not isinstance(data, Mapping):
            self.log.warning("malformed_message", event=message.event, error="not an object")
            return

        if message.event == "connected":
            self.handle_connected(data)
        else:
            await self.handle_file_change(data)

    def handle_connected(self, data: Mapping[str, Any]) -> None:
        """Adopt the server's configuration for future (re)connections."""
        config = data.get("config")
        config = dict(config) if isinstance(config, Mapping) else {}
        self.state.server_config = config
        self.log.debug("connected_to_server", message=data.get("message"))
        if isinstance(config.get("host"), str) and config["host"]:
            self.host = config["host"]
        port = config.get("port")
        if isinstance(port, int) and not isinstance(port, bool) and port > 0:
            self.port = port
        if isinstance(config.get("https"), bool):
            self.https = config["https"]

    async def handle_file_change(self, data: Mapping[str, Any]) -> None:
        """Perform the page action named by a ``filechange`` payload."""
        action = data.get("action")
        self.log.debug("file_change", file=data.get("file"), action=action)
        try:
            if action == "reload-page":
                await self.page.reload()
            elif action == "reload-css":
                await self.page.reload_css()
            elif action == "morph-html":
                await self.page.morph_html(self.fragments)
            else:
                self.log.info("unknown_action", action=action)
        except Exception as e:
            self.log.warning("page_action_failed", action=action, error=str(e))

    async def stop(self) -> None:
        """Disconnect and stop reconnecting."""
        self._stopped = True
        self.state.connected = False
        if self.state.transport is not None:
            await self.state.transport.aclose()
        if self._owns_http:
            await self._http.aclose()


def cache_bust(href: str, stamp: int | None = None) -> str:
    """Replace an href's query string with a timestamp."""
    stamp = stamp if stamp is not None else time.time_ns() // 1_000_000
    return f"{href.split('?', 1)[0]}?{stamp}"


class HeadlessPage(LoggerMixin):
    """
    In-memory page for the headless client.

    Holds a parsed document fetched from ``url`` and applies the client
    actions to it.
    """

    def __init__(self, url: str, http_client: httpx.AsyncClient, document: Element | None = None) -> None:
        self.url = url
        self._http = http_client
        self.document = document
        self.reload_count = 0

    async def load(self) -> Element:
        response = await self._http.get(self.url)
        response.raise_for_status()
        self.document = parse_html(response.text)
        return self.document

    async def reload(self) -> None:
        self.reload_count += 1
        await self.load()

    async def reload_css(self) -> None:
        if self.document is None:
            return
        stamp = time.time_ns() // 1_000_000
        for link in self.document.query_selector_all('link[rel="stylesheet"]'):
            href = link.get("href")
            if href:
                link.attrs["href"] = cache_bust(href, stamp)

    async def morph_html(self, fragments: Mapping[str, str]) -> None:
        if self.document is None:
            await self.load()
            return

        response = await self._http.get(self.url, headers={"X-LiveMorph": "1"})
        response.raise_for_status()
        fresh = parse_html(response.text)

        for name, selector in fragments.items():
            target = self.document.query_selector(selector)
            source = fresh.query_selector(selector)
            if target is None:
                self.log.debug("morph_target_missing", fragment=name, selector=selector)
                continue
            if source is None:
                self.log.debug("morph_source_missing", fragment=name, selector=selector)
                continue
            self.log.debug("morphing_fragment", fragment=name, selector=selector)
            morph(target, source, skip=is_events_container)
