"""
LiveMorph Streaming Channel.

One-way Server-Sent Events channel to a single browser client.
Requires Python 3.11+.
"""

import asyncio
import itertools
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fastapi.responses import StreamingResponse

from utils.logger import LoggerMixin

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "X-Accel-Buffering": "no",
}

# Outbound messages buffered per client before writes start failing
DEFAULT_BUFFER_SIZE = 256

_channel_ids = itertools.count(1)

SSEHandler = Callable[["SSEChannel"], Awaitable[None]]


class ChannelWriteError(Exception):
    """A message could not be queued for a client."""


def _encode_data(data: str | Any) -> str:
    return data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))


def format_message(data: str | Any, event: str | None = None) -> str:
    """
    Encode one SSE message block.

    Multi-line string data is split over several ``data:`` lines so the
    client reassembles it unchanged.
    """
    lines = []
    if event is not None:
        lines.append(f"event: {event}")
    lines.extend(f"data: {line}" for line in _encode_data(data).split("\n"))
    return "\n".join(lines) + "\n\n"


class SSEChannel(LoggerMixin):
    """
    A push channel over one long-lived HTTP response.

    Writes go to a bounded queue drained by ``stream()``, which is used as
    the response body. Every write is a no-op once the channel is closed.
    ``close()`` is idempotent and runs the close callbacks exactly once,
    whichever path triggered it: client disconnect, handler completion or
    failure, or an explicit call.
    """

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        """
        Initialize the channel.

        Args:
            buffer_size: Maximum queued messages before writes fail
        """
        self.channel_id = next(_channel_ids)
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=buffer_size + 1)
        self._buffer_size = buffer_size
        self._aborted = asyncio.Event()
        self._close_callbacks: list[Callable[["SSEChannel"], Any]] = []
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<SSEChannel #{self.channel_id} {state}>"

    @property
    def closed(self) -> bool:
        """Whether the channel has been closed."""
        return self._aborted.is_set()

    def _write(self, chunk: str) -> None:
        if self.closed:
            return
        if self._queue.qsize() >= self._buffer_size:
            raise ChannelWriteError(f"channel {self.channel_id} buffer full")
        self._queue.put_nowait(chunk)

    def send(self, data: str | Any) -> None:
        """Send an unnamed message; non-string data is JSON encoded."""
        self._write(format_message(data))

    def event(self, name: str, data: str | Any) -> None:
        """Send a named event; non-string data is JSON encoded."""
        self._write(format_message(data, event=name))

    def id(self, value: str) -> None:
        """Set the client's last event id."""
        self._write(f"id: {value}\n\n")

    def retry(self, delay_ms: int) -> None:
        """Set the client's reconnection delay."""
        self._write(f"retry: {int(delay_ms)}\n\n")

    def comment(self, text: str = "") -> None:
        """Send a comment line, ignored by clients; used as keepalive."""
        self._write(f": {text}\n\n")

    def on_close(self, callback: Callable[["SSEChannel"], Any]) -> None:
        """Register cleanup to run once when the channel closes."""
        if self.closed:
            callback(self)
            return
        self._close_callbacks.append(callback)

    def close(self) -> None:
        """
        Close the channel.

        Ends the response body and marks the channel aborted. Subsequent
        calls are no-ops.
        """
        if self.closed:
            return
        self._aborted.set()

        # End the write side; the sentinel bypasses the buffer limit
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                self.log.error("channel_close_callback_failed", channel=self.channel_id, error=str(e))

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait_closed(self) -> None:
        """Suspend until the channel is closed."""
        await self._aborted.wait()

    async def idle(self, keepalive_seconds: float | None = None) -> None:
        """
        Suspend until the channel closes, sending periodic keepalives.

        Args:
            keepalive_seconds: Interval between comment lines; None disables them
        """
        while not self.closed:
            try:
                await asyncio.wait_for(self.wait_closed(), timeout=keepalive_seconds)
            except TimeoutError:
                self.comment("keepalive")

    def start(self, handler: SSEHandler) -> asyncio.Task[None]:
        """
        Run the per-connection handler as an independent task.

        Handler errors are logged and close this channel only.
        """
        self._task = asyncio.create_task(
            self._run(handler), name=f"sse-channel-{self.channel_id}"
        )
        return self._task

    async def _run(self, handler: SSEHandler) -> None:
        try:
            await handler(self)
        except asyncio.CancelledError:
            pass
        except ChannelWriteError as e:
            self.log.warning("channel_write_failed", channel=self.channel_id, error=str(e))
        except Exception:
            self.log.exception("sse_handler_failed", channel=self.channel_id)
        finally:
            self.close()

    async def stream(self) -> AsyncIterator[str]:
        """
        Response body: yields encoded messages until the channel closes.

        Cancellation or closing of the iterator (client disconnect) closes
        the channel.
        """
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            self.close()


def create_sse_response(
    handler: SSEHandler,
    on_close: Callable[[SSEChannel], Any] | None = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> StreamingResponse:
    """
    Open a channel, start its handler and return the streaming response.

    Args:
        handler: Coroutine function driving the channel
        on_close: Cleanup run once when the channel closes
        buffer_size: Maximum queued messages per client

    Returns:
        StreamingResponse whose body is the channel's stream
    """
    channel = SSEChannel(buffer_size=buffer_size)
    if on_close is not None:
        channel.on_close(on_close)
    channel.start(handler)
    return StreamingResponse(
        channel.stream(),
        status_code=200,
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
