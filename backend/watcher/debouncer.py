"""
LiveMorph Debouncer.

Debounces rapid file system events.
Requires Python 3.11+.
"""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from utils.logger import LoggerMixin
from watcher.matcher import ActionKind
from watcher.models import ChangeEvent, EventType

DEFAULT_DELAY_MS = 100


@dataclass
class PendingChange:
    """The latest change seen for a path since the last flush."""

    event_type: EventType
    action: ActionKind


class DebounceState(Enum):
    """Timer state: no batch, or a batch waiting for its deadline."""

    IDLE = "idle"
    PENDING = "pending"


class Debouncer(LoggerMixin):
    """
    Debounces rapid file changes.

    Accumulates the latest change per path and triggers the callback once
    per entry after a quiet period with no new changes. One timer governs
    the whole table: any new event restarts the countdown for the batch.

    Must be driven from the event loop thread.
    """

    def __init__(
        self,
        delay_ms: int = DEFAULT_DELAY_MS,
        callback: Callable[[ChangeEvent], Any] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Initialize the debouncer.

        Args:
            delay_ms: Quiet period in milliseconds before flushing
            callback: Called with one ChangeEvent per flushed path
            loop: Event loop for the timer (defaults to the running loop)
        """
        self._delay = delay_ms / 1000.0
        self._callback = callback
        self._loop = loop
        self._pending: dict[str, PendingChange] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def state(self) -> DebounceState:
        """Current timer state."""
        return DebounceState.IDLE if self._timer is None else DebounceState.PENDING

    @property
    def deadline(self) -> float | None:
        """Loop time at which the pending batch flushes."""
        return self._timer.when() if self._timer is not None else None

    def record(self, path: str, event_type: EventType, action: ActionKind) -> None:
        """
        Record a raw change and restart the shared timer.

        A later event for the same path overwrites the earlier one.

        Args:
            path: Changed path relative to the watch root
            event_type: Raw notification kind
            action: Classified reaction for the path
        """
        if self._closed:
            return

        self._pending[path] = PendingChange(event_type=event_type, action=action)

        if self._timer is not None:
            self._timer.cancel()

        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._process_pending)

    def _process_pending(self) -> None:
        """Timer callback: drain the table and dispatch."""
        self._timer = None
        self._dispatch(self._drain())

    def _drain(self) -> list[ChangeEvent]:
        pending, self._pending = self._pending, {}
        return [
            ChangeEvent(file=path, event_type=change.event_type, action=change.action)
            for path, change in pending.items()
        ]

    def _dispatch(self, events: list[ChangeEvent]) -> None:
        if not events or self._callback is None:
            return

        self.log.debug("processing_debounced_changes", count=len(events))

        for event in events:
            self.log.info(
                "dispatching_change",
                file=event.file,
                event_type=event.event_type,
                action=event.action.value,
            )
            try:
                result = self._callback(event)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception as e:
                self.log.error("debounce_callback_failed", file=event.file, error=str(e))

    def flush(self) -> list[ChangeEvent]:
        """
        Immediately process all pending changes.

        Returns:
            The events that were dispatched
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        events = self._drain()
        self._dispatch(events)
        return events

    def clear(self) -> None:
        """Clear all pending changes without processing."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()

    def close(self) -> None:
        """Cancel the timer and refuse further events. Idempotent."""
        self._closed = True
        self.clear()

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    @property
    def pending_count(self) -> int:
        """Get number of pending changes."""
        return len(self._pending)

    @property
    def pending_paths(self) -> list[str]:
        """Get list of paths with pending changes."""
        return list(self._pending.keys())
