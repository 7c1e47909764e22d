"""
LiveMorph File Watcher.

Cross-platform file system monitoring using watchdog.
Requires Python 3.11+.
"""

import asyncio
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from utils.config import DEFAULT_ACTIONS, Settings
from utils.logger import LoggerMixin
from watcher.debouncer import DEFAULT_DELAY_MS, Debouncer
from watcher.matcher import ActionKind, classify, is_includable
from watcher.models import ChangeEvent, EventType


@dataclass(frozen=True)
class WatchOptions:
    """What to watch and how to classify it."""

    root: Path
    paths: tuple[str, ...] = ("**/*",)
    ignore: tuple[str, ...] = ()
    actions: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_ACTIONS))
    debounce_delay_ms: int = DEFAULT_DELAY_MS

    @classmethod
    def from_settings(cls, settings: Settings) -> "WatchOptions":
        """Build watch options from the settings snapshot."""
        return cls(
            root=settings.watch.root,
            paths=tuple(settings.watch.paths),
            ignore=tuple(settings.watch.ignore),
            actions=dict(settings.actions),
            debounce_delay_ms=settings.watch.debounce_delay_ms,
        )


class LiveMorphEventHandler(FileSystemEventHandler, LoggerMixin):
    """
    Translates watchdog events into raw (path, event type) notifications.

    Directory events are dropped. Runs on the observer thread and only
    hands paths to ``submit``.
    """

    def __init__(self, submit: Callable[[str, EventType], None]) -> None:
        """
        Initialize the event handler.

        Args:
            submit: Receives the absolute path and raw event type
        """
        super().__init__()
        self._submit = submit

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation."""
        if not event.is_directory:
            self._submit(os.fsdecode(event.src_path), "rename")

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file deletion."""
        if not event.is_directory:
            self._submit(os.fsdecode(event.src_path), "rename")

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        if not event.is_directory:
            self._submit(os.fsdecode(event.src_path), "modify")

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        """Handle file move/rename: both ends count as a rename."""
        if event.is_directory:
            return
        self._submit(os.fsdecode(event.src_path), "rename")
        self._submit(os.fsdecode(event.dest_path), "rename")


class FileWatcher(LoggerMixin):
    """
    Watches a directory tree and reports classified, debounced changes.

    Raw notifications are filtered by the inclusion/ignore patterns on the
    observer thread, then marshalled onto the event loop where the
    debouncer coalesces them. ``on_change`` is called once per flushed
    path, on the loop thread.
    """

    def __init__(
        self,
        options: WatchOptions,
        on_change: Callable[[ChangeEvent], Any],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Initialize the file watcher.

        Args:
            options: Root directory, patterns and action rules
            on_change: Callback for each debounced change
            loop: Loop that owns the debouncer (defaults to the running loop)
        """
        self._options = options
        self._root = options.root.resolve()
        self._on_change = on_change
        self._loop = loop
        self._debouncer: Debouncer | None = None
        self._observer: Observer | None = None
        self._handler = LiveMorphEventHandler(self.handle_raw_event)
        self._closed = False

    @property
    def root(self) -> Path:
        """Resolved watch root."""
        return self._root

    @property
    def debouncer(self) -> Debouncer:
        """The debouncer, created on first use."""
        if self._debouncer is None:
            loop = self._loop or asyncio.get_running_loop()
            self._loop = loop
            self._debouncer = Debouncer(
                delay_ms=self._options.debounce_delay_ms,
                callback=self._on_change,
                loop=loop,
            )
        return self._debouncer

    def relative_path(self, path: str) -> str | None:
        """Path relative to the watch root, '/'-separated, or None if outside."""
        try:
            return Path(path).resolve().relative_to(self._root).as_posix()
        except (ValueError, OSError):
            return None

    def start(self) -> "FileWatcher":
        """Start watching for file changes."""
        if self._observer is not None or self._closed:
            return self

        # Bind the loop and debouncer before events can arrive
        _ = self.debouncer

        observer = Observer()
        try:
            observer.schedule(self._handler, str(self._root), recursive=True)
            observer.start()
        except OSError as e:
            self.log.error("file_watcher_start_failed", path=str(self._root), error=str(e))
            raise
        self._observer = observer

        self.log.info(
            "file_watcher_started",
            path=str(self._root),
            paths=list(self._options.paths),
            ignore=list(self._options.ignore),
        )
        return self

    def handle_raw_event(self, path: str, event_type: EventType) -> None:
        """
        Filter and classify one raw notification.

        Safe to call from any thread.
        """
        if self._closed or not path:
            return

        relative = self.relative_path(path)
        if relative is None:
            return

        if not is_includable(relative, self._options.paths, self._options.ignore):
            return

        action = classify(relative, self._options.actions)
        self.log.debug("file_change_detected", file=relative, event_type=event_type)

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._record, relative, event_type, action)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass

    def _record(self, relative: str, event_type: EventType, action: ActionKind) -> None:
        if not self._closed:
            self.debouncer.record(relative, event_type, action)

    def close(self) -> None:
        """
        Stop watching and cancel any pending dispatch.

        No ``on_change`` call happens after this returns when called from
        the loop thread. Safe to call more than once or after a failed start.
        """
        if self._closed:
            return
        self._closed = True

        if self._debouncer is not None:
            self._debouncer.close()

        if self._observer is not None:
            try:
                self._observer.stop()
                self._observer.join(timeout=5.0)
            except RuntimeError as e:
                self.log.warning("file_watcher_stop_failed", error=str(e))
            self._observer = None

        self.log.info("file_watcher_stopped")

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._observer is not None and not self._closed

    @property
    def pending_count(self) -> int:
        """Get number of pending changes."""
        return self._debouncer.pending_count if self._debouncer is not None else 0


def start_watcher(
    options: WatchOptions,
    on_change: Callable[[ChangeEvent], Any],
    loop: asyncio.AbstractEventLoop | None = None,
) -> FileWatcher:
    """
    Create and start a file watcher.

    Args:
        options: Root directory, patterns and action rules
        on_change: Callback for each debounced change
        loop: Event loop for dispatch (defaults to the running loop)

    Returns:
        Running FileWatcher; call ``close()`` to stop it
    """
    return FileWatcher(options, on_change, loop=loop).start()
