"""
Tests for the Change Debouncer.

Requires Python 3.11+.
"""

import asyncio

import pytest

from watcher.debouncer import DebounceState, Debouncer
from watcher.matcher import ActionKind
from watcher.models import ChangeEvent

DELAY_MS = 50


def make_debouncer(events: list[ChangeEvent], delay_ms: int = DELAY_MS) -> Debouncer:
    """Create a debouncer that collects flushed events."""
    return Debouncer(delay_ms=delay_ms, callback=events.append)


class TestDebouncer:
    """Test cases for Debouncer."""

    @pytest.mark.asyncio
    async def test_burst_for_one_path_collapses(self):
        """Test that N events for the same path emit one event with the last values."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("app.css", "rename", ActionKind.RELOAD_PAGE)
        debouncer.record("app.css", "modify", ActionKind.RELOAD_PAGE)
        debouncer.record("app.css", "modify", ActionKind.RELOAD_CSS)
        assert debouncer.pending_count == 1

        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert len(events) == 1
        assert events[0].file == "app.css"
        assert events[0].event_type == "modify"
        assert events[0].action is ActionKind.RELOAD_CSS
        assert debouncer.pending_count == 0

    @pytest.mark.asyncio
    async def test_nothing_dispatched_before_quiet_period(self):
        """Test that the callback waits for the window to elapse."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("index.html", "modify", ActionKind.MORPH_HTML)
        await asyncio.sleep(DELAY_MS / 4 / 1000)

        assert events == []
        assert debouncer.state is DebounceState.PENDING
        assert debouncer.deadline is not None

    @pytest.mark.asyncio
    async def test_multiple_paths_flush_together(self):
        """Test that distinct paths each produce one event in a single flush."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        debouncer.record("b.html", "modify", ActionKind.MORPH_HTML)
        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert sorted(e.file for e in events) == ["a.css", "b.html"]
        assert debouncer.state is DebounceState.IDLE

    @pytest.mark.asyncio
    async def test_late_event_delays_settled_path(self):
        """Test the shared timer: a new event for A postpones an already quiet B."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events, delay_ms=100)

        debouncer.record("b.css", "modify", ActionKind.RELOAD_CSS)
        await asyncio.sleep(0.07)
        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        await asyncio.sleep(0.07)

        # 140ms after B's event, but only 70ms after A's
        assert events == []

        await asyncio.sleep(0.15)
        assert sorted(e.file for e in events) == ["a.css", "b.css"]

    @pytest.mark.asyncio
    async def test_events_are_timestamped_at_flush(self):
        """Test that the flushed event carries a fresh timestamp."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert events[0].timestamp > 0

    @pytest.mark.asyncio
    async def test_flush_dispatches_immediately(self):
        """Test manual flush."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        flushed = debouncer.flush()

        assert [e.file for e in flushed] == ["a.css"]
        assert len(events) == 1

        await asyncio.sleep(DELAY_MS * 3 / 1000)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_clear_discards_pending(self):
        """Test that clear drops pending changes without dispatch."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        debouncer.clear()
        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert events == []
        assert debouncer.pending_paths == []

    @pytest.mark.asyncio
    async def test_close_prevents_further_dispatch(self):
        """Test that nothing is dispatched after close."""
        events: list[ChangeEvent] = []
        debouncer = make_debouncer(events)

        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        debouncer.close()
        debouncer.record("b.css", "modify", ActionKind.RELOAD_CSS)
        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert events == []
        assert debouncer.closed
        debouncer.close()

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_batch(self):
        """Test that a failing callback for one path does not drop the others."""
        seen: list[str] = []

        def callback(event: ChangeEvent) -> None:
            seen.append(event.file)
            if event.file == "a.css":
                raise RuntimeError("boom")

        debouncer = Debouncer(delay_ms=DELAY_MS, callback=callback)
        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        debouncer.record("b.css", "modify", ActionKind.RELOAD_CSS)
        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert sorted(seen) == ["a.css", "b.css"]

    @pytest.mark.asyncio
    async def test_async_callback(self):
        """Test that coroutine callbacks are scheduled."""
        events: list[ChangeEvent] = []

        async def callback(event: ChangeEvent) -> None:
            events.append(event)

        debouncer = Debouncer(delay_ms=DELAY_MS, callback=callback)
        debouncer.record("a.css", "modify", ActionKind.RELOAD_CSS)
        await asyncio.sleep(DELAY_MS * 3 / 1000)

        assert len(events) == 1


class TestChangeEvent:
    """Test cases for the ChangeEvent model."""

    def test_payload_uses_wire_names(self):
        """Test the filechange payload shape."""
        event = ChangeEvent(
            file="app.css", event_type="modify", action=ActionKind.RELOAD_CSS, timestamp=1
        )
        assert event.to_payload() == {
            "file": "app.css",
            "eventType": "modify",
            "timestamp": 1,
            "action": "reload-css",
        }

    def test_frozen(self):
        """Test that events are immutable."""
        event = ChangeEvent(file="app.css", event_type="modify")
        with pytest.raises(Exception):
            event.file = "other.css"
