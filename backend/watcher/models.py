"""
LiveMorph Watcher Models.

Events produced by the file watcher and consumed by the broadcast step.
Requires Python 3.11+.
"""

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from watcher.matcher import ActionKind

# Raw filesystem notification kinds: "rename" covers create/delete/move
EventType = Literal["rename", "modify"]


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class ChangeEvent(BaseModel):
    """A classified, debounced notification that a watched file changed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file: str = Field(description="Path relative to the watch root, '/'-separated")
    event_type: EventType = Field(alias="eventType")
    timestamp: int = Field(default_factory=now_ms, description="Milliseconds since epoch")
    action: ActionKind = ActionKind.RELOAD_PAGE

    def to_payload(self) -> dict[str, Any]:
        """Wire payload for the ``filechange`` event."""
        return self.model_dump(mode="json", by_alias=True)
