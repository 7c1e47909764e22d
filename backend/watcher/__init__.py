"""
LiveMorph File Watcher Package.

File system monitoring, pattern classification and debouncing.
Requires Python 3.11+.
"""

from watcher.debouncer import Debouncer
from watcher.file_watcher import FileWatcher, WatchOptions, start_watcher
from watcher.matcher import ActionKind, classify, is_includable, matches
from watcher.models import ChangeEvent

__all__ = [
    "ActionKind",
    "ChangeEvent",
    "Debouncer",
    "FileWatcher",
    "WatchOptions",
    "classify",
    "is_includable",
    "matches",
    "start_watcher",
]
