"""
LiveMorph Pattern Matcher.

Classifies changed paths against ordered glob rules.
Requires Python 3.11+.
"""

import re
from collections.abc import Iterable, Mapping
from enum import StrEnum
from functools import lru_cache


class ActionKind(StrEnum):
    """Reaction a browser performs for a changed file."""

    RELOAD_PAGE = "reload-page"
    RELOAD_CSS = "reload-css"
    MORPH_HTML = "morph-html"


DEFAULT_ACTION = ActionKind.RELOAD_PAGE

# Glob tokens, longest first; only "*" stops at "/"
_TOKEN_RE = re.compile(r"\*\*/|\*\*|\*")


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """
    Compile a glob pattern into an anchored regular expression.

    Args:
        pattern: Glob using ``**``, ``*`` and literal characters

    Returns:
        Compiled regex matching whole paths
    """
    parts: list[str] = []
    pos = 0
    for token in _TOKEN_RE.finditer(pattern):
        parts.append(re.escape(pattern[pos:token.start()]))
        text = token.group()
        if text == "**/":
            # Extension: zero or more whole directories, so "**/*.css" matches "app.css"
            parts.append("(?:.*/)?")
        elif text == "**":
            parts.append(".*")
        else:
            parts.append("[^/]*")
        pos = token.end()
    parts.append(re.escape(pattern[pos:]))
    return re.compile("".join(parts), re.DOTALL)


def matches(path: str, pattern: str) -> bool:
    """Check whether a ``/``-separated path matches a glob pattern."""
    return compile_glob(pattern).fullmatch(path) is not None


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Check whether a path matches at least one pattern."""
    return any(matches(path, pattern) for pattern in patterns)


def is_includable(path: str, paths: Iterable[str], ignore: Iterable[str]) -> bool:
    """
    Decide whether a changed path should be dispatched.

    Ignore patterns take precedence over inclusion patterns.
    """
    return matches_any(path, paths) and not matches_any(path, ignore)


def classify(path: str, rules: Mapping[str, str]) -> ActionKind:
    """
    Select the action for a path.

    Args:
        path: Path relative to the watch root
        rules: Ordered mapping of glob pattern to action

    Returns:
        Action of the first matching rule, or ``reload-page``
    """
    for pattern, action in rules.items():
        if matches(path, pattern):
            return ActionKind(action)
    return DEFAULT_ACTION
