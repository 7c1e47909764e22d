"""
LiveMorph Client Package.

Client agent for the event stream, plus the DOM model it morphs.
The browser version ships as ``client/static/livemorph.js``.
Requires Python 3.11+.
"""

from client.agent import (
    ClientState,
    HeadlessPage,
    LiveMorphClient,
    SSEParser,
    backoff_delay,
)
from client.dom import Element, parse_html
from client.morph import morph

__all__ = [
    "ClientState",
    "Element",
    "HeadlessPage",
    "LiveMorphClient",
    "SSEParser",
    "backoff_delay",
    "morph",
    "parse_html",
]
