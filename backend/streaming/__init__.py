"""
LiveMorph Streaming Package.

Server-Sent Events channels and the registry that fans events out to them.
Requires Python 3.11+.
"""

from streaming.channel import (
    ChannelWriteError,
    SSEChannel,
    create_sse_response,
    format_message,
)
from streaming.registry import StreamRegistry

__all__ = [
    "ChannelWriteError",
    "SSEChannel",
    "StreamRegistry",
    "create_sse_response",
    "format_message",
]
