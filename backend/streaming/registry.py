"""
LiveMorph Stream Registry.

Tracks open streaming channels and fans events out to them.
Requires Python 3.11+.
"""

from typing import Any, Protocol

from utils.logger import LoggerMixin


class Channel(Protocol):
    """What the registry needs from a connection."""

    @property
    def closed(self) -> bool: ...

    def event(self, name: str, data: Any) -> None: ...

    def close(self) -> None: ...


class StreamRegistry(LoggerMixin):
    """
    The live set of open channels, one per connected browser.

    Owned by the application's composition root. Membership changes are
    the only mutation; broadcast iterates a snapshot so a disconnect
    during fan-out neither corrupts iteration nor double-notifies.
    Must be used from the event loop thread.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._connections: dict[Channel, None] = {}

    def register(self, connection: Channel) -> None:
        """
        Add a connection that completed its handshake.

        Already-closed connections are not added.

        Args:
            connection: The channel to register
        """
        if connection.closed:
            return
        self._connections[connection] = None
        self.log.info("client_connected", total_connections=len(self._connections))

    def unregister(self, connection: Channel) -> None:
        """
        Remove a connection. Unknown connections are ignored.

        Args:
            connection: The channel to unregister
        """
        if connection in self._connections:
            del self._connections[connection]
            self.log.info("client_disconnected", total_connections=len(self._connections))

    def snapshot(self) -> tuple[Channel, ...]:
        """Current connections, in registration order."""
        return tuple(self._connections)

    def broadcast(self, event_name: str, payload: Any) -> int:
        """
        Send a named event to every registered connection.

        A failure on one connection is logged, that connection is closed
        and removed, and delivery continues to the rest.

        Args:
            event_name: SSE event name
            payload: Event data (JSON encoded unless a string)

        Returns:
            Number of connections the event was delivered to
        """
        delivered = 0
        failed: list[Channel] = []

        for connection in self.snapshot():
            if connection.closed:
                failed.append(connection)
                continue
            try:
                connection.event(event_name, payload)
                delivered += 1
            except Exception as e:
                self.log.warning("broadcast_failed", event=event_name, error=str(e))
                failed.append(connection)

        # Clean up disconnected clients
        for connection in failed:
            self.unregister(connection)
            try:
                connection.close()
            except Exception as e:
                self.log.warning("connection_close_failed", error=str(e))

        self.log.debug("broadcast_complete", event=event_name, delivered=delivered)
        return delivered

    def close_all(self) -> None:
        """Close every connection, e.g. on server shutdown."""
        for connection in self.snapshot():
            self.unregister(connection)
            connection.close()

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections

    def __len__(self) -> int:
        return len(self._connections)
