"""Protocol definitions for the transport collaborator and delegate callbacks.

The push client never establishes sockets or TLS sessions itself; it calls
into a ``Connector`` that hands back a duplex ``Channel``. Callers observe
delivery outcomes through a ``PushDelegate``.
"""

from typing import Protocol, runtime_checkable

from apns_resend.types.models import ErrorStatus, Failure, Notification


@runtime_checkable
class Channel(Protocol):
    """Duplex byte channel to the gateway."""

    async def read(self, max_bytes: int) -> bytes:
        """Read up to ``max_bytes`` bytes.

        Args:
            max_bytes: Maximum number of bytes to return

        Returns:
            Bytes read, or ``b""`` once the peer closed the stream
        """
        ...

    async def write(self, data: bytes) -> None:
        """Write bytes and wait until the transport accepted them.

        Raises:
            OSError: If the transport is broken or was closed
        """
        ...

    async def close(self) -> None:
        """Close the channel. Calling it more than once has no effect."""
        ...


@runtime_checkable
class Connector(Protocol):
    """Factory for channels to one gateway endpoint."""

    async def connect(self) -> Channel:
        """Open a new channel.

        Raises:
            OSError: If the gateway cannot be reached
        """
        ...


class PushDelegate:
    """Receives delivery callbacks from a push client.

    All methods are no-ops; subclasses override the ones they need.
    Callbacks run on the event loop and must not block.
    """

    def on_sent(self, notification: Notification) -> None:
        """Notification is confirmed and will not be resent again."""

    def on_failed(self, notification: Notification, status: ErrorStatus) -> None:
        """Notification was permanently rejected or abandoned."""

    def on_connection_closed(self, failure: Failure) -> None:
        """Gateway connection was lost, with the failure that was observed."""

    def on_notifications_resent(self, count: int) -> None:
        """A replay of ``count`` notifications is about to start."""

    def on_connection_rebuilt(self) -> None:
        """Recovery completed and the client accepts sends again."""
