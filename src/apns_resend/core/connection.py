"""One generation of the gateway connection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from apns_resend.core.codec import encode_notification
from apns_resend.core.exceptions import TransportError
from apns_resend.core.listener import ErrorListener
from apns_resend.types.models import Failure, Notification
from apns_resend.types.protocols import Channel, Connector
from apns_resend.utils.formatting import format_notification

logger = logging.getLogger(__name__)


class Connection:
    """Owns one transport channel and the error listener reading it.

    Every failure published by the listener is tagged with this
    connection's generation so that reports from a superseded connection
    can be told apart.
    """

    def __init__(
        self,
        channel: Channel,
        generation: int,
        on_failure: Callable[[Failure], None],
        *,
        write_timeout: float | None = None,
    ) -> None:
        """Initialize connection around an already established channel.

        Args:
            channel: Established duplex channel
            generation: Generation number of this connection
            on_failure: Inbox receiving the listener's failure
            write_timeout: Maximum seconds a single frame write may take
        """
        self.generation: int = generation
        self.write_timeout: float | None = write_timeout
        self._channel: Channel = channel
        self._listener: ErrorListener = ErrorListener(channel, generation, on_failure)
        self._closed: bool = False

    @classmethod
    async def open(
        cls,
        connector: Connector,
        generation: int,
        on_failure: Callable[[Failure], None],
        *,
        write_timeout: float | None = None,
    ) -> Connection:
        """Establish a channel and start listening for error frames.

        Args:
            connector: Transport collaborator
            generation: Generation number for the new connection
            on_failure: Inbox receiving the listener's failure
            write_timeout: Maximum seconds a single frame write may take

        Returns:
            Open connection with a running listener

        Raises:
            TransportError: If the channel cannot be established
        """
        try:
            channel = await connector.connect()
        except OSError as exc:
            msg = f"Connecting to gateway failed: {exc}"
            raise TransportError(msg, generation) from exc

        connection = cls(channel, generation, on_failure, write_timeout=write_timeout)
        connection._listener.start()
        logger.info("Gateway connection established", extra={"generation": generation})
        return connection

    @property
    def closed(self) -> bool:
        """True once the connection was aborted or closed."""
        return self._closed

    @property
    def listener(self) -> ErrorListener:
        """Error listener bound to this connection."""
        return self._listener

    async def send(self, notification: Notification) -> None:
        """Write one notification frame.

        Args:
            notification: Notification to transmit

        Raises:
            TransportError: If the connection is closed, the write fails or
                the write timeout expires
        """
        if self._closed:
            msg = f"Connection generation {self.generation} is closed"
            raise TransportError(msg, self.generation)

        frame = encode_notification(notification)
        try:
            await asyncio.wait_for(self._channel.write(frame), timeout=self.write_timeout)
        except TimeoutError as exc:
            msg = f"Writing {format_notification(notification)} timed out after {self.write_timeout}s"
            raise TransportError(msg, self.generation) from exc
        except OSError as exc:
            msg = f"Writing {format_notification(notification)} failed: {exc}"
            raise TransportError(msg, self.generation) from exc

        logger.debug("Sent %s", format_notification(notification))

    async def abort(self) -> None:
        """Close the transport but let the listener drain what was received.

        The listener then terminates on its own, publishing either the error
        frame that was already in flight or an unknown failure.
        """
        if self._closed:
            return
        self._closed = True
        await self._close_channel()

    async def close(self) -> None:
        """Stop the listener and release the transport. Idempotent."""
        await self._listener.stop()
        if self._closed:
            return
        self._closed = True
        await self._close_channel()
        logger.debug("Gateway connection closed", extra={"generation": self.generation})

    async def _close_channel(self) -> None:
        try:
            await self._channel.close()
        except OSError as exc:
            logger.debug("Ignoring error while closing channel: %s", exc)
