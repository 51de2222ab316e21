"""Background reader that watches one connection for gateway error frames."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from apns_resend.core.codec import ERROR_FRAME_SIZE, decode_error_frame
from apns_resend.core.exceptions import ProtocolError
from apns_resend.types.models import ErrorStatus, Failure
from apns_resend.types.protocols import Channel
from apns_resend.utils.logging import set_connection_generation

logger = logging.getLogger(__name__)


class ErrorListener:
    """Reads the inbound side of exactly one channel until it fails.

    The listener terminates exactly once: on a well-formed error frame it
    publishes ``Failure(id, status)``; on end of stream, a malformed frame
    or a read error it publishes ``Failure(None, UNKNOWN)``. It never
    touches the cache or the pending queue, it only calls ``publish``.
    Cancellation (a deliberate close) publishes nothing.
    """

    def __init__(
        self,
        channel: Channel,
        generation: int,
        publish: Callable[[Failure], None],
    ) -> None:
        """Initialize the listener.

        Args:
            channel: Channel to read from
            generation: Generation of the owning connection
            publish: Inbox entry point receiving the single Failure
        """
        self.generation: int = generation
        self._channel: Channel = channel
        self._publish: Callable[[Failure], None] = publish
        self._task: asyncio.Task[Failure] | None = None

    @property
    def done(self) -> bool:
        """True once the listener has terminated."""
        return self._task is not None and self._task.done()

    def start(self) -> None:
        """Start reading in a background task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"error-listener-{self.generation}"
        )

    async def stop(self) -> None:
        """Cancel the listener and wait for it to exit."""
        if self._task is None or self._task.done():
            return
        _ = self._task.cancel()
        try:
            _ = await self._task
        except asyncio.CancelledError:
            pass

    async def wait(self, timeout: float | None = None) -> Failure | None:
        """Wait for the listener to publish its failure.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            The published failure, or None if it did not terminate in time
            or was cancelled
        """
        if self._task is None:
            return None
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done or self._task.cancelled():
            return None
        return self._task.result()

    async def _run(self) -> Failure:
        set_connection_generation(self.generation)
        failure = await self._read_failure()
        logger.debug(
            "Error listener finished",
            extra={
                "notification_id": failure.notification_id,
                "status": failure.status.name,
            },
        )
        self._publish(failure)
        return failure

    async def _read_failure(self) -> Failure:
        buffer = bytearray()
        while len(buffer) < ERROR_FRAME_SIZE:
            try:
                chunk = await self._channel.read(ERROR_FRAME_SIZE - len(buffer))
            except OSError as exc:
                logger.info("Read from gateway failed: %s", exc)
                return self._unknown()
            if not chunk:
                if buffer:
                    logger.warning(
                        "Connection closed after a partial error frame of %d bytes", len(buffer)
                    )
                else:
                    logger.info("Gateway closed the connection without an error frame")
                return self._unknown()
            buffer.extend(chunk)

        try:
            status, notification_id = decode_error_frame(bytes(buffer))
        except ProtocolError as exc:
            logger.warning("Malformed error frame from gateway: %s", exc)
            return self._unknown()

        logger.info(
            "Gateway reported %s for notification %d", status.name, notification_id
        )
        return Failure(notification_id=notification_id, status=status, generation=self.generation)

    def _unknown(self) -> Failure:
        return Failure(notification_id=None, status=ErrorStatus.UNKNOWN, generation=self.generation)
