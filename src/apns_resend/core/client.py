"""Push client facade: the externally visible entry point."""

from __future__ import annotations

from collections.abc import Iterable
from types import TracebackType

from apns_resend.core.cache import DEFAULT_CACHE_CAPACITY
from apns_resend.core.config import MainConfig, ReconnectConfig
from apns_resend.core.coordinator import DEFAULT_PENDING_LIMIT, ResendCoordinator
from apns_resend.core.exceptions import RecoveryExhausted
from apns_resend.core.state_machine import ClientState
from apns_resend.types.models import Notification
from apns_resend.types.protocols import Connector, PushDelegate


class PushClient:
    """Delivers notifications to the gateway and resends them after failures.

    Example:
        >>> async with PushClient(connector, delegate=MyDelegate()) as client:
        ...     await client.push(Notification.create(token, {"aps": {"alert": "hi"}}))
    """

    def __init__(
        self,
        connector: Connector,
        delegate: PushDelegate | None = None,
        *,
        cache_capacity: int = DEFAULT_CACHE_CAPACITY,
        pending_limit: int = DEFAULT_PENDING_LIMIT,
        write_timeout: float | None = 10.0,
        shutdown_linger: float = 0.0,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            connector: Transport collaborator opening gateway channels
            delegate: Receiver of delivery callbacks
            cache_capacity: Number of sent notifications kept for resending
            pending_limit: Maximum sends buffered while recovering
            write_timeout: Maximum seconds a single frame write may take
            shutdown_linger: Default seconds to wait for late errors on shutdown
            reconnect: Retry budget for establishing connections
        """
        self.shutdown_linger: float = shutdown_linger
        self._coordinator: ResendCoordinator = ResendCoordinator(
            connector,
            delegate,
            cache_capacity=cache_capacity,
            pending_limit=pending_limit,
            write_timeout=write_timeout,
            reconnect=reconnect,
        )

    @classmethod
    def from_config(
        cls,
        config: MainConfig,
        delegate: PushDelegate | None = None,
        *,
        connector: Connector | None = None,
    ) -> PushClient:
        """Create a client from validated configuration.

        Args:
            config: Client configuration
            delegate: Receiver of delivery callbacks
            connector: Transport override, defaults to the configured gateway

        Returns:
            Client that has not been started yet
        """
        if connector is None:
            from apns_resend.transport.stream import StreamConnector

            connector = StreamConnector.from_config(config.gateway)
        return cls(
            connector,
            delegate,
            cache_capacity=config.delivery.cache_capacity,
            pending_limit=config.delivery.pending_limit,
            write_timeout=config.delivery.write_timeout,
            shutdown_linger=config.delivery.shutdown_linger,
            reconnect=config.reconnect,
        )

    @property
    def state(self) -> ClientState:
        """Current lifecycle state."""
        return self._coordinator.state

    @property
    def coordinator(self) -> ResendCoordinator:
        """Resend coordinator, exposed for diagnostics and tests."""
        return self._coordinator

    @property
    def fatal_error(self) -> RecoveryExhausted | None:
        """Error that ended delivery, if the client has failed."""
        return self._coordinator.fatal_error

    async def start(self) -> None:
        """Connect to the gateway."""
        await self._coordinator.start()

    async def push(self, notification: Notification) -> Notification:
        """Send one notification.

        Returns immediately after the frame was written, or after it was
        buffered if the connection is being rebuilt.

        Args:
            notification: Notification to deliver

        Returns:
            The accepted notification, possibly carrying a fresh id

        Raises:
            RecoveryExhausted: If the client gave up reconnecting
            BackpressureError: If the recovery buffer is full
            ClientClosedError: If the client is not running
        """
        return await self._coordinator.submit(notification)

    async def push_many(self, notifications: Iterable[Notification]) -> list[Notification]:
        """Send several notifications in order."""
        return [await self.push(notification) for notification in notifications]

    async def shutdown(self, linger: float | None = None) -> None:
        """Close the connection and settle outstanding notifications.

        Args:
            linger: Seconds to wait for late error frames, defaults to the
                configured ``shutdown_linger``
        """
        await self._coordinator.shutdown(self.shutdown_linger if linger is None else linger)

    async def __aenter__(self) -> PushClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
