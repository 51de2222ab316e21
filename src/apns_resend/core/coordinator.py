"""Resend coordinator: the recovery state machine of the push client.

The coordinator owns the active connection, the sent-notification cache and
the buffer of sends that arrive while a connection is being rebuilt. Error
listeners publish failures into a single inbox; one actor task consumes the
inbox and is the only place where connections are rebuilt and notifications
replayed.

Recovery for ``Failure(id, status)``:

1. close the old connection
2. confirm everything sent before ``id`` and apply the status disposition
3. compute the resend set from the cache
4. open a new connection (new generation) within the retry budget
5. replay the resend set in original order
6. drain sends buffered meanwhile, FIFO
7. return to ACTIVE
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable

from apns_resend.core.cache import DEFAULT_CACHE_CAPACITY, SentNotificationCache
from apns_resend.core.config import ReconnectConfig
from apns_resend.core.connection import Connection
from apns_resend.core.exceptions import (
    BackpressureError,
    ClientClosedError,
    RecoveryExhausted,
    TransportError,
)
from apns_resend.core.retry import RetryTimeoutError, compute_backoff, with_retry
from apns_resend.core.state_machine import ClientState, StateMachine
from apns_resend.types.models import (
    MAX_UINT32,
    Disposition,
    ErrorStatus,
    Failure,
    Notification,
)
from apns_resend.types.protocols import Connector, PushDelegate
from apns_resend.utils.formatting import format_ids, format_notification
from apns_resend.utils.logging import clear_connection_generation, set_connection_generation

logger = logging.getLogger(__name__)

DEFAULT_PENDING_LIMIT = 1000


class ResendCoordinator:
    """Sends notifications and rebuilds the connection after failures.

    Writes to the transport are serialised by a lock held for one frame at
    a time, so no notification is ever written concurrently with another.
    """

    def __init__(
        self,
        connector: Connector,
        delegate: PushDelegate | None = None,
        *,
        cache_capacity: int = DEFAULT_CACHE_CAPACITY,
        pending_limit: int = DEFAULT_PENDING_LIMIT,
        write_timeout: float | None = None,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            connector: Transport collaborator opening gateway channels
            delegate: Receiver of delivery callbacks
            cache_capacity: Number of sent notifications kept for resending
            pending_limit: Maximum sends buffered while recovering
            write_timeout: Maximum seconds a single frame write may take
            reconnect: Retry budget for establishing connections
        """
        self.pending_limit: int = pending_limit
        self.write_timeout: float | None = write_timeout
        self.reconnect: ReconnectConfig = reconnect or ReconnectConfig()
        self.resent_count: int = 0
        self.rebuild_count: int = 0

        self._connector: Connector = connector
        self._delegate: PushDelegate = delegate or PushDelegate()
        self._cache: SentNotificationCache = SentNotificationCache(cache_capacity)
        self._pending: deque[Notification] = deque()
        self._unsent: deque[Notification] = deque()
        self._replaying: set[int] = set()
        self._inbox: asyncio.Queue[Failure] = asyncio.Queue()
        self._state: StateMachine = StateMachine()
        self._write_lock: asyncio.Lock = asyncio.Lock()
        self._idle: asyncio.Event = asyncio.Event()
        self._idle.set()
        self._closed: asyncio.Event = asyncio.Event()
        self._closing: bool = False
        self._connection: Connection | None = None
        self._generation: int = 0
        self._actor: asyncio.Task[None] | None = None
        self._fatal_error: RecoveryExhausted | None = None
        self._consecutive_failures: int = 0
        self._connected_at: float = 0.0
        self._last_id: int | None = None

    @property
    def state(self) -> ClientState:
        """Current lifecycle state."""
        return self._state.current_state

    @property
    def state_history(self) -> list[ClientState]:
        """Every state entered so far, in order."""
        return self._state.history

    @property
    def generation(self) -> int:
        """Generation of the most recent connection attempt."""
        return self._generation

    @property
    def cache(self) -> SentNotificationCache:
        """Cache of sent notifications that may still need resending."""
        return self._cache

    @property
    def pending_count(self) -> int:
        """Number of sends buffered while recovering."""
        return len(self._pending)

    @property
    def full_resend_count(self) -> int:
        """Number of conservative whole-cache resends."""
        return self._cache.full_resend_count

    @property
    def fatal_error(self) -> RecoveryExhausted | None:
        """Error that moved the coordinator to FAILED, if any."""
        return self._fatal_error

    async def start(self) -> None:
        """Open the first connection and start the recovery actor.

        Raises:
            RecoveryExhausted: If no connection could be established
            ClientClosedError: If the coordinator was already started or shut down
        """
        if self.state is not ClientState.IDLE or self._closing:
            msg = f"Cannot start a client in state {self.state.name}"
            raise ClientClosedError(msg)

        try:
            self._connection = await self._connect()
        except (TransportError, RetryTimeoutError) as exc:
            error = RecoveryExhausted(
                f"Could not connect to gateway: {exc}", self.reconnect.max_attempts
            )
            await self._enter_failed(error)
            raise error from exc

        self._state.transition_to(ClientState.ACTIVE)
        self._actor = asyncio.create_task(self._run(), name="resend-coordinator")
        logger.info("Push client started")

    async def submit(self, notification: Notification) -> Notification:
        """Send a notification, or buffer it while recovering.

        Args:
            notification: Notification to deliver

        Returns:
            The accepted notification. It carries a fresh id if the given id
            was not greater than the previously accepted one or belongs to a
            notification that is still unsettled.

        Raises:
            RecoveryExhausted: If the coordinator has failed
            BackpressureError: If the recovery buffer is full
            ClientClosedError: If the coordinator is not running
        """
        self._check_accepting()
        async with self._write_lock:
            self._check_accepting()
            if self.state is ClientState.RECOVERING:
                self._check_capacity()
                accepted = self._stamp(notification)
                self._pending.append(accepted)
                logger.debug("Buffered %s while recovering", format_notification(accepted))
                return accepted

            accepted = self._stamp(notification)
            connection = self._connection
            assert connection is not None
            try:
                await self._transmit(connection, accepted)
            except TransportError as exc:
                logger.warning("Send failed, rebuilding connection: %s", exc)
                self._pending.append(accepted)
                await self._connection_lost(connection)
            return accepted

    def report(self, failure: Failure) -> None:
        """Inbox entry point for failures observed on a connection.

        Failures from superseded generations are discarded. A failure from
        the current generation freezes sends at once and is queued for the
        recovery actor.
        """
        if failure.generation != self._generation:
            logger.debug(
                "Ignoring failure from superseded generation %d (current %d)",
                failure.generation,
                self._generation,
            )
            return
        if self.state is ClientState.FAILED:
            return
        if self.state is ClientState.ACTIVE:
            self._state.transition_to(ClientState.RECOVERING)
        self._idle.clear()
        self._inbox.put_nowait(failure)

    async def wait_idle(self) -> None:
        """Wait until no failure is queued or being recovered from."""
        _ = await self._idle.wait()

    async def shutdown(self, linger: float = 0.0) -> None:
        """Stop sending, close the connection and settle the cache.

        Notifications still cached when the connection closes survived its
        whole lifetime and are reported as sent. Calling this more than
        once has no further effect.

        Args:
            linger: Seconds to wait for late error frames before closing
        """
        if self._closing:
            _ = await self._closed.wait()
            return
        self._closing = True

        try:
            if self.state in (ClientState.ACTIVE, ClientState.RECOVERING):
                if linger > 0:
                    await asyncio.sleep(linger)
                await self.wait_idle()

            if self._actor is not None:
                _ = self._actor.cancel()
                try:
                    await self._actor
                except asyncio.CancelledError:
                    pass
                self._actor = None

            if self._connection is not None:
                await self._connection.close()

            # failures published after the actor stopped still get a disposition
            while True:
                try:
                    failure = self._inbox.get_nowait()
                except asyncio.QueueEmpty:
                    break
                if failure.generation == self._generation:
                    self._abandon(self._settle(failure), ErrorStatus.UNKNOWN)

            self._confirm(self._cache.drain())
            self._abandon([*self._take_unsent(), *self._pending], ErrorStatus.UNKNOWN)
            self._pending.clear()

            if self.state is not ClientState.SHUTDOWN:
                self._state.transition_to(ClientState.SHUTDOWN)
            logger.info(
                "Push client shut down",
                extra={"resent": self.resent_count, "rebuilds": self.rebuild_count},
            )
            clear_connection_generation()
        finally:
            self._idle.set()
            self._closed.set()

    def _check_accepting(self) -> None:
        if self._fatal_error is not None:
            raise self._fatal_error
        if self._closing or self.state is ClientState.SHUTDOWN:
            msg = "Push client has been shut down"
            raise ClientClosedError(msg)
        if self.state is ClientState.IDLE:
            msg = "Push client has not been started"
            raise ClientClosedError(msg)

    def _check_capacity(self) -> None:
        if len(self._pending) >= self.pending_limit:
            msg = f"Recovery buffer is full ({self.pending_limit} notifications)"
            raise BackpressureError(msg, self.pending_limit)

    def _stamp(self, notification: Notification) -> Notification:
        """Give the notification an id that is unique among unsettled notifications.

        Ids increase in acceptance order until they reach the 32-bit limit,
        after which numbering starts again at 1. The cache orders entries by
        send position, so a wrap only needs ids that are not still in flight.
        """
        last_id = self._last_id
        if last_id is None:
            stale = False
        else:
            stale = notification.id <= last_id or self._in_flight(notification.id)
        if stale:
            assert last_id is not None
            fresh_id = self._following_id(last_id)
            logger.debug("Re-stamping notification %d as %d", notification.id, fresh_id)
            notification = dataclasses.replace(notification, id=fresh_id)
        self._last_id = notification.id
        return notification

    def _following_id(self, last_id: int) -> int:
        candidate = last_id
        while True:
            if candidate >= MAX_UINT32:
                logger.info("Notification ids wrapped around after %d", candidate)
                candidate = 1
            else:
                candidate += 1
            if not self._in_flight(candidate):
                return candidate

    def _in_flight(self, notification_id: int) -> bool:
        if notification_id in self._cache or notification_id in self._replaying:
            return True
        return any(n.id == notification_id for n in (*self._pending, *self._unsent))

    async def _connect(self) -> Connection:
        policy = self.reconnect

        @with_retry(
            policy.max_attempts,
            base_delay=policy.base_delay,
            backoff_factor=policy.backoff_factor,
            max_delay=policy.max_delay,
            timeout_seconds=policy.connect_timeout,
            jitter=policy.jitter,
            retry_on=(TransportError,),
        )
        async def open_connection() -> Connection:
            self._generation += 1
            set_connection_generation(self._generation)
            connection = await Connection.open(
                self._connector,
                self._generation,
                self.report,
                write_timeout=self.write_timeout,
            )
            self._connected_at = time.monotonic()
            return connection

        return await open_connection()

    async def _transmit(self, connection: Connection, notification: Notification) -> None:
        await connection.send(notification)
        evicted = self._cache.record(notification)
        if evicted is not None:
            self._confirm([evicted])

    async def _connection_lost(self, connection: Connection) -> None:
        if connection.generation == self._generation and self.state is ClientState.ACTIVE:
            self._state.transition_to(ClientState.RECOVERING)
            self._idle.clear()
        # the listener reads whatever the gateway sent before the close
        await connection.abort()

    async def _run(self) -> None:
        while True:
            failure: Failure | None = await self._inbox.get()
            self._idle.clear()
            try:
                while failure is not None:
                    if failure.generation == self._generation:
                        await self._recover(failure)
                    else:
                        logger.debug("Skipping stale failure from generation %d", failure.generation)
                    failure = self._next_failure()
            except RecoveryExhausted as exc:
                logger.error("Giving up on gateway connection: %s", exc)
                await self._enter_failed(exc)
                return

            if self.state is ClientState.RECOVERING:
                self._state.transition_to(ClientState.ACTIVE)
                logger.info("Connection rebuilt", extra={"generation": self._generation})
                self._notify(self._delegate.on_connection_rebuilt)
            self._idle.set()

    def _next_failure(self) -> Failure | None:
        while True:
            try:
                failure = self._inbox.get_nowait()
            except asyncio.QueueEmpty:
                return None
            if failure.generation == self._generation:
                return failure
            logger.debug("Skipping stale failure from generation %d", failure.generation)

    async def _recover(self, failure: Failure) -> None:
        set_connection_generation(failure.generation)
        if failure.is_unknown:
            logger.warning("Connection lost without an error frame")
        else:
            logger.warning(
                "Connection lost: status=%s notification=%s",
                failure.status.name,
                failure.notification_id,
            )
        self._notify(self._delegate.on_connection_closed, failure)

        # no write to the old connection may complete while the cache is settled
        async with self._write_lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
            if self._proved_healthy(failure):
                self._consecutive_failures = 0
            resend = self._settle(failure)
            resend.extend(self._take_unsent())
            self._replaying = {n.id for n in resend}

        try:
            await self._rebuild(failure, resend)
        finally:
            self._replaying = set()

    async def _rebuild(self, failure: Failure, resend: list[Notification]) -> None:
        if failure.status.disposition is not Disposition.PERMANENT:
            self._consecutive_failures += 1
            if self._consecutive_failures > self.reconnect.max_attempts:
                self._unsent.extend(resend)
                msg = f"Connection failed {self._consecutive_failures} times without recovering"
                raise RecoveryExhausted(msg, self._consecutive_failures)
            if self._consecutive_failures > 1:
                await asyncio.sleep(self._backoff_delay(self._consecutive_failures - 2))

        try:
            connection = await self._connect()
        except (TransportError, RetryTimeoutError) as exc:
            self._unsent.extend(resend)
            msg = f"Could not rebuild gateway connection: {exc}"
            raise RecoveryExhausted(msg, self.reconnect.max_attempts) from exc
        self._connection = connection
        self.rebuild_count += 1

        if await self._replay(connection, resend):
            await self._drain_pending(connection)

    def _backoff_delay(self, attempt: int) -> float:
        policy = self.reconnect
        return compute_backoff(
            attempt,
            base_delay=policy.base_delay,
            backoff_factor=policy.backoff_factor,
            max_delay=policy.max_delay,
            jitter=policy.jitter,
        )

    def _proved_healthy(self, failure: Failure) -> bool:
        """True if the failed connection delivered something or stayed up long enough.

        Must run before the cache is settled for ``failure``.
        """
        if time.monotonic() - self._connected_at >= self.reconnect.stable_after:
            return True
        notification_id = failure.notification_id
        if notification_id is None or notification_id not in self._cache:
            return False
        if failure.status.disposition is Disposition.DELIVERED:
            return True
        return bool(self._cache.notifications_before(notification_id))

    def _settle(self, failure: Failure) -> list[Notification]:
        """Apply the failure to the cache and return the resend set.

        Everything cached before the failed id was processed by the gateway
        and is confirmed. The cache is emptied; resent notifications are
        recorded again when they go out on the new connection.
        """
        cache = self._cache
        notification_id = failure.notification_id

        if notification_id is None or notification_id not in cache:
            if notification_id is not None and failure.status.disposition is Disposition.PERMANENT:
                logger.warning(
                    "Rejected notification %d is no longer cached and cannot be reported",
                    notification_id,
                )
            resend = cache.notifications_after(notification_id)
            cache.clear()
            return resend

        confirmed = cache.notifications_before(notification_id)
        implicated = cache.get(notification_id)
        after = cache.notifications_after(notification_id)
        cache.clear()
        self._confirm(confirmed)

        assert implicated is not None
        disposition = failure.status.disposition
        if disposition is Disposition.PERMANENT:
            logger.warning(
                "Gateway rejected %s with %s",
                format_notification(implicated),
                failure.status.name,
            )
            self._notify(self._delegate.on_failed, implicated, failure.status)
            return after
        if disposition is Disposition.DELIVERED:
            self._confirm([implicated])
            return after
        return [implicated, *after]

    async def _replay(self, connection: Connection, resend: list[Notification]) -> bool:
        if not resend:
            return True

        logger.info("Resending %d notifications %s", len(resend), format_ids(resend))
        self._notify(self._delegate.on_notifications_resent, len(resend))

        queue = deque(resend)
        while queue:
            if connection.listener.done:
                self._unsent.extend(queue)
                return False
            error: TransportError | None = None
            async with self._write_lock:
                try:
                    await self._transmit(connection, queue[0])
                except TransportError as exc:
                    error = exc
            if error is not None:
                self._unsent.extend(queue)
                await self._interrupt(connection, error)
                return False
            _ = queue.popleft()
            self.resent_count += 1
        return True

    async def _drain_pending(self, connection: Connection) -> None:
        if self._pending:
            logger.info("Sending %d notifications buffered during recovery", len(self._pending))
        while self._pending:
            if connection.listener.done:
                return
            error: TransportError | None = None
            async with self._write_lock:
                if not self._pending:
                    return
                notification = self._pending.popleft()
                try:
                    await self._transmit(connection, notification)
                except TransportError as exc:
                    self._pending.appendleft(notification)
                    error = exc
            if error is not None:
                await self._interrupt(connection, error)
                return

    async def _interrupt(self, connection: Connection, exc: TransportError) -> None:
        logger.warning("Connection failed during recovery: %s", exc)
        await connection.abort()
        failure = await connection.listener.wait(timeout=self.reconnect.connect_timeout)
        if failure is None:
            self.report(
                Failure(
                    notification_id=None,
                    status=ErrorStatus.UNKNOWN,
                    generation=connection.generation,
                )
            )

    def _take_unsent(self) -> list[Notification]:
        unsent = list(self._unsent)
        self._unsent.clear()
        return unsent

    def _notify[**P](
        self, callback: Callable[P, None], *args: P.args, **kwargs: P.kwargs
    ) -> None:
        """Invoke a delegate callback, logging instead of raising its errors."""
        try:
            callback(*args, **kwargs)
        except Exception as e:
            name = getattr(callback, "__name__", repr(callback))
            logger.error(
                "Delegate callback %s failed: %s",
                name,
                e,
                extra={"callback": name, "error": str(e)},
            )

    def _confirm(self, notifications: Iterable[Notification]) -> None:
        for notification in notifications:
            self._notify(self._delegate.on_sent, notification)

    def _abandon(self, notifications: Iterable[Notification], status: ErrorStatus) -> None:
        for notification in notifications:
            logger.warning("Abandoning %s", format_notification(notification))
            self._notify(self._delegate.on_failed, notification, status)

    async def _enter_failed(self, error: RecoveryExhausted) -> None:
        self._fatal_error = error
        if self.state is not ClientState.FAILED:
            self._state.transition_to(ClientState.FAILED)

        abandoned = [*self._cache.drain(), *self._take_unsent(), *self._pending]
        self._pending.clear()
        self._abandon(abandoned, ErrorStatus.UNKNOWN)

        if self._connection is not None:
            connection = self._connection
            self._connection = None
            await connection.close()
        self._idle.set()
