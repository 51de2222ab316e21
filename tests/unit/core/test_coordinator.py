"""Unit tests for the resend coordinator internals."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from apns_resend.core.config import ReconnectConfig
from apns_resend.core.coordinator import ResendCoordinator
from apns_resend.core.exceptions import BackpressureError
from apns_resend.core.state_machine import ClientState
from apns_resend.types.models import MAX_UINT32, ErrorStatus, Failure
from apns_resend.utils.logging import get_connection_generation
from tests.fixtures.builders import make_notification, settle
from tests.fixtures.gateway_simulator import ErrorThenDrop, SimulatedGateway
from tests.fixtures.recording_delegate import RecordingDelegate


@pytest_asyncio.fixture
async def coordinator(
    gateway: SimulatedGateway,
    delegate: RecordingDelegate,
    fast_reconnect: ReconnectConfig,
) -> AsyncGenerator[ResendCoordinator, None]:
    """Started coordinator with a small recovery buffer."""
    resend_coordinator = ResendCoordinator(
        gateway,
        delegate,
        cache_capacity=10,
        pending_limit=2,
        write_timeout=1.0,
        reconnect=fast_reconnect,
    )
    await resend_coordinator.start()
    try:
        yield resend_coordinator
    finally:
        await resend_coordinator.shutdown()


@pytest.mark.unit
class TestReport:
    """Test the failure inbox."""

    @pytest.mark.asyncio
    async def test_stale_generation_ignored(self, coordinator: ResendCoordinator) -> None:
        """Test a failure from a superseded connection changes nothing."""
        _ = await coordinator.submit(make_notification(1))

        coordinator.report(
            Failure(1, ErrorStatus.PROCESSING_ERROR, coordinator.generation - 1)
        )
        await settle(coordinator)

        assert coordinator.state is ClientState.ACTIVE
        assert coordinator.rebuild_count == 0
        assert 1 in coordinator.cache

    @pytest.mark.asyncio
    async def test_report_freezes_sends_immediately(self, coordinator: ResendCoordinator) -> None:
        """Test reporting flips the state before the actor runs."""
        coordinator.report(Failure(None, ErrorStatus.UNKNOWN, coordinator.generation))

        assert coordinator.state is ClientState.RECOVERING

        await settle(coordinator)

        assert coordinator.state is ClientState.ACTIVE
        assert coordinator.state_history == [
            ClientState.IDLE,
            ClientState.ACTIVE,
            ClientState.RECOVERING,
            ClientState.ACTIVE,
        ]


@pytest.mark.unit
class TestPendingBuffer:
    """Test sends arriving while the connection is rebuilt."""

    @pytest.mark.asyncio
    async def test_sends_buffered_then_drained_in_order(
        self,
        coordinator: ResendCoordinator,
        gateway: SimulatedGateway,
    ) -> None:
        """Test buffered sends go out after the resend set, FIFO."""
        _ = await coordinator.submit(make_notification(1))
        coordinator.report(Failure(None, ErrorStatus.UNKNOWN, coordinator.generation))

        _ = await coordinator.submit(make_notification(2))
        _ = await coordinator.submit(make_notification(3))
        assert coordinator.pending_count == 2

        await settle(coordinator)

        assert gateway.received_ids(1) == [1, 2, 3]
        assert coordinator.pending_count == 0
        assert coordinator.resent_count == 1

    @pytest.mark.asyncio
    async def test_overflow_raises_backpressure(self, coordinator: ResendCoordinator) -> None:
        """Test the buffer limit is enforced while recovering."""
        coordinator.report(Failure(None, ErrorStatus.UNKNOWN, coordinator.generation))
        _ = await coordinator.submit(make_notification(1))
        _ = await coordinator.submit(make_notification(2))

        with pytest.raises(BackpressureError) as exc_info:
            _ = await coordinator.submit(make_notification(3))

        assert exc_info.value.limit == 2
        await settle(coordinator)


@pytest.mark.unit
class TestIdentifiers:
    """Test identifier ordering of accepted notifications."""

    @pytest.mark.asyncio
    async def test_non_increasing_id_is_restamped(
        self,
        coordinator: ResendCoordinator,
        gateway: SimulatedGateway,
    ) -> None:
        """Test a notification reusing an older id gets a fresh one."""
        first = await coordinator.submit(make_notification(1000))
        second = await coordinator.submit(make_notification(999))

        assert first.id == 1000
        assert second.id > 1000
        assert second.device_token == first.device_token
        assert gateway.delivered_ids == [1000, second.id]

    @pytest.mark.asyncio
    async def test_ids_wrap_after_largest_value(
        self,
        coordinator: ResendCoordinator,
        gateway: SimulatedGateway,
    ) -> None:
        """Test the id after 0xFFFFFFFF starts again at 1."""
        last = await coordinator.submit(make_notification(MAX_UINT32))
        wrapped = await coordinator.submit(make_notification(5))

        assert last.id == MAX_UINT32
        assert wrapped.id == 1
        assert gateway.delivered_ids == [MAX_UINT32, 1]

    @pytest.mark.asyncio
    async def test_wrapped_id_skips_unsettled_ids(
        self,
        coordinator: ResendCoordinator,
        gateway: SimulatedGateway,
    ) -> None:
        """Test an id still cached is never handed out again after a wrap."""
        _ = await coordinator.submit(make_notification(MAX_UINT32 - 1))
        _ = await coordinator.submit(make_notification(MAX_UINT32))
        wrapped = await coordinator.submit(make_notification(1))
        reused = await coordinator.submit(make_notification(MAX_UINT32 - 1))

        assert wrapped.id == 1
        assert reused.id == 2
        assert [n.id for n in coordinator.cache] == [
            MAX_UINT32 - 1,
            MAX_UINT32,
            1,
            2,
        ]
        assert gateway.delivered_ids == [MAX_UINT32 - 1, MAX_UINT32, 1, 2]

    @pytest.mark.asyncio
    async def test_resend_across_wrap_keeps_send_order(
        self,
        coordinator: ResendCoordinator,
        gateway: SimulatedGateway,
        delegate: RecordingDelegate,
    ) -> None:
        """Test a failure just before the wrap resends in send order, not id order."""
        gateway.inject(MAX_UINT32, ErrorThenDrop(ErrorStatus.PROCESSING_ERROR))

        _ = await coordinator.submit(make_notification(MAX_UINT32 - 1))
        _ = await coordinator.submit(make_notification(MAX_UINT32))
        wrapped = await coordinator.submit(make_notification(1))
        await settle(coordinator)

        assert wrapped.id == 1
        assert gateway.received_ids(1) == [MAX_UINT32, 1]
        assert delegate.sent_ids == [MAX_UINT32 - 1]
        assert coordinator.state is ClientState.ACTIVE


@pytest.mark.unit
class TestShutdown:
    """Test settling outstanding work on shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_confirms_cache(
        self,
        coordinator: ResendCoordinator,
        delegate: RecordingDelegate,
    ) -> None:
        """Test notifications cached at close are reported as sent."""
        _ = await coordinator.submit(make_notification(1))
        _ = await coordinator.submit(make_notification(2))

        await coordinator.shutdown()

        assert delegate.sent_ids == [1, 2]
        assert len(coordinator.cache) == 0
        assert coordinator.state is ClientState.SHUTDOWN

    @pytest.mark.asyncio
    async def test_shutdown_clears_log_generation(
        self,
        gateway: SimulatedGateway,
        fast_reconnect: ReconnectConfig,
    ) -> None:
        """Test log records after shutdown no longer carry a connection generation."""
        resend_coordinator = ResendCoordinator(gateway, reconnect=fast_reconnect)
        await resend_coordinator.start()
        assert get_connection_generation() == 1

        await resend_coordinator.shutdown()

        assert get_connection_generation() is None

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_recovery(
        self,
        coordinator: ResendCoordinator,
        gateway: SimulatedGateway,
        delegate: RecordingDelegate,
    ) -> None:
        """Test a recovery in progress completes before the connection closes."""
        _ = await coordinator.submit(make_notification(1))
        coordinator.report(Failure(1, ErrorStatus.PROCESSING_ERROR, coordinator.generation))

        await coordinator.shutdown()

        assert gateway.received_ids(1) == [1]
        assert delegate.sent_ids == [1]
        assert delegate.failed == []
