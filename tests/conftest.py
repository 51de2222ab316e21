"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio

from apns_resend.core.client import PushClient
from apns_resend.core.config import ReconnectConfig
from apns_resend.types.models import Notification
from tests.fixtures.builders import make_notification
from tests.fixtures.gateway_simulator import SimulatedGateway
from tests.fixtures.recording_delegate import RecordingDelegate


@pytest.fixture
def fast_reconnect() -> ReconnectConfig:
    """Reconnect policy with tiny deterministic delays."""
    return ReconnectConfig(
        max_attempts=3,
        base_delay=0.001,
        backoff_factor=2.0,
        max_delay=0.01,
        jitter=False,
        connect_timeout=1.0,
    )


@pytest.fixture
def gateway() -> SimulatedGateway:
    """Fresh in-memory gateway."""
    return SimulatedGateway()


@pytest.fixture
def delegate() -> RecordingDelegate:
    """Delegate recording every callback."""
    return RecordingDelegate()


@pytest.fixture
def notification_factory() -> Callable[[int], Notification]:
    """Factory for notifications with explicit ids."""
    return make_notification


@pytest_asyncio.fixture
async def client(
    gateway: SimulatedGateway,
    delegate: RecordingDelegate,
    fast_reconnect: ReconnectConfig,
) -> AsyncGenerator[PushClient, None]:
    """Started push client talking to the simulated gateway."""
    push_client = PushClient(
        gateway,
        delegate,
        cache_capacity=100,
        write_timeout=1.0,
        reconnect=fast_reconnect,
    )
    await push_client.start()
    try:
        yield push_client
    finally:
        await push_client.shutdown()
