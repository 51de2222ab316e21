"""Builders and waiting helpers shared by the test suite."""

from __future__ import annotations

import asyncio

from apns_resend.core.coordinator import ResendCoordinator
from apns_resend.types.models import DEVICE_TOKEN_SIZE, Notification

TOKEN = bytes(range(DEVICE_TOKEN_SIZE))
PAYLOAD = b'{"aps":{"alert":"hello"}}'


def make_notification(
    notification_id: int,
    token: bytes = TOKEN,
    payload: bytes = PAYLOAD,
) -> Notification:
    """Build a notification with an explicit id."""
    return Notification(device_token=token, payload=payload, expiry=0, id=notification_id)


async def settle(coordinator: ResendCoordinator, rounds: int = 3, delay: float = 0.01) -> None:
    """Let listeners report, then wait until every recovery has finished."""
    for _ in range(rounds):
        await asyncio.sleep(delay)
        await coordinator.wait_idle()
