"""apns-resend - guaranteed-delivery client for the binary push gateway.

This package pushes enhanced notifications over a persistent connection,
watches the same connection for error frames, and after any connection loss
resends exactly the notifications the gateway may not have processed, in
their original order.
"""

from apns_resend.core.client import PushClient
from apns_resend.core.exceptions import (
    BackpressureError,
    ClientClosedError,
    PushClientError,
    RecoveryExhausted,
)
from apns_resend.types.models import ErrorStatus, Failure, Notification
from apns_resend.types.protocols import PushDelegate

__all__ = [
    "BackpressureError",
    "ClientClosedError",
    "ErrorStatus",
    "Failure",
    "Notification",
    "PushClient",
    "PushClientError",
    "PushDelegate",
    "RecoveryExhausted",
]
