"""Type definitions and protocols for the apns-resend push client.

This package provides:
- Data models (immutable dataclasses and status enumerations)
- Protocol definitions for the transport collaborator
- The delegate base class for delivery callbacks
"""

from apns_resend.types.models import (
    DEVICE_TOKEN_SIZE,
    Disposition,
    ErrorStatus,
    Failure,
    Notification,
    next_notification_id,
)
from apns_resend.types.protocols import (
    Channel,
    Connector,
    PushDelegate,
)

__all__ = [
    # Data models
    "DEVICE_TOKEN_SIZE",
    "Disposition",
    "ErrorStatus",
    "Failure",
    "Notification",
    "next_notification_id",
    # Protocols
    "Channel",
    "Connector",
    "PushDelegate",
]
