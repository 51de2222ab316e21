"""Shared utility modules.

This package provides:
- Logging setup with connection generation tracking
- Pure formatting helpers that keep device tokens redacted
"""

from apns_resend.utils.formatting import (
    format_ids,
    format_notification,
    format_token,
)
from apns_resend.utils.logging import (
    configure_logging,
    get_connection_generation,
    set_connection_generation,
)

__all__ = [
    "configure_logging",
    "format_ids",
    "format_notification",
    "format_token",
    "get_connection_generation",
    "set_connection_generation",
]
