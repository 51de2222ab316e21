"""Pure formatting utilities for log and error messages.

Device tokens identify a user's device and are never written out in full.
"""

from typing import Final

from apns_resend.types.models import Notification

REDACTED_SUFFIX: Final[str] = "..."
_VISIBLE_TOKEN_CHARS: Final[int] = 8


def format_token(token: bytes) -> str:
    """Render a device token in redacted form.

    Args:
        token: Raw device token bytes

    Returns:
        First hex characters followed by an ellipsis

    Examples:
        >>> format_token(bytes.fromhex("a1b2c3d4e5f60718" + "00" * 24))
        'a1b2c3d4...'
    """
    return token.hex()[:_VISIBLE_TOKEN_CHARS] + REDACTED_SUFFIX


def format_notification(notification: Notification) -> str:
    """Short description of a notification for logs.

    Examples:
        >>> n = Notification(device_token=b"\\x01" * 32, payload=b"{}", id=7)
        >>> format_notification(n)
        'notification 7 (token 01010101..., 2 bytes)'
    """
    return (
        f"notification {notification.id} "
        f"(token {format_token(notification.device_token)}, {len(notification.payload)} bytes)"
    )


def format_ids(notifications: list[Notification], *, limit: int = 10) -> str:
    """Render notification ids as a compact list for logs.

    Examples:
        >>> format_ids([])
        '[]'
    """
    ids = [str(n.id) for n in notifications[:limit]]
    if len(notifications) > limit:
        ids.append(f"+{len(notifications) - limit} more")
    return "[" + ", ".join(ids) + "]"
