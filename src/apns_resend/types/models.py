"""Data models for the apns-resend push client.

This module defines the immutable dataclasses and enumerations exchanged
between the client facade, the resend coordinator, connections and error
listeners.
"""

import itertools
import json
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Final, override

DEVICE_TOKEN_SIZE: Final[int] = 32
MAX_UINT32: Final[int] = 0xFFFFFFFF
MAX_PAYLOAD_SIZE: Final[int] = 0xFFFF

# Default expiry for notifications created without one (one day), in seconds
DEFAULT_EXPIRY_SECONDS: Final[int] = 86400

_id_counter: "itertools.count[int]" = itertools.count(1)
_id_lock: threading.Lock = threading.Lock()


def next_notification_id() -> int:
    """Return the next process-wide notification identifier.

    Identifiers increase monotonically for the lifetime of the process and
    wrap back to 1 after exceeding the unsigned 32-bit range.

    Returns:
        Fresh notification identifier
    """
    with _id_lock:
        value = next(_id_counter)
    return ((value - 1) % MAX_UINT32) + 1


class ErrorStatus(IntEnum):
    """Status codes carried by gateway error frames."""

    NO_ERROR = 0
    PROCESSING_ERROR = 1
    MISSING_DEVICE_TOKEN = 2
    MISSING_TOPIC = 3
    MISSING_PAYLOAD = 4
    INVALID_TOKEN_SIZE = 5
    INVALID_TOPIC_SIZE = 6
    INVALID_PAYLOAD_SIZE = 7
    INVALID_TOKEN = 8
    SHUTDOWN = 10
    UNKNOWN = 255

    @classmethod
    @override
    def _missing_(cls, value: object) -> "ErrorStatus":
        return cls.UNKNOWN

    @property
    def disposition(self) -> "Disposition":
        """How the notification referenced by this status must be treated."""
        if self in _PERMANENT_STATUSES:
            return Disposition.PERMANENT
        if self is ErrorStatus.SHUTDOWN:
            return Disposition.DELIVERED
        return Disposition.TRANSIENT


class Disposition(Enum):
    """Outcome for the notification referenced by a failure."""

    PERMANENT = "permanent"  # drop it, report it as failed
    TRANSIENT = "transient"  # resend it together with everything after it
    DELIVERED = "delivered"  # gateway processed it, resend only what follows


_PERMANENT_STATUSES: Final[frozenset[ErrorStatus]] = frozenset(
    {
        ErrorStatus.MISSING_DEVICE_TOKEN,
        ErrorStatus.MISSING_TOPIC,
        ErrorStatus.MISSING_PAYLOAD,
        ErrorStatus.INVALID_TOKEN_SIZE,
        ErrorStatus.INVALID_TOPIC_SIZE,
        ErrorStatus.INVALID_PAYLOAD_SIZE,
        ErrorStatus.INVALID_TOKEN,
    }
)


@dataclass(slots=True, frozen=True)
class Notification:
    """Immutable enhanced push notification.

    The identifier is the correlation key used by gateway error frames.
    Identifiers accepted by one client must increase so that "everything
    sent after id X" is well defined.
    """

    device_token: bytes = field(repr=False)
    payload: bytes = field(repr=False)
    expiry: int = 0
    id: int = field(default_factory=next_notification_id)

    def __post_init__(self) -> None:
        if len(self.device_token) != DEVICE_TOKEN_SIZE:
            msg = f"Device token must be {DEVICE_TOKEN_SIZE} bytes, got {len(self.device_token)}"
            raise ValueError(msg)
        if len(self.payload) > MAX_PAYLOAD_SIZE:
            msg = f"Payload of {len(self.payload)} bytes exceeds the {MAX_PAYLOAD_SIZE} byte frame limit"
            raise ValueError(msg)
        if not 0 <= self.id <= MAX_UINT32:
            msg = f"Notification id out of range: {self.id}"
            raise ValueError(msg)
        if not 0 <= self.expiry <= MAX_UINT32:
            msg = f"Expiry out of range: {self.expiry}"
            raise ValueError(msg)

    @classmethod
    def create(
        cls,
        device_token: bytes | str,
        payload: bytes | str | Mapping[str, object],
        *,
        expiry: int | datetime | None = None,
        notification_id: int | None = None,
    ) -> "Notification":
        """Build a notification from user-friendly values.

        Args:
            device_token: Raw token bytes or a hex string (spaces and angle
                brackets, as printed by devices, are ignored)
            payload: Raw bytes, text, or a mapping encoded as compact JSON
            expiry: Unix timestamp, datetime, or None for one day from now
            notification_id: Explicit identifier, defaults to the next
                process-wide identifier

        Returns:
            New notification
        """
        if isinstance(device_token, str):
            cleaned = device_token.strip().strip("<>").replace(" ", "")
            token = bytes.fromhex(cleaned)
        else:
            token = device_token

        if isinstance(payload, bytes):
            body = payload
        elif isinstance(payload, str):
            body = payload.encode("utf-8")
        else:
            body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

        if expiry is None:
            expiry_value = int(datetime.now().timestamp()) + DEFAULT_EXPIRY_SECONDS
        elif isinstance(expiry, datetime):
            expiry_value = int(expiry.timestamp())
        else:
            expiry_value = expiry

        if notification_id is None:
            return cls(device_token=token, payload=body, expiry=expiry_value)
        return cls(device_token=token, payload=body, expiry=expiry_value, id=notification_id)


@dataclass(slots=True, frozen=True)
class Failure:
    """A connection failure observed by an error listener or a sender.

    ``notification_id`` is None when the connection dropped without an error
    frame, in which case the cause is unknown.
    """

    notification_id: int | None
    status: ErrorStatus
    generation: int

    @property
    def is_unknown(self) -> bool:
        """True when no notification is implicated."""
        return self.notification_id is None
