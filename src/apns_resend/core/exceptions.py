"""Exception hierarchy for the push client."""

from __future__ import annotations

from apns_resend.types.models import ErrorStatus


class PushClientError(Exception):
    """Base exception for push client errors."""


class TransportError(PushClientError):
    """Connect, read or write on the gateway transport failed."""

    def __init__(self, message: str, generation: int | None = None) -> None:
        """Initialize transport error.

        Args:
            message: Error message
            generation: Connection generation the failure belongs to
        """
        super().__init__(message)
        self.generation: int | None = generation


class ProtocolError(PushClientError):
    """Bytes received from or destined for the gateway are malformed."""


class GatewayRejection(PushClientError):
    """Gateway returned a well-formed error frame."""

    def __init__(self, status: ErrorStatus, notification_id: int) -> None:
        """Initialize gateway rejection.

        Args:
            status: Status code from the error frame
            notification_id: Identifier the gateway referenced
        """
        super().__init__(f"Gateway rejected notification {notification_id}: {status.name}")
        self.status: ErrorStatus = status
        self.notification_id: int = notification_id


class RecoveryExhausted(PushClientError):
    """Connection could not be rebuilt within the retry budget."""

    def __init__(self, message: str, attempts: int) -> None:
        """Initialize recovery exhausted error.

        Args:
            message: Error message
            attempts: Number of rebuild attempts made
        """
        super().__init__(message)
        self.attempts: int = attempts


class BackpressureError(PushClientError):
    """Pending buffer is full while the client is recovering."""

    def __init__(self, message: str, limit: int) -> None:
        """Initialize backpressure error.

        Args:
            message: Error message
            limit: Configured pending buffer limit
        """
        super().__init__(message)
        self.limit: int = limit


class ClientClosedError(PushClientError):
    """Operation attempted on a client that has been shut down."""
