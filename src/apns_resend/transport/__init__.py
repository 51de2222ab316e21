"""Transport implementations for reaching the gateway."""

from apns_resend.transport.stream import StreamChannel, StreamConnector, create_ssl_context

__all__ = ["StreamChannel", "StreamConnector", "create_ssl_context"]
