"""asyncio stream transport to the gateway, optionally wrapped in TLS."""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import override

from apns_resend.core.config import GatewayConfig, TLSConfig
from apns_resend.types.protocols import Channel, Connector

logger = logging.getLogger(__name__)


class StreamChannel(Channel):
    """Channel backed by an asyncio ``StreamReader``/``StreamWriter`` pair.

    Closing the writer does not discard bytes the reader already buffered,
    so an error frame that arrived before the close can still be read.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader: asyncio.StreamReader = reader
        self._writer: asyncio.StreamWriter = writer
        self._closed: bool = False

    @override
    async def read(self, max_bytes: int) -> bytes:
        return await self._reader.read(max_bytes)

    @override
    async def write(self, data: bytes) -> None:
        if self._closed or self._writer.is_closing():
            msg = "Channel is closed"
            raise ConnectionResetError(msg)
        self._writer.write(data)
        await self._writer.drain()

    @override
    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, ssl.SSLError) as exc:
            logger.debug("Error while waiting for channel close: %s", exc)


def create_ssl_context(tls: TLSConfig) -> ssl.SSLContext:
    """Build the client TLS context from configuration.

    Args:
        tls: TLS settings

    Returns:
        Client-side SSL context presenting the configured certificate
    """
    context = ssl.create_default_context(
        ssl.Purpose.SERVER_AUTH,
        cafile=str(tls.cafile) if tls.cafile is not None else None,
    )
    if not tls.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if tls.certfile is not None:
        context.load_cert_chain(
            str(tls.certfile),
            keyfile=str(tls.keyfile) if tls.keyfile is not None else None,
            password=tls.password,
        )
    return context


class StreamConnector(Connector):
    """Opens TCP (optionally TLS) connections to one gateway endpoint."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            host: Gateway host name
            port: Gateway port
            ssl_context: TLS context, or None for plain TCP
        """
        self.host: str = host
        self.port: int = port
        self.ssl_context: ssl.SSLContext | None = ssl_context

    @classmethod
    def from_config(cls, config: GatewayConfig) -> StreamConnector:
        """Create a connector for the configured gateway."""
        context = create_ssl_context(config.tls) if config.tls.enabled else None
        return cls(config.effective_host, config.port, ssl_context=context)

    @override
    async def connect(self) -> Channel:
        logger.debug("Connecting to %s:%d (tls=%s)", self.host, self.port, self.ssl_context is not None)
        reader, writer = await asyncio.open_connection(
            self.host,
            self.port,
            ssl=self.ssl_context,
        )
        return StreamChannel(reader, writer)
