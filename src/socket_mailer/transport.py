# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Byte-stream transport used by the SMTP session engine.

The session engine only needs four primitives: read one reply line, write
bytes, upgrade the open stream to TLS in place, and close. They are
described by the :class:`Transport` protocol so tests can drive the engine
with scripted transports.

:class:`StreamTransport` implements the protocol over asyncio streams.
Every blocking operation is bounded by a deadline and every low-level
failure is mapped onto the mailer error hierarchy:

- connect failure (refused, unreachable, DNS)  -> SmtpConnectionError
- connect or read deadline exceeded            -> ReplyTimeoutError
- stream closed before a full line             -> ConnectionClosedError
- STARTTLS handshake failure                   -> TLSUpgradeError

Example:
    Opening a plaintext connection and reading the banner::

        transport = await StreamTransport.open("smtp.example.com", 25, timeout=15.0)
        try:
            banner = await transport.readline()
        finally:
            await transport.close()
"""

from __future__ import annotations

import asyncio
import ssl
from collections.abc import Awaitable, Callable
from typing import Protocol

from .errors import (
    ConnectionClosedError,
    ReplyTimeoutError,
    SmtpConnectionError,
    TLSUpgradeError,
)
from .logger import get_logger

logger = get_logger("transport")

# RFC 5321 4.5.3.1.5: reply lines are at most 512 octets, allow some slack.
MAX_LINE_LENGTH = 2048


class Transport(Protocol):
    """Minimal stream capability consumed by :class:`SmtpSession`."""

    async def readline(self) -> str:
        """Return one line (without CRLF) or raise a connection error."""
        ...

    async def write(self, data: bytes) -> None: ...

    async def start_tls(self, server_hostname: str) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str, int, bool], Awaitable[Transport]]
"""Opens a transport to ``(host, port, implicit_tls)``."""


def make_ssl_context(verify: bool = True) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class StreamTransport:
    """asyncio streams implementation of :class:`Transport`.

    Attributes:
        host: Remote host name, also used for TLS server name indication.
        port: Remote port.
        read_timeout: Seconds to wait for each reply line.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        host: str,
        port: int,
        read_timeout: float,
        verify_tls: bool = True,
    ):
        self._reader = reader
        self._writer = writer
        self.host = host
        self.port = port
        self.read_timeout = read_timeout
        self.verify_tls = verify_tls
        self._closed = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        *,
        implicit_tls: bool = False,
        timeout: float = 15.0,
        read_timeout: float | None = None,
        verify_tls: bool = True,
    ) -> StreamTransport:
        """Connect to ``host:port``, wrapping in TLS from the start if asked.

        Raises:
            ReplyTimeoutError: If the connection is not established in time.
            SmtpConnectionError: On any socket or TLS error while connecting.
        """
        ssl_context = make_ssl_context(verify_tls) if implicit_tls else None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=ssl_context, limit=MAX_LINE_LENGTH),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ReplyTimeoutError(
                f"Timed out connecting to '{host}:{port}' after {timeout}s", host=host, port=port
            ) from exc
        except OSError as exc:
            # ssl.SSLError is an OSError as well
            raise SmtpConnectionError(
                f"Error connecting to '{host}:{port}' ({exc.errno}) ({exc.strerror or exc})",
                host=host,
                port=port,
                errno=exc.errno,
            ) from exc
        logger.debug("Connected to %s:%s (implicit_tls=%s)", host, port, implicit_tls)
        return cls(
            reader,
            writer,
            host=host,
            port=port,
            read_timeout=read_timeout if read_timeout is not None else timeout,
            verify_tls=verify_tls,
        )

    async def readline(self) -> str:
        try:
            raw = await asyncio.wait_for(self._reader.readline(), timeout=self.read_timeout)
        except asyncio.TimeoutError as exc:
            raise ReplyTimeoutError(
                f"No reply from '{self.host}:{self.port}' within {self.read_timeout}s",
                host=self.host,
                port=self.port,
            ) from exc
        except (ValueError, asyncio.LimitOverrunError) as exc:
            raise SmtpConnectionError(
                f"Reply line from '{self.host}:{self.port}' exceeds {MAX_LINE_LENGTH} bytes",
                host=self.host,
                port=self.port,
            ) from exc
        except OSError as exc:
            raise SmtpConnectionError(
                f"Error reading from '{self.host}:{self.port}': {exc}",
                host=self.host,
                port=self.port,
                errno=exc.errno,
            ) from exc
        if not raw.endswith(b"\n"):
            raise ConnectionClosedError(
                f"Connection to '{self.host}:{self.port}' closed while fetching server response",
                host=self.host,
                port=self.port,
            )
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def write(self, data: bytes) -> None:
        try:
            self._writer.write(data)
            await asyncio.wait_for(self._writer.drain(), timeout=self.read_timeout)
        except asyncio.TimeoutError as exc:
            raise ReplyTimeoutError(
                f"Timed out writing to '{self.host}:{self.port}'", host=self.host, port=self.port
            ) from exc
        except OSError as exc:
            raise SmtpConnectionError(
                f"Error writing to '{self.host}:{self.port}': {exc}",
                host=self.host,
                port=self.port,
                errno=exc.errno,
            ) from exc

    async def start_tls(self, server_hostname: str) -> None:
        """Upgrade the open plaintext stream to TLS in place.

        Raises:
            TLSUpgradeError: If the handshake fails or times out.
        """
        try:
            await self._writer.start_tls(
                make_ssl_context(self.verify_tls),
                server_hostname=server_hostname,
                ssl_handshake_timeout=self.read_timeout,
            )
        except (OSError, asyncio.TimeoutError, RuntimeError) as exc:
            raise TLSUpgradeError(
                f"Unable to start tls encryption with '{self.host}:{self.port}': {exc}",
                host=self.host,
                port=self.port,
            ) from exc
        logger.debug("TLS established with %s:%s", self.host, self.port)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=self.read_timeout)
        except Exception as exc:
            # Teardown of an already broken stream; nothing left to report.
            logger.debug("Ignoring error while closing %s:%s: %s", self.host, self.port, exc)


def stream_transport_factory(
    *,
    connect_timeout: float,
    read_timeout: float | None = None,
    verify_tls: bool = True,
) -> TransportFactory:
    """Build a :data:`TransportFactory` that opens :class:`StreamTransport` objects."""

    async def factory(host: str, port: int, implicit_tls: bool) -> Transport:
        return await StreamTransport.open(
            host,
            port,
            implicit_tls=implicit_tls,
            timeout=connect_timeout,
            read_timeout=read_timeout,
            verify_tls=verify_tls,
        )

    return factory


__all__ = [
    "MAX_LINE_LENGTH",
    "StreamTransport",
    "Transport",
    "TransportFactory",
    "make_ssl_context",
    "stream_transport_factory",
]
