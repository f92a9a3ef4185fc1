# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared fixtures: scripted transports standing in for SMTP servers."""

from __future__ import annotations

from collections.abc import Iterable

import pytest

from socket_mailer.errors import ConnectionClosedError, TLSUpgradeError

# 220 banner, EHLO, MAIL FROM, RCPT TO, DATA, end of data, QUIT
PLAIN_REPLIES = [
    "220 mx.test ESMTP ready",
    "250-mx.test greets you",
    "250 8BITMIME",
    "250 2.1.0 Sender ok",
    "250 2.1.5 Recipient ok",
    "354 End data with <CR><LF>.<CR><LF>",
    "250 2.0.0 Queued as 42",
    "221 2.0.0 Bye",
]


class ScriptedTransport:
    """In-memory transport replaying canned server lines.

    Each ``readline`` pops the next scripted line; when the script runs out
    the transport behaves like a closed connection.
    """

    def __init__(self, replies: Iterable[str], *, fail_tls: bool = False, host: str = "mx.test"):
        self.replies = list(replies)
        self.fail_tls = fail_tls
        self.host = host
        self.writes: list[bytes] = []
        self.reads = 0
        self.tls_started = False
        self.closed = False

    async def readline(self) -> str:
        if self.closed:
            raise ConnectionClosedError("read on closed transport", host=self.host)
        if not self.replies:
            raise ConnectionClosedError("Connection closed while fetching server response", host=self.host)
        self.reads += 1
        return self.replies.pop(0)

    async def write(self, data: bytes) -> None:
        assert not self.closed, "write after close"
        self.writes.append(data)

    async def start_tls(self, server_hostname: str) -> None:
        if self.fail_tls:
            raise TLSUpgradeError("Unable to start tls encryption", host=self.host)
        self.tls_started = True

    async def close(self) -> None:
        self.closed = True

    @property
    def commands(self) -> list[str]:
        """First line of every write, i.e. the command verbs sent."""
        return [data.decode("utf-8", errors="replace").split("\r\n", 1)[0] for data in self.writes]

    @property
    def payload(self) -> str:
        """The DATA payload write (the one spanning several lines)."""
        for data in self.writes:
            text = data.decode("utf-8", errors="replace")
            if text.count("\r\n") > 1:
                return text
        return ""


class ScriptedNetwork:
    """Transport factory mapping host names to scripted servers."""

    def __init__(self):
        self.scripts: dict[str, list[str]] = {}
        self.failures: dict[str, Exception] = {}
        self.fail_tls: set[str] = set()
        self.opened: list[tuple[str, int, bool]] = []
        self.transports: list[ScriptedTransport] = []

    def serve(self, host: str, replies: Iterable[str] = PLAIN_REPLIES, *, fail_tls: bool = False) -> None:
        self.scripts[host] = list(replies)
        if fail_tls:
            self.fail_tls.add(host)

    def refuse(self, host: str, exc: Exception) -> None:
        self.failures[host] = exc

    async def __call__(self, host: str, port: int, implicit_tls: bool) -> ScriptedTransport:
        self.opened.append((host, port, implicit_tls))
        if host in self.failures:
            raise self.failures[host]
        transport = ScriptedTransport(self.scripts[host], fail_tls=host in self.fail_tls, host=host)
        self.transports.append(transport)
        return transport

    def transport_for(self, host: str) -> ScriptedTransport:
        return next(t for t in self.transports if t.host == host)


@pytest.fixture
def network() -> ScriptedNetwork:
    return ScriptedNetwork()


@pytest.fixture
def plain_replies() -> list[str]:
    return list(PLAIN_REPLIES)


@pytest.fixture
def scripted() -> type[ScriptedTransport]:
    """The scripted transport class, for tests driving a session directly."""
    return ScriptedTransport
