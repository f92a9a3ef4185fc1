# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Header composition and DATA payload rendering.

Everything here is a pure function of its inputs; only ``Date`` and
``Message-ID`` depend on the clock, and both accept an explicit timestamp.

Header order on the wire is: caller headers first, then the managed
headers in this order::

    Subject, To, [Cc], From, Date, MIME-Version, Message-ID,
    Content-Transfer-Encoding, Content-Type

Bcc recipients are never rendered.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from .logger import get_logger
from .models import Address

logger = get_logger("composer")

Headers = list[tuple[str, str]]

MANAGED_HEADERS = frozenset(
    name.lower()
    for name in (
        "Subject",
        "To",
        "Cc",
        "Bcc",
        "From",
        "Date",
        "MIME-Version",
        "Message-ID",
        "Content-Transfer-Encoding",
        "Content-Type",
    )
)


def encode_subject(subject: str, charset: str = "utf-8") -> str:
    """RFC 2047 B-encode ``subject``, even when it is plain ASCII."""
    encoded = base64.b64encode(subject.encode(charset)).decode("ascii")
    return f"=?{charset}?B?{encoded}?="


def make_message_id(sender: str, fallback_host: str, now_ms: int | None = None) -> str:
    """Build ``<md5(sender + ms) + ms @ domain>``.

    The domain is the part of ``sender`` after ``@``; a sender without one
    uses ``fallback_host`` (the configured relay host).
    """
    if now_ms is None:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    stamp = str(now_ms)
    digest = hashlib.md5(f"{sender}{stamp}".encode()).hexdigest()
    _, sep, domain = sender.rpartition("@")
    if not sep or not domain:
        domain = fallback_host
    return f"<{digest}{stamp}@{domain}>"


def format_address_list(addresses: Iterable[Address]) -> str:
    return ",".join(address.display() for address in addresses)


def compose_headers(
    sender: Address,
    to: Sequence[Address],
    cc: Sequence[Address],
    subject: str,
    charset: str,
    extra_headers: Iterable[tuple[str, str]],
    fallback_host: str,
    now: datetime | None = None,
) -> Headers:
    """Build the ordered header set for one session.

    Args:
        sender: Envelope sender, rendered in ``From``.
        to: Recipients rendered in ``To``.
        cc: Recipients rendered in ``Cc`` (omitted when empty).
        subject: Free-text subject, always B-encoded.
        charset: Body and subject charset.
        extra_headers: Caller headers, emitted first in insertion order.
        fallback_host: Message-ID domain when the sender has no ``@``.
        now: Timestamp for ``Date`` and ``Message-ID``; defaults to now.

    Returns:
        List of ``(name, value)`` pairs. Each managed header appears exactly
        once; a caller header with a managed name is dropped.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now_ms = int(now.timestamp() * 1000)

    headers: Headers = []
    for name, value in extra_headers:
        if name.lower() in MANAGED_HEADERS:
            logger.warning("Ignoring custom header %s: it is set by the composer", name)
            continue
        headers.append((name, value))

    headers.append(("Subject", encode_subject(subject, charset)))
    headers.append(("To", format_address_list(to)))
    if cc:
        headers.append(("Cc", format_address_list(cc)))
    headers.append(("From", sender.display()))
    headers.append(("Date", now.isoformat(timespec="seconds")))
    headers.append(("MIME-Version", "1.0"))
    headers.append(("Message-ID", make_message_id(sender.email, fallback_host, now_ms)))
    headers.append(("Content-Transfer-Encoding", "8bit"))
    headers.append(("Content-Type", f"text/html; charset={charset}"))
    return headers


def render_data(headers: Headers, body: str, charset: str = "utf-8") -> bytes:
    """Render the DATA payload including the terminating ``.`` line.

    Line endings of the body are normalized to CRLF and lines starting with
    ``.`` are dot-stuffed (RFC 5321 4.5.2) so the body cannot end the
    transaction early.
    """
    header_block = "".join(f"{name}: {value}\r\n" for name, value in headers) + "\r\n"
    body_lines = [
        "." + line if line.startswith(".") else line
        for line in body.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    ]
    # Display names may be non-ASCII; headers travel as 8bit UTF-8.
    return header_block.encode("utf-8") + ("\r\n".join(body_lines) + "\r\n.\r\n").encode(charset)


__all__ = [
    "Headers",
    "MANAGED_HEADERS",
    "compose_headers",
    "encode_subject",
    "format_address_list",
    "make_message_id",
    "render_data",
]
