# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception hierarchy for SMTP delivery failures.

Every error raised by the mailer derives from :class:`MailerError` and
carries a short ``code`` slug that callers can switch on without parsing
messages. Errors that reach the caller in debug mode may also carry the
session transcript collected up to the point of failure.

Hierarchy::

    MailerError
    ├── SmtpConnectionError
    │   ├── ConnectionClosedError
    │   ├── ReplyTimeoutError
    │   └── TLSUpgradeError
    ├── SmtpProtocolError
    ├── EnvelopeValidationError (also a ValueError)
    └── ResolutionFailure
"""

from __future__ import annotations


class MailerError(RuntimeError):
    """Base class for all socket mailer failures."""

    code = "mailer_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.transcript: list[str] = []


class SmtpConnectionError(MailerError):
    """Raised when the transport cannot be opened or breaks mid-dialogue."""

    code = "connection_error"

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        port: int | None = None,
        errno: int | None = None,
    ):
        super().__init__(message)
        self.host = host
        self.port = port
        self.errno = errno


class ConnectionClosedError(SmtpConnectionError):
    """Raised when the server closes the stream before a full reply arrives."""

    code = "connection_closed"


class ReplyTimeoutError(SmtpConnectionError):
    """Raised when connecting or waiting for a reply exceeds its deadline."""

    code = "timeout"


class TLSUpgradeError(SmtpConnectionError):
    """Raised when the STARTTLS handshake cannot be completed."""

    code = "tls_upgrade_failed"


class SmtpProtocolError(MailerError):
    """Raised when a reply does not carry the expected status code.

    Attributes:
        stage: Protocol stage that was running (e.g. ``"rcpt"``).
        expected: The 3-digit code the client was waiting for.
        reply: Raw text of the offending server line.
        smtp_code: Numeric code parsed from the reply, or None if malformed.
    """

    code = "protocol_error"

    def __init__(self, stage: str, expected: str, reply: str):
        self.stage = stage
        self.expected = expected
        self.reply = reply
        head = reply[:3]
        self.smtp_code = int(head) if head.isdigit() else None
        super().__init__(f"Unexpected reply during {stage}: expected {expected}, got {reply!r}")


class EnvelopeValidationError(MailerError, ValueError):
    """Raised before any network activity when the envelope is incomplete."""

    code = "invalid_envelope"


class ResolutionFailure(MailerError):
    """Raised when a recipient domain cannot be resolved to a mail exchanger."""

    code = "resolution_failed"

    def __init__(self, domain: str, message: str):
        super().__init__(message)
        self.domain = domain


__all__ = [
    "ConnectionClosedError",
    "EnvelopeValidationError",
    "MailerError",
    "ReplyTimeoutError",
    "ResolutionFailure",
    "SmtpConnectionError",
    "SmtpProtocolError",
    "TLSUpgradeError",
]
