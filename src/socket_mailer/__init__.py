# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP client engine that speaks the protocol directly over a socket.

This package delivers a composed message without smtplib or a local MTA.
It drives the EHLO/STARTTLS/AUTH/MAIL/RCPT/DATA dialogue itself and offers
two delivery strategies:

- Relay through one configured (optionally authenticated) server
- Direct delivery to each recipient domain's mail exchanger

Components:
    Mailer: Delivery orchestrator, the public entry point.
    SmtpSession: One protocol dialogue over one transport.
    TransportConfig: Frozen connection settings.
    Envelope, Message, Address: Immutable message inputs.
    MXCache: Per-mailer domain to mail-host cache.

Example:
    Relay a message through a STARTTLS submission server::

        import asyncio
        from socket_mailer import Envelope, Mailer, Message, TransportConfig

        mailer = Mailer(TransportConfig(host="mail.example.com", port=587, encryption="tls"))
        outcome = asyncio.run(mailer.send(
            Envelope(sender="service@example.com", to=["name@example.com"]),
            Message(subject="Hi", body="Hello"),
        ))
"""

from .config import DebugLevel, Encryption, TransportConfig, load_transport_config
from .delivery import DeliveryError, DeliveryOutcome, Mailer, RecipientResult
from .errors import (
    ConnectionClosedError,
    EnvelopeValidationError,
    MailerError,
    ReplyTimeoutError,
    ResolutionFailure,
    SmtpConnectionError,
    SmtpProtocolError,
    TLSUpgradeError,
)
from .models import Address, Envelope, Message
from .resolver import MXCache, resolve_mx
from .session import SessionResult, SmtpSession, Stage

__all__ = [
    "Address",
    "ConnectionClosedError",
    "DebugLevel",
    "DeliveryError",
    "DeliveryOutcome",
    "Encryption",
    "Envelope",
    "EnvelopeValidationError",
    "MXCache",
    "Mailer",
    "MailerError",
    "Message",
    "RecipientResult",
    "ReplyTimeoutError",
    "ResolutionFailure",
    "SessionResult",
    "SmtpConnectionError",
    "SmtpProtocolError",
    "SmtpSession",
    "Stage",
    "TLSUpgradeError",
    "TransportConfig",
    "load_transport_config",
    "resolve_mx",
]
