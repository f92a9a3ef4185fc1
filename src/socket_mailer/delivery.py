# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery orchestration: relay through one MTA or go direct to each MX.

This module provides the :class:`Mailer`, the entry point of the package.
It validates the envelope, picks a delivery strategy and folds the session
outcomes into one :class:`DeliveryOutcome`:

- **via-MTA** (``mta_mode_on`` false): one transport to the configured
  relay, one session carrying every recipient. Failures become a falsy
  outcome, or are re-raised when the debug level is ON or VERBOSE.
- **direct-to-MX** (``mta_mode_on`` true): each recipient's domain is
  resolved through the mailer's :class:`MXCache` and gets its own
  independent session. A failure is recorded against that recipient only
  and never raised, so the remaining recipients are always attempted.

Example:
    Relaying through an authenticated submission server::

        from socket_mailer import Envelope, Mailer, Message, TransportConfig

        mailer = Mailer(TransportConfig(
            host="mail.example.com",
            port=587,
            username="service@example.com",
            password="secret",
            encryption="tls",
        ))
        outcome = await mailer.send(
            Envelope(sender={"service@example.com": "Service"}, to=["name@example.com"]),
            Message(subject="Hi", body="<p>Hello</p>"),
        )
        if not outcome:
            print(outcome.error)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .composer import compose_headers, render_data
from .config import DebugLevel, Encryption, TransportConfig
from .errors import MailerError, SmtpConnectionError, SmtpProtocolError
from .logger import get_logger
from .metrics import MailerMetrics
from .models import Address, Envelope, Message
from .resolver import MXCache
from .session import SmtpSession
from .transcript import Transcript
from .transport import Transport, TransportFactory, stream_transport_factory

MODE_RELAY = "relay"
MODE_DIRECT = "direct"


@dataclass(frozen=True)
class DeliveryError:
    """Serializable description of a failed session.

    Attributes:
        message: Human-readable error text, including the server reply.
        code: Error code slug from the exception (e.g. ``"protocol_error"``).
        stage: Protocol stage that failed, for protocol errors.
        smtp_code: Numeric reply code, for protocol errors.
    """

    message: str
    code: str
    stage: str | None = None
    smtp_code: int | None = None

    @classmethod
    def from_exception(cls, exc: MailerError) -> DeliveryError:
        if isinstance(exc, SmtpProtocolError):
            return cls(str(exc), exc.code, exc.stage, exc.smtp_code)
        return cls(str(exc), exc.code)


@dataclass(frozen=True)
class RecipientResult:
    recipient: str
    success: bool
    host: str | None = None
    error: DeliveryError | None = None


@dataclass
class DeliveryOutcome:
    """Aggregate result of :meth:`Mailer.send`.

    Truthiness follows ``success``, so ``if await mailer.send(...)`` reads
    like the boolean API callers expect.
    """

    success: bool
    mode: str
    error: DeliveryError | None = None
    recipients: list[RecipientResult] = field(default_factory=list)
    transcript: list[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.recipients if not result.success)

    @property
    def delivered(self) -> list[str]:
        return [result.recipient for result in self.recipients if result.success]

    def __bool__(self) -> bool:
        return self.success


class Mailer:
    """SMTP client speaking the protocol directly over a socket.

    A mailer is safe to share between concurrent sends: envelopes and
    messages are immutable, headers and transcripts are built per session,
    and the only long-lived state is the MX cache.

    Attributes:
        config: Frozen transport configuration.
        debug: How failures and transcripts are surfaced.
        mx_cache: Domain to mail-host cache used in direct mode.
        metrics: Prometheus counters for sessions and MX lookups.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        debug: DebugLevel | bool | int = DebugLevel.OFF,
        mx_cache: MXCache | None = None,
        transport_factory: TransportFactory | None = None,
        metrics: MailerMetrics | None = None,
        logger: logging.Logger | None = None,
        stream: Callable[[str], None] | None = None,
    ):
        """Initialize the mailer.

        Args:
            config: Transport settings. Defaults to plaintext relay on
                localhost:25.
            debug: OFF, ON or VERBOSE (``True`` means ON).
            mx_cache: Cache to resolve recipient domains with. A fresh one
                backed by DNS is created when omitted.
            transport_factory: Opens transports; defaults to asyncio streams
                with the configured timeouts.
            metrics: Prometheus collector. A private one is created if None.
            logger: Custom logger instance.
            stream: Sink for verbose tracing; defaults to ``logger.info``.
        """
        self.config = config if config is not None else TransportConfig()
        self.debug = DebugLevel.coerce(debug)
        self.mx_cache = mx_cache if mx_cache is not None else MXCache()
        self.metrics = metrics if metrics is not None else MailerMetrics()
        self.logger = logger or get_logger("delivery")
        self._stream = stream or self.logger.info
        self._transport_factory = transport_factory or stream_transport_factory(
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.reply_timeout,
            verify_tls=self.config.verify_tls,
        )

    def debug_on(self, level: DebugLevel | bool | int = DebugLevel.ON) -> Mailer:
        self.debug = DebugLevel.coerce(level)
        return self

    # ------------------------------------------------------------------ send
    async def send(self, envelope: Envelope, message: Message) -> DeliveryOutcome:
        """Deliver ``message`` to every recipient of ``envelope``.

        Returns:
            The aggregate outcome. Its ``transcript`` is filled only at
            VERBOSE level.

        Raises:
            EnvelopeValidationError: Empty sender or no recipients; raised
                before any connection is opened, whatever the debug level.
            MailerError: Relay failures, only when the debug level is ON or
                VERBOSE. Direct-to-MX failures are never raised.
        """
        envelope.validate_for_send()
        if self.config.mta_mode_on:
            return await self._send_direct(envelope, message)
        return await self._send_via_relay(envelope, message)

    async def _send_via_relay(self, envelope: Envelope, message: Message) -> DeliveryOutcome:
        config = self.config
        recipients = [address.email for address in envelope.recipients()]
        transcript = self._new_transcript()
        payload = self._payload(envelope, message)
        try:
            transport = await self._open(config.host, config.port)
            session = SmtpSession(
                transport,
                transcript,
                ehlo_name=config.greeting_name,
                encryption=config.encryption,
                username=config.username,
                password=config.password,
                tls_hostname=config.host,
            )
            await session.run(envelope.sender.email, recipients, payload)
        except MailerError as exc:
            self.metrics.inc_error(MODE_RELAY, exc.code)
            self.logger.warning(
                "Delivery via %s:%s failed (%s): %s", config.host, config.port, exc.code, exc
            )
            if self.debug >= DebugLevel.ON:
                exc.transcript = transcript.render()
                raise
            error = DeliveryError.from_exception(exc)
            return DeliveryOutcome(
                success=False,
                mode=MODE_RELAY,
                error=error,
                recipients=[RecipientResult(rcpt, False, config.host, error) for rcpt in recipients],
                transcript=self._exposed(transcript),
            )

        self.metrics.inc_sent(MODE_RELAY)
        self.logger.info(
            "Delivered message to %d recipient(s) via %s:%s", len(recipients), config.host, config.port
        )
        return DeliveryOutcome(
            success=True,
            mode=MODE_RELAY,
            recipients=[RecipientResult(rcpt, True, config.host) for rcpt in recipients],
            transcript=self._exposed(transcript),
        )

    async def _send_direct(self, envelope: Envelope, message: Message) -> DeliveryOutcome:
        semaphore = asyncio.Semaphore(self.config.max_concurrent_sessions)
        lookups_before = self.mx_cache.lookups
        attempts = await asyncio.gather(
            *(self._deliver_one(recipient, envelope, message, semaphore) for recipient in envelope.recipients()),
            return_exceptions=True,
        )
        self.metrics.inc_mx_lookup(self.mx_cache.lookups - lookups_before)
        # Non-mailer errors are raised only after every sibling session settled.
        for attempt in attempts:
            if isinstance(attempt, BaseException):
                raise attempt

        results = [result for result, _ in attempts]
        merged = Transcript()
        for _, transcript in attempts:
            merged.extend(transcript)

        outcome = DeliveryOutcome(
            success=all(result.success for result in results),
            mode=MODE_DIRECT,
            recipients=results,
            transcript=self._exposed(merged),
        )
        if outcome.failed_count:
            first_error = next(result.error for result in results if result.error is not None)
            outcome.error = DeliveryError(
                f"{outcome.failed_count} of {len(results)} recipient(s) failed",
                first_error.code,
            )
            self.logger.warning("Direct delivery: %d of %d recipient(s) failed", outcome.failed_count, len(results))
        else:
            self.logger.info("Direct delivery: all %d recipient(s) delivered", len(results))
        return outcome

    async def _deliver_one(
        self,
        recipient: Address,
        envelope: Envelope,
        message: Message,
        semaphore: asyncio.Semaphore,
    ) -> tuple[RecipientResult, Transcript]:
        """Run one independent session for a single recipient.

        Every MailerError (resolution, connection, protocol) is contained
        here and turned into a failed :class:`RecipientResult`.
        """
        transcript = self._new_transcript(label=recipient.email)
        payload = self._payload(envelope, message)
        host: str | None = None
        async with semaphore:
            try:
                host = await self.mx_cache.get(recipient.domain)
                transport = await self._open(host, self.config.port)
                # Relay credentials are never presented to foreign exchangers.
                session = SmtpSession(
                    transport,
                    transcript,
                    ehlo_name=self.config.greeting_name,
                    encryption=self.config.encryption,
                    tls_hostname=host,
                )
                await session.run(envelope.sender.email, [recipient.email], payload)
            except MailerError as exc:
                self.metrics.inc_error(MODE_DIRECT, exc.code)
                self.logger.warning(
                    "Delivery to %s via %s failed (%s): %s", recipient.email, host or "-", exc.code, exc
                )
                return RecipientResult(recipient.email, False, host, DeliveryError.from_exception(exc)), transcript

        self.metrics.inc_sent(MODE_DIRECT)
        self.logger.info("Delivered message to %s via %s", recipient.email, host)
        return RecipientResult(recipient.email, True, host), transcript

    # --------------------------------------------------------------- helpers
    async def _open(self, host: str, port: int) -> Transport:
        implicit_tls = self.config.encryption is Encryption.SSL
        try:
            return await self._transport_factory(host, port, implicit_tls)
        except MailerError:
            raise
        except OSError as exc:
            raise SmtpConnectionError(
                f"Error connecting to '{host}' ({exc.errno}) ({exc.strerror or exc})",
                host=host,
                port=port,
                errno=exc.errno,
            ) from exc

    def _payload(self, envelope: Envelope, message: Message) -> bytes:
        headers = compose_headers(
            envelope.sender,
            envelope.to,
            envelope.cc,
            message.subject,
            message.charset,
            message.headers,
            self.config.host,
        )
        return render_data(headers, message.body, message.charset)

    def _new_transcript(self, label: str | None = None) -> Transcript:
        if self.debug < DebugLevel.VERBOSE:
            return Transcript(label=label)
        if label is None:
            return Transcript(stream=self._stream)
        sink = self._stream
        return Transcript(label=label, stream=lambda line: sink(f"[{label}] {line}"))

    def _exposed(self, transcript: Transcript) -> list[str]:
        return transcript.render() if self.debug >= DebugLevel.VERBOSE else []


__all__ = [
    "DeliveryError",
    "DeliveryOutcome",
    "Mailer",
    "RecipientResult",
]
