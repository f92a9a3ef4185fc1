# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP session engine: one complete dialogue over one open transport.

The engine walks the protocol stages in order and checks the reply code at
each step. The first mismatch aborts the dialogue, so no command past the
failing stage is ever sent::

    CONNECT   <- 220
    EHLO      -> 250
    STARTTLS  -> 220, TLS handshake, EHLO -> 250    (encryption == tls)
    AUTH      -> 334, user -> 334, password -> 235  (credentials set)
    MAIL FROM -> 250
    RCPT TO   -> 250 (once per recipient)
    DATA      -> 354, payload + "." -> 250
    QUIT      (reply not checked)

Commands are never pipelined: each write is followed by the blocking read
of its reply. The transport is closed on every exit path.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum

from .config import Encryption
from .errors import MailerError, SmtpProtocolError
from .logger import get_logger
from .transcript import Transcript
from .transport import Transport

logger = get_logger("session")


class Stage(str, Enum):
    CONNECT = "connect"
    EHLO = "ehlo"
    STARTTLS = "starttls"
    AUTH = "auth"
    MAIL = "mail"
    RCPT = "rcpt"
    DATA = "data"
    QUIT = "quit"


@dataclass
class SessionResult:
    """Summary of a completed dialogue.

    Attributes:
        replies: Number of terminal replies whose code was validated.
        ehlo_count: Number of EHLO commands issued (2 after STARTTLS).
        final_reply: Server text accepting the message (end of DATA).
    """

    replies: int = 0
    ehlo_count: int = 0
    final_reply: str = ""


class SmtpSession:
    """Drives one SMTP conversation and classifies its outcome.

    A session is single-use: create one per transport, call :meth:`run`
    once. Failures raise typed :class:`MailerError` subclasses carrying the
    offending server text; the caller decides whether to surface them.
    """

    def __init__(
        self,
        transport: Transport,
        transcript: Transcript,
        *,
        ehlo_name: str,
        encryption: Encryption = Encryption.NONE,
        username: str = "",
        password: str = "",
        tls_hostname: str | None = None,
    ):
        self.transport = transport
        self.transcript = transcript
        self.ehlo_name = ehlo_name
        self.encryption = encryption
        self.username = username
        self.password = password
        self.tls_hostname = tls_hostname or ehlo_name
        self.result = SessionResult()
        self.stage = Stage.CONNECT

    # ------------------------------------------------------------- primitives
    async def _send(self, line: str, *, redacted: bool = False) -> None:
        self.transcript.sent(line, redacted=redacted)
        await self.transport.write(f"{line}\r\n".encode())

    async def _expect(self, code: str) -> str:
        """Read one (possibly multi-line) reply and check its code.

        Continuation lines (``250-...``) are recorded but not validated; the
        terminal line (``250 ...``) must start with exactly ``code``.
        """
        while True:
            line = await self.transport.readline()
            self.transcript.received(line)
            if len(line) < 3 or not line[:3].isdigit():
                raise SmtpProtocolError(self.stage.value, code, line)
            if len(line) == 3 or line[3] == " ":
                break
            if line[3] != "-":
                raise SmtpProtocolError(self.stage.value, code, line)
        if line[:3] != code:
            raise SmtpProtocolError(self.stage.value, code, line)
        self.result.replies += 1
        return line

    async def _command(self, line: str, code: str, *, redacted: bool = False) -> str:
        await self._send(line, redacted=redacted)
        return await self._expect(code)

    # ----------------------------------------------------------------- stages
    async def _ehlo(self) -> None:
        self.result.ehlo_count += 1
        await self._command(f"EHLO {self.ehlo_name}", "250")

    async def _starttls(self) -> None:
        self.stage = Stage.STARTTLS
        await self._command("STARTTLS", "220")
        await self.transport.start_tls(self.tls_hostname)
        # Capabilities may differ over the secured channel.
        self.stage = Stage.EHLO
        await self._ehlo()

    async def _authenticate(self) -> None:
        self.stage = Stage.AUTH
        await self._command("AUTH LOGIN", "334")
        await self._command(base64.b64encode(self.username.encode()).decode("ascii"), "334", redacted=True)
        await self._command(base64.b64encode(self.password.encode()).decode("ascii"), "235", redacted=True)

    async def _quit(self) -> None:
        self.stage = Stage.QUIT
        try:
            await self._send("QUIT")
            self.transcript.received(await self.transport.readline())
        except MailerError as exc:
            # The message is already accepted; a broken goodbye changes nothing.
            logger.debug("QUIT not acknowledged: %s", exc)

    async def run(self, sender: str, recipients: list[str], payload: bytes) -> SessionResult:
        """Run the full dialogue for one envelope.

        Args:
            sender: Bare envelope sender address.
            recipients: Bare RCPT TO addresses, in order.
            payload: DATA payload including the terminating ``.`` line,
                as produced by :func:`socket_mailer.composer.render_data`.

        Returns:
            The session summary.

        Raises:
            SmtpProtocolError: On any unexpected or malformed reply.
            SmtpConnectionError: On transport failures (including timeouts,
                closed streams and TLS upgrade failures).
        """
        try:
            self.stage = Stage.CONNECT
            await self._expect("220")

            self.stage = Stage.EHLO
            await self._ehlo()

            if self.encryption is Encryption.TLS:
                await self._starttls()

            if self.username and self.password:
                await self._authenticate()

            self.stage = Stage.MAIL
            await self._command(f"MAIL FROM:<{sender}>", "250")

            self.stage = Stage.RCPT
            for recipient in recipients:
                await self._command(f"RCPT TO:<{recipient}>", "250")

            self.stage = Stage.DATA
            await self._command("DATA", "354")
            for line in payload.decode("utf-8", errors="replace").split("\r\n")[:-1]:
                self.transcript.sent(line)
            await self.transport.write(payload)
            self.result.final_reply = await self._expect("250")

            await self._quit()
            return self.result
        finally:
            await self.transport.close()


__all__ = ["SessionResult", "SmtpSession", "Stage"]
