# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-session transcript of every line exchanged with the server.

A :class:`Transcript` belongs to exactly one session attempt. Lines that
carry credentials are stored as a placeholder, so the plaintext never
reaches the transcript, the log, or the streaming sink.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .logger import get_logger

REDACTED = "[credentials hidden]"

logger = get_logger("transcript")


class Direction(str, Enum):
    SENT = "CLIENT -> SERVER"
    RECEIVED = "SERVER -> CLIENT"


@dataclass(frozen=True)
class TranscriptLine:
    """One timestamped, direction-tagged protocol line."""

    timestamp: datetime
    direction: Direction
    text: str

    def render(self) -> str:
        return f"{self.timestamp:%Y-%m-%d %H:%M:%S} {self.direction.value}: {self.text}"


@dataclass
class Transcript:
    """Ordered record of one SMTP dialogue.

    Attributes:
        label: Optional tag (e.g. the recipient) prefixed to log records.
        stream: Callable receiving each rendered line as soon as it is
            recorded. Used for verbose tracing.
        lines: The recorded lines in order.
    """

    label: str | None = None
    stream: Callable[[str], None] | None = None
    lines: list[TranscriptLine] = field(default_factory=list)

    def sent(self, text: str, *, redacted: bool = False) -> None:
        self._record(Direction.SENT, REDACTED if redacted else text)

    def received(self, text: str) -> None:
        self._record(Direction.RECEIVED, text)

    def _record(self, direction: Direction, text: str) -> None:
        line = TranscriptLine(datetime.now(), direction, text.rstrip("\r\n"))
        self.lines.append(line)
        rendered = line.render()
        if self.label:
            logger.debug("[%s] %s", self.label, rendered)
        else:
            logger.debug("%s", rendered)
        if self.stream is not None:
            self.stream(rendered)

    def extend(self, other: Transcript) -> None:
        """Append another transcript's lines, keeping their order."""
        self.lines.extend(other.lines)

    def render(self) -> list[str]:
        return [line.render() for line in self.lines]

    def __len__(self) -> int:
        return len(self.lines)

    def __str__(self) -> str:
        return "\n".join(self.render())
