# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the envelope and message of one send.

Models:
    - Address: An email address with an optional display name
    - Envelope: Sender plus To/Cc/Bcc recipient lists
    - Message: Subject, body, charset and custom headers

All models are frozen. A send derives its headers and transcript from these
values and never mutates them, so one envelope can be reused across sends
or shared between concurrent tasks.
"""

from __future__ import annotations

import codecs
from collections.abc import Iterable, Mapping
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import EnvelopeValidationError


class Address(BaseModel):
    """A mailbox address, optionally paired with a display name.

    Attributes:
        email: The bare address used in MAIL FROM / RCPT TO.
        name: Display name rendered in headers, if any.
    """

    model_config = ConfigDict(frozen=True)

    email: Annotated[str, Field(min_length=1, description="Mailbox address")]
    name: Annotated[str | None, Field(default=None, description="Display name")]

    @field_validator("email")
    @classmethod
    def strip_email(cls, v: str) -> str:
        v = v.strip().strip("<>").strip()
        if not v:
            raise ValueError("email must not be empty")
        if any(ch in v for ch in "<>") or any(ch.isspace() for ch in v):
            raise ValueError("email must not contain angle brackets or whitespace")
        return v

    @field_validator("name")
    @classmethod
    def single_line_name(cls, v: str | None) -> str | None:
        if v is not None and ("\r" in v or "\n" in v):
            raise ValueError("display name must not contain line breaks")
        return v

    @classmethod
    def parse(cls, value: Any) -> Address:
        """Build an Address from the loose forms accepted by the API.

        Accepts an :class:`Address`, a plain ``"user@example.com"`` string,
        an ``(email, name)`` tuple, or a single-entry ``{email: name}``
        mapping.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(email=value)
        if isinstance(value, Mapping):
            if len(value) != 1:
                raise ValueError("address mapping must have exactly one entry")
            email, name = next(iter(value.items()))
            return cls(email=email, name=name or None)
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(email=value[0], name=value[1] or None)
        raise ValueError(f"unsupported address value: {value!r}")

    @property
    def domain(self) -> str:
        """Lowercased part after ``@``, or an empty string."""
        _, sep, domain = self.email.rpartition("@")
        return domain.lower() if sep else ""

    def display(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return f"<{self.email}>"


def _parse_address_list(value: Any) -> list[Address]:
    if value is None:
        return []
    if isinstance(value, (str, Address)):
        return [Address.parse(value)]
    if isinstance(value, Mapping):
        # {email: name, ...} keeps insertion order
        return [Address.parse({email: name}) for email, name in value.items()]
    if isinstance(value, Iterable):
        return [Address.parse(item) for item in value]
    raise ValueError(f"unsupported recipient list: {value!r}")


class Envelope(BaseModel):
    """Sender and recipients of one message.

    Bcc recipients receive the message (they become RCPT targets) but are
    never rendered in any header.
    """

    model_config = ConfigDict(frozen=True)

    sender: Annotated[Address | None, Field(default=None, description="MAIL FROM address")]
    to: Annotated[list[Address], Field(default_factory=list)]
    cc: Annotated[list[Address], Field(default_factory=list)]
    bcc: Annotated[list[Address], Field(default_factory=list)]

    @field_validator("sender", mode="before")
    @classmethod
    def coerce_sender(cls, v: Any) -> Address | None:
        if v is None or v == "" or v == {}:
            return None
        return Address.parse(v)

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def coerce_recipients(cls, v: Any) -> list[Address]:
        return _parse_address_list(v)

    def recipients(self) -> list[Address]:
        """To, Cc and Bcc flattened in that order."""
        return [*self.to, *self.cc, *self.bcc]

    def validate_for_send(self) -> None:
        """Raise :class:`EnvelopeValidationError` if the envelope cannot be sent."""
        if self.sender is None:
            raise EnvelopeValidationError("Sender is empty")
        if not self.recipients():
            raise EnvelopeValidationError("Recipient list is empty")


class Message(BaseModel):
    """Content of one message.

    ``headers`` holds custom headers in insertion order; names need not be
    unique. The body is sent as-is (HTML or text) with 8bit transfer
    encoding.
    """

    model_config = ConfigDict(frozen=True)

    subject: str = ""
    body: str = ""
    charset: Annotated[str, Field(default="utf-8", min_length=1)]
    headers: Annotated[list[tuple[str, str]], Field(default_factory=list)]

    @field_validator("charset")
    @classmethod
    def known_charset(cls, v: str) -> str:
        try:
            codecs.lookup(v)
        except LookupError as exc:
            raise ValueError(f"unknown charset: {v}") from exc
        return v

    @field_validator("headers", mode="before")
    @classmethod
    def coerce_headers(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return list(v.items())
        return v

    @field_validator("headers")
    @classmethod
    def reject_header_injection(cls, v: list[tuple[str, str]]) -> list[tuple[str, str]]:
        for name, value in v:
            if not name or any(ch in name for ch in ":\r\n "):
                raise ValueError(f"invalid header name: {name!r}")
            if "\r" in value or "\n" in value:
                raise ValueError(f"header {name} must not contain line breaks")
        return v

    @model_validator(mode="after")
    def encodable_in_charset(self) -> Message:
        """Subject and body must be representable in ``charset``."""
        for field_name in ("subject", "body"):
            try:
                getattr(self, field_name).encode(self.charset)
            except UnicodeEncodeError as exc:
                raise ValueError(f"{field_name} cannot be encoded as {self.charset}: {exc.reason}") from exc
        return self

    def with_header(self, name: str, value: str) -> Message:
        """Return a copy with one more custom header appended."""
        return self.model_validate({**self.model_dump(), "headers": [*self.headers, (name, value)]})


__all__ = ["Address", "Envelope", "Message"]
