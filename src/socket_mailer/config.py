# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Transport configuration for the socket mailer.

The configuration is an immutable pydantic model: once a :class:`Mailer` is
built, nothing can change the host, credentials or encryption mode while a
send is in flight.

Configuration can be built directly, or loaded from an INI file with
environment variables as fallbacks.

Environment variables (all prefixed with SOCKET_MAILER_):
  SOCKET_MAILER_CONFIG - Path to the INI file (default: socket_mailer.ini)
  SOCKET_MAILER_HOST - Relay host (default: localhost)
  SOCKET_MAILER_PORT - Relay port (default: 25)
  SOCKET_MAILER_USERNAME / SOCKET_MAILER_PASSWORD - AUTH LOGIN credentials
  SOCKET_MAILER_ENCRYPTION - "", "ssl" or "tls"
  SOCKET_MAILER_MTA_MODE_ON - Deliver directly to each recipient's MX
  SOCKET_MAILER_EHLO_NAME - Name announced in EHLO (default: host)
  SOCKET_MAILER_CONNECT_TIMEOUT - Connect timeout in seconds (default: 15)
  SOCKET_MAILER_READ_TIMEOUT - Reply timeout in seconds (default: connect timeout)
  SOCKET_MAILER_MAX_CONCURRENT_SESSIONS - Parallel direct-to-MX sessions (default: 1)
  SOCKET_MAILER_VERIFY_TLS - Verify server certificates (default: true)

Config file keys (section ``[transport]``) use the same names in lower case
without the prefix::

    [transport]
    host = mail.example.com
    port = 587
    username = service@example.com
    password = secret
    encryption = tls
"""

from __future__ import annotations

import configparser
import os
from enum import Enum, IntEnum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logger import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = "socket_mailer.ini"
ENV_PREFIX = "SOCKET_MAILER_"


class Encryption(str, Enum):
    """Channel security for the relay connection.

    Attributes:
        NONE: Plaintext SMTP.
        SSL: Implicit TLS, the socket is wrapped before the banner is read.
        TLS: Plaintext connect, upgraded in place with STARTTLS.
    """

    NONE = ""
    SSL = "ssl"
    TLS = "tls"

    @classmethod
    def normalize(cls, value: Any) -> Encryption:
        """Map any input to a member, treating unknown values as NONE."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.NONE


class DebugLevel(IntEnum):
    """How much of a failed or successful dialogue is surfaced to the caller.

    Attributes:
        OFF: Failures become a falsy outcome, no transcript is returned.
        ON: Relay failures are raised with their original message and code.
        VERBOSE: As ON, plus every transcript line is streamed as it is
            produced and the full transcript is returned with the outcome.
    """

    OFF = 0
    ON = 1
    VERBOSE = 2

    @classmethod
    def coerce(cls, value: Any) -> DebugLevel:
        if isinstance(value, cls):
            return value
        if value is True:
            return cls.ON
        if not value:
            return cls.OFF
        return cls(min(int(value), int(cls.VERBOSE)))


class TransportConfig(BaseModel):
    """Connection settings for one mailer instance.

    ``mta_mode_on`` selects the delivery strategy: when false every message
    is relayed through ``host:port``; when true each recipient is delivered
    directly to its domain's mail exchanger on ``port``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    host: Annotated[str, Field(default="localhost", description="Relay host name")]
    port: Annotated[int, Field(default=25, ge=1, le=65535, description="SMTP port")]
    username: Annotated[str, Field(default="", description="AUTH LOGIN user name")]
    password: Annotated[str, Field(default="", description="AUTH LOGIN password", repr=False)]
    encryption: Annotated[Encryption, Field(default=Encryption.NONE, description="'', 'ssl' or 'tls'")]
    mta_mode_on: Annotated[
        bool,
        Field(default=False, alias="mtaModeOn", description="Deliver directly to each recipient MX"),
    ]
    ehlo_name: Annotated[str | None, Field(default=None, description="Name announced in EHLO")]
    connect_timeout: Annotated[float, Field(default=15.0, gt=0, description="Connect timeout (s)")]
    read_timeout: Annotated[float | None, Field(default=None, gt=0, description="Reply timeout (s)")]
    max_concurrent_sessions: Annotated[int, Field(default=1, ge=1, description="Parallel MX sessions")]
    verify_tls: Annotated[bool, Field(default=True, description="Verify server certificates")]

    @field_validator("encryption", mode="before")
    @classmethod
    def normalize_encryption(cls, v: Any) -> Encryption:
        return Encryption.normalize(v)

    @field_validator("username", "password", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def has_credentials(self) -> bool:
        """True when AUTH LOGIN should run (both user name and password set)."""
        return bool(self.username and self.password)

    @property
    def greeting_name(self) -> str:
        return self.ehlo_name or self.host

    @property
    def reply_timeout(self) -> float:
        return self.read_timeout if self.read_timeout is not None else self.connect_timeout


def _parse_bool(value: str | None, default: bool | None = None) -> bool | None:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def load_transport_config(config_path: str | None = None, **overrides: Any) -> TransportConfig:
    """Load a :class:`TransportConfig` from an INI file and the environment.

    Values in the ``[transport]`` section win; environment variables fill
    the gaps; built-in defaults apply last. Keyword ``overrides`` that are
    not None replace whatever was loaded.

    Args:
        config_path: Path to the INI file. When omitted, ``SOCKET_MAILER_CONFIG``
            or ``socket_mailer.ini`` is read if it exists.
        **overrides: Field values that take precedence over file and env.

    Returns:
        The frozen transport configuration.

    Raises:
        FileNotFoundError: If an explicit ``config_path`` does not exist.
        pydantic.ValidationError: If a value cannot be coerced (e.g. a
            non-numeric port).
    """
    parser = configparser.ConfigParser()
    if config_path is not None:
        if not Path(config_path).exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        parser.read(config_path)
    else:
        default_path = Path(os.getenv(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_PATH))
        if default_path.exists():
            parser.read(default_path)

    def get(option: str) -> str | None:
        if parser.has_option("transport", option):
            return parser.get("transport", option)
        return os.getenv(f"{ENV_PREFIX}{option.upper()}")

    values: dict[str, Any] = {}
    for option in (
        "host",
        "port",
        "username",
        "password",
        "encryption",
        "ehlo_name",
        "connect_timeout",
        "read_timeout",
        "max_concurrent_sessions",
    ):
        raw = get(option)
        if raw is not None and raw.strip() != "":
            values[option] = raw.strip()

    mta_mode_on = _parse_bool(get("mta_mode_on"))
    if mta_mode_on is not None:
        values["mta_mode_on"] = mta_mode_on
    verify_tls = _parse_bool(get("verify_tls"))
    if verify_tls is not None:
        values["verify_tls"] = verify_tls

    values.update({key: value for key, value in overrides.items() if value is not None})
    config = TransportConfig(**values)
    logger.debug(
        "Loaded transport config host=%s port=%s encryption=%r direct=%s",
        config.host,
        config.port,
        config.encryption.value,
        config.mta_mode_on,
    )
    return config


__all__ = [
    "DebugLevel",
    "Encryption",
    "TransportConfig",
    "load_transport_config",
]
