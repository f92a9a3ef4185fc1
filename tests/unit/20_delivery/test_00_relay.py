# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for via-MTA delivery through a single relay."""

import base64

import pytest

from socket_mailer.config import DebugLevel, TransportConfig
from socket_mailer.delivery import Mailer
from socket_mailer.errors import (
    EnvelopeValidationError,
    SmtpConnectionError,
    SmtpProtocolError,
)
from socket_mailer.metrics import MailerMetrics
from socket_mailer.models import Envelope, Message
from socket_mailer.transcript import REDACTED

AUTH_TLS_REPLIES = [
    "220 relay.test ESMTP",
    "250-relay.test",
    "250 STARTTLS",
    "220 2.0.0 Ready to start TLS",
    "250-relay.test",
    "250 AUTH LOGIN",
    "334 VXNlcm5hbWU6",
    "334 UGFzc3dvcmQ6",
    "235 2.7.0 Authentication successful",
    "250 2.1.0 Sender ok",
    "250 2.1.5 Recipient ok",
    "354 Go ahead",
    "250 2.0.0 Queued",
    "221 Bye",
]


def make_mailer(network, debug=DebugLevel.OFF, stream=None, **settings):
    settings.setdefault("host", "relay.test")
    return Mailer(
        TransportConfig(**settings),
        debug=debug,
        transport_factory=network,
        metrics=MailerMetrics(),
        stream=stream,
    )


@pytest.fixture
def envelope():
    return Envelope(sender="a@x.com", to=["b@y.com"])


@pytest.fixture
def message():
    return Message(subject="Hi", body="Hello")


async def test_relay_success(network, plain_replies, envelope, message):
    network.serve("relay.test", plain_replies)
    mailer = make_mailer(network)

    outcome = await mailer.send(envelope, message)

    assert outcome
    assert outcome.success is True
    assert outcome.mode == "relay"
    assert outcome.delivered == ["b@y.com"]
    assert outcome.recipients[0].host == "relay.test"
    assert outcome.transcript == []
    assert network.opened == [("relay.test", 25, False)]
    assert network.transport_for("relay.test").closed is True


async def test_relay_starttls_and_auth(network, envelope, message):
    network.serve("relay.test", AUTH_TLS_REPLIES)
    mailer = make_mailer(
        network, port=587, encryption="tls", username="service@x.com", password="s3cret", ehlo_name="client.test"
    )

    outcome = await mailer.send(envelope, message)

    transport = network.transport_for("relay.test")
    assert outcome
    assert transport.tls_started is True
    assert network.opened == [("relay.test", 587, False)]
    assert transport.commands[:5] == [
        "EHLO client.test",
        "STARTTLS",
        "EHLO client.test",
        "AUTH LOGIN",
        base64.b64encode(b"service@x.com").decode(),
    ]


async def test_ssl_opens_implicit_tls(network, plain_replies, envelope, message):
    network.serve("relay.test", plain_replies)
    mailer = make_mailer(network, port=465, encryption="ssl")

    outcome = await mailer.send(envelope, message)

    assert outcome
    assert network.opened == [("relay.test", 465, True)]
    assert "STARTTLS" not in network.transport_for("relay.test").commands


async def test_all_recipients_in_one_session_and_bcc_hidden(network, envelope, message):
    replies = ["220 ok", "250 ok", "250 ok", "250 ok", "250 ok", "250 ok", "354 go", "250 ok", "221 bye"]
    network.serve("relay.test", replies)
    envelope = Envelope(sender="a@x.com", to=["b@y.com"], cc=["c@y.com"], bcc=["hidden@z.com"])

    outcome = await make_mailer(network).send(envelope, message)

    transport = network.transport_for("relay.test")
    assert outcome
    assert len(network.opened) == 1
    assert [c for c in transport.commands if c.startswith("RCPT")] == [
        "RCPT TO:<b@y.com>",
        "RCPT TO:<c@y.com>",
        "RCPT TO:<hidden@z.com>",
    ]
    assert "hidden@z.com" not in transport.payload
    assert "Cc: <c@y.com>" in transport.payload


async def test_payload_headers_and_body(network, plain_replies, envelope):
    network.serve("relay.test", plain_replies)
    message = Message(subject="Hi", body=".starts with dot", headers=[("X-Campaign", "spring")])

    await make_mailer(network).send(envelope, message)

    payload = network.transport_for("relay.test").payload
    assert payload.startswith("X-Campaign: spring\r\nSubject: =?utf-8?B?SGk=?=\r\n")
    assert "\r\n\r\n..starts with dot\r\n.\r\n" in payload
    assert "Message-ID: <" in payload
    assert "@x.com>" in payload


async def test_rcpt_rejection_returns_failed_outcome(network, plain_replies, envelope, message):
    replies = list(plain_replies)
    replies[4] = "550 5.1.1 No such user"
    network.serve("relay.test", replies)
    mailer = make_mailer(network)

    outcome = await mailer.send(envelope, message)

    transport = network.transport_for("relay.test")
    assert not outcome
    assert outcome.error.code == "protocol_error"
    assert outcome.error.stage == "rcpt"
    assert outcome.error.smtp_code == 550
    assert "550 5.1.1 No such user" in outcome.error.message
    assert outcome.failed_count == 1
    assert "DATA" not in transport.commands
    assert transport.closed is True
    assert mailer.metrics.registry.get_sample_value(
        "socket_mailer_failures_total", {"code": "protocol_error"}
    ) == 1


@pytest.mark.parametrize("debug", [DebugLevel.ON, True, 1])
async def test_debug_on_raises_with_transcript(network, plain_replies, envelope, message, debug):
    replies = list(plain_replies)
    replies[4] = "550 5.1.1 No such user"
    network.serve("relay.test", replies)

    with pytest.raises(SmtpProtocolError) as exc_info:
        await make_mailer(network, debug=debug).send(envelope, message)

    assert exc_info.value.smtp_code == 550
    assert exc_info.value.transcript
    assert exc_info.value.transcript[-1].endswith("SERVER -> CLIENT: 550 5.1.1 No such user")


async def test_connection_refused_is_classified(network, envelope, message):
    network.refuse("relay.test", ConnectionRefusedError(111, "Connection refused"))

    outcome = await make_mailer(network).send(envelope, message)

    assert not outcome
    assert outcome.error.code == "connection_error"
    assert "relay.test" in outcome.error.message


async def test_connection_refused_raised_in_debug(network, envelope, message):
    network.refuse("relay.test", ConnectionRefusedError(111, "Connection refused"))

    with pytest.raises(SmtpConnectionError) as exc_info:
        await make_mailer(network, debug=DebugLevel.ON).send(envelope, message)

    assert exc_info.value.errno == 111
    assert exc_info.value.host == "relay.test"


@pytest.mark.parametrize(
    "envelope",
    [Envelope(sender=None, to=["b@y.com"]), Envelope(sender="a@x.com")],
)
@pytest.mark.parametrize("debug", [DebugLevel.OFF, DebugLevel.VERBOSE])
async def test_validation_precedes_connection(network, envelope, message, debug):
    mailer = make_mailer(network, debug=debug)

    with pytest.raises(EnvelopeValidationError):
        await mailer.send(envelope, message)

    assert network.opened == []


async def test_verbose_streams_and_returns_transcript(network, envelope, message):
    network.serve("relay.test", AUTH_TLS_REPLIES)
    streamed = []
    mailer = make_mailer(
        network,
        debug=DebugLevel.VERBOSE,
        stream=streamed.append,
        encryption="tls",
        username="service@x.com",
        password="s3cret",
    )

    outcome = await mailer.send(envelope, message)

    assert outcome
    assert outcome.transcript == streamed
    text = "\n".join(outcome.transcript)
    assert "CLIENT -> SERVER: STARTTLS" in text
    assert "SERVER -> CLIENT: 250 2.0.0 Queued" in text
    assert "s3cret" not in text
    assert base64.b64encode(b"s3cret").decode() not in text
    assert text.count(REDACTED) == 2


async def test_debug_on_level_does_not_stream(network, plain_replies, envelope, message):
    network.serve("relay.test", plain_replies)
    streamed = []

    outcome = await make_mailer(network, debug=DebugLevel.ON, stream=streamed.append).send(envelope, message)

    assert outcome
    assert streamed == []
    assert outcome.transcript == []


def test_debug_on_chaining(network):
    mailer = Mailer(TransportConfig(host="relay.test"), transport_factory=network)

    assert mailer.debug_on() is mailer
    assert mailer.debug is DebugLevel.ON
    assert mailer.debug_on(2).debug is DebugLevel.VERBOSE


async def test_success_counted(network, plain_replies, envelope, message):
    network.serve("relay.test", plain_replies)
    mailer = make_mailer(network)

    await mailer.send(envelope, message)

    assert mailer.metrics.registry.get_sample_value(
        "socket_mailer_sessions_total", {"mode": "relay", "outcome": "sent"}
    ) == 1


async def test_starttls_scenario_eight_replies(network, envelope, message):
    replies = ["220 ok", "250 ok", "220 go", "250 ok", "250 ok", "250 ok", "354 go", "250 ok", "221 bye"]
    network.serve("relay.test", replies)

    outcome = await make_mailer(network, encryption="tls").send(envelope, message)

    transport = network.transport_for("relay.test")
    assert outcome
    assert transport.reads == 9
    assert transport.commands.count("EHLO relay.test") == 2
    assert transport.commands.index("STARTTLS") < transport.commands.index("EHLO relay.test", 1)
