# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for socket-mailer.

Usage:
    socket-mailer send --host mail.example.com --port 587 --encryption tls \\
        --username service@example.com --from "Service <service@example.com>" \\
        --to "Name <name@example.com>" --subject "Hi" --body "<p>Hello</p>"

    socket-mailer send --direct --from me@example.com --to you@example.org \\
        --subject "Hi" --body-file body.html -vv

    socket-mailer resolve example.org

Options not given on the command line are read from the INI file named by
``--config`` (or ``SOCKET_MAILER_CONFIG``) and from ``SOCKET_MAILER_*``
environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from email.utils import parseaddr
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import DebugLevel, Encryption, load_transport_config
from .delivery import DeliveryOutcome, Mailer
from .errors import MailerError, ResolutionFailure
from .models import Address, Envelope, Message
from .resolver import resolve_mx

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {escape(message)}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def parse_address(value: str) -> Address:
    """Parse ``"Name <addr>"`` or ``"addr"`` into an :class:`Address`."""
    name, email = parseaddr(value)
    if not email:
        raise click.BadParameter(f"not an email address: {value!r}")
    return Address(email=email, name=name or None)


def parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise click.BadParameter(f"header must look like 'Name: value', got {value!r}")
    return name.strip(), header_value.strip()


def _print_outcome(outcome: DeliveryOutcome) -> None:
    if outcome.mode == "direct":
        table = Table(show_header=True, header_style="bold")
        table.add_column("Recipient")
        table.add_column("Host")
        table.add_column("Status")
        table.add_column("Error")
        for result in outcome.recipients:
            status = "[green]sent[/green]" if result.success else "[red]failed[/red]"
            error = escape(result.error.message) if result.error else "[dim]-[/dim]"
            table.add_row(result.recipient, result.host or "[dim]-[/dim]", status, error)
        console.print(table)

    if outcome:
        print_success(f"Delivered to {len(outcome.delivered)} recipient(s)")
    else:
        detail = outcome.error.message if outcome.error else "delivery failed"
        print_error(detail)


@click.group()
@click.version_option(package_name="socket-mailer")
def main() -> None:
    """socket-mailer CLI - Send mail by speaking SMTP directly."""
    log_level = os.getenv("SOCKET_MAILER_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@main.command("send")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="INI file.")
@click.option("--host", "-h", default=None, help="Relay host (default: localhost).")
@click.option("--port", "-p", type=int, default=None, help="SMTP port (default: 25).")
@click.option("--username", "-u", default=None, help="AUTH LOGIN user name.")
@click.option("--password", envvar="SOCKET_MAILER_PASSWORD", default=None, help="AUTH LOGIN password.")
@click.option(
    "--encryption",
    "-e",
    type=click.Choice([member.value or "none" for member in Encryption]),
    default=None,
    help="Channel security: none, ssl (implicit TLS) or tls (STARTTLS).",
)
@click.option("--direct/--relay", "direct", default=None, help="Deliver to each recipient MX directly.")
@click.option("--from", "sender", required=True, help="Sender, 'Name <addr>' or 'addr'.")
@click.option("--to", "to", multiple=True, help="Recipient (repeatable).")
@click.option("--cc", "cc", multiple=True, help="Carbon-copy recipient (repeatable).")
@click.option("--bcc", "bcc", multiple=True, help="Blind carbon-copy recipient (repeatable).")
@click.option("--subject", "-s", default="", help="Message subject.")
@click.option("--body", "-b", default=None, help="Message body (HTML or text).")
@click.option("--body-file", type=click.File("r", encoding="utf-8"), default=None, help="Read the body from a file.")
@click.option("--charset", default="utf-8", show_default=True, help="Body and subject charset.")
@click.option("--header", "headers", multiple=True, help="Custom header 'Name: value' (repeatable).")
@click.option("--verbose", "-v", count=True, help="-v raises errors, -vv also prints the transcript.")
def send_command(
    config_path: str | None,
    host: str | None,
    port: int | None,
    username: str | None,
    password: str | None,
    encryption: str | None,
    direct: bool | None,
    sender: str,
    to: tuple[str, ...],
    cc: tuple[str, ...],
    bcc: tuple[str, ...],
    subject: str,
    body: str | None,
    body_file: Any,
    charset: str,
    headers: tuple[str, ...],
    verbose: int,
) -> None:
    """Send one message through a relay or directly to recipient MX hosts."""
    if body is not None and body_file is not None:
        raise click.UsageError("--body and --body-file are mutually exclusive")
    if body_file is not None:
        body = body_file.read()

    try:
        config = load_transport_config(
            config_path,
            host=host,
            port=port,
            username=username,
            password=password,
            encryption="" if encryption == "none" else encryption,
            mta_mode_on=direct,
        )
        envelope = Envelope(
            sender=parse_address(sender),
            to=[parse_address(value) for value in to],
            cc=[parse_address(value) for value in cc],
            bcc=[parse_address(value) for value in bcc],
        )
        message = Message(
            subject=subject,
            body=body or "",
            charset=charset,
            headers=[parse_header(value) for value in headers],
        )
    except ValidationError as exc:
        print_error(str(exc))
        sys.exit(2)

    debug = DebugLevel.coerce(verbose)
    mailer = Mailer(
        config,
        debug=debug,
        stream=lambda line: console.print(line, markup=False, highlight=False),
    )
    try:
        outcome = run_async(mailer.send(envelope, message))
    except MailerError as exc:
        print_error(f"{exc} ({exc.code})")
        sys.exit(1)

    _print_outcome(outcome)
    if not outcome:
        sys.exit(1)


@main.command("resolve")
@click.argument("domain")
@click.option("--timeout", type=float, default=10.0, show_default=True, help="DNS lifetime in seconds.")
def resolve_command(domain: str, timeout: float) -> None:
    """Show the mail exchanger used for DOMAIN in direct mode."""
    try:
        host = run_async(resolve_mx(domain, lifetime=timeout))
    except ResolutionFailure as exc:
        print_error(str(exc))
        sys.exit(1)
    console.print(f"{domain} -> [bold]{host}[/bold]")


if __name__ == "__main__":
    main()
