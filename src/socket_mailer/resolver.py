# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""MX resolution and the per-mailer resolution cache.

:func:`resolve_mx` asks DNS for a domain's mail exchangers and returns the
most preferred one. A domain without MX records is its own mail host.

:class:`MXCache` memoizes resolutions for the lifetime of a mailer. Entries
never expire: a send operation is short-lived and the cache is
process-local. A per-domain asyncio lock makes concurrent lookups of the
same domain wait for a single resolution instead of issuing duplicates.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import dns.asyncresolver
import dns.exception
import dns.resolver

from .errors import ResolutionFailure
from .logger import get_logger

logger = get_logger("resolver")

Resolver = Callable[[str], Awaitable[str]]
"""Maps a domain to the host that accepts its mail."""


async def resolve_mx(domain: str, *, lifetime: float = 10.0) -> str:
    """Return the preferred mail exchanger for ``domain``.

    Args:
        domain: Recipient domain, e.g. ``"example.com"``.
        lifetime: Total seconds allowed for the DNS query.

    Returns:
        The exchange host with the lowest preference value, without the
        trailing dot, or ``domain`` itself when it has no MX records.

    Raises:
        ResolutionFailure: On timeouts, unreachable name servers, or other
            DNS errors.
    """
    try:
        answer = await dns.asyncresolver.resolve(domain, "MX", lifetime=lifetime)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        logger.debug("No MX record for %s, using the domain itself", domain)
        return domain
    except dns.exception.DNSException as exc:
        raise ResolutionFailure(domain, f"MX lookup failed for {domain}: {exc}") from exc

    records = sorted(answer, key=lambda rdata: rdata.preference)
    for rdata in records:
        host = str(rdata.exchange).rstrip(".")
        # A null MX ("0 .") means the domain accepts no mail.
        if host:
            logger.debug("MX for %s: %s (preference %s)", domain, host, rdata.preference)
            return host
    raise ResolutionFailure(domain, f"Domain {domain} does not accept mail (null MX)")


class MXCache:
    """Lazy, never-expiring domain to mail-host cache.

    Attributes:
        lookups: Number of times the underlying resolver was called.
    """

    def __init__(self, resolver: Resolver | None = None):
        self._resolver = resolver or resolve_mx
        self._entries: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = asyncio.Lock()
        self.lookups = 0

    async def _lock_for(self, domain: str) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(domain)
            if lock is None:
                lock = self._locks[domain] = asyncio.Lock()
            return lock

    async def get(self, domain: str) -> str:
        """Return the mail host for ``domain``, resolving it on first use.

        Failures are not cached, so a later send retries the lookup.

        Raises:
            ResolutionFailure: If the resolver fails.
        """
        key = domain.strip().lower()
        if not key:
            raise ResolutionFailure(domain, "Recipient address has no domain")
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        lock = await self._lock_for(key)
        async with lock:
            cached = self._entries.get(key)
            if cached is not None:
                return cached
            self.lookups += 1
            try:
                host = await self._resolver(key)
            except ResolutionFailure:
                raise
            except Exception as exc:
                raise ResolutionFailure(key, f"MX lookup failed for {key}: {exc}") from exc
            self._entries[key] = host
            return host

    def __contains__(self, domain: str) -> bool:
        return domain.strip().lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()


__all__ = ["MXCache", "Resolver", "resolve_mx"]
