# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for SMTP deliveries.

All metrics use the ``socket_mailer_`` prefix and live in a per-instance
registry, so several mailers (or tests) never collide.

Metrics exposed:
    - ``socket_mailer_sessions_total``: Counter of SMTP sessions by mode and outcome.
    - ``socket_mailer_failures_total``: Counter of failed sessions by error code.
    - ``socket_mailer_mx_lookups_total``: Counter of MX cache misses.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class MailerMetrics:
    """Prometheus metrics collector for one mailer.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sessions: Counter of sessions labeled by ``mode`` and ``outcome``.
        failures: Counter of failures labeled by error ``code``.
        mx_lookups: Counter of MX resolutions that missed the cache.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sessions = Counter(
            "socket_mailer_sessions_total",
            "SMTP sessions attempted",
            ["mode", "outcome"],
            registry=self.registry,
        )
        self.failures = Counter(
            "socket_mailer_failures_total",
            "Failed SMTP sessions",
            ["code"],
            registry=self.registry,
        )
        self.mx_lookups = Counter(
            "socket_mailer_mx_lookups_total",
            "MX resolutions performed",
            registry=self.registry,
        )

    def inc_sent(self, mode: str) -> None:
        self.sessions.labels(mode=mode, outcome="sent").inc()

    def inc_error(self, mode: str, code: str) -> None:
        """Count a failed session.

        Args:
            mode: ``"relay"`` or ``"direct"``.
            code: The error code slug, falls back to "unknown" if empty.
        """
        self.sessions.labels(mode=mode, outcome="error").inc()
        self.failures.labels(code=code or "unknown").inc()

    def inc_mx_lookup(self, count: int = 1) -> None:
        if count > 0:
            self.mx_lookups.inc(count)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
