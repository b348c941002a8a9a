# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring mailbox verification runs.

All metrics use the ``gmv_`` prefix.

Metrics exposed:
    - ``gmv_tests_started_total``: Counter of started verification runs.
    - ``gmv_tests_completed_total``: Counter of finished runs by outcome
      (``passed``, ``partial``, ``failed``, ``cancelled``).
    - ``gmv_receive_attempts_total``: Counter of IMAP polling attempts.
    - ``gmv_tests_in_progress``: Gauge of runs currently executing.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

OUTCOMES = ("passed", "partial", "failed", "cancelled")


class VerifierMetrics:
    """Prometheus metrics collector for the verification pipeline.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        started: Counter of started runs.
        completed: Counter of finished runs, labeled by ``outcome``.
        receive_attempts: Counter of IMAP attempts.
        in_progress: Gauge of running tests.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. If not provided,
                a new registry is created.
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        self.started = Counter(
            "gmv_tests_started_total",
            "Total started verification runs",
            registry=self.registry,
        )
        self.completed = Counter(
            "gmv_tests_completed_total",
            "Total finished verification runs",
            ["outcome"],
            registry=self.registry,
        )
        self.receive_attempts = Counter(
            "gmv_receive_attempts_total",
            "Total IMAP polling attempts",
            registry=self.registry,
        )
        self.in_progress = Gauge(
            "gmv_tests_in_progress",
            "Verification runs currently executing",
            registry=self.registry,
        )

    def record_started(self) -> None:
        self.started.inc()
        self.in_progress.inc()

    def record_finished(self, outcome: str) -> None:
        """Record a finished run.

        Args:
            outcome: One of ``OUTCOMES``.
        """
        self.completed.labels(outcome=outcome).inc()
        self.in_progress.dec()

    def record_receive_attempt(self) -> None:
        """Count one IMAP polling attempt as it starts."""
        self.receive_attempts.inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
