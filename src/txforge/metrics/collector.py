"""Metrics collector — Prometheus counters and histograms for the pipeline.

- ``txforge_balancing_iterations`` histogram (iterations until a fixed point)
- ``txforge_balance_duration_seconds`` histogram
- ``txforge_submission_attempts_total`` counter (outcome)
- ``txforge_submission_outcomes_total`` counter (terminal state)
- ``txforge_in_flight_submissions`` gauge
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator


_PREFIX = "txforge"

_ITERATION_BUCKETS = (1, 2, 3, 4, 5, 6, 8, 10, 15, 20)


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`PipelineMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(
        self,
        name: str,
        doc: str,
        labels: tuple[str, ...] = (),
        buckets: tuple[float, ...] = Histogram.DEFAULT_BUCKETS,
    ) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry, buckets=buckets)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class PipelineMetrics:
    """High-level metrics for balancing and submission."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._iterations = self._collector.histogram(
            f"{_PREFIX}_balancing_iterations",
            "Balancing iterations needed to reach a fixed point",
            buckets=_ITERATION_BUCKETS,
        )
        self._balance_duration = self._collector.histogram(
            f"{_PREFIX}_balance_duration_seconds",
            "Duration of balancing runs",
        )
        self._attempts = self._collector.counter(
            f"{_PREFIX}_submission_attempts",
            "Submission attempts by outcome",
            ("outcome",),
        )
        self._outcomes = self._collector.counter(
            f"{_PREFIX}_submission_outcomes",
            "Submissions reaching a terminal state",
            ("state",),
        )
        self._in_flight = self._collector.gauge(
            f"{_PREFIX}_in_flight_submissions",
            "Submissions currently in flight",
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    # -- Recorders --

    def observe_iterations(self, iterations: int) -> None:
        """Record how many iterations a balancing run took."""
        self._iterations.observe(iterations)

    def record_attempt(self, outcome: str) -> None:
        """Count one submission attempt (``ok``, ``transport_error``, ``rejected``)."""
        self._attempts.labels(outcome=outcome).inc()

    def record_outcome(self, state: str) -> None:
        """Count a submission reaching ``state``."""
        self._outcomes.labels(state=state).inc()

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_balance(self) -> Iterator[None]:
        """Track the duration of a balancing run."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._balance_duration.observe(time.monotonic() - start)

    @contextmanager
    def track_in_flight(self) -> Iterator[None]:
        """Count a submission as in flight for the duration of the block."""
        self._in_flight.inc()
        try:
            yield
        finally:
            self._in_flight.dec()
