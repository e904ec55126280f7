"""Metrics — Prometheus metrics for balancing and submission."""

from __future__ import annotations

from txforge.metrics.collector import MetricsCollector, PipelineMetrics

__all__ = ["MetricsCollector", "PipelineMetrics"]
