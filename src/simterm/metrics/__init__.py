"""Metrics Module - rolling throughput and latency statistics."""

from simterm.metrics.aggregator import MetricsAggregator, percentile

__all__ = ["MetricsAggregator", "percentile"]
