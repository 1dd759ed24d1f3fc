"""Metrics primitives and registry."""

from .base import CounterMetric, DistributionMetric, Metric, track_duration
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

__all__ = [
    "CounterMetric",
    "DistributionMetric",
    "Metric",
    "track_duration",
    "DEFAULT_METRIC_DEFINITIONS",
    "MetricDefinition",
    "PrometheusExporter",
    "MetricsRegistry",
]
