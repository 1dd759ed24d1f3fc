"""Simple in-memory metrics registry."""
from __future__ import annotations

from threading import Lock
from typing import Iterable, MutableMapping, Tuple

from .base import CounterMetric, DistributionMetric, Metric
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition


class MetricsRegistry:
    """Registry holding metric instances by name."""

    def __init__(self, definitions: Iterable[MetricDefinition] = DEFAULT_METRIC_DEFINITIONS) -> None:
        self._metrics: MutableMapping[str, Metric] = {}
        self._lock = Lock()
        for definition in definitions:
            self.register(definition)

    def register(self, definition: MetricDefinition) -> Metric:
        if definition.metric_type == "counter":
            return self.counter(
                definition.name, description=definition.description, label_names=definition.label_names
            )
        if definition.metric_type == "distribution":
            return self.distribution(
                definition.name, description=definition.description, label_names=definition.label_names
            )
        raise ValueError(f"Unknown metric type '{definition.metric_type}'")

    def _get_or_create(self, name: str, factory) -> Metric:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = factory()
            return self._metrics[name]

    def counter(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> CounterMetric:
        metric = self._get_or_create(
            name,
            lambda: CounterMetric(name, description=description, label_names=label_names),
        )
        if not isinstance(metric, CounterMetric):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def distribution(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> DistributionMetric:
        metric = self._get_or_create(
            name,
            lambda: DistributionMetric(name, description=description, label_names=label_names),
        )
        if not isinstance(metric, DistributionMetric):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())
