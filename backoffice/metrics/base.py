"""Counter and duration metrics held by the registry."""
from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from threading import Lock
from time import perf_counter
from typing import Dict, Iterable, Iterator, Mapping, Tuple

LabelValues = Tuple[str, ...]
Samples = Mapping[LabelValues, Mapping[str, float]]


class Metric:
    """Named metric keyed by the values of a fixed set of labels."""

    kind = "untyped"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _key(self, labels: Mapping[str, str] | None) -> LabelValues:
        labels = labels or {}
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"Metric '{self.name}' takes labels {list(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(str(labels[label]) for label in self.label_names)

    def snapshot(self) -> Samples:
        raise NotImplementedError


class CounterMetric(Metric):
    kind = "counter"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._totals: Dict[LabelValues, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = self._key(labels)
        with self._lock:
            self._totals[key] += amount

    def value(self, labels: Mapping[str, str] | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._totals.get(key, 0.0)

    def snapshot(self) -> Samples:
        with self._lock:
            return {key: {"value": total} for key, total in self._totals.items()}


class DistributionMetric(Metric):
    """Observation count and sum, exported as a Prometheus summary."""

    kind = "summary"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._observations: Dict[LabelValues, list[float]] = defaultdict(lambda: [0.0, 0.0])

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            entry = self._observations[key]
            entry[0] += 1
            entry[1] += value

    def snapshot(self) -> Samples:
        with self._lock:
            return {key: {"count": count, "sum": total} for key, (count, total) in self._observations.items()}


@contextmanager
def track_duration(metric: DistributionMetric, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
    """Observe the seconds spent inside the block, even when it raises."""

    started = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - started, labels=labels)
