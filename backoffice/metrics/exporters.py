"""Render registry contents for scraping."""
from __future__ import annotations

import logging

from .registry import MetricsRegistry

logger = logging.getLogger(__name__)


def _label_text(label_names, values) -> str:
    if not values:
        return ""
    return "{" + ",".join(f'{name}="{value}"' for name, value in zip(label_names, values)) + "}"


class PrometheusExporter:
    """Generate Prometheus text exposition format."""

    def __init__(self, registry: MetricsRegistry) -> None:
        self.registry = registry

    def build_payload(self) -> str:
        lines: list[str] = []
        for metric in self.registry.metrics():
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for values, sample in metric.snapshot().items():
                labels = _label_text(metric.label_names, values)
                if metric.kind == "counter":
                    lines.append(f"{metric.name}{labels} {sample['value']}")
                else:
                    lines.append(f"{metric.name}_count{labels} {sample['count']}")
                    lines.append(f"{metric.name}_sum{labels} {sample['sum']}")
        return "\n".join(lines) + "\n"

    def export(self) -> str:
        payload = self.build_payload()
        logger.debug("Generated metrics payload with %d bytes", len(payload))
        return payload
