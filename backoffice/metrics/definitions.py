"""Metrics emitted by the workflow engines."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


CLOSURE_TRANSITIONS = "closure_transitions_total"
TICKET_ACTIONS = "ticket_actions_total"
NOTIFICATION_FAILURES = "notification_failures_total"
NOTIFICATIONS_SENT = "notifications_sent_total"
SWEEP_COMPLETED = "closure_sweep_completed_total"
SWEEP_FAILURES = "closure_sweep_failures_total"
SWEEP_DURATION = "closure_sweep_duration_seconds"


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=CLOSURE_TRANSITIONS,
        metric_type="counter",
        description="Closure request transitions applied, by transition.",
        label_names=("transition",),
    ),
    MetricDefinition(
        name=TICKET_ACTIONS,
        metric_type="counter",
        description="Ticket audit actions recorded, by action type.",
        label_names=("action",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_SENT,
        metric_type="counter",
        description="Notification intents delivered to the notifier, by kind.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=NOTIFICATION_FAILURES,
        metric_type="counter",
        description="Notification intents that failed to deliver, by kind.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=SWEEP_COMPLETED,
        metric_type="counter",
        description="Closure requests completed by the countdown sweep.",
    ),
    MetricDefinition(
        name=SWEEP_FAILURES,
        metric_type="counter",
        description="Closure requests the countdown sweep failed to complete.",
    ),
    MetricDefinition(
        name=SWEEP_DURATION,
        metric_type="distribution",
        description="Duration of countdown sweeps in seconds.",
    ),
)
