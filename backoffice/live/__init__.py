"""Live query adapters and streaming helpers."""

from .adapters import (
    ClosureView,
    LiveQuery,
    Subscription,
    closure_view,
    subscribe_to_closure_view,
    subscribe_to_current_request,
    subscribe_to_tickets,
)
from .streaming import SnapshotStreamer

__all__ = [
    "ClosureView",
    "LiveQuery",
    "Subscription",
    "closure_view",
    "subscribe_to_closure_view",
    "subscribe_to_current_request",
    "subscribe_to_tickets",
    "SnapshotStreamer",
]
