from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable, TypeVar

from .adapters import Subscription

T = TypeVar("T")


class SnapshotStreamer:
    """Turn a live subscription into Server-Sent Event payloads."""

    def __init__(self, *, event: str = "snapshot", heartbeat_seconds: float = 15.0) -> None:
        if heartbeat_seconds <= 0:
            raise ValueError("heartbeat_seconds must be greater than zero")

        self.event = event
        self.heartbeat_seconds = heartbeat_seconds

    def format_event(self, payload: Any) -> str:
        return f"event: {self.event}\ndata: {json.dumps(payload)}\n\n"

    async def iter_sse(
        self,
        subscribe: Callable[[Callable[[T], None]], Subscription],
        encode: Callable[[T], Any],
    ) -> AsyncIterator[str]:
        """Yield one event per delivered snapshot until the consumer stops.

        ``encode`` must return JSON serialisable data. A slow consumer only
        sees the newest pending snapshot. A comment line is sent whenever no
        snapshot arrives within ``heartbeat_seconds``.
        """

        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=1)

        def deliver(value: T) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(value)

        subscription = subscribe(deliver)
        try:
            while True:
                try:
                    value = await asyncio.wait_for(queue.get(), timeout=self.heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield self.format_event(encode(value))
        finally:
            subscription.unsubscribe()
