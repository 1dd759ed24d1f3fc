"""Notifier implementations delivering notification intents."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

import httpx

from backoffice.store import DocumentStore
from backoffice.timemath import Clock, utcnow

from .models import NOTIFICATION_COLLECTION, NotificationIntent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class Notifier(Protocol):
    async def notify(self, intent: NotificationIntent) -> None:
        ...


class NullNotifier:
    """Drop every intent; used when notifications are disabled."""

    async def notify(self, intent: NotificationIntent) -> None:
        logger.debug("Notifications disabled; dropping %s for %s", intent.kind.value, intent.recipient_id)


class StoreNotifier:
    """Persist intents to the ``notifications`` collection read by the inbox UI."""

    def __init__(self, store: DocumentStore, *, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def notify(self, intent: NotificationIntent) -> None:
        notification_id = await self._store.create(NOTIFICATION_COLLECTION, intent.to_document(self._clock()))
        logger.info("Notification %s created for %s (%s)", notification_id, intent.recipient_id, intent.kind.value)


class WebhookNotifier:
    """POST intents as JSON to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._client = client

    async def notify(self, intent: NotificationIntent) -> None:
        if self._client is not None:
            response = await self._client.post(self._url, json=intent.to_payload(), timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=intent.to_payload())
        response.raise_for_status()


class FanoutNotifier:
    """Deliver each intent through every configured notifier in turn."""

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self._notifiers = list(notifiers)

    async def notify(self, intent: NotificationIntent) -> None:
        for notifier in self._notifiers:
            await notifier.notify(intent)
