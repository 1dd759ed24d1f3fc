from __future__ import annotations

import logging
from typing import Callable, Iterable

from backoffice.core.principal import REVIEWING_ROLE, Principal
from backoffice.metrics import MetricsRegistry
from backoffice.metrics.definitions import NOTIFICATION_FAILURES, NOTIFICATIONS_SENT

from .directory import PrincipalDirectory, StaticPrincipalDirectory
from .models import NotificationIntent
from .notifiers import Notifier, NullNotifier

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Best-effort delivery of notification intents.

    Nothing raised while resolving recipients or delivering reaches the caller:
    a workflow mutation has already been committed when dispatch runs.
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        *,
        directory: PrincipalDirectory | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._notifier = notifier or NullNotifier()
        self._directory = directory or StaticPrincipalDirectory()
        self._metrics = metrics or MetricsRegistry()

    async def reviewers(self) -> list[Principal]:
        try:
            return await self._directory.list_by_role(REVIEWING_ROLE)
        except Exception:
            logger.exception("Unable to resolve %s recipients", REVIEWING_ROLE.value)
            return []

    async def dispatch(self, intents: Iterable[NotificationIntent]) -> int:
        """Send every intent, returning how many were delivered."""

        delivered = 0
        for intent in intents:
            labels = {"kind": intent.kind.value}
            try:
                await self._notifier.notify(intent)
            except Exception:
                logger.exception(
                    "Failed to deliver %s notification to %s", intent.kind.value, intent.recipient_id
                )
                self._metrics.counter(NOTIFICATION_FAILURES, label_names=("kind",)).inc(labels=labels)
                continue
            delivered += 1
            self._metrics.counter(NOTIFICATIONS_SENT, label_names=("kind",)).inc(labels=labels)
        return delivered

    async def dispatch_to_reviewers(
        self, build: Callable[[list[Principal]], Iterable[NotificationIntent]]
    ) -> int:
        reviewers = await self.reviewers()
        try:
            intents = list(build(reviewers))
        except Exception:
            logger.exception("Unable to build reviewer notifications")
            return 0
        return await self.dispatch(intents)
