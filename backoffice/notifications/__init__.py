"""Notification intents, dispatch rules and notifiers."""

from .directory import PrincipalDirectory, StaticPrincipalDirectory, StorePrincipalDirectory
from .dispatcher import NotificationDispatcher
from .models import NotificationIntent, NotificationKind, NotificationPriority
from .notifiers import FanoutNotifier, Notifier, NullNotifier, StoreNotifier, WebhookNotifier

__all__ = [
    "PrincipalDirectory",
    "StaticPrincipalDirectory",
    "StorePrincipalDirectory",
    "NotificationDispatcher",
    "NotificationIntent",
    "NotificationKind",
    "NotificationPriority",
    "FanoutNotifier",
    "Notifier",
    "NullNotifier",
    "StoreNotifier",
    "WebhookNotifier",
]
