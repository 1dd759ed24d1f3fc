from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from backoffice.core.principal import Role

NOTIFICATION_COLLECTION = "notifications"


class NotificationKind(str, Enum):
    TICKET_CREATED = "ticket_created"
    TICKET_ESCALATED = "ticket_escalated"
    TICKET_ASSIGNED = "ticket_assigned"
    CLOSURE_STAGE_CHANGE = "closure_stage_change"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True, slots=True)
class NotificationIntent:
    """What should be told to whom; delivery is the notifier's concern."""

    recipient_id: str
    recipient_role: Role
    kind: NotificationKind
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    payload: Mapping[str, Any] = field(default_factory=dict)
    action_url: str | None = None

    def to_document(self, now: datetime) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "title": self.title,
            "message": self.message,
            "timestamp": now,
            "read": False,
            "priority": self.priority.value,
            "userId": self.recipient_id,
            "userRole": self.recipient_role.value,
            "data": dict(self.payload),
            "actionUrl": self.action_url,
            "createdAt": now,
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "recipientId": self.recipient_id,
            "recipientRole": self.recipient_role.value,
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "payload": dict(self.payload),
            "actionUrl": self.action_url,
        }
