from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from backoffice.core.principal import REVIEWING_ROLE, Principal, Role
from backoffice.timemath import ensure_datetime, optional_datetime

from .state import TicketStatus

TICKET_COLLECTION = "supportTickets"
ACTION_COLLECTION = "ticketActions"


class TicketType(str, Enum):
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    INFORMATION_MODIFICATION = "information_modification"
    POLICY_VIOLATION = "policy_violation"
    ACCOUNT_ISSUE = "account_issue"
    OTHER = "other"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketActionType(str, Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    RESPONDED = "responded"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class TicketResponse:
    """Immutable reply appended to a ticket thread."""

    id: str
    ticket_id: str
    responder_id: str
    responder_name: str
    responder_role: Role
    content: str
    timestamp: datetime
    is_internal: bool = False

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "responderId": self.responder_id,
            "responderName": self.responder_name,
            "responderRole": self.responder_role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "isInternal": self.is_internal,
        }

    @classmethod
    def from_document(cls, ticket_id: str, data: Mapping[str, Any]) -> "TicketResponse":
        return cls(
            id=str(data["id"]),
            ticket_id=str(data.get("ticketId") or ticket_id),
            responder_id=str(data["responderId"]),
            responder_name=str(data.get("responderName") or ""),
            responder_role=Role(str(data.get("responderRole") or Role.ADMIN.value)),
            content=str(data.get("content") or ""),
            timestamp=ensure_datetime(data["timestamp"]),
            is_internal=bool(data.get("isInternal", False)),
        )


@dataclass(frozen=True, slots=True)
class TicketDraft:
    """Fields supplied by the submitting admin when raising a ticket."""

    investor_id: str
    investor_name: str
    submitted_by: Principal
    ticket_type: TicketType
    priority: TicketPriority
    subject: str
    description: str
    tags: Sequence[str] = ()
    attachments: Sequence[str] = ()


@dataclass(frozen=True, slots=True)
class SupportTicket:
    """Projection of a support ticket document."""

    id: str
    investor_id: str
    investor_name: str
    submitted_by: str
    submitted_by_name: str
    ticket_type: TicketType
    priority: TicketPriority
    subject: str
    description: str
    status: TicketStatus
    submitted_at: datetime
    last_activity: datetime
    responses: tuple[TicketResponse, ...] = ()
    assigned_to: str | None = None
    assigned_to_name: str | None = None
    assigned_at: datetime | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    tags: tuple[str, ...] = ()
    attachments: tuple[str, ...] = ()
    escalated: bool = False
    escalated_at: datetime | None = None
    escalated_reason: str | None = None

    def visible_responses(self, viewer_role: Role) -> tuple[TicketResponse, ...]:
        """Responses a viewer may read; internal notes are reviewer-only."""

        if viewer_role == REVIEWING_ROLE:
            return self.responses
        return tuple(response for response in self.responses if not response.is_internal)

    def to_document(self) -> dict[str, Any]:
        return {
            "investorId": self.investor_id,
            "investorName": self.investor_name,
            "submittedBy": self.submitted_by,
            "submittedByName": self.submitted_by_name,
            "ticketType": self.ticket_type.value,
            "priority": self.priority.value,
            "subject": self.subject,
            "description": self.description,
            "status": self.status.value,
            "submittedAt": self.submitted_at,
            "assignedTo": self.assigned_to,
            "assignedToName": self.assigned_to_name,
            "assignedAt": self.assigned_at,
            "responses": [response.to_document() for response in self.responses],
            "resolution": self.resolution,
            "resolvedAt": self.resolved_at,
            "resolvedBy": self.resolved_by,
            "closedAt": self.closed_at,
            "closedBy": self.closed_by,
            "tags": list(self.tags),
            "attachments": list(self.attachments),
            "lastActivity": self.last_activity,
            "escalated": self.escalated,
            "escalatedAt": self.escalated_at,
            "escalatedReason": self.escalated_reason,
        }

    @classmethod
    def from_document(cls, document_id: str, data: Mapping[str, Any]) -> "SupportTicket":
        submitted_at = ensure_datetime(data.get("submittedAt") or data["lastActivity"])
        return cls(
            id=document_id,
            investor_id=str(data["investorId"]),
            investor_name=str(data.get("investorName") or ""),
            submitted_by=str(data.get("submittedBy") or ""),
            submitted_by_name=str(data.get("submittedByName") or ""),
            ticket_type=TicketType(str(data.get("ticketType") or TicketType.OTHER.value)),
            priority=TicketPriority(str(data.get("priority") or TicketPriority.MEDIUM.value)),
            subject=str(data.get("subject") or ""),
            description=str(data.get("description") or ""),
            status=TicketStatus(str(data.get("status") or TicketStatus.OPEN.value)),
            submitted_at=submitted_at,
            last_activity=ensure_datetime(data.get("lastActivity") or submitted_at),
            responses=tuple(
                TicketResponse.from_document(document_id, item) for item in data.get("responses") or ()
            ),
            assigned_to=data.get("assignedTo"),
            assigned_to_name=data.get("assignedToName"),
            assigned_at=optional_datetime(data.get("assignedAt")),
            resolution=data.get("resolution"),
            resolved_at=optional_datetime(data.get("resolvedAt")),
            resolved_by=data.get("resolvedBy"),
            closed_at=optional_datetime(data.get("closedAt")),
            closed_by=data.get("closedBy"),
            tags=tuple(data.get("tags") or ()),
            attachments=tuple(data.get("attachments") or ()),
            escalated=bool(data.get("escalated", False)),
            escalated_at=optional_datetime(data.get("escalatedAt")),
            escalated_reason=data.get("escalatedReason"),
        )


@dataclass(frozen=True, slots=True)
class TicketAction:
    """Append-only audit record of something done to a ticket."""

    id: str
    ticket_id: str
    action_type: TicketActionType
    performed_by: str
    performed_by_name: str
    timestamp: datetime
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "actionType": self.action_type.value,
            "performedBy": self.performed_by,
            "performedByName": self.performed_by_name,
            "timestamp": self.timestamp,
            "details": dict(self.details),
        }

    @classmethod
    def from_document(cls, document_id: str, data: Mapping[str, Any]) -> "TicketAction":
        return cls(
            id=document_id,
            ticket_id=str(data["ticketId"]),
            action_type=TicketActionType(str(data["actionType"])),
            performed_by=str(data.get("performedBy") or ""),
            performed_by_name=str(data.get("performedByName") or ""),
            timestamp=ensure_datetime(data["timestamp"]),
            details=dict(data.get("details") or {}),
        )
