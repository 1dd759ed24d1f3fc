from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Union

from backoffice.timemath import countdown_deadline, ensure_datetime, optional_datetime

logger = logging.getLogger(__name__)

CLOSURE_COLLECTION = "accountClosureRequests"


class ClosureStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ClosureStatus.COMPLETED, ClosureStatus.REJECTED)


class ClosureStage(str, Enum):
    """Display stage persisted next to ``status`` for existing readers."""

    REQUEST = "request"
    APPROVAL = "approval"
    COUNTDOWN = "countdown"
    COMPLETED = "completed"
    REJECTED = "rejected"


STAGE_FOR_STATUS: dict[ClosureStatus, ClosureStage] = {
    ClosureStatus.PENDING: ClosureStage.REQUEST,
    ClosureStatus.APPROVED: ClosureStage.COUNTDOWN,
    ClosureStatus.COMPLETED: ClosureStage.COMPLETED,
    ClosureStatus.REJECTED: ClosureStage.REJECTED,
}


@dataclass(frozen=True, slots=True)
class Pending:
    status = ClosureStatus.PENDING


@dataclass(frozen=True, slots=True)
class Approved:
    approved_at: datetime
    approved_by: str | None

    status = ClosureStatus.APPROVED


@dataclass(frozen=True, slots=True)
class Completed:
    approved_at: datetime | None
    approved_by: str | None
    completed_at: datetime

    status = ClosureStatus.COMPLETED


@dataclass(frozen=True, slots=True)
class Rejected:
    rejected_at: datetime
    rejected_by: str | None
    reason: str

    status = ClosureStatus.REJECTED


ClosureState = Union[Pending, Approved, Completed, Rejected]


@dataclass(frozen=True, slots=True)
class ClosureRequest:
    """A request to permanently close an investor account.

    ``state`` is the single source of truth for the lifecycle; ``status``,
    ``stage`` and the per-transition dates are derived from it.
    """

    id: str
    investor_id: str
    investor_name: str
    request_date: str
    state: ClosureState
    reason: str
    requested_by: str
    account_balance: float
    created_at: datetime
    updated_at: datetime

    @property
    def status(self) -> ClosureStatus:
        return self.state.status

    @property
    def stage(self) -> ClosureStage:
        return STAGE_FOR_STATUS[self.status]

    @property
    def approval_date(self) -> datetime | None:
        if isinstance(self.state, (Approved, Completed)):
            return self.state.approved_at
        return None

    @property
    def approved_by(self) -> str | None:
        if isinstance(self.state, (Approved, Completed)):
            return self.state.approved_by
        return None

    @property
    def completion_date(self) -> datetime | None:
        return self.state.completed_at if isinstance(self.state, Completed) else None

    @property
    def rejection_date(self) -> datetime | None:
        return self.state.rejected_at if isinstance(self.state, Rejected) else None

    @property
    def rejection_reason(self) -> str | None:
        return self.state.reason if isinstance(self.state, Rejected) else None

    @property
    def rejected_by(self) -> str | None:
        return self.state.rejected_by if isinstance(self.state, Rejected) else None

    @property
    def estimated_completion_date(self) -> datetime | None:
        approval = self.approval_date
        return countdown_deadline(approval) if approval is not None else None

    def to_document(self) -> dict[str, Any]:
        return {
            "investorId": self.investor_id,
            "investorName": self.investor_name,
            "requestDate": self.request_date,
            "reason": self.reason,
            "requestedBy": self.requested_by,
            "accountBalance": self.account_balance,
            "createdAt": self.created_at,
            **state_fields(self.state, self.updated_at),
        }

    @classmethod
    def from_document(cls, document_id: str, data: Mapping[str, Any]) -> "ClosureRequest":
        created_at = ensure_datetime(data["createdAt"])
        return cls(
            id=document_id,
            investor_id=str(data["investorId"]),
            investor_name=str(data.get("investorName") or ""),
            request_date=str(data.get("requestDate") or created_at.date().isoformat()),
            state=_state_from_document(document_id, data),
            reason=str(data.get("reason") or ""),
            requested_by=str(data.get("requestedBy") or ""),
            account_balance=float(data.get("accountBalance") or 0.0),
            created_at=created_at,
            updated_at=ensure_datetime(data.get("updatedAt") or created_at),
        )


def state_fields(state: ClosureState, updated_at: datetime) -> dict[str, Any]:
    """Wire fields describing ``state``; written whole on every transition."""

    approved_at = state.approved_at if isinstance(state, (Approved, Completed)) else None
    return {
        "status": state.status.value,
        "stage": STAGE_FOR_STATUS[state.status].value,
        "approvalDate": approved_at,
        "approvedBy": state.approved_by if isinstance(state, (Approved, Completed)) else None,
        "estimatedCompletionDate": countdown_deadline(approved_at) if approved_at is not None else None,
        "completionDate": state.completed_at if isinstance(state, Completed) else None,
        "rejectionDate": state.rejected_at if isinstance(state, Rejected) else None,
        "rejectionReason": state.reason if isinstance(state, Rejected) else None,
        "rejectedBy": state.rejected_by if isinstance(state, Rejected) else None,
        "updatedAt": updated_at,
    }


def _state_from_document(document_id: str, data: Mapping[str, Any]) -> ClosureState:
    status = ClosureStatus(str(data.get("status") or ClosureStatus.PENDING.value))
    stage = data.get("stage")
    if stage is not None and stage != STAGE_FOR_STATUS[status].value:
        logger.warning(
            "Closure request %s has stage %r inconsistent with status %s; using status",
            document_id,
            stage,
            status.value,
        )

    approval_date = optional_datetime(data.get("approvalDate"))
    approved_by = data.get("approvedBy")
    if status is ClosureStatus.APPROVED:
        if approval_date is None:
            # Older documents may lack a materialised approval time.
            fallback = optional_datetime(data.get("updatedAt")) or ensure_datetime(data["createdAt"])
            return Approved(approved_at=fallback, approved_by=approved_by)
        return Approved(approved_at=approval_date, approved_by=approved_by)
    if status is ClosureStatus.COMPLETED:
        completed_at = optional_datetime(data.get("completionDate")) or ensure_datetime(
            data.get("updatedAt") or data["createdAt"]
        )
        return Completed(approved_at=approval_date, approved_by=approved_by, completed_at=completed_at)
    if status is ClosureStatus.REJECTED:
        rejected_at = optional_datetime(data.get("rejectionDate")) or ensure_datetime(
            data.get("updatedAt") or data["createdAt"]
        )
        return Rejected(
            rejected_at=rejected_at,
            rejected_by=data.get("rejectedBy"),
            reason=str(data.get("rejectionReason") or ""),
        )
    return Pending()
