from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable

from backoffice.core.errors import ConflictError, NotFoundError, ValidationError, store_errors
from backoffice.core.principal import Principal, Role
from backoffice.live.adapters import Subscription, subscribe_to_current_request
from backoffice.metrics import MetricsRegistry
from backoffice.metrics.definitions import CLOSURE_TRANSITIONS
from backoffice.notifications.dispatcher import NotificationDispatcher
from backoffice.notifications.rules import ClosureNotice, closure_stage_intents
from backoffice.store import DocumentNotFoundError, DocumentStore, Filter, OrderBy, WriteBatch, new_document_id
from backoffice.timemath import (
    Clock,
    ClosureProgress,
    calculate_days_remaining,
    closure_progress,
    is_overdue,
    utcnow,
)

from .models import (
    CLOSURE_COLLECTION,
    Approved,
    ClosureRequest,
    ClosureState,
    ClosureStatus,
    Completed,
    Pending,
    Rejected,
    state_fields,
)
from .queries import fetch_current_request, fetch_request
from .standing import INVESTOR_COLLECTION, standing_for

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClosureService:
    """Orchestrates the account closure lifecycle.

    Each transition writes the closure request and the investor's projected
    standing in a single batch. Notifications are sent after the commit and
    never affect the outcome of the transition.
    """

    store: DocumentStore
    dispatcher: NotificationDispatcher = field(default_factory=NotificationDispatcher)
    metrics: MetricsRegistry = field(default_factory=MetricsRegistry)
    clock: Clock = utcnow

    async def create_closure_request(
        self,
        *,
        investor_id: str,
        investor_name: str,
        reason: str,
        requested_by: Principal,
        account_balance: float,
    ) -> str:
        if not investor_id.strip():
            raise ValidationError("An investor id is required")
        if not reason.strip():
            raise ValidationError("A closure reason is required")
        if account_balance < 0:
            raise ValidationError("Account balance cannot be negative")

        with store_errors("create_closure_request", investor_id):
            current = await fetch_current_request(self.store, investor_id)
            if current is not None and not current.status.is_terminal:
                raise ConflictError(
                    f"Investor {investor_id} already has a {current.status.value} closure request ({current.id})"
                )

            now = self.clock()
            request = ClosureRequest(
                id=new_document_id(),
                investor_id=investor_id,
                investor_name=investor_name,
                request_date=now.date().isoformat(),
                state=Pending(),
                reason=reason.strip(),
                requested_by=requested_by.id,
                account_balance=float(account_balance),
                created_at=now,
                updated_at=now,
            )
            batch = self.store.batch()
            batch.create(CLOSURE_COLLECTION, request.to_document(), document_id=request.id)
            self._project_standing(batch, request, now)
            await self._commit(batch, request)

        logger.info("Closure request %s created for investor %s by %s", request.id, investor_id, requested_by.id)
        self._count("created")
        await self.dispatcher.dispatch_to_reviewers(
            lambda reviewers: closure_stage_intents(request, ClosureNotice.SUBMITTED, reviewers)
        )
        return request.id

    async def approve_closure_request(self, request_id: str, *, approved_by: Principal) -> ClosureRequest:
        with store_errors("approve_closure_request", request_id):
            request = await self._require(request_id)
            self._ensure_status(request, ClosureStatus.PENDING, "approve")
            now = self.clock()
            updated = await self._transition(
                request, Approved(approved_at=now, approved_by=approved_by.id), now
            )

        logger.info(
            "Closure request %s approved by %s; countdown ends %s",
            request_id,
            approved_by.id,
            updated.estimated_completion_date.isoformat() if updated.estimated_completion_date else "-",
        )
        self._count("approved")
        await self._notify_requester(updated, ClosureNotice.APPROVED)
        return updated

    async def reject_closure_request(
        self, request_id: str, *, rejected_by: Principal, reason: str
    ) -> ClosureRequest:
        if not reason.strip():
            raise ValidationError("A rejection reason is required")

        with store_errors("reject_closure_request", request_id):
            request = await self._require(request_id)
            self._ensure_status(request, ClosureStatus.PENDING, "reject")
            now = self.clock()
            updated = await self._transition(
                request, Rejected(rejected_at=now, rejected_by=rejected_by.id, reason=reason.strip()), now
            )

        logger.info("Closure request %s rejected by %s", request_id, rejected_by.id)
        self._count("rejected")
        await self._notify_requester(updated, ClosureNotice.REJECTED)
        return updated

    async def complete_closure_request(self, request_id: str) -> ClosureRequest:
        """Permanently close the account.

        Callers are responsible for invoking this only once the countdown has
        elapsed; see ``ClosureSweeper``.
        """

        with store_errors("complete_closure_request", request_id):
            request = await self._require(request_id)
            self._ensure_status(request, ClosureStatus.APPROVED, "complete")
            now = self.clock()
            state = Completed(
                approved_at=request.approval_date,
                approved_by=request.approved_by,
                completed_at=now,
            )
            updated = await self._transition(request, state, now, extra_investor_fields={"currentBalance": 0})

        logger.info(
            "Closure request %s completed; investor %s balance %.2f marked transferred",
            request_id,
            request.investor_id,
            request.account_balance,
        )
        self._count("completed")
        await self._notify_requester(updated, ClosureNotice.COMPLETED)
        return updated

    async def get_request(self, request_id: str) -> ClosureRequest:
        with store_errors("get_request", request_id):
            return await self._require(request_id)

    async def get_current_request(self, investor_id: str) -> ClosureRequest | None:
        with store_errors("get_current_request", investor_id):
            return await fetch_current_request(self.store, investor_id)

    async def list_requests(self, *, status: ClosureStatus | None = None) -> list[ClosureRequest]:
        filters = (Filter("status", status.value),) if status is not None else ()
        with store_errors("list_requests"):
            documents = await self.store.query(
                CLOSURE_COLLECTION, filters, (OrderBy("createdAt", descending=True),)
            )
            return [ClosureRequest.from_document(document.id, document.data) for document in documents]

    def subscribe_to_current_request(
        self, investor_id: str, on_change: Callable[[ClosureRequest | None], None]
    ) -> Subscription:
        return subscribe_to_current_request(self.store, investor_id, on_change)

    def calculate_days_remaining(self, approval_date: datetime) -> int:
        return calculate_days_remaining(approval_date, self.clock())

    def is_overdue(self, approval_date: datetime) -> bool:
        return is_overdue(approval_date, self.clock())

    def progress(self, request: ClosureRequest) -> ClosureProgress:
        return closure_progress(request.status.value, request.approval_date, self.clock())

    async def _require(self, request_id: str) -> ClosureRequest:
        request = await fetch_request(self.store, request_id)
        if request is None:
            raise NotFoundError(f"Closure request {request_id} not found")
        return request

    @staticmethod
    def _ensure_status(request: ClosureRequest, expected: ClosureStatus, action: str) -> None:
        if request.status is not expected:
            raise ConflictError(
                f"Cannot {action} closure request {request.id} in status {request.status.value}"
            )

    async def _transition(
        self,
        request: ClosureRequest,
        state: ClosureState,
        now: datetime,
        *,
        extra_investor_fields: dict[str, Any] | None = None,
    ) -> ClosureRequest:
        updated = replace(request, state=state, updated_at=now)
        batch = self.store.batch()
        batch.update(CLOSURE_COLLECTION, request.id, state_fields(state, now))
        self._project_standing(batch, updated, now, extra_investor_fields)
        await self._commit(batch, updated)
        return updated

    @staticmethod
    def _project_standing(
        batch: WriteBatch,
        request: ClosureRequest,
        now: datetime,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        fields = standing_for(request).to_document()
        fields["updatedAt"] = now
        if extra_fields:
            fields.update(extra_fields)
        batch.update(INVESTOR_COLLECTION, request.investor_id, fields)

    @staticmethod
    async def _commit(batch: WriteBatch, request: ClosureRequest) -> None:
        try:
            await batch.commit()
        except DocumentNotFoundError as exc:
            raise NotFoundError(f"Investor {request.investor_id} or request {request.id} not found") from exc

    def _count(self, transition: str) -> None:
        self.metrics.counter(CLOSURE_TRANSITIONS, label_names=("transition",)).inc(
            labels={"transition": transition}
        )

    async def _notify_requester(self, request: ClosureRequest, notice: ClosureNotice) -> None:
        requester = Principal(id=request.requested_by, name=request.requested_by, role=Role.ADMIN)
        await self.dispatcher.dispatch(closure_stage_intents(request, notice, [requester]))
