from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from backoffice.core.errors import ConflictError, NotFoundError, ValidationError, store_errors
from backoffice.core.principal import Principal
from backoffice.live.adapters import TICKET_ORDERING, Subscription, subscribe_to_tickets
from backoffice.metrics import MetricsRegistry
from backoffice.metrics.definitions import TICKET_ACTIONS
from backoffice.notifications.dispatcher import NotificationDispatcher
from backoffice.notifications.rules import (
    ticket_assigned_intents,
    ticket_created_intents,
    ticket_escalated_intents,
)
from backoffice.store import DocumentNotFoundError, DocumentStore, Filter, OrderBy, new_document_id
from backoffice.timemath import Clock, utcnow

from .models import (
    ACTION_COLLECTION,
    TICKET_COLLECTION,
    SupportTicket,
    TicketAction,
    TicketActionType,
    TicketDraft,
    TicketPriority,
    TicketResponse,
)
from .state import REQUESTABLE_STATUSES, TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)

AUDIT_ORDERING = (OrderBy("timestamp"),)


@dataclass(slots=True)
class TicketService:
    """High level orchestration for support ticket lifecycle operations.

    Every mutation writes the ticket document and exactly one audit action in
    the same batch.
    """

    store: DocumentStore
    dispatcher: NotificationDispatcher = field(default_factory=NotificationDispatcher)
    metrics: MetricsRegistry = field(default_factory=MetricsRegistry)
    clock: Clock = utcnow

    async def create_ticket(self, draft: TicketDraft) -> str:
        if not draft.investor_id.strip():
            raise ValidationError("An investor id is required")
        if not draft.subject.strip():
            raise ValidationError("A ticket subject is required")
        if not draft.description.strip():
            raise ValidationError("A ticket description is required")

        now = self.clock()
        ticket = SupportTicket(
            id=new_document_id(),
            investor_id=draft.investor_id,
            investor_name=draft.investor_name,
            submitted_by=draft.submitted_by.id,
            submitted_by_name=draft.submitted_by.name,
            ticket_type=draft.ticket_type,
            priority=draft.priority,
            subject=draft.subject.strip(),
            description=draft.description.strip(),
            status=TicketStateMachine.initial_state(),
            submitted_at=now,
            last_activity=now,
            tags=tuple(draft.tags),
            attachments=tuple(draft.attachments),
        )
        action = self._action(
            ticket.id,
            TicketActionType.CREATED,
            draft.submitted_by,
            now,
            {"subject": ticket.subject, "priority": ticket.priority.value, "ticketType": ticket.ticket_type.value},
        )

        with store_errors("create_ticket", ticket.id):
            batch = self.store.batch()
            batch.create(TICKET_COLLECTION, ticket.to_document(), document_id=ticket.id)
            batch.create(ACTION_COLLECTION, action.to_document(), document_id=action.id)
            await batch.commit()

        logger.info("Ticket %s created for investor %s by %s", ticket.id, ticket.investor_id, ticket.submitted_by)
        self._count(action.action_type)
        await self.dispatcher.dispatch_to_reviewers(lambda reviewers: ticket_created_intents(ticket, reviewers))
        return ticket.id

    async def add_response(
        self,
        ticket_id: str,
        *,
        responder: Principal,
        content: str,
        is_internal: bool = False,
    ) -> TicketResponse:
        if not content.strip():
            raise ValidationError("Response content is required")

        with store_errors("add_response", ticket_id):
            ticket = await self._require(ticket_id)
            now = self._activity_time(ticket)
            response = TicketResponse(
                id=new_document_id(),
                ticket_id=ticket_id,
                responder_id=responder.id,
                responder_name=responder.name,
                responder_role=responder.role,
                content=content.strip(),
                timestamp=now,
                is_internal=is_internal,
            )
            fields: dict[str, Any] = {
                "responses": [item.to_document() for item in ticket.responses] + [response.to_document()],
                "lastActivity": now,
            }
            details: dict[str, Any] = {"responseId": response.id, "isInternal": is_internal}
            if responder.is_reviewer and ticket.status is TicketStatus.OPEN:
                fields["status"] = TicketStatus.IN_PROGRESS.value
                details["status"] = TicketStatus.IN_PROGRESS.value
            await self._record(ticket, fields, TicketActionType.RESPONDED, responder, now, details)

        logger.info("Response %s added to ticket %s by %s", response.id, ticket_id, responder.id)
        return response

    async def update_status(
        self,
        ticket_id: str,
        *,
        new_status: TicketStatus,
        actor: Principal,
        resolution: str | None = None,
    ) -> SupportTicket:
        if new_status not in REQUESTABLE_STATUSES:
            raise ValidationError(f"Tickets cannot be moved to {new_status.value} directly")
        if new_status is TicketStatus.RESOLVED and not (resolution or "").strip():
            raise ValidationError("A resolution is required to resolve a ticket")

        with store_errors("update_status", ticket_id):
            ticket = await self._require(ticket_id)
            try:
                TicketStateMachine.assert_transition(ticket.status, new_status)
            except ValueError as exc:
                raise ConflictError(str(exc)) from exc

            now = self._activity_time(ticket)
            fields: dict[str, Any] = {"status": new_status.value, "lastActivity": now}
            fields.update(_terminal_fields(new_status, actor, now))
            if new_status is TicketStatus.RESOLVED:
                fields["resolution"] = (resolution or "").strip()
            details = {"from": ticket.status.value, "to": new_status.value}
            if new_status is TicketStatus.RESOLVED:
                details["resolution"] = fields["resolution"]
            updated = await self._record(ticket, fields, TicketActionType.STATUS_CHANGED, actor, now, details)

        logger.info(
            "Ticket %s moved %s -> %s by %s", ticket_id, ticket.status.value, new_status.value, actor.id
        )
        return updated

    async def assign_ticket(
        self, ticket_id: str, *, assignee: Principal, assigned_by: Principal
    ) -> SupportTicket:
        with store_errors("assign_ticket", ticket_id):
            ticket = await self._require(ticket_id)
            if TicketStateMachine.is_terminal(ticket.status):
                logger.warning("Assigning ticket %s reopens it from %s", ticket_id, ticket.status.value)

            now = self._activity_time(ticket)
            fields: dict[str, Any] = {
                "assignedTo": assignee.id,
                "assignedToName": assignee.name,
                "assignedAt": now,
                "status": TicketStatus.IN_PROGRESS.value,
                "lastActivity": now,
            }
            fields.update(_terminal_fields(TicketStatus.IN_PROGRESS, assigned_by, now))
            details = {
                "assignedTo": assignee.id,
                "assignedToName": assignee.name,
                "previousStatus": ticket.status.value,
            }
            updated = await self._record(ticket, fields, TicketActionType.ASSIGNED, assigned_by, now, details)

        logger.info("Ticket %s assigned to %s by %s", ticket_id, assignee.id, assigned_by.id)
        await self.dispatcher.dispatch(ticket_assigned_intents(updated, assignee, assigned_by))
        return updated

    async def escalate_ticket(self, ticket_id: str, *, reason: str, escalated_by: Principal) -> SupportTicket:
        if not reason.strip():
            raise ValidationError("An escalation reason is required")

        with store_errors("escalate_ticket", ticket_id):
            ticket = await self._require(ticket_id)
            now = self._activity_time(ticket)
            fields = {
                "escalated": True,
                "escalatedAt": now,
                "escalatedReason": reason.strip(),
                "priority": TicketPriority.URGENT.value,
                "lastActivity": now,
            }
            details = {"reason": reason.strip(), "previousPriority": ticket.priority.value}
            updated = await self._record(ticket, fields, TicketActionType.ESCALATED, escalated_by, now, details)

        logger.info("Ticket %s escalated by %s", ticket_id, escalated_by.id)
        await self.dispatcher.dispatch_to_reviewers(
            lambda reviewers: ticket_escalated_intents(updated, reviewers, escalated_by)
        )
        return updated

    async def change_priority(
        self, ticket_id: str, *, priority: TicketPriority, actor: Principal
    ) -> SupportTicket:
        with store_errors("change_priority", ticket_id):
            ticket = await self._require(ticket_id)
            if ticket.escalated and priority is not TicketPriority.URGENT:
                raise ConflictError(f"Ticket {ticket_id} is escalated; its priority must stay urgent")

            now = self._activity_time(ticket)
            fields = {"priority": priority.value, "lastActivity": now}
            details = {"from": ticket.priority.value, "to": priority.value}
            updated = await self._record(ticket, fields, TicketActionType.PRIORITY_CHANGED, actor, now, details)

        logger.info("Ticket %s priority %s -> %s", ticket_id, ticket.priority.value, priority.value)
        return updated

    async def get_ticket(self, ticket_id: str) -> SupportTicket:
        with store_errors("get_ticket", ticket_id):
            return await self._require(ticket_id)

    async def list_tickets(self, *, status: TicketStatus | None = None) -> list[SupportTicket]:
        filters = (Filter("status", status.value),) if status is not None else ()
        with store_errors("list_tickets"):
            documents = await self.store.query(TICKET_COLLECTION, filters, TICKET_ORDERING)
            return [SupportTicket.from_document(document.id, document.data) for document in documents]

    def subscribe_to_tickets(self, on_change: Callable[[list[SupportTicket]], None]) -> Subscription:
        return subscribe_to_tickets(self.store, on_change)

    async def get_audit_trail(self, ticket_id: str) -> list[TicketAction]:
        with store_errors("get_audit_trail", ticket_id):
            documents = await self.store.query(
                ACTION_COLLECTION, (Filter("ticketId", ticket_id),), AUDIT_ORDERING
            )
            return [TicketAction.from_document(document.id, document.data) for document in documents]

    async def _require(self, ticket_id: str) -> SupportTicket:
        document = await self.store.get(TICKET_COLLECTION, ticket_id)
        if document is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return SupportTicket.from_document(document.id, document.data)

    def _activity_time(self, ticket: SupportTicket) -> datetime:
        # lastActivity never moves backwards, even if the clock does.
        return max(self.clock(), ticket.last_activity)

    @staticmethod
    def _action(
        ticket_id: str,
        action_type: TicketActionType,
        actor: Principal,
        timestamp: datetime,
        details: Mapping[str, Any],
    ) -> TicketAction:
        return TicketAction(
            id=new_document_id(),
            ticket_id=ticket_id,
            action_type=action_type,
            performed_by=actor.id,
            performed_by_name=actor.name,
            timestamp=timestamp,
            details=dict(details),
        )

    async def _record(
        self,
        ticket: SupportTicket,
        fields: Mapping[str, Any],
        action_type: TicketActionType,
        actor: Principal,
        timestamp: datetime,
        details: Mapping[str, Any],
    ) -> SupportTicket:
        action = self._action(ticket.id, action_type, actor, timestamp, details)
        batch = self.store.batch()
        batch.update(TICKET_COLLECTION, ticket.id, fields)
        batch.create(ACTION_COLLECTION, action.to_document(), document_id=action.id)
        try:
            await batch.commit()
        except DocumentNotFoundError as exc:
            raise NotFoundError(f"Ticket {ticket.id} not found") from exc
        self._count(action_type)
        return SupportTicket.from_document(ticket.id, {**ticket.to_document(), **fields})

    def _count(self, action_type: TicketActionType) -> None:
        self.metrics.counter(TICKET_ACTIONS, label_names=("action",)).inc(labels={"action": action_type.value})


def _terminal_fields(new_status: TicketStatus, actor: Principal, now: datetime) -> dict[str, Any]:
    """Resolver and closer fields implied by moving to ``new_status``.

    ``resolvedAt``/``resolvedBy`` are only present while resolved and
    ``closedAt``/``closedBy`` only while closed. The resolution text is kept.
    """

    fields: dict[str, Any] = {}
    if new_status is TicketStatus.RESOLVED:
        fields.update(resolvedAt=now, resolvedBy=actor.id)
    else:
        fields.update(resolvedAt=None, resolvedBy=None)
    if new_status is TicketStatus.CLOSED:
        fields.update(closedAt=now, closedBy=actor.id)
    else:
        fields.update(closedAt=None, closedBy=None)
    return fields
