"""Map workflow transitions to notification intents.

Pure functions: they only decide what each recipient is told. Delivery
belongs to the dispatcher.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Iterable

from backoffice.core.principal import Principal, Role

from .models import NotificationIntent, NotificationKind, NotificationPriority

if TYPE_CHECKING:
    from backoffice.closures.models import ClosureRequest
    from backoffice.tickets.models import SupportTicket, TicketPriority

REVIEWER_TICKETS_URL = "/governor/support-tickets"
REVIEWER_CLOSURES_URL = "/governor/account-management"


class ClosureNotice(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"


def ticket_notification_priority(priority: TicketPriority) -> NotificationPriority:
    if priority.value == "urgent":
        return NotificationPriority.URGENT
    if priority.value == "high":
        return NotificationPriority.HIGH
    return NotificationPriority.MEDIUM


def _ticket_payload(ticket: SupportTicket) -> dict[str, str]:
    return {
        "ticketId": ticket.id,
        "investorId": ticket.investor_id,
        "investorName": ticket.investor_name,
    }


def ticket_created_intents(ticket: SupportTicket, reviewers: Iterable[Principal]) -> list[NotificationIntent]:
    label = ticket.ticket_type.value.replace("_", " ").upper()
    return [
        NotificationIntent(
            recipient_id=reviewer.id,
            recipient_role=reviewer.role,
            kind=NotificationKind.TICKET_CREATED,
            title=f"New Support Ticket: {label}",
            message=f"{ticket.investor_name} submitted a {ticket.priority.value} priority ticket: {ticket.subject}",
            priority=ticket_notification_priority(ticket.priority),
            payload=_ticket_payload(ticket),
            action_url=REVIEWER_TICKETS_URL,
        )
        for reviewer in reviewers
    ]


def ticket_escalated_intents(
    ticket: SupportTicket, reviewers: Iterable[Principal], escalated_by: Principal
) -> list[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=reviewer.id,
            recipient_role=reviewer.role,
            kind=NotificationKind.TICKET_ESCALATED,
            title=f"Ticket Escalated: {ticket.subject}",
            message=f"{escalated_by.name} escalated the ticket for {ticket.investor_name}: {ticket.escalated_reason}",
            priority=NotificationPriority.URGENT,
            payload=_ticket_payload(ticket),
            action_url=REVIEWER_TICKETS_URL,
        )
        for reviewer in reviewers
        if reviewer.id != escalated_by.id
    ]


def ticket_assigned_intents(ticket: SupportTicket, assignee: Principal, assigned_by: Principal) -> list[NotificationIntent]:
    if assignee.id == assigned_by.id:
        return []
    return [
        NotificationIntent(
            recipient_id=assignee.id,
            recipient_role=assignee.role,
            kind=NotificationKind.TICKET_ASSIGNED,
            title=f"Ticket Assigned: {ticket.subject}",
            message=f"{assigned_by.name} assigned you the ticket for {ticket.investor_name}",
            priority=ticket_notification_priority(ticket.priority),
            payload=_ticket_payload(ticket),
            action_url=REVIEWER_TICKETS_URL,
        )
    ]


_CLOSURE_NOTICES: dict[ClosureNotice, tuple[str, str, NotificationPriority]] = {
    ClosureNotice.SUBMITTED: (
        "New Account Closure Request",
        "{name} has a closure request awaiting review (balance ${balance:,.2f})",
        NotificationPriority.HIGH,
    ),
    ClosureNotice.APPROVED: (
        "Account Closure Approved",
        "Closure of {name}'s account was approved; the 90 day countdown has started",
        NotificationPriority.MEDIUM,
    ),
    ClosureNotice.COMPLETED: (
        "Account Closure Completed",
        "{name}'s account has been permanently closed (balance ${balance:,.2f} transferred)",
        NotificationPriority.MEDIUM,
    ),
    ClosureNotice.REJECTED: (
        "Account Closure Rejected",
        "Closure request for {name} was rejected: {reason}",
        NotificationPriority.HIGH,
    ),
}


def closure_stage_intents(
    request: ClosureRequest, notice: ClosureNotice, recipients: Iterable[Principal]
) -> list[NotificationIntent]:
    title, template, priority = _CLOSURE_NOTICES[notice]
    message = template.format(
        name=request.investor_name,
        balance=request.account_balance,
        reason=request.rejection_reason or "",
    )
    intents: list[NotificationIntent] = []
    for recipient in recipients:
        action_url = (
            REVIEWER_CLOSURES_URL if recipient.role == Role.GOVERNOR else f"/admin/investors/{request.investor_id}"
        )
        intents.append(
            NotificationIntent(
                recipient_id=recipient.id,
                recipient_role=recipient.role,
                kind=NotificationKind.CLOSURE_STAGE_CHANGE,
                title=title,
                message=message,
                priority=priority,
                payload={
                    "closureRequestId": request.id,
                    "investorId": request.investor_id,
                    "investorName": request.investor_name,
                    "amount": request.account_balance,
                    "stage": request.stage.value,
                },
                action_url=action_url,
            )
        )
    return intents
