from __future__ import annotations

import pytest

from backoffice.core.errors import ConflictError, NotFoundError, StoreError, ValidationError
from backoffice.core.principal import Principal, Role
from backoffice.metrics.definitions import TICKET_ACTIONS
from backoffice.notifications import NotificationKind, NotificationPriority
from backoffice.tickets.models import TicketActionType, TicketDraft, TicketPriority, TicketType
from backoffice.tickets.service import TicketService
from backoffice.tickets.state import TicketStatus


def _draft(admin: Principal, **overrides) -> TicketDraft:
    params = {
        "investor_id": "inv-1",
        "investor_name": "Ada Investor",
        "submitted_by": admin,
        "ticket_type": TicketType.SUSPICIOUS_ACTIVITY,
        "priority": TicketPriority.MEDIUM,
        "subject": "Unusual withdrawals",
        "description": "Three withdrawals within an hour from a new device.",
        "tags": ("kyc",),
    }
    params.update(overrides)
    return TicketDraft(**params)


@pytest.fixture
def service(store, clock, dispatcher) -> TicketService:
    return TicketService(store, dispatcher=dispatcher, clock=clock)


@pytest.mark.asyncio
async def test_create_ticket_persists_open_ticket_with_audit_entry(service, admin, clock):
    ticket_id = await service.create_ticket(_draft(admin))

    ticket = await service.get_ticket(ticket_id)
    assert ticket.status is TicketStatus.OPEN
    assert ticket.responses == ()
    assert ticket.escalated is False
    assert ticket.last_activity == clock.now
    assert ticket.tags == ("kyc",)

    trail = await service.get_audit_trail(ticket_id)
    assert [action.action_type for action in trail] == [TicketActionType.CREATED]
    assert trail[0].performed_by == admin.id
    assert trail[0].details["priority"] == "medium"


@pytest.mark.asyncio
async def test_create_ticket_notifies_every_reviewer(service, admin, notifier, governor, second_governor):
    await service.create_ticket(_draft(admin, priority=TicketPriority.URGENT))

    assert [intent.recipient_id for intent in notifier.intents] == [governor.id, second_governor.id]
    intent = notifier.intents[0]
    assert intent.kind is NotificationKind.TICKET_CREATED
    assert intent.title == "New Support Ticket: SUSPICIOUS ACTIVITY"
    assert intent.message == "Ada Investor submitted a urgent priority ticket: Unusual withdrawals"
    assert intent.priority is NotificationPriority.URGENT
    assert intent.action_url == "/governor/support-tickets"


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["subject", "description", "investor_id"])
async def test_create_ticket_requires_fields(service, admin, field):
    with pytest.raises(ValidationError):
        await service.create_ticket(_draft(admin, **{field: "  "}))


@pytest.mark.asyncio
async def test_escalation_forces_urgent_and_survives_resolution(service, admin, governor, clock):
    ticket_id = await service.create_ticket(_draft(admin))

    clock.advance(hours=48)
    escalated = await service.escalate_ticket(ticket_id, reason="no response 48h", escalated_by=admin)
    assert escalated.priority is TicketPriority.URGENT
    assert escalated.escalated is True
    assert escalated.escalated_at == clock.now
    assert escalated.escalated_reason == "no response 48h"

    trail = await service.get_audit_trail(ticket_id)
    assert [action.action_type for action in trail].count(TicketActionType.ESCALATED) == 1

    clock.advance(hours=1)
    resolved = await service.update_status(
        ticket_id, new_status=TicketStatus.RESOLVED, actor=governor, resolution="handled"
    )
    assert resolved.status is TicketStatus.RESOLVED
    assert resolved.resolved_at == clock.now
    assert resolved.resolved_by == governor.id
    assert resolved.resolution == "handled"
    assert resolved.escalated is True
    assert resolved.priority is TicketPriority.URGENT


@pytest.mark.asyncio
async def test_escalation_notifies_other_reviewers(service, admin, governor, second_governor, notifier):
    ticket_id = await service.create_ticket(_draft(admin))
    notifier.intents.clear()

    await service.escalate_ticket(ticket_id, reason="regulator deadline", escalated_by=governor)

    assert [intent.recipient_id for intent in notifier.intents] == [second_governor.id]
    assert notifier.intents[0].kind is NotificationKind.TICKET_ESCALATED
    assert notifier.intents[0].priority is NotificationPriority.URGENT


@pytest.mark.asyncio
async def test_responses_keep_order_and_reviewer_reply_starts_work(service, admin, governor, clock):
    ticket_id = await service.create_ticket(_draft(admin))

    t1 = clock.advance(minutes=1)
    first = await service.add_response(ticket_id, responder=admin, content="Any update?")
    assert (await service.get_ticket(ticket_id)).status is TicketStatus.OPEN

    t2 = clock.advance(minutes=1)
    second = await service.add_response(ticket_id, responder=governor, content="Looking into it")

    ticket = await service.get_ticket(ticket_id)
    assert [response.id for response in ticket.responses] == [first.id, second.id]
    assert [response.timestamp for response in ticket.responses] == [t1, t2]
    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.last_activity == t2


@pytest.mark.asyncio
async def test_reviewer_reply_after_open_keeps_status(service, admin, governor):
    ticket_id = await service.create_ticket(_draft(admin))
    await service.update_status(ticket_id, new_status=TicketStatus.RESOLVED, actor=governor, resolution="done")

    await service.add_response(ticket_id, responder=governor, content="Closing note")

    assert (await service.get_ticket(ticket_id)).status is TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_add_response_validates_content_and_ticket(service, admin):
    ticket_id = await service.create_ticket(_draft(admin))

    with pytest.raises(ValidationError):
        await service.add_response(ticket_id, responder=admin, content="   ")
    with pytest.raises(NotFoundError):
        await service.add_response("missing", responder=admin, content="hello")


@pytest.mark.asyncio
async def test_internal_responses_are_hidden_from_admins(service, admin, governor):
    ticket_id = await service.create_ticket(_draft(admin))
    await service.add_response(ticket_id, responder=governor, content="Public reply")
    await service.add_response(ticket_id, responder=governor, content="Internal note", is_internal=True)

    ticket = await service.get_ticket(ticket_id)

    assert [item.content for item in ticket.visible_responses(Role.GOVERNOR)] == ["Public reply", "Internal note"]
    assert [item.content for item in ticket.visible_responses(Role.ADMIN)] == ["Public reply"]


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [TicketStatus.OPEN, TicketStatus.PENDING_APPROVAL])
async def test_update_status_rejects_unrequestable_targets(service, admin, governor, target):
    ticket_id = await service.create_ticket(_draft(admin))

    with pytest.raises(ValidationError):
        await service.update_status(ticket_id, new_status=target, actor=governor)


@pytest.mark.asyncio
async def test_resolving_requires_a_resolution(service, admin, governor):
    ticket_id = await service.create_ticket(_draft(admin))

    with pytest.raises(ValidationError):
        await service.update_status(ticket_id, new_status=TicketStatus.RESOLVED, actor=governor)
    assert len(await service.get_audit_trail(ticket_id)) == 1


@pytest.mark.asyncio
async def test_closing_a_resolved_ticket_moves_terminal_fields(service, admin, governor, clock):
    ticket_id = await service.create_ticket(_draft(admin))
    await service.update_status(ticket_id, new_status=TicketStatus.RESOLVED, actor=governor, resolution="refunded")

    closed_at = clock.advance(days=1)
    closed = await service.update_status(ticket_id, new_status=TicketStatus.CLOSED, actor=governor)

    assert closed.status is TicketStatus.CLOSED
    assert closed.closed_at == closed_at
    assert closed.closed_by == governor.id
    assert closed.resolved_at is None
    assert closed.resolved_by is None
    assert closed.resolution == "refunded"


@pytest.mark.asyncio
async def test_closed_tickets_cannot_be_reopened_by_status_update(service, admin, governor):
    ticket_id = await service.create_ticket(_draft(admin))
    await service.update_status(ticket_id, new_status=TicketStatus.CLOSED, actor=governor)

    with pytest.raises(ConflictError):
        await service.update_status(ticket_id, new_status=TicketStatus.IN_PROGRESS, actor=governor)


@pytest.mark.asyncio
async def test_assign_forces_in_progress_and_notifies_assignee(
    service, admin, governor, second_governor, notifier, clock
):
    ticket_id = await service.create_ticket(_draft(admin))
    await service.update_status(ticket_id, new_status=TicketStatus.RESOLVED, actor=governor, resolution="first pass")
    notifier.intents.clear()

    assigned_at = clock.advance(hours=2)
    ticket = await service.assign_ticket(ticket_id, assignee=second_governor, assigned_by=governor)

    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.assigned_to == second_governor.id
    assert ticket.assigned_to_name == second_governor.name
    assert ticket.assigned_at == assigned_at
    assert ticket.resolved_at is None
    assert [intent.recipient_id for intent in notifier.intents] == [second_governor.id]
    assert notifier.intents[0].kind is NotificationKind.TICKET_ASSIGNED


@pytest.mark.asyncio
async def test_self_assignment_sends_no_notification(service, admin, governor, notifier):
    ticket_id = await service.create_ticket(_draft(admin))
    notifier.intents.clear()

    await service.assign_ticket(ticket_id, assignee=governor, assigned_by=governor)

    assert notifier.intents == []


@pytest.mark.asyncio
async def test_priority_of_escalated_ticket_cannot_be_lowered(service, admin, governor):
    ticket_id = await service.create_ticket(_draft(admin))

    changed = await service.change_priority(ticket_id, priority=TicketPriority.HIGH, actor=governor)
    assert changed.priority is TicketPriority.HIGH

    await service.escalate_ticket(ticket_id, reason="fraud suspected", escalated_by=governor)
    with pytest.raises(ConflictError):
        await service.change_priority(ticket_id, priority=TicketPriority.LOW, actor=governor)

    ticket = await service.get_ticket(ticket_id)
    assert ticket.priority is TicketPriority.URGENT
    assert ticket.escalated is True


@pytest.mark.asyncio
async def test_every_mutation_records_exactly_one_action(service, store, admin, governor, second_governor, clock):
    ticket_id = await service.create_ticket(_draft(admin))
    clock.advance(minutes=1)
    await service.add_response(ticket_id, responder=admin, content="Please check")
    clock.advance(minutes=1)
    await service.assign_ticket(ticket_id, assignee=second_governor, assigned_by=governor)
    clock.advance(minutes=1)
    await service.change_priority(ticket_id, priority=TicketPriority.HIGH, actor=governor)
    clock.advance(minutes=1)
    await service.escalate_ticket(ticket_id, reason="stalled", escalated_by=admin)
    clock.advance(minutes=1)
    await service.update_status(ticket_id, new_status=TicketStatus.RESOLVED, actor=governor, resolution="ok")

    trail = await service.get_audit_trail(ticket_id)

    assert [action.action_type for action in trail] == [
        TicketActionType.CREATED,
        TicketActionType.RESPONDED,
        TicketActionType.ASSIGNED,
        TicketActionType.PRIORITY_CHANGED,
        TicketActionType.ESCALATED,
        TicketActionType.STATUS_CHANGED,
    ]
    assert all(action.ticket_id == ticket_id for action in trail)
    timestamps = [action.timestamp for action in trail]
    assert timestamps == sorted(timestamps)
    assert service.metrics.counter(TICKET_ACTIONS, label_names=("action",)).value({"action": "escalated"}) == 1
    assert len(await store.query("ticketActions")) == 6


@pytest.mark.asyncio
async def test_last_activity_never_moves_backwards(service, admin, governor, clock):
    ticket_id = await service.create_ticket(_draft(admin))
    later = clock.advance(hours=1)
    await service.add_response(ticket_id, responder=admin, content="first")

    clock.advance(minutes=-30)
    response = await service.add_response(ticket_id, responder=governor, content="second")

    ticket = await service.get_ticket(ticket_id)
    assert ticket.last_activity == later
    assert response.timestamp == later


@pytest.mark.asyncio
async def test_mutations_on_missing_ticket_raise_not_found(service, governor):
    with pytest.raises(NotFoundError):
        await service.assign_ticket("missing", assignee=governor, assigned_by=governor)
    with pytest.raises(NotFoundError):
        await service.escalate_ticket("missing", reason="x", escalated_by=governor)
    with pytest.raises(NotFoundError):
        await service.get_ticket("missing")


@pytest.mark.asyncio
async def test_list_tickets_orders_by_recent_activity(service, admin, clock):
    older = await service.create_ticket(_draft(admin, subject="Older"))
    clock.advance(minutes=5)
    newer = await service.create_ticket(_draft(admin, subject="Newer"))
    clock.advance(minutes=5)
    await service.add_response(older, responder=admin, content="bump")

    tickets = await service.list_tickets()

    assert [ticket.id for ticket in tickets] == [older, newer]
    assert [ticket.id for ticket in await service.list_tickets(status=TicketStatus.CLOSED)] == []


@pytest.mark.asyncio
async def test_subscribe_to_tickets_delivers_snapshots(service, admin):
    snapshots = []
    subscription = service.subscribe_to_tickets(snapshots.append)

    ticket_id = await service.create_ticket(_draft(admin))
    subscription.unsubscribe()
    await service.add_response(ticket_id, responder=admin, content="after unsubscribe")

    assert snapshots[0] == []
    assert [ticket.id for ticket in snapshots[1]] == [ticket_id]
    assert len(snapshots) == 2


@pytest.mark.asyncio
async def test_unreadable_documents_surface_as_store_errors(service, store, admin, clock):
    await service.create_ticket(_draft(admin))
    await store.create("supportTickets", {"lastActivity": clock(), "status": "open"})
    await store.create("ticketActions", {"ticketId": "t-1", "actionType": "teleported", "timestamp": clock()})

    with pytest.raises(StoreError) as listing:
        await service.list_tickets()
    with pytest.raises(StoreError) as audit:
        await service.get_audit_trail("t-1")

    assert listing.value.operation == "list_tickets"
    assert isinstance(listing.value.__cause__, KeyError)
    assert audit.value.operation == "get_audit_trail"
    assert isinstance(audit.value.__cause__, ValueError)
