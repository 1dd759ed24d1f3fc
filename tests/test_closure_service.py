from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from backoffice.closures.models import ClosureRequest, ClosureStage, ClosureStatus
from backoffice.closures.service import ClosureService
from backoffice.closures.standing import InvestorStandingView
from backoffice.core.errors import ConflictError, NotFoundError, StoreError, ValidationError
from backoffice.metrics import MetricsRegistry
from backoffice.metrics.definitions import CLOSURE_TRANSITIONS, NOTIFICATION_FAILURES
from backoffice.notifications import (
    NotificationDispatcher,
    NotificationKind,
    StaticPrincipalDirectory,
    StoreNotifier,
)
from backoffice.store import InMemoryDocumentStore


class FailingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    async def notify(self, intent) -> None:
        self.calls += 1
        raise ConnectionError("notifier offline")


async def _create(service: ClosureService, admin, investor_id: str = "inv-1", **overrides) -> str:
    params = {
        "investor_id": investor_id,
        "investor_name": "Ada Investor",
        "reason": "fraud",
        "requested_by": admin,
        "account_balance": 5000.0,
    }
    params.update(overrides)
    return await service.create_closure_request(**params)


@pytest.mark.asyncio
async def test_create_and_approve_runs_the_countdown(store, clock, admin, governor, seed_investor):
    await seed_investor()
    service = ClosureService(store, clock=clock)

    request_id = await _create(service, admin)
    request = await service.get_request(request_id)
    assert request.status is ClosureStatus.PENDING
    assert request.stage is ClosureStage.REQUEST
    assert request.approval_date is None
    assert request.account_balance == 5000.0
    assert service.progress(request).percentage == 33.0

    approved_at = clock.now
    approved = await service.approve_closure_request(request_id, approved_by=governor)
    assert approved.status is ClosureStatus.APPROVED
    assert approved.stage is ClosureStage.COUNTDOWN
    assert approved.approval_date == approved_at
    assert approved.estimated_completion_date == approved_at + timedelta(days=90)
    assert service.calculate_days_remaining(approved_at) == 90
    assert service.progress(approved).percentage == pytest.approx(33.0)

    stored = await store.get("accountClosureRequests", request_id)
    assert stored.data["status"] == "Approved"
    assert stored.data["stage"] == "countdown"
    assert stored.data["approvedBy"] == governor.id

    clock.advance(days=90)
    assert service.calculate_days_remaining(approved_at) == 0
    assert service.progress(approved).percentage == pytest.approx(67.0)
    assert not service.is_overdue(approved_at)
    clock.advance(seconds=1)
    assert service.is_overdue(approved_at)


@pytest.mark.asyncio
async def test_reject_is_terminal(store, clock, admin, governor, seed_investor):
    await seed_investor()
    service = ClosureService(store, clock=clock)
    request_id = await _create(service, admin)

    rejected = await service.reject_closure_request(request_id, rejected_by=governor, reason="duplicate")

    assert rejected.status is ClosureStatus.REJECTED
    assert rejected.stage is ClosureStage.REJECTED
    assert rejected.rejection_date == clock.now
    assert rejected.rejection_reason == "duplicate"
    with pytest.raises(ConflictError):
        await service.approve_closure_request(request_id, approved_by=governor)


@pytest.mark.asyncio
async def test_investor_standing_follows_the_request(store, clock, admin, governor, seed_investor):
    investor_id = await seed_investor()
    service = ClosureService(store, clock=clock)
    view = InvestorStandingView(store)

    assert (await view.get(investor_id)).is_active

    request_id = await _create(service, admin)
    investor = await store.get("users", investor_id)
    assert investor.data["accountStatus"] == "Deletion Request Under Review"
    assert investor.data["isActive"] is False
    assert (await view.get(investor_id)).account_status == "Deletion Request Under Review"

    await service.approve_closure_request(request_id, approved_by=governor)
    investor = await store.get("users", investor_id)
    assert investor.data["accountStatus"] == "Deletion Request Approved - 90 Day Countdown Active"

    await service.complete_closure_request(request_id)
    investor = await store.get("users", investor_id)
    assert investor.data["accountStatus"] == "Account Permanently Closed"
    assert investor.data["currentBalance"] == 0
    assert investor.data["isActive"] is False
    assert (await view.get(investor_id)).account_status == "Account Permanently Closed"


@pytest.mark.asyncio
async def test_rejection_restores_active_standing(store, clock, admin, governor, seed_investor):
    investor_id = await seed_investor()
    service = ClosureService(store, clock=clock)
    request_id = await _create(service, admin)

    await service.reject_closure_request(request_id, rejected_by=governor, reason="customer withdrew")

    investor = await store.get("users", investor_id)
    assert investor.data["accountStatus"] == "Active"
    assert investor.data["isActive"] is True
    assert investor.data["currentBalance"] == 5000.0


@pytest.mark.asyncio
async def test_complete_requires_approval_but_not_the_time_gate(store, clock, admin, governor, seed_investor):
    await seed_investor()
    service = ClosureService(store, clock=clock)
    request_id = await _create(service, admin)

    with pytest.raises(ConflictError):
        await service.complete_closure_request(request_id)

    approved = await service.approve_closure_request(request_id, approved_by=governor)
    clock.advance(days=1)
    completed = await service.complete_closure_request(request_id)

    assert completed.status is ClosureStatus.COMPLETED
    assert completed.stage is ClosureStage.COMPLETED
    assert completed.completion_date == clock.now
    assert completed.approval_date == approved.approval_date
    assert service.progress(completed).percentage == 100.0
    with pytest.raises(ConflictError):
        await service.complete_closure_request(request_id)


@pytest.mark.asyncio
async def test_only_one_open_request_per_investor(store, clock, admin, governor, seed_investor):
    await seed_investor()
    service = ClosureService(store, clock=clock)
    first = await _create(service, admin)

    with pytest.raises(ConflictError):
        await _create(service, admin)

    await service.approve_closure_request(first, approved_by=governor)
    with pytest.raises(ConflictError):
        await _create(service, admin)


@pytest.mark.asyncio
async def test_new_request_after_rejection_becomes_current(store, clock, admin, governor, seed_investor):
    investor_id = await seed_investor()
    service = ClosureService(store, clock=clock)
    first = await _create(service, admin)
    await service.reject_closure_request(first, rejected_by=governor, reason="duplicate")

    clock.advance(days=3)
    second = await _create(service, admin, reason="moving abroad")

    current = await service.get_current_request(investor_id)
    assert current.id == second
    assert current.status is ClosureStatus.PENDING
    assert await service.get_current_request("nobody") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [{"reason": "   "}, {"investor_id": ""}, {"account_balance": -1.0}],
)
async def test_create_validates_input(store, clock, admin, seed_investor, overrides):
    await seed_investor()
    service = ClosureService(store, clock=clock)

    with pytest.raises(ValidationError):
        await _create(service, admin, **overrides)


@pytest.mark.asyncio
async def test_reject_requires_reason(store, clock, admin, governor, seed_investor):
    await seed_investor()
    service = ClosureService(store, clock=clock)
    request_id = await _create(service, admin)

    with pytest.raises(ValidationError):
        await service.reject_closure_request(request_id, rejected_by=governor, reason="")
    assert (await service.get_request(request_id)).status is ClosureStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_request_raises_not_found(store, clock, governor):
    service = ClosureService(store, clock=clock)

    with pytest.raises(NotFoundError):
        await service.approve_closure_request("missing", approved_by=governor)
    with pytest.raises(NotFoundError):
        await service.get_request("missing")


@pytest.mark.asyncio
async def test_missing_investor_record_leaves_nothing_behind(store, clock, admin):
    service = ClosureService(store, clock=clock)

    with pytest.raises(NotFoundError):
        await _create(service, admin, investor_id="ghost")

    assert await store.query("accountClosureRequests") == []


@pytest.mark.asyncio
async def test_store_failures_are_wrapped(clock, admin):
    class BrokenStore(InMemoryDocumentStore):
        async def query(self, collection, filters=(), ordering=(), limit=None):
            raise ConnectionError("store unreachable")

    service = ClosureService(BrokenStore(), clock=clock)

    with pytest.raises(StoreError) as excinfo:
        await _create(service, admin, investor_id="inv-9")

    assert excinfo.value.operation == "create_closure_request"
    assert excinfo.value.entity_id == "inv-9"
    assert isinstance(excinfo.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_unreadable_requests_surface_as_store_errors(store, clock):
    await store.create("accountClosureRequests", {"status": "Approved", "createdAt": clock()})
    service = ClosureService(store, clock=clock)

    with pytest.raises(StoreError) as excinfo:
        await service.list_requests(status=ClosureStatus.APPROVED)

    assert excinfo.value.operation == "list_requests"
    assert isinstance(excinfo.value.__cause__, KeyError)


@pytest.mark.asyncio
async def test_transitions_notify_reviewers_and_requester(store, clock, admin, governor, seed_investor):
    await seed_investor()
    dispatcher = NotificationDispatcher(
        StoreNotifier(store, clock=clock), directory=StaticPrincipalDirectory([governor])
    )
    service = ClosureService(store, dispatcher=dispatcher, clock=clock)

    request_id = await _create(service, admin)
    await service.approve_closure_request(request_id, approved_by=governor)

    notifications = await store.query("notifications")
    recipients = [item.data["userId"] for item in notifications]
    assert recipients == [governor.id, admin.id]
    assert {item.data["type"] for item in notifications} == {NotificationKind.CLOSURE_STAGE_CHANGE.value}
    assert notifications[0].data["priority"] == "high"
    assert notifications[0].data["actionUrl"] == "/governor/account-management"
    assert notifications[1].data["actionUrl"] == "/admin/investors/inv-1"
    assert notifications[1].data["data"]["stage"] == "countdown"
    assert notifications[1].data["read"] is False


@pytest.mark.asyncio
async def test_notification_failures_never_fail_a_transition(store, clock, admin, governor, seed_investor):
    await seed_investor()
    metrics = MetricsRegistry()
    failing = FailingNotifier()
    dispatcher = NotificationDispatcher(failing, directory=StaticPrincipalDirectory([governor]), metrics=metrics)
    service = ClosureService(store, dispatcher=dispatcher, metrics=metrics, clock=clock)

    request_id = await _create(service, admin)
    approved = await service.approve_closure_request(request_id, approved_by=governor)

    assert approved.status is ClosureStatus.APPROVED
    assert failing.calls == 2
    failures = metrics.counter(NOTIFICATION_FAILURES, label_names=("kind",))
    assert failures.value({"kind": "closure_stage_change"}) == 2
    transitions = metrics.counter(CLOSURE_TRANSITIONS, label_names=("transition",))
    assert transitions.value({"transition": "created"}) == 1
    assert transitions.value({"transition": "approved"}) == 1


@pytest.mark.asyncio
async def test_subscribe_to_current_request_streams_changes(store, clock, admin, governor, seed_investor):
    investor_id = await seed_investor()
    service = ClosureService(store, clock=clock)
    seen: list[ClosureRequest | None] = []

    subscription = service.subscribe_to_current_request(investor_id, seen.append)
    request_id = await _create(service, admin)
    await service.approve_closure_request(request_id, approved_by=governor)
    subscription.unsubscribe()
    await service.complete_closure_request(request_id)

    assert seen[0] is None
    assert [item.status for item in seen[1:]] == [ClosureStatus.PENDING, ClosureStatus.APPROVED]


def test_stage_inconsistent_with_status_logs_and_uses_status(caplog):
    data = {
        "investorId": "inv-1",
        "status": "Pending",
        "stage": "countdown",
        "createdAt": "2024-01-01T09:00:00.000000+00:00",
    }

    with caplog.at_level(logging.WARNING):
        request = ClosureRequest.from_document("req-1", data)

    assert request.status is ClosureStatus.PENDING
    assert request.stage is ClosureStage.REQUEST
    assert "inconsistent" in caplog.text


def test_approved_document_without_approval_date_falls_back_to_update_time():
    data = {
        "investorId": "inv-1",
        "status": "Approved",
        "createdAt": "2024-01-01T09:00:00.000000+00:00",
        "updatedAt": "2024-01-02T09:00:00.000000+00:00",
    }

    request = ClosureRequest.from_document("req-1", data)

    assert request.approval_date.day == 2
    assert request.to_document()["stage"] == "countdown"
