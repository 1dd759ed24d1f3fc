from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from backoffice.api.dependencies import (
    ClosureServiceDep,
    ClosureSweeperDep,
    CurrentPrincipal,
    SettingsDep,
    StandingViewDep,
    raise_http_error,
)
from backoffice.closures.models import ClosureRequest, ClosureStage, ClosureStatus
from backoffice.core.errors import WorkflowError
from backoffice.live.adapters import ClosureView, closure_view, subscribe_to_closure_view
from backoffice.live.streaming import SnapshotStreamer

router = APIRouter(prefix="/closures", tags=["closures"])
investor_router = APIRouter(prefix="/investors", tags=["closures"])


class ClosureCreateRequest(BaseModel):
    investor_id: str = Field(..., min_length=1)
    investor_name: str = Field(default="")
    reason: str = Field(..., min_length=1)
    account_balance: float = Field(..., ge=0)


class ClosureRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ClosureRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    investor_id: str
    investor_name: str
    request_date: str
    status: ClosureStatus
    stage: ClosureStage
    reason: str
    requested_by: str
    approved_by: str | None
    rejected_by: str | None
    account_balance: float
    approval_date: datetime | None
    estimated_completion_date: datetime | None
    completion_date: datetime | None
    rejection_date: datetime | None
    rejection_reason: str | None
    created_at: datetime
    updated_at: datetime


class TimeRemainingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    days: int
    hours: int
    minutes: int
    is_overdue: bool


class ClosureProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    percentage: float
    days_remaining: int | None
    overdue: bool
    countdown_active: bool
    time_remaining: TimeRemainingResponse | None


class ClosureViewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request: ClosureRequestResponse | None
    progress: ClosureProgressResponse | None


class InvestorStandingResponse(BaseModel):
    investor_id: str
    account_status: str
    is_active: bool


class SweepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    examined: int
    completed: list[str]
    failed: list[str]


def _to_response(request: ClosureRequest) -> ClosureRequestResponse:
    return ClosureRequestResponse.model_validate(request)


def _to_view_response(view: ClosureView) -> ClosureViewResponse:
    return ClosureViewResponse.model_validate(view)


@router.post("", response_model=ClosureRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_closure_request(
    payload: ClosureCreateRequest,
    service: ClosureServiceDep,
    principal: CurrentPrincipal,
) -> ClosureRequestResponse:
    try:
        request_id = await service.create_closure_request(
            investor_id=payload.investor_id,
            investor_name=payload.investor_name,
            reason=payload.reason,
            requested_by=principal,
            account_balance=payload.account_balance,
        )
        request = await service.get_request(request_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(request)


@router.get("", response_model=list[ClosureRequestResponse])
async def list_closure_requests(
    service: ClosureServiceDep,
    status_filter: ClosureStatus | None = Query(default=None, alias="status"),
) -> list[ClosureRequestResponse]:
    try:
        requests = await service.list_requests(status=status_filter)
    except WorkflowError as exc:
        raise_http_error(exc)
    return [_to_response(request) for request in requests]


@router.post("/sweep", response_model=SweepResponse)
async def sweep_closures(sweeper: ClosureSweeperDep, _: CurrentPrincipal) -> SweepResponse:
    try:
        result = await sweeper.sweep_once()
    except WorkflowError as exc:
        raise_http_error(exc)
    return SweepResponse.model_validate(result)


@router.get("/{request_id}", response_model=ClosureRequestResponse)
async def get_closure_request(request_id: str, service: ClosureServiceDep) -> ClosureRequestResponse:
    try:
        request = await service.get_request(request_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(request)


@router.post("/{request_id}/approve", response_model=ClosureRequestResponse)
async def approve_closure_request(
    request_id: str, service: ClosureServiceDep, principal: CurrentPrincipal
) -> ClosureRequestResponse:
    try:
        request = await service.approve_closure_request(request_id, approved_by=principal)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(request)


@router.post("/{request_id}/reject", response_model=ClosureRequestResponse)
async def reject_closure_request(
    request_id: str,
    payload: ClosureRejectRequest,
    service: ClosureServiceDep,
    principal: CurrentPrincipal,
) -> ClosureRequestResponse:
    try:
        request = await service.reject_closure_request(request_id, rejected_by=principal, reason=payload.reason)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(request)


@router.post("/{request_id}/complete", response_model=ClosureRequestResponse)
async def complete_closure_request(
    request_id: str, service: ClosureServiceDep, _: CurrentPrincipal
) -> ClosureRequestResponse:
    try:
        request = await service.complete_closure_request(request_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(request)


@investor_router.get("/{investor_id}/closure", response_model=ClosureViewResponse)
async def get_current_closure(investor_id: str, service: ClosureServiceDep) -> ClosureViewResponse:
    try:
        request = await service.get_current_request(investor_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_view_response(closure_view(request, service.clock()))


@investor_router.get("/{investor_id}/standing", response_model=InvestorStandingResponse)
async def get_investor_standing(investor_id: str, view: StandingViewDep) -> InvestorStandingResponse:
    try:
        standing = await view.get(investor_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return InvestorStandingResponse(
        investor_id=investor_id,
        account_status=standing.account_status,
        is_active=standing.is_active,
    )


@investor_router.get("/{investor_id}/closure/stream")
async def stream_current_closure(
    investor_id: str, service: ClosureServiceDep, settings: SettingsDep
) -> StreamingResponse:
    streamer = SnapshotStreamer(event="closure")

    def subscribe(on_change):
        return subscribe_to_closure_view(
            service.store,
            investor_id,
            on_change,
            clock=service.clock,
            refresh_interval=settings.countdown_refresh_seconds,
        )

    events = streamer.iter_sse(subscribe, lambda view: _to_view_response(view).model_dump(mode="json"))
    return StreamingResponse(events, media_type="text/event-stream")
