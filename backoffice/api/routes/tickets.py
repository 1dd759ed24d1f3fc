from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from backoffice.api.dependencies import CurrentPrincipal, TicketServiceDep, raise_http_error
from backoffice.core.errors import WorkflowError
from backoffice.core.principal import Principal, Role
from backoffice.live.streaming import SnapshotStreamer
from backoffice.tickets.models import (
    SupportTicket,
    TicketAction,
    TicketActionType,
    TicketDraft,
    TicketPriority,
    TicketType,
)
from backoffice.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    investor_id: str = Field(..., min_length=1)
    investor_name: str = Field(default="")
    ticket_type: TicketType = Field(default=TicketType.OTHER)
    priority: TicketPriority = Field(default=TicketPriority.MEDIUM)
    subject: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)


class TicketReplyRequest(BaseModel):
    content: str = Field(..., min_length=1)
    is_internal: bool = False


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
    resolution: str | None = Field(default=None, max_length=5000)


class TicketAssignRequest(BaseModel):
    assignee_id: str = Field(..., min_length=1)
    assignee_name: str = Field(default="")
    assignee_role: Role = Field(default=Role.GOVERNOR)


class TicketEscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class TicketPriorityRequest(BaseModel):
    priority: TicketPriority


class TicketReplyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    responder_id: str
    responder_name: str
    responder_role: Role
    content: str
    timestamp: datetime
    is_internal: bool


class SupportTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    responses: list[TicketReplyResponse]
    assigned_to: str | None
    assigned_to_name: str | None
    assigned_at: datetime | None
    resolution: str | None
    resolved_at: datetime | None
    resolved_by: str | None
    closed_at: datetime | None
    closed_by: str | None
    tags: list[str]
    attachments: list[str]
    escalated: bool
    escalated_at: datetime | None
    escalated_reason: str | None


class TicketActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    action_type: TicketActionType
    performed_by: str
    performed_by_name: str
    timestamp: datetime
    details: dict[str, Any]


def _to_response(ticket: SupportTicket, viewer: Principal) -> SupportTicketResponse:
    response = SupportTicketResponse.model_validate(ticket)
    visible = [TicketReplyResponse.model_validate(item) for item in ticket.visible_responses(viewer.role)]
    return response.model_copy(update={"responses": visible})


def _to_action_response(action: TicketAction) -> TicketActionResponse:
    return TicketActionResponse.model_validate(action)


@router.post("", response_model=SupportTicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> SupportTicketResponse:
    draft = TicketDraft(
        investor_id=payload.investor_id,
        investor_name=payload.investor_name,
        submitted_by=principal,
        ticket_type=payload.ticket_type,
        priority=payload.priority,
        subject=payload.subject,
        description=payload.description,
        tags=tuple(payload.tags),
        attachments=tuple(payload.attachments),
    )
    try:
        ticket_id = await service.create_ticket(draft)
        ticket = await service.get_ticket(ticket_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(ticket, principal)


@router.get("", response_model=list[SupportTicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    principal: CurrentPrincipal,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
) -> list[SupportTicketResponse]:
    try:
        tickets = await service.list_tickets(status=status_filter)
    except WorkflowError as exc:
        raise_http_error(exc)
    return [_to_response(ticket, principal) for ticket in tickets]


@router.get("/stream")
async def stream_tickets(service: TicketServiceDep, principal: CurrentPrincipal) -> StreamingResponse:
    streamer = SnapshotStreamer(event="tickets")

    def encode(tickets: list[SupportTicket]) -> list[dict[str, Any]]:
        return [_to_response(ticket, principal).model_dump(mode="json") for ticket in tickets]

    return StreamingResponse(
        streamer.iter_sse(service.subscribe_to_tickets, encode), media_type="text/event-stream"
    )


@router.get("/{ticket_id}", response_model=SupportTicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, principal: CurrentPrincipal) -> SupportTicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(ticket, principal)


@router.post(
    "/{ticket_id}/responses", response_model=TicketReplyResponse, status_code=status.HTTP_201_CREATED
)
async def add_response(
    ticket_id: str,
    payload: TicketReplyRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> TicketReplyResponse:
    try:
        reply = await service.add_response(
            ticket_id, responder=principal, content=payload.content, is_internal=payload.is_internal
        )
    except WorkflowError as exc:
        raise_http_error(exc)
    return TicketReplyResponse.model_validate(reply)


@router.post("/{ticket_id}/status", response_model=SupportTicketResponse)
async def update_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> SupportTicketResponse:
    try:
        ticket = await service.update_status(
            ticket_id, new_status=payload.status, actor=principal, resolution=payload.resolution
        )
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(ticket, principal)


@router.post("/{ticket_id}/assign", response_model=SupportTicketResponse)
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> SupportTicketResponse:
    assignee = Principal(
        id=payload.assignee_id,
        name=payload.assignee_name or payload.assignee_id,
        role=payload.assignee_role,
    )
    try:
        ticket = await service.assign_ticket(ticket_id, assignee=assignee, assigned_by=principal)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(ticket, principal)


@router.post("/{ticket_id}/escalate", response_model=SupportTicketResponse)
async def escalate_ticket(
    ticket_id: str,
    payload: TicketEscalateRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> SupportTicketResponse:
    try:
        ticket = await service.escalate_ticket(ticket_id, reason=payload.reason, escalated_by=principal)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(ticket, principal)


@router.post("/{ticket_id}/priority", response_model=SupportTicketResponse)
async def change_priority(
    ticket_id: str,
    payload: TicketPriorityRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> SupportTicketResponse:
    try:
        ticket = await service.change_priority(ticket_id, priority=payload.priority, actor=principal)
    except WorkflowError as exc:
        raise_http_error(exc)
    return _to_response(ticket, principal)


@router.get("/{ticket_id}/audit", response_model=list[TicketActionResponse])
async def get_audit_trail(ticket_id: str, service: TicketServiceDep, _: CurrentPrincipal) -> list[TicketActionResponse]:
    try:
        actions = await service.get_audit_trail(ticket_id)
    except WorkflowError as exc:
        raise_http_error(exc)
    return [_to_action_response(action) for action in actions]
