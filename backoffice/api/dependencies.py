from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import Depends, Header, HTTPException, Request

from backoffice.closures.service import ClosureService
from backoffice.closures.standing import InvestorStandingView
from backoffice.closures.sweeper import ClosureSweeper
from backoffice.core.config import Settings, get_settings
from backoffice.core.errors import ConflictError, NotFoundError, StoreError, ValidationError, WorkflowError
from backoffice.core.principal import Principal, Role
from backoffice.metrics import MetricsRegistry
from backoffice.tickets.service import TicketService


async def get_principal(
    x_principal_id: Annotated[str, Header()] = "anonymous",
    x_principal_name: Annotated[str | None, Header()] = None,
    x_principal_role: Annotated[str, Header()] = Role.ADMIN.value,
) -> Principal:
    """Actor identity as asserted by the upstream gateway.

    Access control is enforced upstream; only the header shape is checked here.
    """

    try:
        role = Role(x_principal_role.lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown principal role '{x_principal_role}'") from exc
    return Principal(id=x_principal_id, name=x_principal_name or x_principal_id, role=role)


def _state_service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return service


async def get_closure_service(request: Request) -> ClosureService:
    return _state_service(request, "closure_service", "Closure service")


async def get_ticket_service(request: Request) -> TicketService:
    return _state_service(request, "ticket_service", "Ticket service")


async def get_closure_sweeper(request: Request) -> ClosureSweeper:
    return _state_service(request, "closure_sweeper", "Closure sweeper")


async def get_standing_view(request: Request) -> InvestorStandingView:
    return _state_service(request, "standing_view", "Investor standing view")


async def get_metrics_registry(request: Request) -> MetricsRegistry:
    return _state_service(request, "metrics", "Metrics registry")


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
ClosureServiceDep = Annotated[ClosureService, Depends(get_closure_service)]
TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
ClosureSweeperDep = Annotated[ClosureSweeper, Depends(get_closure_sweeper)]
StandingViewDep = Annotated[InvestorStandingView, Depends(get_standing_view)]
MetricsDep = Annotated[MetricsRegistry, Depends(get_metrics_registry)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]


def raise_http_error(exc: WorkflowError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, StoreError):
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc
