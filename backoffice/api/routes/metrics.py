from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from backoffice.api.dependencies import MetricsDep
from backoffice.metrics import PrometheusExporter

router = APIRouter(tags=["observability"])


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus scrape endpoint")
async def metrics(registry: MetricsDep) -> PlainTextResponse:
    payload = PrometheusExporter(registry).export()
    return PlainTextResponse(payload, media_type="text/plain; version=0.0.4")


@router.get("/ping", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}
