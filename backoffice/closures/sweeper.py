from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from backoffice.core.errors import WorkflowError, store_errors
from backoffice.core.logging import get_tracer
from backoffice.metrics import MetricsRegistry, track_duration
from backoffice.metrics.definitions import SWEEP_COMPLETED, SWEEP_DURATION, SWEEP_FAILURES
from backoffice.store import Document, Filter
from backoffice.timemath import is_overdue

from .models import CLOSURE_COLLECTION, ClosureRequest, ClosureStatus
from .service import ClosureService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepResult:
    examined: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class ClosureSweeper:
    """Complete approved closure requests whose countdown has elapsed.

    This is the only place the 90 day gate is enforced; read paths never
    auto-complete a request. A request that cannot be read or completed is
    counted as a failure and left for the next sweep.
    """

    def __init__(self, service: ClosureService, *, metrics: MetricsRegistry | None = None) -> None:
        self._service = service
        self._metrics = metrics or service.metrics

    async def sweep_once(self) -> SweepResult:
        result = SweepResult()
        with get_tracer().start_as_current_span("closure.sweep"), track_duration(
            self._metrics.distribution(SWEEP_DURATION)
        ):
            with store_errors("sweep_approved_requests"):
                documents = await self._service.store.query(
                    CLOSURE_COLLECTION, (Filter("status", ClosureStatus.APPROVED.value),)
                )
            now = self._service.clock()
            for document in documents:
                result.examined += 1
                request = self._read(document)
                if request is None:
                    self._fail(result, document.id)
                    continue
                approval_date = request.approval_date
                if approval_date is None or not is_overdue(approval_date, now):
                    continue
                try:
                    await self._service.complete_closure_request(request.id)
                except WorkflowError:
                    logger.exception("Countdown sweep failed to complete closure request %s", request.id)
                    self._fail(result, request.id)
                    continue
                self._metrics.counter(SWEEP_COMPLETED).inc()
                result.completed.append(request.id)

        logger.info(
            "Countdown sweep examined %d approved requests; completed %d, failed %d",
            result.examined,
            len(result.completed),
            len(result.failed),
        )
        return result

    @staticmethod
    def _read(document: Document) -> ClosureRequest | None:
        try:
            return ClosureRequest.from_document(document.id, document.data)
        except (KeyError, TypeError, ValueError):
            logger.exception("Countdown sweep skipped unreadable closure request %s", document.id)
            return None

    def _fail(self, result: SweepResult, request_id: str) -> None:
        self._metrics.counter(SWEEP_FAILURES).inc()
        result.failed.append(request_id)

    async def run(self, interval: float) -> None:
        """Sweep every ``interval`` seconds until cancelled."""

        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Countdown sweep aborted; retrying in %s seconds", interval)
            await asyncio.sleep(interval)
