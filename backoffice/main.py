from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backoffice.api.routes import closures, metrics, tickets
from backoffice.closures.service import ClosureService
from backoffice.closures.standing import InvestorStandingView
from backoffice.closures.sweeper import ClosureSweeper
from backoffice.core.config import Settings, get_settings
from backoffice.core.logging import configure_logging, init_tracer, shutdown_tracer
from backoffice.metrics import MetricsRegistry
from backoffice.notifications import (
    FanoutNotifier,
    NotificationDispatcher,
    Notifier,
    NullNotifier,
    StoreNotifier,
    StorePrincipalDirectory,
    WebhookNotifier,
)
from backoffice.store import DocumentStore, InMemoryDocumentStore
from backoffice.tickets.service import TicketService


async def open_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "memory":
        return InMemoryDocumentStore()
    if settings.store_backend == "postgres":
        from backoffice.store.postgres import PostgresDocumentStore

        store = await PostgresDocumentStore.connect(
            settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )
        await store.ensure_schema()
        return store
    raise ValueError(f"Unknown store backend '{settings.store_backend}'")


def build_notifier(settings: Settings, store: DocumentStore) -> Notifier:
    if not settings.notifications_enabled:
        return NullNotifier()
    notifiers: list[Notifier] = [StoreNotifier(store)]
    if settings.notifications_webhook_url:
        notifiers.append(
            WebhookNotifier(settings.notifications_webhook_url, timeout=settings.notifications_timeout_seconds)
        )
    return FanoutNotifier(notifiers)


def wire_services(app: FastAPI, settings: Settings, store: DocumentStore) -> None:
    """Attach the workflow services for ``store`` to ``app.state``."""

    registry = MetricsRegistry()
    dispatcher = NotificationDispatcher(
        build_notifier(settings, store),
        directory=StorePrincipalDirectory(store),
        metrics=registry,
    )
    closure_service = ClosureService(store, dispatcher=dispatcher, metrics=registry)
    app.state.settings = settings
    app.state.store = store
    app.state.metrics = registry
    app.state.closure_service = closure_service
    app.state.ticket_service = TicketService(store, dispatcher=dispatcher, metrics=registry)
    app.state.closure_sweeper = ClosureSweeper(closure_service, metrics=registry)
    app.state.standing_view = InvestorStandingView(store)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    store = await open_store(settings)
    wire_services(app, settings, store)

    sweep_task: asyncio.Task[None] | None = None
    if settings.closure_sweep_enabled:
        sweep_task = asyncio.create_task(app.state.closure_sweeper.run(settings.closure_sweep_interval_seconds))
        logger.info("Closure countdown sweep every %.0fs", settings.closure_sweep_interval_seconds)
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task
        close = getattr(store, "close", None)
        if close is not None:
            await close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(metrics.router)
    app.include_router(closures.router)
    app.include_router(closures.investor_router)
    app.include_router(tickets.router)
    return app


app = create_app()
