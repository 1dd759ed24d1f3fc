"""Subscribe-by-filter primitives re-delivering materialised views.

Listeners never see an exception: a store failure or a document that cannot be
materialised is delivered as the empty value (``None`` or ``[]``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Generic, Sequence, TypeVar

from backoffice.closures.models import CLOSURE_COLLECTION, ClosureRequest
from backoffice.closures.queries import CURRENT_REQUEST_ORDERING, investor_filters
from backoffice.store import Document, DocumentStore, Filter, OrderBy
from backoffice.tickets.models import TICKET_COLLECTION, SupportTicket
from backoffice.timemath import Clock, ClosureProgress, closure_progress, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

TICKET_ORDERING = (OrderBy("lastActivity", descending=True),)
DEFAULT_REFRESH_SECONDS = 60.0


class Subscription:
    """Handle returned to listeners; ``unsubscribe`` is synchronous and idempotent."""

    def __init__(self) -> None:
        self._release: Callable[[], None] | None = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def attach(self, release: Callable[[], None]) -> None:
        if not self._active:
            release()
            return
        self._release = release

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            release()


class LiveQuery(Generic[T]):
    """A collection query whose transformed result is pushed on every change."""

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        *,
        transform: Callable[[list[Document]], T],
        empty: Callable[[], T],
        filters: Sequence[Filter] = (),
        ordering: Sequence[OrderBy] = (),
        limit: int | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._transform = transform
        self._empty = empty
        self._filters = tuple(filters)
        self._ordering = tuple(ordering)
        self._limit = limit

    def subscribe(self, on_change: Callable[[T], None]) -> Subscription:
        subscription = Subscription()

        def deliver(documents: list[Document]) -> None:
            if not subscription.active:
                return
            try:
                value = self._transform(documents)
            except Exception:
                logger.exception("Unable to materialise %s snapshot", self._collection)
                value = self._empty()
            on_change(value)

        def fail(exc: BaseException) -> None:
            if not subscription.active:
                return
            logger.warning("Live query on %s failed: %s", self._collection, exc)
            on_change(self._empty())

        try:
            release = self._store.subscribe(
                self._collection,
                self._filters,
                self._ordering,
                deliver,
                fail,
                limit=self._limit,
            )
        except Exception as exc:
            fail(exc)
            subscription.unsubscribe()
            return subscription
        subscription.attach(release)
        return subscription


def _first_request(documents: list[Document]) -> ClosureRequest | None:
    if not documents:
        return None
    return ClosureRequest.from_document(documents[0].id, documents[0].data)


def _tickets(documents: list[Document]) -> list[SupportTicket]:
    return [SupportTicket.from_document(document.id, document.data) for document in documents]


def current_request_query(store: DocumentStore, investor_id: str) -> LiveQuery[ClosureRequest | None]:
    return LiveQuery(
        store,
        CLOSURE_COLLECTION,
        transform=_first_request,
        empty=lambda: None,
        filters=investor_filters(investor_id),
        ordering=CURRENT_REQUEST_ORDERING,
        limit=1,
    )


def subscribe_to_current_request(
    store: DocumentStore, investor_id: str, on_change: Callable[[ClosureRequest | None], None]
) -> Subscription:
    """Stream the most recently created closure request for an investor."""

    return current_request_query(store, investor_id).subscribe(on_change)


def subscribe_to_tickets(store: DocumentStore, on_change: Callable[[list[SupportTicket]], None]) -> Subscription:
    """Stream every ticket, most recently active first."""

    query: LiveQuery[list[SupportTicket]] = LiveQuery(
        store,
        TICKET_COLLECTION,
        transform=_tickets,
        empty=list,
        ordering=TICKET_ORDERING,
    )
    return query.subscribe(on_change)


@dataclass(frozen=True, slots=True)
class ClosureView:
    request: ClosureRequest | None
    progress: ClosureProgress | None


def closure_view(request: ClosureRequest | None, now: datetime) -> ClosureView:
    if request is None:
        return ClosureView(request=None, progress=None)
    return ClosureView(
        request=request,
        progress=closure_progress(request.status.value, request.approval_date, now),
    )


class _ClosureViewFeed:
    """Re-derive the countdown periodically while it is running."""

    def __init__(
        self,
        on_change: Callable[[ClosureView], None],
        clock: Clock,
        refresh_interval: float,
    ) -> None:
        self._on_change = on_change
        self._clock = clock
        self._refresh_interval = refresh_interval
        self._request: ClosureRequest | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._closed = False

    def on_request(self, request: ClosureRequest | None) -> None:
        if self._closed:
            return
        self._request = request
        view = self._emit()
        if view.progress is not None and view.progress.countdown_active:
            self._start_ticker()
        else:
            self._stop_ticker()

    def close(self) -> None:
        self._closed = True
        self._stop_ticker()

    def _emit(self) -> ClosureView:
        view = closure_view(self._request, self._clock())
        self._on_change(view)
        return view

    def _start_ticker(self) -> None:
        if self._ticker is not None and not self._ticker.done():
            return
        self._ticker = asyncio.get_running_loop().create_task(self._tick())

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._refresh_interval)
            if self._closed:
                return
            try:
                view = self._emit()
            except Exception:
                logger.exception("Closure view listener raised during refresh")
                continue
            if view.progress is None or not view.progress.countdown_active:
                self._ticker = None
                return


def subscribe_to_closure_view(
    store: DocumentStore,
    investor_id: str,
    on_change: Callable[[ClosureView], None],
    *,
    clock: Clock = utcnow,
    refresh_interval: float = DEFAULT_REFRESH_SECONDS,
) -> Subscription:
    """Stream the current request with its derived progress.

    While the countdown is active the view is recomputed every
    ``refresh_interval`` seconds; refreshing stops once the request is overdue.
    Must be called from a running event loop.
    """

    feed = _ClosureViewFeed(on_change, clock, refresh_interval)
    inner = subscribe_to_current_request(store, investor_id, feed.on_request)
    subscription = Subscription()

    def release() -> None:
        feed.close()
        inner.unsubscribe()

    subscription.attach(release)
    return subscription
