from __future__ import annotations

from backoffice.store import DocumentStore, Filter, OrderBy

from .models import CLOSURE_COLLECTION, ClosureRequest

CURRENT_REQUEST_ORDERING = (OrderBy("createdAt", descending=True),)


def investor_filters(investor_id: str) -> tuple[Filter, ...]:
    return (Filter("investorId", investor_id),)


async def fetch_request(store: DocumentStore, request_id: str) -> ClosureRequest | None:
    document = await store.get(CLOSURE_COLLECTION, request_id)
    if document is None:
        return None
    return ClosureRequest.from_document(document.id, document.data)


async def fetch_current_request(store: DocumentStore, investor_id: str) -> ClosureRequest | None:
    """Return the most recently created request for ``investor_id``."""

    documents = await store.query(
        CLOSURE_COLLECTION,
        investor_filters(investor_id),
        CURRENT_REQUEST_ORDERING,
        limit=1,
    )
    if not documents:
        return None
    return ClosureRequest.from_document(documents[0].id, documents[0].data)
