from __future__ import annotations

import copy
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .base import (
    Document,
    DocumentNotFoundError,
    ErrorCallback,
    Filter,
    OrderBy,
    SnapshotCallback,
    Unsubscribe,
    WriteBatch,
    WriteOperation,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Row:
    data: dict[str, Any]
    seq: int


@dataclass(slots=True)
class _Listener:
    filters: tuple[Filter, ...]
    ordering: tuple[OrderBy, ...]
    limit: int | None
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback | None
    active: bool = True
    last: list[Document] | None = None


def _sort_key(value: Any) -> tuple[int, Any]:
    return (0, 0) if value is None else (1, value)


class InMemoryDocumentStore:
    """Process-local document store with synchronous snapshot delivery.

    Listeners receive the current result set immediately on subscription and
    again after any committed write that changes it.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, _Row]] = {}
        self._listeners: dict[str, list[_Listener]] = {}
        self._seq = itertools.count()

    async def get(self, collection: str, document_id: str) -> Document | None:
        row = self._collections.get(collection, {}).get(document_id)
        if row is None:
            return None
        return Document(id=document_id, data=copy.deepcopy(row.data))

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        ordering: Sequence[OrderBy] = (),
        limit: int | None = None,
    ) -> list[Document]:
        return self._run_query(collection, tuple(filters), tuple(ordering), limit)

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        batch = self.batch()
        document_id = batch.create(collection, fields)
        await batch.commit()
        return document_id

    async def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> None:
        batch = self.batch()
        batch.update(collection, document_id, fields)
        await batch.commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self._apply)

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter],
        ordering: Sequence[OrderBy],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
        limit: int | None = None,
    ) -> Unsubscribe:
        listener = _Listener(tuple(filters), tuple(ordering), limit, on_snapshot, on_error)
        self._listeners.setdefault(collection, []).append(listener)
        self._deliver(collection, listener)

        def unsubscribe() -> None:
            listener.active = False
            listeners = self._listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def listener_count(self, collection: str) -> int:
        return len(self._listeners.get(collection, []))

    async def _apply(self, operations: Sequence[WriteOperation]) -> None:
        # Validate everything before touching state so a batch applies fully or not at all.
        pending_ids: set[tuple[str, str]] = set()
        for operation in operations:
            key = (operation.collection, operation.document_id)
            exists = operation.document_id in self._collections.get(operation.collection, {})
            if operation.kind == "create":
                if exists or key in pending_ids:
                    raise ValueError(f"Document {operation.collection}/{operation.document_id} already exists")
                pending_ids.add(key)
            elif operation.kind == "update":
                if not exists and key not in pending_ids:
                    raise DocumentNotFoundError(f"Document {operation.collection}/{operation.document_id} not found")
            else:
                raise ValueError(f"Unknown write operation: {operation.kind}")

        touched: list[str] = []
        for operation in operations:
            rows = self._collections.setdefault(operation.collection, {})
            fields = copy.deepcopy(operation.fields)
            if operation.kind == "create":
                rows[operation.document_id] = _Row(data=fields, seq=next(self._seq))
            else:
                rows[operation.document_id].data.update(fields)
            if operation.collection not in touched:
                touched.append(operation.collection)

        for collection in touched:
            for listener in list(self._listeners.get(collection, [])):
                self._deliver(collection, listener)

    def _deliver(self, collection: str, listener: _Listener) -> None:
        if not listener.active:
            return
        try:
            documents = self._run_query(collection, listener.filters, listener.ordering, listener.limit)
        except Exception as exc:
            listener.last = None
            if listener.on_error is not None:
                listener.on_error(exc)
            return
        if documents == listener.last:
            return
        listener.last = copy.deepcopy(documents)
        try:
            listener.on_snapshot(documents)
        except Exception:
            logger.exception("Snapshot listener on %s raised", collection)

    def _run_query(
        self,
        collection: str,
        filters: tuple[Filter, ...],
        ordering: tuple[OrderBy, ...],
        limit: int | None,
    ) -> list[Document]:
        rows = [
            (document_id, row)
            for document_id, row in self._collections.get(collection, {}).items()
            if all(item.matches(row.data) for item in filters)
        ]
        # Ties fall back to insertion order, in the direction of the primary key.
        rows.sort(key=lambda entry: entry[1].seq, reverse=bool(ordering) and ordering[0].descending)
        for order in reversed(ordering):
            rows.sort(key=lambda entry: _sort_key(entry[1].data.get(order.field)), reverse=order.descending)
        if limit is not None:
            rows = rows[:limit]
        return [Document(id=document_id, data=copy.deepcopy(row.data)) for document_id, row in rows]
