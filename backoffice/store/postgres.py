from __future__ import annotations

import asyncio
import copy
import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Sequence

import asyncpg

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

NOTIFY_CHANNEL = "documents"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        # Fixed width UTC form so ``data ->> field`` sorts chronologically.
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_fields(fields: Mapping[str, Any]) -> str:
    return json.dumps(dict(fields), default=_json_default)


def encode_value(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def build_select(
    collection: str,
    filters: Sequence[Filter],
    ordering: Sequence[OrderBy],
    limit: int | None,
) -> tuple[str, list[Any]]:
    """Translate a collection query into SQL over the ``documents`` table.

    Ordering compares the text form of a field, which is correct for the
    timestamp and string fields the workflows order by.
    """

    args: list[Any] = [collection]
    clauses = ["collection = $1"]
    for item in filters:
        args.append(item.field)
        field_ref = f"${len(args)}"
        if item.op == "in":
            args.append(encode_value(list(item.value)))
            clauses.append(
                f"EXISTS (SELECT 1 FROM jsonb_array_elements(${len(args)}::jsonb) AS candidate(value) "
                f"WHERE candidate.value = data -> {field_ref})"
            )
        else:
            args.append(encode_value(item.value))
            clauses.append(f"data -> {field_ref} = ${len(args)}::jsonb")

    order_terms: list[str] = []
    for order in ordering:
        args.append(order.field)
        direction = "DESC" if order.descending else "ASC"
        order_terms.append(f"data ->> ${len(args)} {direction} NULLS LAST")
    tie_direction = "DESC" if ordering and ordering[0].descending else "ASC"
    order_terms.append(f"seq {tie_direction}")

    sql = "SELECT id, data FROM documents WHERE " + " AND ".join(clauses) + " ORDER BY " + ", ".join(order_terms)
    if limit is not None:
        args.append(limit)
        sql += f" LIMIT ${len(args)}"
    return sql, args


def _row_to_document(row: Mapping[str, Any]) -> Document:
    data = row["data"]
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    return Document(id=str(row["id"]), data=dict(data or {}))


class PostgresDocumentStore:
    """Document store persisting JSONB documents in PostgreSQL.

    Write batches run in a single transaction and publish the touched
    collections on the ``documents`` channel; subscriptions ``LISTEN`` on it and
    re-run their query on every notification.
    """

    _CREATE_DOCUMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS documents (
        seq BIGSERIAL NOT NULL,
        collection TEXT NOT NULL,
        id TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (collection, id)
    )
    """

    _CREATE_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS documents_collection_seq_idx ON documents (collection, seq)
    """

    _SELECT_DOCUMENT_SQL = """
    SELECT id, data FROM documents WHERE collection = $1 AND id = $2
    """

    _INSERT_DOCUMENT_SQL = """
    INSERT INTO documents (collection, id, data)
    VALUES ($1, $2, $3::jsonb)
    """

    _MERGE_DOCUMENT_SQL = """
    UPDATE documents
    SET data = data || $3::jsonb,
        updated_at = CURRENT_TIMESTAMP
    WHERE collection = $1 AND id = $2
    RETURNING id
    """

    _NOTIFY_SQL = """
    SELECT pg_notify($1, $2)
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self._releases: set[asyncio.Task[None]] = set()

    @classmethod
    async def connect(cls, dsn: str, *, min_size: int = 1, max_size: int = 5) -> "PostgresDocumentStore":
        pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
        return cls(pool)

    async def close(self) -> None:
        """Wait for closed subscriptions to hand back their connections, then close the pool."""

        if self._releases:
            await asyncio.gather(*self._releases, return_exceptions=True)
        await self._pool.close()

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_DOCUMENTS_SQL)
            await connection.execute(self._CREATE_INDEX_SQL)

    async def get(self, collection: str, document_id: str) -> Document | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_DOCUMENT_SQL, collection, document_id)
        if row is None:
            return None
        return _row_to_document(row)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        ordering: Sequence[OrderBy] = (),
        limit: int | None = None,
    ) -> list[Document]:
        sql, args = build_select(collection, filters, ordering, limit)
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(sql, *args)
        return [_row_to_document(row) for row in rows]

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
        subscription = _ListenSubscription(
            self,
            collection=collection,
            filters=tuple(filters),
            ordering=tuple(ordering),
            limit=limit,
            on_snapshot=on_snapshot,
            on_error=on_error,
        )
        subscription.start()
        return subscription.close

    async def _apply(self, operations: Sequence[WriteOperation]) -> None:
        touched: list[str] = []
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                for operation in operations:
                    payload = encode_fields(operation.fields)
                    if operation.kind == "create":
                        await connection.execute(
                            self._INSERT_DOCUMENT_SQL, operation.collection, operation.document_id, payload
                        )
                    elif operation.kind == "update":
                        row = await connection.fetchrow(
                            self._MERGE_DOCUMENT_SQL, operation.collection, operation.document_id, payload
                        )
                        if row is None:
                            raise DocumentNotFoundError(
                                f"Document {operation.collection}/{operation.document_id} not found"
                            )
                    else:
                        raise ValueError(f"Unknown write operation: {operation.kind}")
                    if operation.collection not in touched:
                        touched.append(operation.collection)
                for collection in touched:
                    await connection.execute(self._NOTIFY_SQL, NOTIFY_CHANNEL, collection)

    def _track_release(self, task: asyncio.Task[None]) -> None:
        self._releases.add(task)
        task.add_done_callback(self._release_done)

    def _release_done(self, task: asyncio.Task[None]) -> None:
        self._releases.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Releasing a listen connection failed: %s", task.exception())


class _ListenSubscription:
    """One ``LISTEN`` connection re-running a query on collection notifications.

    At most one query runs at a time. Notifications arriving mid-query mark
    the result stale and trigger one more run, so the last delivered snapshot
    always reflects the latest committed write. Unchanged results are not
    redelivered.
    """

    def __init__(
        self,
        store: PostgresDocumentStore,
        *,
        collection: str,
        filters: tuple[Filter, ...],
        ordering: tuple[OrderBy, ...],
        limit: int | None,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._filters = filters
        self._ordering = ordering
        self._limit = limit
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._connection: Any = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._stale = False
        self._refreshing = False
        self._last: list[Document] | None = None
        self.closed = False

    def start(self) -> None:
        self._spawn(self._listen())

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._connection is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Subscription on %s closed outside the event loop; its connection returns when the pool closes",
                self._collection,
            )
            return
        self._store._track_release(loop.create_task(self._release()))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _listen(self) -> None:
        try:
            self._connection = await self._store._pool.acquire()
            await self._connection.add_listener(NOTIFY_CHANNEL, self._on_notify)
        except Exception as exc:
            logger.error("Unable to listen for %s changes: %s", self._collection, exc)
            self._report(exc)
            return
        if self.closed:
            await self._release()
            return
        self._request_refresh()

    def _on_notify(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        if self.closed or payload != self._collection:
            return
        self._request_refresh()

    def _request_refresh(self) -> None:
        self._stale = True
        if self._refreshing:
            return
        self._refreshing = True
        self._spawn(self._drain())

    async def _drain(self) -> None:
        try:
            while self._stale and not self.closed:
                self._stale = False
                await self._refresh()
        finally:
            self._refreshing = False

    async def _refresh(self) -> None:
        try:
            documents = await self._store.query(self._collection, self._filters, self._ordering, self._limit)
        except Exception as exc:
            self._last = None
            self._report(exc)
            return
        if self.closed or documents == self._last:
            return
        self._last = copy.deepcopy(documents)
        try:
            self._on_snapshot(documents)
        except Exception:
            logger.exception("Snapshot listener on %s raised", self._collection)

    def _report(self, exc: BaseException) -> None:
        if self._on_error is not None and not self.closed:
            self._on_error(exc)

    async def _release(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.remove_listener(NOTIFY_CHANNEL, self._on_notify)
        finally:
            await self._store._pool.release(connection)
