from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

SnapshotCallback = Callable[[list["Document"]], None]
ErrorCallback = Callable[[BaseException], None]
Unsubscribe = Callable[[], None]


class DocumentNotFoundError(LookupError):
    """Raised by a store when an update targets a missing document."""


def new_document_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class Filter:
    """Field predicate applied to a collection query."""

    field: str
    value: Any
    op: str = "=="

    def __post_init__(self) -> None:
        if self.op not in ("==", "in"):
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: Mapping[str, Any]) -> bool:
        candidate = data.get(self.field)
        if self.op == "in":
            return candidate in tuple(self.value)
        return candidate == self.value


@dataclass(frozen=True, slots=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(slots=True)
class Document:
    """A stored document: identity plus its field mapping."""

    id: str
    data: dict[str, Any]


@dataclass(slots=True)
class WriteOperation:
    kind: str
    collection: str
    document_id: str
    fields: dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Collect creates and updates and apply them atomically on ``commit``."""

    def __init__(self, committer: Callable[[Sequence[WriteOperation]], Awaitable[None]]) -> None:
        self._committer = committer
        self._operations: list[WriteOperation] = []
        self._committed = False

    @property
    def operations(self) -> tuple[WriteOperation, ...]:
        return tuple(self._operations)

    def create(self, collection: str, fields: Mapping[str, Any], *, document_id: str | None = None) -> str:
        document_id = document_id or new_document_id()
        self._operations.append(WriteOperation("create", collection, document_id, dict(fields)))
        return document_id

    def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> None:
        self._operations.append(WriteOperation("update", collection, document_id, dict(fields)))

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Write batch has already been committed")
        self._committed = True
        if self._operations:
            await self._committer(list(self._operations))


class DocumentStore(Protocol):
    """Persistence port used by the workflow engines and live queries."""

    async def get(self, collection: str, document_id: str) -> Document | None:
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        ordering: Sequence[OrderBy] = (),
        limit: int | None = None,
    ) -> list[Document]:
        ...

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        ...

    async def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> None:
        ...

    def batch(self) -> WriteBatch:
        ...

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter],
        ordering: Sequence[OrderBy],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
        limit: int | None = None,
    ) -> Unsubscribe:
        ...
