"""Document store port and its implementations."""

from .base import (
    Document,
    DocumentNotFoundError,
    DocumentStore,
    Filter,
    OrderBy,
    WriteBatch,
    WriteOperation,
    new_document_id,
)
from .memory import InMemoryDocumentStore

__all__ = [
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "Filter",
    "OrderBy",
    "WriteBatch",
    "WriteOperation",
    "new_document_id",
    "InMemoryDocumentStore",
]
