"""Typed errors surfaced by the workflow engines."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class WorkflowError(RuntimeError):
    """Base error for workflow engine failures."""


class NotFoundError(WorkflowError):
    """Raised when a referenced entity does not exist."""


class ValidationError(WorkflowError):
    """Raised when a required field is missing or malformed."""


class ConflictError(WorkflowError):
    """Raised when an operation is not valid for the entity's current state."""


class StoreError(WorkflowError):
    """Raised when the underlying document store fails."""

    def __init__(self, operation: str, entity_id: str | None, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.entity_id = entity_id
        detail = f": {cause}" if cause is not None else ""
        target = f" for {entity_id}" if entity_id else ""
        super().__init__(f"Store failure during {operation}{target}{detail}")


@contextmanager
def store_errors(operation: str, entity_id: str | None = None) -> Iterator[None]:
    """Wrap non-workflow exceptions raised inside the block in ``StoreError``."""

    try:
        yield
    except WorkflowError:
        raise
    except Exception as exc:
        logger.error("Store operation %s failed for %s: %s", operation, entity_id, exc)
        raise StoreError(operation, entity_id, exc) from exc
