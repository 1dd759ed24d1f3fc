"""Configuration, logging, errors and identity shared by the workflows."""

from .errors import ConflictError, NotFoundError, StoreError, ValidationError, WorkflowError
from .principal import REVIEWING_ROLE, Principal, Role

__all__ = [
    "ConflictError",
    "NotFoundError",
    "StoreError",
    "ValidationError",
    "WorkflowError",
    "Principal",
    "Role",
    "REVIEWING_ROLE",
]
