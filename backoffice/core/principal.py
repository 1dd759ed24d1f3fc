from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Actor roles known to the workflows."""

    ADMIN = "admin"
    GOVERNOR = "governor"


REVIEWING_ROLE = Role.GOVERNOR


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated actor performing a workflow operation."""

    id: str
    name: str
    role: Role = Role.ADMIN

    @property
    def is_reviewer(self) -> bool:
        return self.role == REVIEWING_ROLE
