from __future__ import annotations

from typing import Iterable, Protocol

from backoffice.core.principal import Principal, Role
from backoffice.store import DocumentStore, Filter

USER_COLLECTION = "users"


class PrincipalDirectory(Protocol):
    """Resolve the actors holding a role."""

    async def list_by_role(self, role: Role) -> list[Principal]:
        ...


class StorePrincipalDirectory:
    """Directory backed by the ``users`` collection of the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def list_by_role(self, role: Role) -> list[Principal]:
        documents = await self._store.query(USER_COLLECTION, (Filter("role", role.value),))
        principals: list[Principal] = []
        for document in documents:
            name = document.data.get("name") or document.data.get("displayName") or document.id
            principals.append(Principal(id=document.id, name=str(name), role=role))
        return principals


class StaticPrincipalDirectory:
    def __init__(self, principals: Iterable[Principal] = ()) -> None:
        self._principals = list(principals)

    async def list_by_role(self, role: Role) -> list[Principal]:
        return [principal for principal in self._principals if principal.role == role]
