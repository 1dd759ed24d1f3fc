from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backoffice.core.principal import Principal, Role
from backoffice.notifications import NotificationDispatcher, StaticPrincipalDirectory
from backoffice.store import InMemoryDocumentStore

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.intents = []

    async def notify(self, intent) -> None:
        self.intents.append(intent)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def admin() -> Principal:
    return Principal(id="admin-1", name="Alice Admin", role=Role.ADMIN)


@pytest.fixture
def governor() -> Principal:
    return Principal(id="gov-1", name="Grace Governor", role=Role.GOVERNOR)


@pytest.fixture
def second_governor() -> Principal:
    return Principal(id="gov-2", name="Gus Governor", role=Role.GOVERNOR)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier, governor, second_governor) -> NotificationDispatcher:
    return NotificationDispatcher(notifier, directory=StaticPrincipalDirectory([governor, second_governor]))


@pytest.fixture
def seed_investor(store):
    async def _seed(investor_id: str = "inv-1", *, name: str = "Ada Investor", balance: float = 5000.0) -> str:
        batch = store.batch()
        batch.create(
            "users",
            {
                "name": name,
                "role": "investor",
                "accountStatus": "Active",
                "isActive": True,
                "currentBalance": balance,
            },
            document_id=investor_id,
        )
        await batch.commit()
        return investor_id

    return _seed
