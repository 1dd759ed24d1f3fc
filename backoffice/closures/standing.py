from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backoffice.core.errors import store_errors
from backoffice.store import DocumentStore

from .models import ClosureRequest, ClosureStatus
from .queries import fetch_current_request

INVESTOR_COLLECTION = "users"

ACTIVE_STATUS = "Active"


@dataclass(frozen=True, slots=True)
class InvestorStanding:
    """Advisory account status shown to other parts of the back office."""

    account_status: str
    is_active: bool

    def to_document(self) -> dict[str, Any]:
        return {"accountStatus": self.account_status, "isActive": self.is_active}


_STANDING_BY_STATUS: dict[ClosureStatus, InvestorStanding] = {
    ClosureStatus.PENDING: InvestorStanding("Deletion Request Under Review", False),
    ClosureStatus.APPROVED: InvestorStanding("Deletion Request Approved - 90 Day Countdown Active", False),
    ClosureStatus.COMPLETED: InvestorStanding("Account Permanently Closed", False),
    ClosureStatus.REJECTED: InvestorStanding(ACTIVE_STATUS, True),
}


def standing_for(request: ClosureRequest | None) -> InvestorStanding:
    """Derive the investor's standing from their current closure request."""

    if request is None:
        return InvestorStanding(ACTIVE_STATUS, True)
    return _STANDING_BY_STATUS[request.status]


class InvestorStandingView:
    """Read side of the investor standing, recomputed from the closure record."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get(self, investor_id: str) -> InvestorStanding:
        with store_errors("get_investor_standing", investor_id):
            request = await fetch_current_request(self._store, investor_id)
        return standing_for(request)
