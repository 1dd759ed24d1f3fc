"""Account closure lifecycle: request models and investor standing."""

from .models import (
    CLOSURE_COLLECTION,
    Approved,
    ClosureRequest,
    ClosureStage,
    ClosureState,
    ClosureStatus,
    Completed,
    Pending,
    Rejected,
)
from .standing import InvestorStanding, InvestorStandingView, standing_for

__all__ = [
    "CLOSURE_COLLECTION",
    "Approved",
    "ClosureRequest",
    "ClosureStage",
    "ClosureState",
    "ClosureStatus",
    "Completed",
    "Pending",
    "Rejected",
    "InvestorStanding",
    "InvestorStandingView",
    "standing_for",
]
