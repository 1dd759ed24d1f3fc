"""Support ticket domain models and lifecycle rules."""

from .models import (
    ACTION_COLLECTION,
    TICKET_COLLECTION,
    SupportTicket,
    TicketAction,
    TicketActionType,
    TicketDraft,
    TicketPriority,
    TicketResponse,
    TicketType,
)
from .state import REQUESTABLE_STATUSES, TicketStateMachine, TicketStatus

__all__ = [
    "ACTION_COLLECTION",
    "TICKET_COLLECTION",
    "SupportTicket",
    "TicketAction",
    "TicketActionType",
    "TicketDraft",
    "TicketPriority",
    "TicketResponse",
    "TicketType",
    "REQUESTABLE_STATUSES",
    "TicketStateMachine",
    "TicketStatus",
]
