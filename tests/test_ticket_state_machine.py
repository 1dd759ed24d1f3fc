import pytest

from backoffice.tickets.state import REQUESTABLE_STATUSES, TicketStateMachine, TicketStatus


def test_initial_state_is_open():
    assert TicketStateMachine.initial_state() == TicketStatus.OPEN


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (TicketStatus.OPEN, TicketStatus.IN_PROGRESS),
        (TicketStatus.OPEN, TicketStatus.RESOLVED),
        (TicketStatus.OPEN, TicketStatus.CLOSED),
        (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED),
        (TicketStatus.IN_PROGRESS, TicketStatus.CLOSED),
        (TicketStatus.RESOLVED, TicketStatus.CLOSED),
        (TicketStatus.PENDING_APPROVAL, TicketStatus.IN_PROGRESS),
        (TicketStatus.RESOLVED, TicketStatus.RESOLVED),
    ],
)
def test_allowed_transitions(current, new):
    assert TicketStateMachine.can_transition(current, new)
    TicketStateMachine.assert_transition(current, new)


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (TicketStatus.CLOSED, TicketStatus.IN_PROGRESS),
        (TicketStatus.CLOSED, TicketStatus.RESOLVED),
        (TicketStatus.RESOLVED, TicketStatus.IN_PROGRESS),
        (TicketStatus.IN_PROGRESS, TicketStatus.OPEN),
        (TicketStatus.OPEN, TicketStatus.PENDING_APPROVAL),
    ],
)
def test_rejected_transitions(current, new):
    assert not TicketStateMachine.can_transition(current, new)
    with pytest.raises(ValueError):
        TicketStateMachine.assert_transition(current, new)


def test_pending_approval_is_not_requestable():
    assert TicketStatus.PENDING_APPROVAL not in REQUESTABLE_STATUSES
    assert TicketStatus.OPEN not in REQUESTABLE_STATUSES


def test_terminal_states():
    assert TicketStateMachine.is_terminal(TicketStatus.RESOLVED)
    assert TicketStateMachine.is_terminal(TicketStatus.CLOSED)
    assert not TicketStateMachine.is_terminal(TicketStatus.IN_PROGRESS)
