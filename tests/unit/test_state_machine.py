# tests/unit/test_state_machine.py

import pytest

from ticketing_engine.domain.state_machine import (
    ReservationStateMachine,
    ReservationStatus,
    TicketStateMachine,
    TicketStatus,
)
from ticketing_engine.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_reservation_leaves_pending_for_any_outcome():
    for outcome in (
        ReservationStatus.SUCCEEDED,
        ReservationStatus.REFUNDED,
        ReservationStatus.FAILED,
    ):
        assert ReservationStateMachine.can_transition(ReservationStatus.PENDING, outcome)


def test_ticket_leaves_active_for_used_or_cancelled():
    assert TicketStateMachine.get_allowed_transitions(TicketStatus.ACTIVE) == {
        TicketStatus.USED,
        TicketStatus.CANCELLED,
    }


# ---------------------
# INVALID TRANSITIONS
# ---------------------

@pytest.mark.parametrize(
    "status",
    [ReservationStatus.SUCCEEDED, ReservationStatus.REFUNDED, ReservationStatus.FAILED],
)
def test_reservation_outcomes_are_terminal(status):
    assert ReservationStateMachine.is_terminal(status)

    with pytest.raises(InvalidStateTransitionError):
        ReservationStateMachine.validate_transition(status, ReservationStatus.PENDING)


def test_refunded_reservation_cannot_succeed():
    with pytest.raises(InvalidStateTransitionError):
        ReservationStateMachine.validate_transition(
            ReservationStatus.REFUNDED,
            ReservationStatus.SUCCEEDED,
        )


def test_used_ticket_cannot_be_cancelled():
    assert TicketStateMachine.is_terminal(TicketStatus.USED)

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        TicketStateMachine.validate_transition(TicketStatus.USED, TicketStatus.CANCELLED)

    assert excinfo.value.from_state == "used"
    assert excinfo.value.to_state == "cancelled"


def test_cancelled_ticket_cannot_be_used():
    with pytest.raises(InvalidStateTransitionError):
        TicketStateMachine.validate_transition(TicketStatus.CANCELLED, TicketStatus.USED)


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        ReservationStateMachine.validate_transition(
            "pending",  # invalid type
            ReservationStatus.SUCCEEDED,
        )

    with pytest.raises(TypeError):
        TicketStateMachine.can_transition(ReservationStatus.PENDING, TicketStatus.USED)
