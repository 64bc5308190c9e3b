# ticketing_engine/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from ticketing_engine.domain.exceptions import InvalidStateTransitionError


class ReservationStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
    FAILED = "failed"


class TicketStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"


class StateMachine:
    """
    Central lifecycle controller.
    Subclasses declare the status enum and the legal state transitions.
    """

    _STATUS_TYPE: type[Enum]
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]] = {}

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status: Enum) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def _ensure_valid_status(cls, status: Enum) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class ReservationStateMachine(StateMachine):
    """
    pending is the only live state. Every outcome of a confirmation
    is terminal and a reservation is never reopened.
    """

    _STATUS_TYPE = ReservationStatus
    _ALLOWED_TRANSITIONS = {
        ReservationStatus.PENDING: {
            ReservationStatus.SUCCEEDED,
            ReservationStatus.REFUNDED,
            ReservationStatus.FAILED,
        },
        ReservationStatus.SUCCEEDED: set(),
        ReservationStatus.REFUNDED: set(),
        ReservationStatus.FAILED: set(),
    }


class TicketStateMachine(StateMachine):
    """
    A ticket leaves active exactly once, either at the door or by cancellation.
    """

    _STATUS_TYPE = TicketStatus
    _ALLOWED_TRANSITIONS = {
        TicketStatus.ACTIVE: {
            TicketStatus.USED,
            TicketStatus.CANCELLED,
        },
        TicketStatus.USED: set(),
        TicketStatus.CANCELLED: set(),
    }
