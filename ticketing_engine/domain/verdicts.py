# ticketing_engine/domain/verdicts.py

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TicketVerdict(str, Enum):
    ADMITTED = "ADMITTED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    CANCELLED = "CANCELLED"
    EVENT_ENDED = "EVENT_ENDED"
    EVENT_NOT_YET_OPEN = "EVENT_NOT_YET_OPEN"


VERDICT_MESSAGES = {
    TicketVerdict.ADMITTED: "Ticket successfully validated",
    TicketVerdict.NOT_FOUND: "Ticket not found",
    TicketVerdict.ALREADY_USED: "This ticket has already been used",
    TicketVerdict.CANCELLED: "This ticket has been cancelled",
    TicketVerdict.EVENT_ENDED: "The event has already ended",
    TicketVerdict.EVENT_NOT_YET_OPEN: "The event is not open for admission yet",
}


@dataclass(frozen=True)
class TicketValidation:
    """Outcome of a scan. ticket is None only for NOT_FOUND."""

    verdict: TicketVerdict
    ticket: Any = None
    validated_at: datetime | None = None

    @property
    def admitted(self) -> bool:
        return self.verdict is TicketVerdict.ADMITTED

    @property
    def message(self) -> str:
        return VERDICT_MESSAGES[self.verdict]


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
