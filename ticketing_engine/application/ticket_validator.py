from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.orm import Session

from ticketing_engine.application.ticket_issuer import TicketIssuer
from ticketing_engine.domain.exceptions import NotAuthorized, TicketNotFoundError, ValidationError
from ticketing_engine.domain.state_machine import TicketStatus
from ticketing_engine.domain.verdicts import TicketValidation, TicketVerdict, as_utc
from ticketing_engine.infrastructure.db.models import Ticket
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository
from ticketing_engine.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)

DEFAULT_ADMISSION_WINDOW = timedelta(hours=2)

_TERMINAL_VERDICTS = {
    TicketStatus.USED: TicketVerdict.ALREADY_USED,
    TicketStatus.CANCELLED: TicketVerdict.CANCELLED,
}


class TicketValidator:
    """
    active -> used at the door, active -> cancelled by the owner.
    Both are compare-and-set on status, so only one can ever fire.
    """

    def __init__(
        self,
        db: Session,
        admission_window: timedelta = DEFAULT_ADMISSION_WINDOW,
        issuer: TicketIssuer | None = None,
    ):
        self.db = db
        self.admission_window = admission_window
        self.ticket_repository = TicketRepository(db)
        self.capacity_repository = CapacityRepository(db)
        self.issuer = issuer or TicketIssuer(db)

    def validate(
        self,
        code: str,
        request_time: datetime | None = None,
        requesting_user_id: str | None = None,
    ) -> TicketValidation:
        request_time = as_utc(request_time or datetime.now(timezone.utc))

        ticket = self.ticket_repository.get_by_code(code)
        if ticket is None:
            return TicketValidation(verdict=TicketVerdict.NOT_FOUND)

        event = self.capacity_repository.get_event(ticket.event_id)
        if requesting_user_id is not None and event.organizer_id != requesting_user_id:
            raise NotAuthorized("Not authorized to validate tickets for this event")

        if ticket.status in _TERMINAL_VERDICTS:
            return TicketValidation(verdict=_TERMINAL_VERDICTS[ticket.status], ticket=ticket)

        if request_time > as_utc(event.end_time):
            return TicketValidation(verdict=TicketVerdict.EVENT_ENDED, ticket=ticket)

        if request_time < as_utc(event.start_time) - self.admission_window:
            return TicketValidation(verdict=TicketVerdict.EVENT_NOT_YET_OPEN, ticket=ticket)

        if not self.ticket_repository.compare_and_set_status(
            ticket, TicketStatus.USED, request_time
        ):
            # A concurrent scan won.
            self.db.rollback()
            ticket = self.ticket_repository.get_by_code(code)
            return TicketValidation(verdict=_TERMINAL_VERDICTS[ticket.status], ticket=ticket)

        self.db.commit()
        logger.info("Ticket %s admitted to event %s", ticket.id, ticket.event_id)
        return TicketValidation(
            verdict=TicketVerdict.ADMITTED,
            ticket=ticket,
            validated_at=request_time,
        )

    def cancel(
        self,
        ticket_id: str,
        requesting_user_id: str,
        now: datetime | None = None,
    ) -> Ticket:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)

        if ticket.user_id != requesting_user_id:
            raise NotAuthorized("Not authorized to cancel this ticket")

        if ticket.status is not TicketStatus.ACTIVE or not self.ticket_repository.compare_and_set_status(
            ticket, TicketStatus.CANCELLED, now or datetime.now(timezone.utc)
        ):
            self.db.rollback()
            raise ValidationError("This ticket cannot be cancelled")

        if not self.capacity_repository.release(ticket.event_id, 1):
            logger.error("Event %s already at full capacity; unit not returned", ticket.event_id)
        self.db.commit()

        logger.info("Ticket %s cancelled, unit returned to event %s", ticket.id, ticket.event_id)
        return ticket

    def get_ticket(self, code: str, requesting_user_id: str | None = None) -> Ticket:
        ticket = self.ticket_repository.get_by_code(code)
        if ticket is None:
            raise TicketNotFoundError(code)

        if requesting_user_id is not None and ticket.user_id != requesting_user_id:
            event = self.capacity_repository.get_event(ticket.event_id)
            if event.organizer_id != requesting_user_id:
                raise NotAuthorized("Not authorized to access this ticket")

        if ticket.credential_payload is None:
            self.issuer.ensure_credential(ticket)
            self.db.commit()
        return ticket

    def list_user_tickets(self, user_id: str) -> list[Ticket]:
        return self.ticket_repository.list_for_user(user_id)

    def list_event_tickets(self, event_id: str, requesting_user_id: str) -> list[Ticket]:
        """Door list for the organizer."""
        event = self.capacity_repository.get_event(event_id)
        if event.organizer_id != requesting_user_id:
            raise NotAuthorized("Not authorized to view tickets for this event")
        return self.ticket_repository.list_for_event(event_id)
