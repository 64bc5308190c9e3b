from datetime import datetime, timezone
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing_engine.domain.exceptions import (
    CapacityExhausted,
    DuplicateReservation,
    NotAuthorized,
    ReservationNotFoundError,
    ValidationError,
)
from ticketing_engine.infrastructure.db.models import RSVPReservation
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository
from ticketing_engine.infrastructure.repositories.rsvp_repository import RSVPRepository


logger = logging.getLogger(__name__)

MIN_RSVP_QUANTITY = 1
MAX_RSVP_QUANTITY = 10


class RSVPService:
    """Free-event registration. The RSVP itself is the admission record."""

    def __init__(self, db: Session):
        self.db = db
        self.rsvp_repository = RSVPRepository(db)
        self.capacity_repository = CapacityRepository(db)

    def reserve(
        self,
        event_id: str,
        contact_email: str,
        quantity: int,
        name: str | None = None,
        phone: str | None = None,
    ) -> RSVPReservation:
        contact_email = (contact_email or "").strip().lower()
        if not contact_email:
            raise ValidationError("A contact email is required")
        if not MIN_RSVP_QUANTITY <= quantity <= MAX_RSVP_QUANTITY:
            raise ValidationError(
                f"Quantity must be between {MIN_RSVP_QUANTITY} and {MAX_RSVP_QUANTITY}"
            )

        event = self.capacity_repository.get_event(event_id)
        if not event.is_free:
            raise ValidationError("RSVP is only available for free events")

        if self.rsvp_repository.get_by_event_and_email(event_id, contact_email):
            raise DuplicateReservation(event_id, contact_email)

        if not self.capacity_repository.try_reserve(event_id, quantity):
            raise CapacityExhausted(event_id, quantity)

        try:
            rsvp = self.rsvp_repository.create(
                event_id=event_id,
                contact_email=contact_email,
                quantity=quantity,
                name=name,
                phone=phone,
            )
        except IntegrityError as exc:
            # A concurrent registration won; the rollback also returns our units.
            self.db.rollback()
            raise DuplicateReservation(event_id, contact_email) from exc

        self.db.commit()
        logger.info("RSVP %s for %s guest(s) on event %s", rsvp.id, quantity, event_id)
        return rsvp

    def check_in(
        self,
        reservation_id: str,
        checked_in_count: int,
        requesting_user_id: str | None = None,
        now: datetime | None = None,
    ) -> RSVPReservation:
        rsvp = self.rsvp_repository.get_by_id(reservation_id)
        if not rsvp:
            raise ReservationNotFoundError(reservation_id)

        if requesting_user_id is not None:
            event = self.capacity_repository.get_event(rsvp.event_id)
            if event.organizer_id != requesting_user_id:
                raise NotAuthorized("Not authorized to check in guests for this event")

        if not 0 <= checked_in_count <= rsvp.quantity:
            raise ValidationError(
                f"Checked-in count must be between 0 and {rsvp.quantity}"
            )

        # Current headcount at the door, not an increment.
        rsvp.checked_in_count = checked_in_count
        if checked_in_count > 0:
            rsvp.last_check_in_time = now or datetime.now(timezone.utc)

        self.db.commit()
        return rsvp

    def list_for_event(self, event_id: str) -> list[RSVPReservation]:
        self.capacity_repository.get_event(event_id)
        return self.rsvp_repository.list_for_event(event_id)
