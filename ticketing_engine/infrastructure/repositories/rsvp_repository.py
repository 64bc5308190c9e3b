# ticketing_engine/infrastructure/repositories/rsvp_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticketing_engine.infrastructure.db.models import RSVPReservation


class RSVPRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, reservation_id: str) -> RSVPReservation | None:
        stmt = select(RSVPReservation).where(RSVPReservation.id == reservation_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_event_and_email(
        self,
        event_id: str,
        contact_email: str,
    ) -> RSVPReservation | None:
        stmt = (
            select(RSVPReservation)
            .where(RSVPReservation.event_id == event_id)
            .where(RSVPReservation.contact_email == contact_email)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_event(self, event_id: str) -> list[RSVPReservation]:
        stmt = (
            select(RSVPReservation)
            .where(RSVPReservation.event_id == event_id)
            .order_by(RSVPReservation.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self,
        event_id: str,
        contact_email: str,
        quantity: int,
        name: str | None = None,
        phone: str | None = None,
    ) -> RSVPReservation:
        """
        Raises IntegrityError when (event_id, contact_email) already exists.
        """
        rsvp = RSVPReservation(
            event_id=event_id,
            contact_email=contact_email,
            quantity=quantity,
            name=name,
            phone=phone,
            checked_in_count=0,
        )
        self.db.add(rsvp)
        self.db.flush()
        return rsvp
