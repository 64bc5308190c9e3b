# ticketing_engine/infrastructure/repositories/reservation_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from ticketing_engine.infrastructure.db.models import Reservation
from ticketing_engine.domain.state_machine import ReservationStateMachine, ReservationStatus


class ReservationRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_external_intent_id(
        self,
        external_intent_id: str,
    ) -> Reservation | None:

        stmt = select(Reservation).where(
            Reservation.external_intent_id == external_intent_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(
        self,
        reservation_id: str,
    ) -> Reservation | None:

        stmt = select(Reservation).where(Reservation.id == reservation_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_pending(self, created_before: datetime | None = None) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.status == ReservationStatus.PENDING)
            .order_by(Reservation.created_at)
        )
        if created_before is not None:
            stmt = stmt.where(Reservation.created_at < created_before)
        return list(self.db.execute(stmt).scalars().all())

    def create_pending(
        self,
        user_id: str,
        event_id: str,
        quantity: int,
        external_intent_id: str,
        amount: int,
        currency: str,
    ) -> Reservation:
        """
        Inserts a pending reservation.
        Raises IntegrityError if the intent id is already recorded.
        """
        reservation = Reservation(
            user_id=user_id,
            event_id=event_id,
            quantity=quantity,
            external_intent_id=external_intent_id,
            amount=amount,
            currency=currency,
            status=ReservationStatus.PENDING,
        )

        self.db.add(reservation)
        self.db.flush()
        return reservation

    def transition(
        self,
        reservation: Reservation,
        to_status: ReservationStatus,
        receipt_ref: str | None = None,
        from_status: ReservationStatus = ReservationStatus.PENDING,
    ) -> bool:
        """
        Compare-and-set on status.
        Returns False when another writer moved the row first.
        """
        ReservationStateMachine.validate_transition(from_status, to_status)

        values = {"status": to_status}
        if receipt_ref is not None:
            values["receipt_ref"] = receipt_ref

        self.db.flush()
        result = self.db.execute(
            update(Reservation)
            .where(Reservation.id == reservation.id)
            .where(Reservation.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(reservation)
        return result.rowcount == 1
