# ticketing_engine/infrastructure/repositories/capacity_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, update, func

from ticketing_engine.infrastructure.db.models import Event, Ticket
from ticketing_engine.domain.exceptions import EventNotFoundError, ValidationError
from ticketing_engine.domain.state_machine import TicketStatus
from ticketing_engine.domain.verdicts import as_utc


class CapacityRepository:
    """
    Authoritative counter of remaining units per event.

    Both mutations are one conditional UPDATE; the row is never
    read, adjusted in Python and written back.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_event(self, event_id: str) -> Event:
        event = self.db.execute(
            select(Event).where(Event.id == event_id)
        ).scalar_one_or_none()

        if not event:
            raise EventNotFoundError(event_id)

        return event

    def create_event(
        self,
        title: str,
        organizer_id: str,
        unit_price: int,
        currency: str,
        start_time: datetime,
        end_time: datetime,
        total_capacity: int,
    ) -> Event:
        start_time = as_utc(start_time)
        end_time = as_utc(end_time)
        if total_capacity < 0:
            raise ValidationError("Capacity cannot be negative")
        if unit_price < 0:
            raise ValidationError("Unit price cannot be negative")
        if end_time < start_time:
            raise ValidationError("Event must end after it starts")

        event = Event(
            title=title,
            organizer_id=organizer_id,
            unit_price=unit_price,
            currency=currency,
            start_time=start_time,
            end_time=end_time,
            total_capacity=total_capacity,
            capacity_remaining=total_capacity,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def try_reserve(self, event_id: str, quantity: int) -> bool:
        """
        UPDATE ... WHERE capacity_remaining >= quantity.
        False means sold out and is not an error.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.capacity_remaining >= quantity)
            .values(capacity_remaining=Event.capacity_remaining - quantity)
        )
        return self._apply(stmt)

    def release(self, event_id: str, quantity: int) -> bool:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.capacity_remaining + quantity <= Event.total_capacity)
            .values(capacity_remaining=Event.capacity_remaining + quantity)
        )
        return self._apply(stmt)

    def snapshot(self, event_id: str) -> dict:
        event = self.get_event(event_id)

        counts = {status.value: 0 for status in TicketStatus}
        rows = self.db.execute(
            select(Ticket.status, func.count(Ticket.id))
            .where(Ticket.event_id == event_id)
            .group_by(Ticket.status)
        ).all()
        for status, count in rows:
            counts[status.value] = count

        return {
            "event_id": event.id,
            "total_capacity": event.total_capacity,
            "capacity_remaining": event.capacity_remaining,
            "units_allocated": event.total_capacity - event.capacity_remaining,
            "tickets_by_status": counts,
        }

    def _apply(self, stmt) -> bool:
        self.db.flush()
        result = self.db.execute(
            stmt.execution_options(synchronize_session=False)
        )
        # Loaded Event rows no longer match the table.
        self.db.expire_all()
        return result.rowcount == 1
