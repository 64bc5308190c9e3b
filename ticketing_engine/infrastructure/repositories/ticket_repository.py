# ticketing_engine/infrastructure/repositories/ticket_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from ticketing_engine.infrastructure.db.models import Ticket
from ticketing_engine.domain.state_machine import TicketStateMachine, TicketStatus


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.code == code)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def code_exists(self, code: str) -> bool:
        stmt = select(Ticket.id).where(Ticket.code == code)
        return self.db.execute(stmt).first() is not None

    def list_for_reservation(self, reservation_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.reservation_id == reservation_id)
            .order_by(Ticket.created_at, Ticket.code)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_user(self, user_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.user_id == user_id)
            .order_by(Ticket.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_event(self, event_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.event_id == event_id)
            .order_by(Ticket.created_at.desc(), Ticket.code)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add_all(self, tickets: list[Ticket]) -> None:
        self.db.add_all(tickets)
        self.db.flush()

    def compare_and_set_status(
        self,
        ticket: Ticket,
        to_status: TicketStatus,
        at: datetime,
    ) -> bool:
        """
        UPDATE ... WHERE status = 'active'.
        Exactly one concurrent caller sees True.
        """
        TicketStateMachine.validate_transition(TicketStatus.ACTIVE, to_status)

        values = {"status": to_status}
        if to_status is TicketStatus.USED:
            values["used_at"] = at
        else:
            values["cancelled_at"] = at

        self.db.flush()
        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .where(Ticket.status == TicketStatus.ACTIVE)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(ticket)
        return result.rowcount == 1
