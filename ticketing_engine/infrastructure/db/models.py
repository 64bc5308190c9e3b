# ticketing_engine/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from uuid import uuid4

from ticketing_engine.infrastructure.db.session import Base
from ticketing_engine.domain.state_machine import ReservationStatus, TicketStatus


def _uuid() -> str:
    return str(uuid4())


class Event(Base):
    """
    Referenced event. Only the capacity store writes capacity_remaining.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    organizer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("unit_price >= 0", name="ck_event_price_nonnegative"),
        CheckConstraint("total_capacity >= 0", name="ck_event_total_capacity_nonnegative"),
        CheckConstraint("capacity_remaining >= 0", name="ck_event_capacity_nonnegative"),
        CheckConstraint(
            "capacity_remaining <= total_capacity",
            name="ck_event_capacity_lte_total",
        ),
        CheckConstraint("end_time >= start_time", name="ck_event_ends_after_start"),
    )

    @property
    def is_free(self) -> bool:
        return self.unit_price == 0


class Reservation(Base):
    """
    Paid checkout attempt. external_intent_id is the idempotency key.
    """

    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    external_intent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus, name="reservation_status"),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    receipt_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "external_intent_id",
            name="uq_reservation_external_intent_id",
        ),
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        CheckConstraint("amount >= 0", name="ck_reservation_amount_nonnegative"),
    )


class RSVPReservation(Base):
    """
    Free-event registration. It is the admission record itself, no tickets are minted.
    """

    __tablename__ = "rsvp_reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    checked_in_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_check_in_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "event_id",
            "contact_email",
            name="uq_rsvp_event_contact_email",
        ),
        CheckConstraint("quantity BETWEEN 1 AND 10", name="ck_rsvp_quantity_range"),
        CheckConstraint(
            "checked_in_count >= 0 AND checked_in_count <= quantity",
            name="ck_rsvp_checked_in_bounded",
        ),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    reservation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("reservations.id"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, name="ticket_status"),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )
    credential_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("code", name="uq_ticket_code"),
        Index("ix_ticket_user_event", "user_id", "event_id"),
        Index("ix_ticket_reservation", "reservation_id"),
    )
