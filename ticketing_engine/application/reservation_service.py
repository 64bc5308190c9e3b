from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing_engine.application.ticket_issuer import TicketIssuer
from ticketing_engine.domain.exceptions import (
    CapacityExhausted,
    GatewayUnavailable,
    InvalidStateTransitionError,
    NotAuthorized,
    PaymentNotAuthorized,
    ReservationNotFoundError,
    ValidationError,
)
from ticketing_engine.domain.state_machine import ReservationStatus
from ticketing_engine.infrastructure.db.models import Reservation, Ticket
from ticketing_engine.infrastructure.gateway.razorpay_gateway import GatewayIntent, PaymentGateway
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository
from ticketing_engine.infrastructure.repositories.reservation_repository import ReservationRepository
from ticketing_engine.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)

REFUND_REASON_CAPACITY = "capacity_exhausted"


@dataclass(frozen=True)
class CreatedReservation:
    reservation: Reservation
    client_token: str | None


@dataclass(frozen=True)
class ConfirmedReservation:
    reservation: Reservation
    tickets: list[Ticket]
    replayed: bool = False


class ReservationService:
    """
    Reconciles gateway payments with local reservations and issues tickets.

    confirm_reservation may run concurrently for one intent (webhook and
    client poll racing). At-most-once issuance rests on the unique intent
    id and the guarded pending -> terminal transition, both enforced by
    the database. The capacity decrement, the tickets and the transition
    commit together or not at all.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway | None,
        issuer: TicketIssuer | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.issuer = issuer or TicketIssuer(db)
        self.reservation_repository = ReservationRepository(db)
        self.capacity_repository = CapacityRepository(db)
        self.ticket_repository = TicketRepository(db)

    def create_reservation(
        self,
        user_id: str,
        event_id: str,
        quantity: int,
    ) -> CreatedReservation:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        event = self.capacity_repository.get_event(event_id)
        if event.is_free:
            raise ValidationError("This event is free and does not require payment")

        # Informational only; nothing is held until confirmation.
        if event.capacity_remaining < quantity:
            raise CapacityExhausted(event_id, quantity)

        amount = event.unit_price * quantity
        intent = self.gateway.create_intent(
            amount=amount,
            currency=event.currency,
            metadata={
                "event_id": event_id,
                "user_id": user_id,
                "quantity": quantity,
            },
        )

        reservation = self.reservation_repository.create_pending(
            user_id=user_id,
            event_id=event_id,
            quantity=quantity,
            external_intent_id=intent.intent_id,
            amount=amount,
            currency=event.currency,
        )
        self.db.commit()

        logger.info(
            "Reservation %s pending on intent %s (%s x %s)",
            reservation.id,
            intent.intent_id,
            quantity,
            event_id,
        )
        return CreatedReservation(reservation=reservation, client_token=intent.client_secret)

    def confirm_reservation(
        self,
        external_intent_id: str,
        event_id: str,
        requesting_user_id: str | None = None,
    ) -> ConfirmedReservation:
        intent = None
        reservation = self.reservation_repository.get_by_external_intent_id(external_intent_id)

        if reservation is None:
            intent = self._fetch_intent(external_intent_id)
            reservation = self._recover_from_gateway(
                external_intent_id, intent, event_id, requesting_user_id
            )

        self._check_caller(reservation, event_id, requesting_user_id)

        terminal = self._terminal_outcome(reservation)
        if terminal is not None:
            return terminal

        if intent is None:
            intent = self._fetch_intent(external_intent_id)
        if intent is None:
            raise PaymentNotAuthorized(external_intent_id, "missing")
        if not intent.status.is_authorized:
            raise PaymentNotAuthorized(external_intent_id, intent.status.value)

        return self._settle(reservation, intent)

    def get_reservation(
        self,
        reservation_id: str,
        requesting_user_id: str | None = None,
    ) -> ConfirmedReservation:
        reservation = self.reservation_repository.get_by_id(reservation_id)
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        if requesting_user_id is not None and reservation.user_id != requesting_user_id:
            raise NotAuthorized("Not authorized to view this reservation")

        tickets = self.ticket_repository.list_for_reservation(reservation.id)
        return ConfirmedReservation(reservation=reservation, tickets=tickets, replayed=True)

    def list_pending(self, created_before: datetime | None = None) -> list[Reservation]:
        """Pending reservations an operator sweep can re-confirm."""
        return self.reservation_repository.list_pending(created_before)

    def _settle(self, reservation: Reservation, intent: GatewayIntent) -> ConfirmedReservation:
        event_id = reservation.event_id
        quantity = reservation.quantity

        if not self.capacity_repository.try_reserve(event_id, quantity):
            return self._refund_shortfall(reservation)

        tickets = self.issuer.issue(
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            event_id=event_id,
            quantity=quantity,
        )

        if not self.reservation_repository.transition(
            reservation,
            ReservationStatus.SUCCEEDED,
            receipt_ref=intent.payment_ref,
        ):
            # Another confirmation got there first; drop our decrement and tickets.
            self.db.rollback()
            return self._replay_after_race(reservation.id)

        self.db.commit()
        logger.info(
            "Reservation %s succeeded with %s ticket(s)",
            reservation.id,
            len(tickets),
        )
        return ConfirmedReservation(reservation=reservation, tickets=tickets)

    def _refund_shortfall(self, reservation: Reservation) -> ConfirmedReservation:
        if not self.reservation_repository.transition(reservation, ReservationStatus.REFUNDED):
            self.db.rollback()
            return self._replay_after_race(reservation.id)

        try:
            self.gateway.refund(reservation.external_intent_id, REFUND_REASON_CAPACITY)
        except GatewayUnavailable:
            # Stay pending so a retried confirmation attempts the refund again.
            self.db.rollback()
            raise

        self.db.commit()
        logger.warning(
            "Event %s sold out before reservation %s settled; payment %s refunded",
            reservation.event_id,
            reservation.id,
            reservation.external_intent_id,
        )
        raise CapacityExhausted(reservation.event_id, reservation.quantity, refunded=True)

    def _replay_after_race(self, reservation_id: str) -> ConfirmedReservation:
        reservation = self.reservation_repository.get_by_id(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)

        outcome = self._terminal_outcome(reservation)
        if outcome is None:
            raise InvalidStateTransitionError(
                from_state=reservation.status.value,
                to_state=ReservationStatus.SUCCEEDED.value,
            )
        return outcome

    def _terminal_outcome(self, reservation: Reservation) -> ConfirmedReservation | None:
        if reservation.status is ReservationStatus.SUCCEEDED:
            logger.info("Reservation %s already confirmed, replaying", reservation.id)
            tickets = self.ticket_repository.list_for_reservation(reservation.id)
            return ConfirmedReservation(reservation=reservation, tickets=tickets, replayed=True)
        if reservation.status is ReservationStatus.REFUNDED:
            raise CapacityExhausted(reservation.event_id, reservation.quantity, refunded=True)
        if reservation.status is ReservationStatus.FAILED:
            raise PaymentNotAuthorized(reservation.external_intent_id, "failed")
        return None

    def _recover_from_gateway(
        self,
        external_intent_id: str,
        intent: GatewayIntent | None,
        event_id: str,
        requesting_user_id: str | None,
    ) -> Reservation:
        """
        A crash between intent creation and the local insert leaves a paid
        intent with no reservation. Rebuild it from the intent metadata.
        """
        if intent is None or not intent.status.is_authorized:
            raise ReservationNotFoundError(external_intent_id)

        metadata = intent.metadata
        if not metadata.get("event_id"):
            raise ReservationNotFoundError(external_intent_id)
        if metadata["event_id"] != event_id:
            raise ValidationError("Payment does not belong to this event")

        user_id = metadata.get("user_id") or requesting_user_id
        if not user_id:
            raise ValidationError("Payment carries no purchaser")

        try:
            quantity = int(metadata.get("quantity", 1))
        except (TypeError, ValueError) as exc:
            raise ValidationError("Payment carries an invalid quantity") from exc
        if quantity < 1:
            raise ValidationError("Payment carries an invalid quantity")

        event = self.capacity_repository.get_event(event_id)
        if intent.amount != event.unit_price * quantity or intent.currency != event.currency:
            raise ValidationError("Payment amount does not match the event price")

        logger.warning(
            "No local reservation for intent %s; rebuilding from gateway metadata",
            external_intent_id,
        )
        try:
            reservation = self.reservation_repository.create_pending(
                user_id=user_id,
                event_id=event_id,
                quantity=quantity,
                external_intent_id=external_intent_id,
                amount=intent.amount,
                currency=intent.currency,
            )
            self.db.commit()
        except IntegrityError:
            # Lost the unique-insert race; use the winner's row.
            self.db.rollback()
            reservation = self.reservation_repository.get_by_external_intent_id(
                external_intent_id
            )
            if reservation is None:
                raise
        return reservation

    def _check_caller(
        self,
        reservation: Reservation,
        event_id: str,
        requesting_user_id: str | None,
    ) -> None:
        if reservation.event_id != event_id:
            raise ValidationError("Payment does not belong to this event")
        if requesting_user_id is not None and reservation.user_id != requesting_user_id:
            raise NotAuthorized("Not authorized to confirm this payment")

    def _fetch_intent(self, external_intent_id: str) -> GatewayIntent | None:
        return self.gateway.get_intent(external_intent_id)
