import logging
from datetime import datetime, timedelta, timezone

from ticketing_engine.application.reservation_service import ReservationService
from ticketing_engine.config import get_settings
from ticketing_engine.domain.exceptions import (
    CapacityExhausted,
    GatewayUnavailable,
    PaymentNotAuthorized,
    TicketingEngineError,
)
from ticketing_engine.infrastructure.db.session import get_db_session
from ticketing_engine.infrastructure.gateway.razorpay_gateway import RazorpayGateway


logger = logging.getLogger(__name__)

MIN_AGE = timedelta(minutes=10)


def reconcile(db, gateway, min_age: timedelta = MIN_AGE) -> dict:
    """Re-run confirmation for reservations nobody came back to settle."""
    service = ReservationService(db, gateway)
    cutoff = datetime.now(timezone.utc) - min_age
    summary = {"succeeded": 0, "refunded": 0, "pending": 0, "unreachable": 0, "errors": 0}

    for reservation in service.list_pending(created_before=cutoff):
        reservation_id = reservation.id
        try:
            service.confirm_reservation(reservation.external_intent_id, reservation.event_id)
            summary["succeeded"] += 1
        except CapacityExhausted:
            summary["refunded"] += 1
        except PaymentNotAuthorized:
            summary["pending"] += 1
        except GatewayUnavailable:
            logger.warning("Gateway unreachable while reconciling %s", reservation_id)
            summary["unreachable"] += 1
        except TicketingEngineError:
            db.rollback()
            logger.exception("Could not reconcile reservation %s", reservation_id)
            summary["errors"] += 1
    return summary


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    gateway = RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        timeout=settings.gateway_timeout_seconds,
    )
    with get_db_session() as db:
        summary = reconcile(db, gateway)
    print(f"Reconcile complete: {summary}")


if __name__ == "__main__":
    main()
