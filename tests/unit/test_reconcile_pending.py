from datetime import timedelta

from scripts.reconcile_pending import reconcile
from ticketing_engine.application.reservation_service import ReservationService
from ticketing_engine.domain.exceptions import ReservationNotFoundError
from ticketing_engine.domain.state_machine import ReservationStatus
from ticketing_engine.infrastructure.repositories.reservation_repository import ReservationRepository

from tests.conftest import BUYER_ID


def test_sweep_keeps_going_past_a_broken_reservation(db, gateway, make_event, monkeypatch):
    event = make_event(capacity=5)
    service = ReservationService(db, gateway)
    broken = service.create_reservation(BUYER_ID, event.id, 1).reservation.external_intent_id
    paid = service.create_reservation(BUYER_ID, event.id, 1).reservation.external_intent_id
    unpaid = service.create_reservation(BUYER_ID, event.id, 1).reservation.external_intent_id
    gateway.authorize(paid)

    real_get_intent = gateway.get_intent

    def get_intent(intent_id):
        if intent_id == broken:
            raise ReservationNotFoundError(intent_id)
        return real_get_intent(intent_id)

    monkeypatch.setattr(gateway, "get_intent", get_intent)

    summary = reconcile(db, gateway, min_age=timedelta(0))

    assert summary == {"succeeded": 1, "refunded": 0, "pending": 1, "unreachable": 0, "errors": 1}
    repo = ReservationRepository(db)
    assert repo.get_by_external_intent_id(paid).status is ReservationStatus.SUCCEEDED
    assert repo.get_by_external_intent_id(unpaid).status is ReservationStatus.PENDING
    assert repo.get_by_external_intent_id(broken).status is ReservationStatus.PENDING
