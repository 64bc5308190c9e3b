from datetime import datetime, timezone

import pytest

from ticketing_engine.application.rsvp_service import RSVPService
from ticketing_engine.domain.exceptions import (
    CapacityExhausted,
    DuplicateReservation,
    NotAuthorized,
    ReservationNotFoundError,
    ValidationError,
)
from ticketing_engine.infrastructure.db.models import RSVPReservation
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository

from tests.conftest import ORGANIZER_ID


@pytest.fixture
def service(db):
    return RSVPService(db)


@pytest.fixture
def free_event(make_event):
    return make_event(capacity=5, unit_price=0)


def test_reserve_holds_capacity(db, service, free_event):
    rsvp = service.reserve(free_event.id, "Guest@Example.com ", 3, name="Guest")

    assert rsvp.contact_email == "guest@example.com"
    assert rsvp.checked_in_count == 0
    assert CapacityRepository(db).get_event(free_event.id).capacity_remaining == 2


def test_reserve_rejects_paid_event(service, make_event):
    paid = make_event(unit_price=1000)

    with pytest.raises(ValidationError):
        service.reserve(paid.id, "guest@example.com", 1)


@pytest.mark.parametrize("quantity", [0, 11])
def test_reserve_quantity_bounds(service, free_event, quantity):
    with pytest.raises(ValidationError):
        service.reserve(free_event.id, "guest@example.com", quantity)


def test_reserve_requires_email(service, free_event):
    with pytest.raises(ValidationError):
        service.reserve(free_event.id, "   ", 1)


def test_duplicate_email_is_rejected_case_insensitively(db, service, free_event):
    service.reserve(free_event.id, "guest@example.com", 1)

    with pytest.raises(DuplicateReservation):
        service.reserve(free_event.id, "GUEST@example.com", 2)

    assert CapacityRepository(db).get_event(free_event.id).capacity_remaining == 4


def test_same_email_may_register_for_other_events(service, free_event, make_event):
    other = make_event(unit_price=0)
    service.reserve(free_event.id, "guest@example.com", 1)

    assert service.reserve(other.id, "guest@example.com", 1).event_id == other.id


def test_sold_out_event_leaves_no_record(db, service, make_event):
    full = make_event(capacity=0, unit_price=0)

    with pytest.raises(CapacityExhausted):
        service.reserve(full.id, "guest@example.com", 1)

    assert db.query(RSVPReservation).count() == 0


def test_check_in_overwrites_headcount(service, free_event):
    rsvp = service.reserve(free_event.id, "guest@example.com", 4)
    at = datetime(2030, 6, 1, 18, 5, tzinfo=timezone.utc)

    service.check_in(rsvp.id, 3, ORGANIZER_ID, now=at)
    updated = service.check_in(rsvp.id, 2, ORGANIZER_ID, now=at)

    assert updated.checked_in_count == 2
    assert updated.last_check_in_time is not None


def test_check_in_zero_does_not_stamp_time(service, free_event):
    rsvp = service.reserve(free_event.id, "guest@example.com", 2)

    updated = service.check_in(rsvp.id, 0, ORGANIZER_ID)

    assert updated.last_check_in_time is None


@pytest.mark.parametrize("count", [-1, 3])
def test_check_in_bounds(service, free_event, count):
    rsvp = service.reserve(free_event.id, "guest@example.com", 2)

    with pytest.raises(ValidationError):
        service.check_in(rsvp.id, count, ORGANIZER_ID)


def test_check_in_is_organizer_only(service, free_event):
    rsvp = service.reserve(free_event.id, "guest@example.com", 2)

    with pytest.raises(NotAuthorized):
        service.check_in(rsvp.id, 1, "stranger")

    with pytest.raises(ReservationNotFoundError):
        service.check_in("missing", 1, ORGANIZER_ID)


def test_list_for_event(service, free_event):
    service.reserve(free_event.id, "a@example.com", 1)
    service.reserve(free_event.id, "b@example.com", 2)

    emails = {rsvp.contact_email for rsvp in service.list_for_event(free_event.id)}

    assert emails == {"a@example.com", "b@example.com"}


def test_concurrent_duplicate_hits_unique_constraint(db, service, free_event, monkeypatch):
    service.reserve(free_event.id, "guest@example.com", 2)
    # The competing registration commits after our duplicate pre-check.
    monkeypatch.setattr(service.rsvp_repository, "get_by_event_and_email", lambda *args: None)

    with pytest.raises(DuplicateReservation):
        service.reserve(free_event.id, "guest@example.com", 1)

    assert db.query(RSVPReservation).count() == 1
    assert CapacityRepository(db).get_event(free_event.id).capacity_remaining == 3
