from datetime import datetime, timezone

import pytest

from ticketing_engine.domain.exceptions import EventNotFoundError, ValidationError
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository


def test_try_reserve_decrements_when_enough_capacity(db, make_event):
    event = make_event(capacity=5)
    repo = CapacityRepository(db)

    assert repo.try_reserve(event.id, 3) is True
    db.commit()

    assert repo.get_event(event.id).capacity_remaining == 2


def test_try_reserve_reports_sold_out_without_side_effects(db, make_event):
    event = make_event(capacity=2)
    repo = CapacityRepository(db)

    assert repo.try_reserve(event.id, 3) is False
    db.commit()

    assert repo.get_event(event.id).capacity_remaining == 2


def test_try_reserve_can_drain_to_zero_but_not_below(db, make_event):
    event = make_event(capacity=2)
    repo = CapacityRepository(db)

    assert repo.try_reserve(event.id, 2) is True
    assert repo.try_reserve(event.id, 1) is False
    assert repo.get_event(event.id).capacity_remaining == 0


def test_try_reserve_unknown_event_is_not_reserved(db):
    assert CapacityRepository(db).try_reserve("missing", 1) is False


def test_try_reserve_rejects_non_positive_quantity(db, make_event):
    event = make_event()

    with pytest.raises(ValidationError):
        CapacityRepository(db).try_reserve(event.id, 0)


def test_release_never_exceeds_total_capacity(db, make_event):
    event = make_event(capacity=3)
    repo = CapacityRepository(db)
    repo.try_reserve(event.id, 1)

    assert repo.release(event.id, 1) is True
    assert repo.release(event.id, 1) is False
    assert repo.get_event(event.id).capacity_remaining == 3


def test_snapshot_derives_units_allocated(db, make_event):
    event = make_event(capacity=10)
    repo = CapacityRepository(db)
    repo.try_reserve(event.id, 4)

    snapshot = repo.snapshot(event.id)

    assert snapshot["units_allocated"] == 4
    assert snapshot["capacity_remaining"] == 6
    assert snapshot["tickets_by_status"] == {"active": 0, "used": 0, "cancelled": 0}


def test_get_event_missing_raises(db):
    with pytest.raises(EventNotFoundError):
        CapacityRepository(db).get_event("nope")


def test_create_event_rejects_end_before_start(db):
    start = datetime(2030, 1, 2, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        CapacityRepository(db).create_event(
            title="Backwards",
            organizer_id="o",
            unit_price=0,
            currency="INR",
            start_time=start,
            end_time=datetime(2030, 1, 1, tzinfo=timezone.utc),
            total_capacity=1,
        )
