from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from ticketing_engine.config import get_settings
from ticketing_engine.infrastructure.db.models import Base, Event
from ticketing_engine.infrastructure.db.session import engine, get_db_session
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository

DEMO_ORGANIZER_ID = "demo-organizer"


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now_utc = datetime.now(timezone.utc)
    target = now_utc + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_events(db) -> None:
    currency = get_settings().default_currency
    event_defs = [
        {
            "title": "Riverside Jazz Night",
            "unit_price": 150000,
            "start_time": _dt(days_from_now=10, hour=14, minute=0),
            "duration_hours": 4,
            "total_capacity": 400,
        },
        {
            "title": "Open Source Meetup",
            "unit_price": 0,
            "start_time": _dt(days_from_now=3, hour=12, minute=30),
            "duration_hours": 3,
            "total_capacity": 120,
        },
    ]

    repo = CapacityRepository(db)
    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            continue

        repo.create_event(
            title=item["title"],
            organizer_id=DEMO_ORGANIZER_ID,
            unit_price=item["unit_price"],
            currency=currency,
            start_time=item["start_time"],
            end_time=item["start_time"] + timedelta(hours=item["duration_hours"]),
            total_capacity=item["total_capacity"],
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_events(db)
    print("Seed complete: one paid and one free demo event added.")


if __name__ == "__main__":
    main()
