import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketing_engine.api.routes.routes import get_db, get_gateway
from ticketing_engine.domain.exceptions import GatewayUnavailable
from ticketing_engine.infrastructure.db.models import Base
from ticketing_engine.infrastructure.gateway.razorpay_gateway import (
    GatewayIntent,
    IntentStatus,
    PaymentGateway,
)
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository
from ticketing_engine.main import app


ORGANIZER_ID = "organizer-1"
BUYER_ID = "buyer-1"
EVENT_START = datetime(2030, 6, 1, 18, 0, tzinfo=timezone.utc)


class FakePaymentGateway(PaymentGateway):
    """In-memory gateway; tests drive authorization by hand."""

    def __init__(self):
        self.intents: dict[str, GatewayIntent] = {}
        self.refunds: list[tuple[str, str]] = []
        self.unavailable = False
        self._sequence = 0

    def create_intent(self, amount, currency, metadata):
        self._check_available()
        self._sequence += 1
        intent = GatewayIntent(
            intent_id=f"order_test_{self._sequence}",
            status=IntentStatus.CREATED,
            amount=amount,
            currency=currency,
            client_secret="rzp_test_key",
            metadata={key: str(value) for key, value in metadata.items()},
        )
        self.intents[intent.intent_id] = intent
        return intent

    def get_intent(self, intent_id):
        self._check_available()
        return self.intents.get(intent_id)

    def refund(self, intent_id, reason):
        self._check_available()
        self.refunds.append((intent_id, reason))
        self.intents[intent_id] = replace(self.intents[intent_id], status=IntentStatus.REFUNDED)
        return True

    def verify_webhook(self, body, signature):
        return signature == "valid-signature"

    def authorize(self, intent_id, status=IntentStatus.CAPTURED):
        self.intents[intent_id] = replace(
            self.intents[intent_id],
            status=status,
            payment_ref=f"pay_{intent_id}",
        )

    def _check_available(self):
        if self.unavailable:
            raise GatewayUnavailable("Payment gateway unreachable: timed out")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def make_event(db):
    def _make_event(capacity=5, unit_price=1000, start=EVENT_START, hours=4):
        event = CapacityRepository(db).create_event(
            title="Test Event",
            organizer_id=ORGANIZER_ID,
            unit_price=unit_price,
            currency="INR",
            start_time=start,
            end_time=start + timedelta(hours=hours),
            total_capacity=capacity,
        )
        db.commit()
        return event

    return _make_event


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
