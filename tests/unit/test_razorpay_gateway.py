from types import SimpleNamespace

import pytest
import razorpay
import requests

from ticketing_engine.domain.exceptions import GatewayUnavailable
from ticketing_engine.infrastructure.gateway.razorpay_gateway import IntentStatus, RazorpayGateway


class FakeOrders:
    def __init__(self, order, payments):
        self.order = order
        self.payments_list = payments
        self.calls = []

    def create(self, data, timeout=None):
        self.calls.append(("create", data, timeout))
        return {"id": "order_1", "amount": data["amount"], "currency": data["currency"], "notes": data["notes"]}

    def fetch(self, order_id, timeout=None):
        if self.order is None:
            raise razorpay.errors.BadRequestError("The id provided does not exist")
        return self.order

    def payments(self, order_id, timeout=None):
        return {"items": self.payments_list}


class FakePayments:
    def __init__(self):
        self.refunds = []

    def refund(self, payment_id, data, timeout=None):
        self.refunds.append((payment_id, data))
        return {"id": "rfnd_1"}


def make_gateway(order=None, payments=()):
    client = SimpleNamespace(
        order=FakeOrders(order, list(payments)),
        payment=FakePayments(),
    )
    return RazorpayGateway("rzp_key", "secret", timeout=5, client=client), client


def test_create_intent_sends_stringified_notes_with_timeout():
    gateway, client = make_gateway()

    intent = gateway.create_intent(3000, "INR", {"event_id": "e-1", "quantity": 3})

    assert intent.intent_id == "order_1"
    assert intent.status is IntentStatus.CREATED
    assert intent.client_secret == "rzp_key"
    _, data, timeout = client.order.calls[0]
    assert data["notes"] == {"event_id": "e-1", "quantity": "3"}
    assert timeout == 5


def test_get_intent_prefers_captured_payment():
    order = {"id": "order_1", "status": "attempted", "amount": 1000, "currency": "INR", "notes": {}}
    gateway, _ = make_gateway(
        order,
        payments=[
            {"id": "pay_failed", "status": "failed"},
            {"id": "pay_ok", "status": "captured"},
        ],
    )

    intent = gateway.get_intent("order_1")

    assert intent.status is IntentStatus.CAPTURED
    assert intent.payment_ref == "pay_ok"


def test_get_intent_unknown_order_is_none():
    gateway, _ = make_gateway(order=None)

    assert gateway.get_intent("order_missing") is None


def test_refund_targets_captured_payment():
    order = {"id": "order_1", "status": "paid", "amount": 1000, "currency": "INR"}
    gateway, client = make_gateway(order, payments=[{"id": "pay_ok", "status": "captured"}])

    assert gateway.refund("order_1", "capacity_exhausted") is True
    assert client.payment.refunds == [("pay_ok", {"notes": {"reason": "capacity_exhausted"}})]


def test_refund_without_capture_is_skipped():
    order = {"id": "order_1", "status": "attempted", "amount": 1000, "currency": "INR"}
    gateway, client = make_gateway(order, payments=[{"id": "pay_auth", "status": "authorized"}])

    assert gateway.refund("order_1", "capacity_exhausted") is False
    assert client.payment.refunds == []


def test_transport_failure_becomes_gateway_unavailable():
    gateway, client = make_gateway()

    def timed_out(*args, **kwargs):
        raise requests.exceptions.Timeout("read timed out")

    client.order.fetch = timed_out

    with pytest.raises(GatewayUnavailable):
        gateway.get_intent("order_1")


def test_webhook_rejected_without_secret():
    gateway, _ = make_gateway()

    assert gateway.verify_webhook("{}", "sig") is False


def test_paid_order_with_refunded_payment_is_not_authorized():
    order = {"id": "order_1", "status": "paid", "amount": 1000, "currency": "INR"}
    gateway, _ = make_gateway(order, payments=[{"id": "pay_1", "status": "refunded"}])

    intent = gateway.get_intent("order_1")

    assert intent.status is IntentStatus.REFUNDED
    assert not intent.status.is_authorized


def test_refund_of_refunded_payment_is_not_reissued():
    order = {"id": "order_1", "status": "paid", "amount": 1000, "currency": "INR"}
    gateway, client = make_gateway(order, payments=[{"id": "pay_1", "status": "refunded"}])

    assert gateway.refund("order_1", "capacity_exhausted") is True
    assert client.payment.refunds == []


def test_paid_order_without_listed_payments_counts_as_captured():
    order = {"id": "order_1", "status": "paid", "amount": 1000, "currency": "INR"}
    gateway, _ = make_gateway(order)

    assert gateway.get_intent("order_1").status is IntentStatus.CAPTURED
