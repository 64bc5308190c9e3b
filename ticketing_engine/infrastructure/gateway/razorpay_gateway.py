# ticketing_engine/infrastructure/gateway/razorpay_gateway.py

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
import logging

import razorpay
import requests

from ticketing_engine.domain.exceptions import GatewayUnavailable, ReservationNotFoundError


logger = logging.getLogger(__name__)


class IntentStatus(str, Enum):
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_authorized(self) -> bool:
        return self in (IntentStatus.AUTHORIZED, IntentStatus.CAPTURED)


@dataclass(frozen=True)
class GatewayIntent:
    intent_id: str
    status: IntentStatus
    amount: int
    currency: str
    client_secret: str | None = None
    payment_ref: str | None = None
    metadata: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """
    External payment gateway boundary.
    Its state is the authority on whether money moved.
    """

    @abstractmethod
    def create_intent(self, amount: int, currency: str, metadata: dict) -> GatewayIntent:
        ...

    @abstractmethod
    def get_intent(self, intent_id: str) -> GatewayIntent | None:
        """Return None when the gateway has no such intent."""
        ...

    @abstractmethod
    def refund(self, intent_id: str, reason: str) -> bool:
        ...

    def verify_webhook(self, body: str, signature: str) -> bool:
        return False


# Razorpay payment statuses, best first.
_PAYMENT_STATUS_RANK = {
    "captured": IntentStatus.CAPTURED,
    "authorized": IntentStatus.AUTHORIZED,
    "refunded": IntentStatus.REFUNDED,
    "failed": IntentStatus.FAILED,
}


class RazorpayGateway(PaymentGateway):
    """
    Razorpay orders play the role of payment intents.
    The client authorizes against the order with the public key id.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        timeout: float,
        webhook_secret: str | None = None,
        client: razorpay.Client | None = None,
    ):
        self.key_id = key_id
        self.timeout = timeout
        self.webhook_secret = webhook_secret
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_intent(self, amount: int, currency: str, metadata: dict) -> GatewayIntent:
        order = self._call(
            self.client.order.create,
            {
                "amount": amount,
                "currency": currency,
                "notes": {key: str(value) for key, value in metadata.items()},
            },
        )
        logger.info("Created Razorpay order %s for %s %s", order["id"], amount, currency)
        return GatewayIntent(
            intent_id=order["id"],
            status=IntentStatus.CREATED,
            amount=order.get("amount", amount),
            currency=order.get("currency", currency),
            client_secret=self.key_id,
            metadata=dict(order.get("notes") or {}),
        )

    def get_intent(self, intent_id: str) -> GatewayIntent | None:
        try:
            order = self._call(self.client.order.fetch, intent_id)
        except razorpay.errors.BadRequestError:
            return None

        status = IntentStatus.CREATED
        payment_ref = None

        # Payments decide; a paid order may since have been refunded.
        payments = self._call(self.client.order.payments, intent_id).get("items", [])
        for rank_status, mapped in _PAYMENT_STATUS_RANK.items():
            match = next((p for p in payments if p.get("status") == rank_status), None)
            if match:
                payment_ref = match["id"]
                status = mapped
                break
        else:
            if order.get("status") == "paid":
                status = IntentStatus.CAPTURED

        return GatewayIntent(
            intent_id=intent_id,
            status=status,
            amount=order.get("amount", 0),
            currency=order.get("currency", ""),
            payment_ref=payment_ref,
            metadata=dict(order.get("notes") or {}),
        )

    def refund(self, intent_id: str, reason: str) -> bool:
        intent = self.get_intent(intent_id)
        if intent is None:
            raise ReservationNotFoundError(intent_id)
        if intent.status is IntentStatus.REFUNDED:
            return True
        if intent.status is not IntentStatus.CAPTURED or not intent.payment_ref:
            # Uncaptured authorizations lapse on the gateway side.
            logger.warning(
                "Order %s has no captured payment to refund (status=%s)",
                intent_id,
                intent.status.value,
            )
            return False

        refund = self._call(
            self.client.payment.refund,
            intent.payment_ref,
            {"notes": {"reason": reason}},
        )
        logger.info("Refund %s issued for order %s", refund.get("id"), intent_id)
        return True

    def verify_webhook(self, body: str, signature: str) -> bool:
        if not self.webhook_secret:
            return False
        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
        except razorpay.errors.SignatureVerificationError:
            return False
        return True

    def _call(self, method, *args):
        try:
            return method(*args, timeout=self.timeout)
        except (razorpay.errors.ServerError, razorpay.errors.GatewayError) as exc:
            raise GatewayUnavailable(str(exc)) from exc
        except requests.exceptions.RequestException as exc:
            raise GatewayUnavailable(f"Payment gateway unreachable: {exc}") from exc
