

class TicketingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticketing engine.
    """


class InvalidStateTransitionError(TicketingEngineError):
    """
    Raised when an illegal reservation or ticket state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ValidationError(TicketingEngineError):
    """Raised for bad input, before any side effect happens."""


class EventNotFoundError(TicketingEngineError):

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class ReservationNotFoundError(TicketingEngineError):

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Reservation {reference} not found")


class TicketNotFoundError(TicketingEngineError):

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Ticket {reference} not found")


class NotAuthorized(TicketingEngineError):
    """Raised when the caller is not allowed to act on a record."""


class CapacityExhausted(TicketingEngineError):
    """
    Raised when an event cannot allocate the requested units.
    On the paid path the payment has been refunded by the time this is seen.
    """

    def __init__(self, event_id: str, quantity: int, refunded: bool = False):
        self.event_id = event_id
        self.quantity = quantity
        self.refunded = refunded

        message = f"Not enough capacity on event {event_id} for {quantity} unit(s)"
        if refunded:
            message += "; payment has been refunded"
        super().__init__(message)


class DuplicateReservation(TicketingEngineError):

    def __init__(self, event_id: str, contact_email: str):
        self.event_id = event_id
        self.contact_email = contact_email
        super().__init__(
            f"{contact_email} already holds a reservation for event {event_id}"
        )


class PaymentNotAuthorized(TicketingEngineError):
    """Raised when the gateway does not report the intent as authorized."""

    def __init__(self, external_intent_id: str, gateway_status: str):
        self.external_intent_id = external_intent_id
        self.gateway_status = gateway_status
        super().__init__(
            f"Payment {external_intent_id} is not authorized "
            f"(gateway status: {gateway_status})"
        )


class GatewayUnavailable(TicketingEngineError):
    """Raised when the payment gateway times out or fails server-side."""
