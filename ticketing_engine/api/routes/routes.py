import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ticketing_engine.config import get_settings
from ticketing_engine.infrastructure.db.session import SessionLocal
from ticketing_engine.application.reservation_service import ReservationService
from ticketing_engine.application.rsvp_service import RSVPService
from ticketing_engine.application.ticket_validator import TicketValidator
from ticketing_engine.api.schemas.schemas import (
    CapacitySnapshotResponse,
    ConfirmReservationRequest,
    ConfirmReservationResponse,
    EventCreate,
    EventResponse,
    ReservationCreatedResponse,
    ReservationRequest,
    ReservationResponse,
    RSVPCheckInRequest,
    RSVPRequest,
    RSVPResponse,
    TicketResponse,
    TicketValidationResponse,
)
from ticketing_engine.domain.exceptions import (
    CapacityExhausted,
    DuplicateReservation,
    EventNotFoundError,
    GatewayUnavailable,
    InvalidStateTransitionError,
    NotAuthorized,
    PaymentNotAuthorized,
    ReservationNotFoundError,
    TicketingEngineError,
    TicketNotFoundError,
    ValidationError,
)
from ticketing_engine.domain.state_machine import ReservationStatus
from ticketing_engine.domain.verdicts import TicketValidation, TicketVerdict
from ticketing_engine.infrastructure.db.models import Event, Reservation, RSVPReservation, Ticket
from ticketing_engine.infrastructure.gateway.razorpay_gateway import PaymentGateway, RazorpayGateway
from ticketing_engine.infrastructure.repositories.capacity_repository import CapacityRepository
from ticketing_engine.infrastructure.repositories.reservation_repository import ReservationRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    PaymentNotAuthorized: status.HTTP_402_PAYMENT_REQUIRED,
    NotAuthorized: status.HTTP_403_FORBIDDEN,
    EventNotFoundError: status.HTTP_404_NOT_FOUND,
    ReservationNotFoundError: status.HTTP_404_NOT_FOUND,
    TicketNotFoundError: status.HTTP_404_NOT_FOUND,
    CapacityExhausted: status.HTTP_409_CONFLICT,
    DuplicateReservation: status.HTTP_409_CONFLICT,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    GatewayUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_VERDICT_STATUS = {
    TicketVerdict.ADMITTED: status.HTTP_200_OK,
    TicketVerdict.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}

_WEBHOOK_EVENTS = {"payment.authorized", "payment.captured", "order.paid"}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_gateway() -> PaymentGateway:
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
        )
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        timeout=settings.gateway_timeout_seconds,
        webhook_secret=settings.razorpay_webhook_secret,
    )


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id


def _http_error(exc: TicketingEngineError) -> HTTPException:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=str(exc))


def _event_response(event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        title=event.title,
        organizer_id=event.organizer_id,
        unit_price=event.unit_price,
        currency=event.currency,
        start_time=event.start_time,
        end_time=event.end_time,
        total_capacity=event.total_capacity,
        capacity_remaining=event.capacity_remaining,
    )


def _ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        id=ticket.id,
        user_id=ticket.user_id,
        event_id=ticket.event_id,
        reservation_id=ticket.reservation_id,
        code=ticket.code,
        status=ticket.status.value,
        credential_payload=ticket.credential_payload,
        used_at=ticket.used_at,
        cancelled_at=ticket.cancelled_at,
    )


def _reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(
        id=reservation.id,
        user_id=reservation.user_id,
        event_id=reservation.event_id,
        quantity=reservation.quantity,
        external_intent_id=reservation.external_intent_id,
        status=reservation.status.value,
        amount=reservation.amount,
        currency=reservation.currency,
        receipt_ref=reservation.receipt_ref,
    )


def _rsvp_response(rsvp: RSVPReservation) -> RSVPResponse:
    return RSVPResponse(
        id=rsvp.id,
        event_id=rsvp.event_id,
        contact_email=rsvp.contact_email,
        name=rsvp.name,
        quantity=rsvp.quantity,
        checked_in_count=rsvp.checked_in_count,
        last_check_in_time=rsvp.last_check_in_time,
    )


def _validation_response(outcome: TicketValidation) -> JSONResponse:
    body = TicketValidationResponse(
        valid=outcome.admitted,
        reason=outcome.verdict.value,
        message=outcome.message,
        ticket=_ticket_response(outcome.ticket) if outcome.ticket is not None else None,
        validated_at=outcome.validated_at,
    )
    return JSONResponse(
        status_code=_VERDICT_STATUS.get(outcome.verdict, status.HTTP_409_CONFLICT),
        content=body.model_dump(mode="json"),
    )


@router.get("/health")
def health():
    return {"message": "Ticketing engine is running"}


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    request: EventCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = CapacityRepository(db).create_event(
            title=request.title,
            organizer_id=user_id,
            unit_price=request.unit_price,
            currency=request.currency or get_settings().default_currency,
            start_time=request.start_time,
            end_time=request.end_time,
            total_capacity=request.total_capacity,
        )
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    db.commit()
    return _event_response(event)


@router.get("/events/{event_id}/capacity", response_model=CapacitySnapshotResponse)
def get_event_capacity(event_id: str, db: Session = Depends(get_db)):
    try:
        return CapacitySnapshotResponse(**CapacityRepository(db).snapshot(event_id))
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/reservations",
    response_model=ReservationCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    request: ReservationRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    service = ReservationService(db, gateway)

    try:
        created = service.create_reservation(
            user_id=user_id,
            event_id=request.event_id,
            quantity=request.quantity,
        )
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc

    reservation = created.reservation
    return ReservationCreatedResponse(
        reservation_id=reservation.id,
        external_intent_id=reservation.external_intent_id,
        client_token=created.client_token,
        amount=reservation.amount,
        currency=reservation.currency,
        status=reservation.status.value,
    )


@router.post("/reservations/confirm", response_model=ConfirmReservationResponse)
def confirm_reservation(
    request: ConfirmReservationRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    service = ReservationService(db, gateway)

    try:
        confirmed = service.confirm_reservation(
            external_intent_id=request.external_intent_id,
            event_id=request.event_id,
            requesting_user_id=user_id,
        )
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc

    return ConfirmReservationResponse(
        reservation=_reservation_response(confirmed.reservation),
        tickets=[_ticket_response(ticket) for ticket in confirmed.tickets],
        already_processed=confirmed.replayed,
    )


@router.get("/reservations/{reservation_id}", response_model=ConfirmReservationResponse)
def get_reservation(
    reservation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        found = ReservationService(db, gateway=None).get_reservation(reservation_id, user_id)
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc

    return ConfirmReservationResponse(
        reservation=_reservation_response(found.reservation),
        tickets=[_ticket_response(ticket) for ticket in found.tickets],
        already_processed=found.reservation.status is ReservationStatus.SUCCEEDED,
    )


@router.post("/webhooks/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    body = (await request.body()).decode("utf-8")
    if not x_razorpay_signature or not gateway.verify_webhook(body, x_razorpay_signature):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )

    payload = json.loads(body)
    event_type = payload.get("event")
    if event_type not in _WEBHOOK_EVENTS:
        return {"status": "ignored", "event": event_type}

    entities = payload.get("payload", {})
    order = entities.get("order", {}).get("entity", {})
    payment = entities.get("payment", {}).get("entity", {})
    intent_id = order.get("id") or payment.get("order_id")
    if not intent_id:
        return {"status": "ignored", "event": event_type}

    notes = order.get("notes") or payment.get("notes") or {}
    # Session work is blocking; keep it off the event loop.
    return await run_in_threadpool(
        _settle_from_webhook, db, gateway, event_type, intent_id, notes
    )


def _settle_from_webhook(
    db: Session,
    gateway: PaymentGateway,
    event_type: str,
    intent_id: str,
    notes: dict,
) -> dict:
    existing = ReservationRepository(db).get_by_external_intent_id(intent_id)
    event_id = existing.event_id if existing else notes.get("event_id")
    if not event_id:
        return {"status": "ignored", "event": event_type}

    try:
        confirmed = ReservationService(db, gateway).confirm_reservation(intent_id, event_id)
    except CapacityExhausted:
        return {"status": "refunded", "external_intent_id": intent_id}
    except PaymentNotAuthorized as exc:
        return {"status": "pending", "gateway_status": exc.gateway_status}
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc

    logger.info("Webhook %s settled intent %s", event_type, intent_id)
    return {
        "status": confirmed.reservation.status.value,
        "external_intent_id": intent_id,
        "tickets": len(confirmed.tickets),
    }


@router.post("/rsvps", response_model=RSVPResponse, status_code=status.HTTP_201_CREATED)
def create_rsvp(request: RSVPRequest, db: Session = Depends(get_db)):
    try:
        rsvp = RSVPService(db).reserve(
            event_id=request.event_id,
            contact_email=request.contact_email,
            quantity=request.quantity,
            name=request.name,
            phone=request.phone,
        )
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return _rsvp_response(rsvp)


@router.get("/events/{event_id}/rsvps", response_model=list[RSVPResponse])
def list_event_rsvps(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = CapacityRepository(db).get_event(event_id)
        if event.organizer_id != user_id:
            raise NotAuthorized("Not authorized to view RSVPs for this event")
        rsvps = RSVPService(db).list_for_event(event_id)
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return [_rsvp_response(rsvp) for rsvp in rsvps]


@router.get("/events/{event_id}/tickets", response_model=list[TicketResponse])
def list_event_tickets(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        tickets = _validator(db).list_event_tickets(event_id, requesting_user_id=user_id)
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return [_ticket_response(ticket) for ticket in tickets]


@router.patch("/rsvps/{reservation_id}/check-in", response_model=RSVPResponse)
def check_in_rsvp(
    reservation_id: str,
    request: RSVPCheckInRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        rsvp = RSVPService(db).check_in(
            reservation_id=reservation_id,
            checked_in_count=request.checked_in_count,
            requesting_user_id=user_id,
        )
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return _rsvp_response(rsvp)


@router.get("/tickets", response_model=list[TicketResponse])
def list_my_tickets(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    tickets = _validator(db).list_user_tickets(user_id)
    return [_ticket_response(ticket) for ticket in tickets]


@router.get("/tickets/{code}", response_model=TicketResponse)
def get_ticket(
    code: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket = _validator(db).get_ticket(code, requesting_user_id=user_id)
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


@router.post("/tickets/{code}/validate", response_model=TicketValidationResponse)
def validate_ticket(
    code: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    # Admission is judged against the server clock only.
    try:
        outcome = _validator(db).validate(code, requesting_user_id=user_id)
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return _validation_response(outcome)


@router.post("/tickets/{ticket_id}/cancel", response_model=TicketResponse)
def cancel_ticket(
    ticket_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket = _validator(db).cancel(ticket_id, requesting_user_id=user_id)
    except TicketingEngineError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


def _validator(db: Session) -> TicketValidator:
    return TicketValidator(db, admission_window=get_settings().admission_window)
