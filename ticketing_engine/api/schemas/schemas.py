from datetime import datetime

from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    title: str
    unit_price: int = Field(ge=0)
    currency: str | None = None
    start_time: datetime
    end_time: datetime
    total_capacity: int = Field(ge=0)


class EventResponse(BaseModel):
    id: str
    title: str
    organizer_id: str
    unit_price: int
    currency: str
    start_time: datetime
    end_time: datetime
    total_capacity: int
    capacity_remaining: int


class CapacitySnapshotResponse(BaseModel):
    event_id: str
    total_capacity: int
    capacity_remaining: int
    units_allocated: int
    tickets_by_status: dict[str, int]


class ReservationRequest(BaseModel):
    event_id: str
    quantity: int = 1


class ReservationCreatedResponse(BaseModel):
    reservation_id: str
    external_intent_id: str
    client_token: str | None = None
    amount: int
    currency: str
    status: str


class ConfirmReservationRequest(BaseModel):
    external_intent_id: str
    event_id: str


class TicketResponse(BaseModel):
    id: str
    user_id: str
    event_id: str
    reservation_id: str
    code: str
    status: str
    credential_payload: str | None = None
    used_at: datetime | None = None
    cancelled_at: datetime | None = None


class ReservationResponse(BaseModel):
    id: str
    user_id: str
    event_id: str
    quantity: int
    external_intent_id: str
    status: str
    amount: int
    currency: str
    receipt_ref: str | None = None


class ConfirmReservationResponse(BaseModel):
    reservation: ReservationResponse
    tickets: list[TicketResponse]
    already_processed: bool


class RSVPRequest(BaseModel):
    event_id: str
    contact_email: str
    quantity: int
    name: str | None = None
    phone: str | None = None


class RSVPCheckInRequest(BaseModel):
    checked_in_count: int


class RSVPResponse(BaseModel):
    id: str
    event_id: str
    contact_email: str
    name: str | None = None
    quantity: int
    checked_in_count: int
    last_check_in_time: datetime | None = None


class TicketValidationResponse(BaseModel):
    valid: bool
    reason: str
    message: str
    ticket: TicketResponse | None = None
    validated_at: datetime | None = None
