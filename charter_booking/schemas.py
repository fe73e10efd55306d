"""
Pydantic models for the HTTP API. Fields are snake_case in Python and
camelCase on the wire.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import (
    EmptyLegFlight, EventLog, MessageLog, Payment, PaymentStatus, QuoteBooking, SideEffectJob
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


# Requests

class ContactInfo(ApiModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone: str = Field(..., min_length=3, max_length=50)


class BankDetailsSchema(ApiModel):
    bank_name: str = Field(..., min_length=1)
    account_name: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)
    sort_code: Optional[str] = None


class EmptyLegQuoteRequest(ApiModel):
    empty_leg_id: uuid.UUID
    seats_requested: int = Field(..., ge=1)
    contact_info: ContactInfo


class CharterQuoteRequest(ApiModel):
    departure_airport: str = Field(..., min_length=1)
    arrival_airport: str = Field(..., min_length=1)
    departure_date_time: datetime
    passengers: int = Field(..., ge=1)
    aircraft_name: Optional[str] = None
    contact_info: ContactInfo


class VersionedRequest(ApiModel):
    expected_version: int = Field(..., ge=1)


class ApproveRequest(VersionedRequest):
    total_price_usd: Decimal = Field(..., gt=0)
    payment_deadline: Optional[datetime] = None
    bank_details: BankDetailsSchema
    client_contact: Optional[ContactInfo] = None
    departure_date_time: Optional[datetime] = None
    seats_requested: Optional[int] = Field(None, ge=1)


class RejectRequest(VersionedRequest):
    rejection_reason: str
    rejection_note: Optional[str] = Field(None, max_length=2000)


class ResendRequest(VersionedRequest):
    total_price_usd: Decimal = Field(..., gt=0)
    payment_deadline: Optional[datetime] = None


class ReceiptRequest(ApiModel):
    receipt_url: str = Field(..., min_length=1, max_length=1000)


class PaymentCallbackRequest(ApiModel):
    reference_number: str
    transaction_ref: str = Field(..., min_length=1)
    amount_usd: Decimal = Field(..., gt=0)
    status: PaymentStatus


class FlightCreateRequest(ApiModel):
    departure_airport: str = Field(..., min_length=1)
    arrival_airport: str = Field(..., min_length=1)
    departure_date_time: datetime
    aircraft_name: Optional[str] = None
    total_seats: int = Field(..., ge=1)
    price_per_seat_usd: Optional[Decimal] = Field(None, gt=0)


# Responses

class SubmitResponse(ApiModel):
    id: uuid.UUID
    reference_number: str
    kind: str
    status: str
    version: int
    total_price_usd: Optional[float] = None
    created_from_idempotency: bool = False


class QuoteResponse(ApiModel):
    id: uuid.UUID
    reference_number: str
    kind: str
    status: str
    version: int
    flight_id: Optional[uuid.UUID] = None
    departure_airport: Optional[str] = None
    arrival_airport: Optional[str] = None
    departure_date_time: Optional[datetime] = None
    aircraft_name: Optional[str] = None
    seats_requested: int
    client_contact: ContactInfo
    total_price_usd: Optional[float] = None
    payment_deadline: Optional[datetime] = None
    bank_details: Optional[Dict[str, Any]] = None
    receipt_url: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_note: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, booking: QuoteBooking) -> "QuoteResponse":
        return cls(
            id=booking.id,
            reference_number=booking.reference_number,
            kind=booking.kind.value,
            status=booking.status.value,
            version=booking.version,
            flight_id=booking.flight_id,
            departure_airport=booking.departure_airport,
            arrival_airport=booking.arrival_airport,
            departure_date_time=booking.departure_at,
            aircraft_name=booking.aircraft_name,
            seats_requested=booking.seats_requested,
            client_contact=ContactInfo(
                name=booking.client_name,
                email=booking.client_email,
                phone=booking.client_phone,
            ),
            total_price_usd=_money(booking.total_price_usd),
            payment_deadline=booking.payment_deadline,
            bank_details=booking.bank_details,
            receipt_url=booking.receipt_ref,
            rejection_reason=booking.rejection_reason.value if booking.rejection_reason else None,
            rejection_note=booking.rejection_note,
            approved_by=booking.approved_by,
            approved_at=booking.approved_at,
            paid_at=booking.paid_at,
            completed_at=booking.completed_at,
            expired_at=booking.expired_at,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class PaymentResponse(ApiModel):
    id: uuid.UUID
    quote_id: uuid.UUID
    method: str
    status: str
    amount_usd: Optional[float] = None
    transaction_ref: Optional[str] = None
    receipt_url: Optional[str] = None
    paid_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            quote_id=payment.quote_id,
            method=payment.method.value,
            status=payment.status.value,
            amount_usd=_money(payment.amount_usd),
            transaction_ref=payment.transaction_ref,
            receipt_url=payment.receipt_ref,
            paid_at=payment.paid_at,
        )


class ConfirmPaymentResponse(ApiModel):
    quote: QuoteResponse
    payment: PaymentResponse


class ReceiptResponse(ApiModel):
    quote: QuoteResponse
    payment: PaymentResponse


class FlightResponse(ApiModel):
    id: uuid.UUID
    departure_airport: str
    arrival_airport: str
    departure_date_time: datetime
    aircraft_name: Optional[str] = None
    total_seats: int
    available_seats: int
    price_per_seat_usd: Optional[float] = None
    status: str

    @classmethod
    def from_model(cls, flight: EmptyLegFlight) -> "FlightResponse":
        return cls(
            id=flight.id,
            departure_airport=flight.departure_airport,
            arrival_airport=flight.arrival_airport,
            departure_date_time=flight.departure_at,
            aircraft_name=flight.aircraft_name,
            total_seats=flight.total_seats,
            available_seats=flight.available_seats,
            price_per_seat_usd=_money(flight.price_per_seat_usd),
            status=flight.status.value,
        )


class ReconcileResponse(ApiModel):
    flight_id: uuid.UUID
    total_seats: int
    held_seats: int
    available_seats: int
    drift: int
    oversold: bool


class SideEffectJobResponse(ApiModel):
    id: uuid.UUID
    quote_id: uuid.UUID
    effect_kind: str
    quote_version: int
    dedupe_key: str
    status: str
    attempts: int
    max_attempts: int
    next_attempt_at: datetime
    last_error: Optional[str] = None
    document_url: Optional[str] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, job: SideEffectJob) -> "SideEffectJobResponse":
        return cls(
            id=job.id,
            quote_id=job.quote_id,
            effect_kind=job.effect_kind.value,
            quote_version=job.quote_version,
            dedupe_key=job.dedupe_key,
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            next_attempt_at=job.next_attempt_at,
            last_error=job.last_error,
            document_url=job.document_url,
            completed_at=job.completed_at,
        )


class SweepResponse(ApiModel):
    scanned: int
    expired: int
    skipped: int
    errors: int
    closed_flights: int = 0
    expired_references: List[str]


class MessageLogResponse(ApiModel):
    id: uuid.UUID
    job_id: Optional[uuid.UUID] = None
    channel: str
    template: Optional[str] = None
    recipient: Optional[str] = None
    content: Optional[str] = None
    media_url: Optional[str] = None
    status: str
    external_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_model(cls, message: MessageLog) -> "MessageLogResponse":
        return cls(
            id=message.id,
            job_id=message.job_id,
            channel=message.channel.value,
            template=message.template,
            recipient=message.recipient,
            content=message.content,
            media_url=message.media_url,
            status=message.status.value,
            external_id=message.external_id,
            error=message.error,
            created_at=message.created_at,
        )


class EventLogResponse(ApiModel):
    id: uuid.UUID
    event: str
    actor: Optional[str] = None
    ip_address: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    version: Optional[int] = None
    data: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_model(cls, event: EventLog) -> "EventLogResponse":
        return cls(
            id=event.id,
            event=event.event,
            actor=event.actor,
            ip_address=event.ip_address,
            from_status=event.from_status,
            to_status=event.to_status,
            version=event.version,
            data=event.data,
            created_at=event.created_at,
        )


class FlightCleanupResponse(ApiModel):
    closed_count: int
    flight_ids: List[uuid.UUID]
