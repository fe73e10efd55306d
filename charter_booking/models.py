"""
SQLAlchemy models for the quote/booking lifecycle.
Flight inventory, quotes/bookings, payments, outbox jobs and logs.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, Text, ForeignKey, Index, JSON,
    CheckConstraint, Uuid, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
import uuid
import enum

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Enums
class QuoteKind(str, enum.Enum):
    CHARTER = "CHARTER"
    EMPTY_LEG = "EMPTY_LEG"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class RejectionReason(str, enum.Enum):
    AIRCRAFT_UNAVAILABLE = "AIRCRAFT_UNAVAILABLE"
    ROUTE_NOT_SERVICEABLE = "ROUTE_NOT_SERVICEABLE"
    INVALID_DATES = "INVALID_DATES"
    PRICING_ISSUE = "PRICING_ISSUE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    DEAL_NOT_AVAILABLE = "DEAL_NOT_AVAILABLE"
    NO_PAYMENT_MADE = "NO_PAYMENT_MADE"
    OTHER = "OTHER"


class FlightStatus(str, enum.Enum):
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    GATEWAY = "GATEWAY"


class EffectKind(str, enum.Enum):
    QUOTE_CONFIRMATION = "QUOTE_CONFIRMATION"
    UPDATED_QUOTE = "UPDATED_QUOTE"
    REJECTION_NOTICE = "REJECTION_NOTICE"
    FLIGHT_CONFIRMATION = "FLIGHT_CONFIRMATION"
    PAYMENT_RECEIPT = "PAYMENT_RECEIPT"
    EXPIRY_NOTICE = "EXPIRY_NOTICE"
    RECEIPT_RECEIVED = "RECEIPT_RECEIVED"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class MessageChannel(str, enum.Enum):
    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"


class MessageStatus(str, enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"


# Models
class EmptyLegFlight(Base):
    __tablename__ = "empty_leg_flights"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Route
    departure_airport = Column(String(255), nullable=False)
    arrival_airport = Column(String(255), nullable=False)
    departure_at = Column(UTCDateTime, nullable=False)
    aircraft_name = Column(String(255), nullable=True)

    # Inventory - mutated only through SeatAllocator
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    price_per_seat_usd = Column(Numeric(12, 2), nullable=True)
    status = Column(SQLEnum(FlightStatus), default=FlightStatus.PUBLISHED, nullable=False)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    bookings = relationship("QuoteBooking", back_populates="flight")

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_flight_available_non_negative"),
        CheckConstraint("available_seats <= total_seats", name="ck_flight_available_within_total"),
        Index("idx_flights_status_departure", "status", "departure_at"),
    )


class QuoteBooking(Base):
    __tablename__ = "quote_bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reference_number = Column(String(32), unique=True, nullable=False, index=True)
    kind = Column(SQLEnum(QuoteKind), nullable=False)
    status = Column(SQLEnum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    version = Column(Integer, default=1, nullable=False)

    # Empty leg inventory owner
    flight_id = Column(Uuid, ForeignKey("empty_leg_flights.id"), nullable=True)

    # Charter route (or snapshot of the flight for empty legs)
    departure_airport = Column(String(255), nullable=True)
    arrival_airport = Column(String(255), nullable=True)
    departure_at = Column(UTCDateTime, nullable=True)
    aircraft_name = Column(String(255), nullable=True)

    # Request
    seats_requested = Column(Integer, nullable=False)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False)
    client_phone = Column(String(50), nullable=False)

    # Commercial terms
    total_price_usd = Column(Numeric(12, 2), nullable=True)
    payment_deadline = Column(UTCDateTime, nullable=True)
    bank_details = Column(JSON, nullable=True)
    receipt_ref = Column(String(1000), nullable=True)

    # Rejection
    rejection_reason = Column(SQLEnum(RejectionReason), nullable=True)
    rejection_note = Column(Text, nullable=True)

    # Lifecycle stamps
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(UTCDateTime, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    flight = relationship("EmptyLegFlight", back_populates="bookings")
    payments = relationship("Payment", back_populates="quote")

    __table_args__ = (
        CheckConstraint("seats_requested > 0", name="ck_quote_seats_positive"),
        Index("idx_quotes_status_deadline", "status", "payment_deadline"),
        Index("idx_quotes_kind_status_created", "kind", "status", "created_at"),
        Index("idx_quotes_flight_status", "flight_id", "status"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_id = Column(Uuid, ForeignKey("quote_bookings.id"), nullable=False)

    method = Column(SQLEnum(PaymentMethod), nullable=False)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    amount_usd = Column(Numeric(12, 2), nullable=True)
    transaction_ref = Column(String(255), nullable=True, unique=True)
    receipt_ref = Column(String(1000), nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    quote = relationship("QuoteBooking", back_populates="payments")

    __table_args__ = (
        Index("idx_payments_quote_status", "quote_id", "status"),
    )


class SideEffectJob(Base):
    __tablename__ = "side_effect_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_id = Column(Uuid, ForeignKey("quote_bookings.id"), nullable=False)

    effect_kind = Column(SQLEnum(EffectKind), nullable=False)
    quote_version = Column(Integer, nullable=False)
    dedupe_key = Column(String(255), unique=True, nullable=False)
    payload = Column(JSON, nullable=False)

    # Processing state
    status = Column(SQLEnum(JobStatus), default=JobStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, nullable=False)
    next_attempt_at = Column(UTCDateTime, default=utcnow, nullable=False)
    claimed_at = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    document_url = Column(String(1000), nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_jobs_status_next_attempt", "status", "next_attempt_at"),
    )


class MessageLog(Base):
    __tablename__ = "message_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_id = Column(Uuid, nullable=True, index=True)
    job_id = Column(Uuid, nullable=True, index=True)

    channel = Column(SQLEnum(MessageChannel), nullable=False)
    template = Column(String(100), nullable=True)
    recipient = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    media_url = Column(String(1000), nullable=True)
    status = Column(SQLEnum(MessageStatus), nullable=False)
    external_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("idx_messages_status_date", "status", "created_at"),
    )


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    event = Column(String(100), nullable=False, index=True)  # e.g. "quote_approved"
    quote_id = Column(Uuid, ForeignKey("quote_bookings.id"), nullable=False)
    actor = Column(String(100), nullable=True)
    ip_address = Column(String(100), nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    version = Column(Integer, nullable=True)
    data = Column(JSON, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("idx_events_quote_date", "quote_id", "created_at"),
    )
