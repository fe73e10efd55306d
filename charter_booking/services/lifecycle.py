"""
Quote/booking lifecycle service.

Each public operation is one database transaction: the record transition,
any seat movement through the SeatAllocator, the outbox jobs for its side
effects and the audit row either all commit or all roll back.

Record-level concurrency is optimistic. A transition is a conditional
UPDATE on (id, version, status); if another actor got there first the
UPDATE matches nothing and the caller gets StateConflict.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import secrets
import string
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import (
    DEFAULT_PAYMENT_WINDOW_HOURS,
    DISPATCHER_MAX_ATTEMPTS,
    RESEND_PAYMENT_WINDOW_HOURS,
    UNCONFIRMED_HOLD_TTL_MINUTES,
)
from ..errors import InventoryUnavailable, NotFoundError, StateConflict, ValidationError
from ..models import (
    BookingStatus, EffectKind, EventLog, JobStatus, MessageLog, Payment, QuoteBooking,
    QuoteKind, RejectionReason, SideEffectJob, utcnow
)
from .inventory import SeatAllocator
from .payments import PaymentLedger
from .state_machine import can_transition, releases_seats, sources_for

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {
    QuoteKind.EMPTY_LEG: "PEX-EL",
    QuoteKind.CHARTER: "PEX-QT",
}
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits

# approve and resend both enter APPROVED; only resend takes the self-loop
APPROVE_FROM = sources_for(BookingStatus.APPROVED) - {BookingStatus.APPROVED}
RESEND_FROM = sources_for(BookingStatus.APPROVED) & {BookingStatus.APPROVED}
REJECT_FROM = sources_for(BookingStatus.REJECTED)
CONFIRM_FROM = sources_for(BookingStatus.PAID)
COMPLETE_FROM = sources_for(BookingStatus.COMPLETED)
EXPIRE_FROM = sources_for(BookingStatus.EXPIRED)


@dataclass
class ActorContext:
    """Who is acting: the presented credential, an actor id and the client IP."""
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    credential: Optional[str] = None


SYSTEM_ACTOR = ActorContext(actor_id="system")


@dataclass
class ClientContact:
    name: str
    email: str
    phone: str

    def validate(self) -> "ClientContact":
        missing = [field for field in ("name", "email", "phone") if not (getattr(self, field) or "").strip()]
        if missing:
            raise ValidationError("Client contact is incomplete", missing=missing)
        if "@" not in self.email:
            raise ValidationError("Client email is invalid", email=self.email)
        return self


@dataclass
class BankDetails:
    bank_name: str
    account_name: str
    account_number: str
    sort_code: Optional[str] = None

    def validate(self) -> "BankDetails":
        required = {
            "bankName": self.bank_name,
            "accountName": self.account_name,
            "accountNumber": self.account_number,
        }
        missing = [key for key, value in required.items() if not (value or "").strip()]
        if missing:
            raise ValidationError("Bank details are incomplete", missing=missing)
        return self

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "bankName": self.bank_name,
            "accountName": self.account_name,
            "accountNumber": self.account_number,
            "sortCode": self.sort_code,
        }


@dataclass
class CharterRoute:
    departure_airport: str
    arrival_airport: str
    departure_at: datetime
    aircraft_name: Optional[str] = None


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _price(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("totalPriceUsd must be a number", totalPriceUsd=str(value))
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("totalPriceUsd must be greater than zero", totalPriceUsd=str(value))
    return amount.quantize(Decimal("0.01"))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return _aware(value).isoformat() if value else None


def snapshot(booking: QuoteBooking) -> Dict[str, Any]:
    """JSON-safe copy of the fields documents and messages are rendered from."""
    return {
        "quoteId": str(booking.id),
        "referenceNumber": booking.reference_number,
        "kind": booking.kind.value,
        "status": booking.status.value,
        "version": booking.version,
        "client": {
            "name": booking.client_name,
            "email": booking.client_email,
            "phone": booking.client_phone,
        },
        "route": {
            "departure": booking.departure_airport,
            "arrival": booking.arrival_airport,
        },
        "departureAt": _iso(booking.departure_at),
        "aircraft": booking.aircraft_name,
        "seats": booking.seats_requested,
        "totalPriceUsd": str(booking.total_price_usd) if booking.total_price_usd is not None else None,
        "paymentDeadline": _iso(booking.payment_deadline),
        "bankDetails": booking.bank_details,
        "rejectionReason": booking.rejection_reason.value if booking.rejection_reason else None,
        "rejectionNote": booking.rejection_note,
    }


class QuoteLifecycleService:
    """State machine operations over QuoteBooking rows."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        hold_ttl: timedelta = timedelta(minutes=UNCONFIRMED_HOLD_TTL_MINUTES),
        max_attempts: int = DISPATCHER_MAX_ATTEMPTS,
    ):
        self.session = session
        self.clock = clock
        self.hold_ttl = hold_ttl
        self.max_attempts = max_attempts
        self.allocator = SeatAllocator(session)
        self.payments = PaymentLedger(session, clock=clock)

    @asynccontextmanager
    async def _transaction(self):
        try:
            yield
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise

    # Reads

    async def get(self, quote_id: uuid.UUID, kind: Optional[QuoteKind] = None) -> QuoteBooking:
        result = await self.session.execute(
            select(QuoteBooking)
            .where(QuoteBooking.id == quote_id)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking or (kind is not None and booking.kind != kind):
            raise NotFoundError(f"Quote {quote_id} not found", quoteId=str(quote_id))
        return booking

    async def messages(self, quote_id: uuid.UUID, kind: Optional[QuoteKind] = None) -> List[MessageLog]:
        """Delivery attempts for a quote, oldest first."""
        booking = await self.get(quote_id, kind)
        result = await self.session.execute(
            select(MessageLog)
            .where(MessageLog.quote_id == booking.id)
            .order_by(MessageLog.created_at)
        )
        return list(result.scalars().all())

    async def events(self, quote_id: uuid.UUID, kind: Optional[QuoteKind] = None) -> List[EventLog]:
        """Audit trail for a quote, oldest first."""
        booking = await self.get(quote_id, kind)
        result = await self.session.execute(
            select(EventLog)
            .where(EventLog.quote_id == booking.id)
            .order_by(EventLog.created_at, EventLog.version)
        )
        return list(result.scalars().all())

    # Operations

    async def submit(
        self,
        kind: QuoteKind,
        seats_requested: int,
        contact: ClientContact,
        flight_id: Optional[uuid.UUID] = None,
        route: Optional[CharterRoute] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> QuoteBooking:
        """Create a PENDING quote; empty legs hold their seats first."""
        if seats_requested is None or seats_requested < 1:
            raise ValidationError("seatsRequested must be at least 1", seatsRequested=seats_requested)
        contact.validate()
        now = self.clock()

        async with self._transaction():
            booking = QuoteBooking(
                id=uuid.uuid4(),
                kind=kind,
                status=BookingStatus.PENDING,
                version=1,
                seats_requested=seats_requested,
                client_name=contact.name.strip(),
                client_email=contact.email.strip(),
                client_phone=contact.phone.strip(),
                created_at=now,
                updated_at=now,
            )

            if kind == QuoteKind.EMPTY_LEG:
                if flight_id is None:
                    raise ValidationError("emptyLegId is required")
                flight = await self.allocator.get_flight(flight_id)
                if _aware(flight.departure_at) <= now:
                    raise InventoryUnavailable(
                        "This deal is no longer available",
                        flightId=str(flight_id),
                        availableSeats=0,
                    )
                await self.allocator.hold(flight_id, seats_requested)

                booking.flight_id = flight.id
                booking.departure_airport = flight.departure_airport
                booking.arrival_airport = flight.arrival_airport
                booking.departure_at = flight.departure_at
                booking.aircraft_name = flight.aircraft_name
                if flight.price_per_seat_usd is not None:
                    booking.total_price_usd = flight.price_per_seat_usd * seats_requested
            else:
                if route is None:
                    raise ValidationError("Charter route is required")
                if not route.departure_airport or not route.arrival_airport:
                    raise ValidationError("Departure and arrival airports are required")
                if route.departure_airport == route.arrival_airport:
                    raise ValidationError("Departure and arrival airports must differ")
                if _aware(route.departure_at) <= now:
                    raise ValidationError("departureDateTime must be in the future")
                booking.departure_airport = route.departure_airport
                booking.arrival_airport = route.arrival_airport
                booking.departure_at = _aware(route.departure_at)
                booking.aircraft_name = route.aircraft_name

            booking.reference_number = await self._new_reference(kind, now)
            self.session.add(booking)
            await self.session.flush()

            self._log_event(booking, "quote_submitted", None, actor, data={
                "seatsRequested": seats_requested,
                "flightId": str(flight_id) if flight_id else None,
            })

        logger.info(
            f"📝 Quote {booking.reference_number} submitted ({kind.value}, {seats_requested} seat(s))"
        )
        return booking

    async def approve(
        self,
        quote_id: uuid.UUID,
        total_price_usd: Any,
        bank_details: BankDetails,
        expected_version: int,
        payment_deadline: Optional[datetime] = None,
        client_contact: Optional[ClientContact] = None,
        departure_at: Optional[datetime] = None,
        seats_requested: Optional[int] = None,
        kind: Optional[QuoteKind] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> QuoteBooking:
        """
        PENDING -> APPROVED with price, deadline and bank details.

        Staff edits (contact, departure time, seat count) land in the same
        transaction; a changed seat count on an empty leg moves the hold by
        the difference.
        """
        now = self.clock()
        price = _price(total_price_usd)
        deadline = _aware(payment_deadline) if payment_deadline else now + timedelta(hours=DEFAULT_PAYMENT_WINDOW_HOURS)
        if deadline <= now:
            raise ValidationError("paymentDeadline must be in the future", paymentDeadline=deadline.isoformat())
        bank_details.validate()
        if seats_requested is not None and seats_requested < 1:
            raise ValidationError("seatsRequested must be at least 1", seatsRequested=seats_requested)
        if client_contact is not None:
            client_contact.validate()

        async with self._transaction():
            booking = await self.get(quote_id, kind)
            previous_seats = booking.seats_requested

            values: Dict[str, Any] = {
                "total_price_usd": price,
                "payment_deadline": deadline,
                "bank_details": bank_details.as_dict(),
                "approved_at": now,
                "approved_by": actor.actor_id,
            }
            if client_contact is not None:
                values.update(
                    client_name=client_contact.name.strip(),
                    client_email=client_contact.email.strip(),
                    client_phone=client_contact.phone.strip(),
                )
            if departure_at is not None:
                values["departure_at"] = _aware(departure_at)
            if seats_requested is not None:
                values["seats_requested"] = seats_requested

            updated = await self._transition(
                booking, BookingStatus.APPROVED, expected_version, APPROVE_FROM,
                values, actor, "quote_approved",
            )

            if updated.kind == QuoteKind.EMPTY_LEG and seats_requested is not None:
                delta = seats_requested - previous_seats
                if delta > 0:
                    await self.allocator.hold(updated.flight_id, delta)
                elif delta < 0:
                    await self.allocator.release(updated.flight_id, -delta)
            if updated.flight_id:
                await self.allocator.commit(updated.flight_id, updated.seats_requested)

            self._enqueue(updated, EffectKind.QUOTE_CONFIRMATION)

        return updated

    async def reject(
        self,
        quote_id: uuid.UUID,
        reason: Any,
        expected_version: int,
        note: Optional[str] = None,
        kind: Optional[QuoteKind] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> QuoteBooking:
        """PENDING/APPROVED -> REJECTED; seats go back to the flight."""
        try:
            rejection_reason = RejectionReason(reason)
        except ValueError:
            raise ValidationError(
                "rejectionReason is not a recognised reason",
                rejectionReason=str(reason),
                allowed=[r.value for r in RejectionReason],
            )

        async with self._transaction():
            booking = await self.get(quote_id, kind)
            previous = booking.status
            updated = await self._transition(
                booking, BookingStatus.REJECTED, expected_version, REJECT_FROM,
                {"rejection_reason": rejection_reason, "rejection_note": note},
                actor, "quote_rejected",
            )
            await self._release_hold(updated, previous)
            self._enqueue(updated, EffectKind.REJECTION_NOTICE)

        return updated

    async def resend(
        self,
        quote_id: uuid.UUID,
        total_price_usd: Any,
        expected_version: int,
        payment_deadline: Optional[datetime] = None,
        kind: Optional[QuoteKind] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> QuoteBooking:
        """APPROVED -> APPROVED with a new price. Inventory is untouched."""
        now = self.clock()
        price = _price(total_price_usd)
        deadline = _aware(payment_deadline) if payment_deadline else now + timedelta(hours=RESEND_PAYMENT_WINDOW_HOURS)
        if deadline <= now:
            raise ValidationError("paymentDeadline must be in the future", paymentDeadline=deadline.isoformat())

        async with self._transaction():
            booking = await self.get(quote_id, kind)
            updated = await self._transition(
                booking, BookingStatus.APPROVED, expected_version, RESEND_FROM,
                {"total_price_usd": price, "payment_deadline": deadline, "receipt_ref": None},
                actor, "quote_resent",
            )
            self._enqueue(updated, EffectKind.UPDATED_QUOTE)

        return updated

    async def confirm_payment(
        self,
        quote_id: uuid.UUID,
        expected_version: int,
        kind: Optional[QuoteKind] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> Tuple[QuoteBooking, Payment]:
        """APPROVED -> PAID once a successful payment or a receipt is on record."""
        async with self._transaction():
            booking = await self.get(quote_id, kind)
            self._check(booking, BookingStatus.PAID, expected_version, CONFIRM_FROM)

            payment = await self.payments.settle_for_confirmation(booking)
            updated = await self._transition(
                booking, BookingStatus.PAID, expected_version, CONFIRM_FROM,
                {"paid_at": payment.paid_at or self.clock()},
                actor, "payment_confirmed",
                data={"paymentId": str(payment.id), "method": payment.method.value},
            )
            self._enqueue(updated, EffectKind.FLIGHT_CONFIRMATION)
            self._enqueue(updated, EffectKind.PAYMENT_RECEIPT, extra={
                "payment": {
                    "id": str(payment.id),
                    "method": payment.method.value,
                    "amountUsd": str(payment.amount_usd) if payment.amount_usd is not None else None,
                    "transactionRef": payment.transaction_ref or f"PAY-{updated.reference_number}",
                    "paidAt": _iso(payment.paid_at),
                },
            })

        return updated, payment

    async def complete(
        self,
        quote_id: uuid.UUID,
        expected_version: int,
        kind: Optional[QuoteKind] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> QuoteBooking:
        """PAID -> COMPLETED after the flight. Seats stay consumed."""
        async with self._transaction():
            booking = await self.get(quote_id, kind)
            updated = await self._transition(
                booking, BookingStatus.COMPLETED, expected_version, COMPLETE_FROM,
                {"completed_at": self.clock()}, actor, "booking_completed",
            )
        return updated

    async def submit_receipt(
        self,
        quote_id: uuid.UUID,
        receipt_ref: str,
        kind: Optional[QuoteKind] = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> Tuple[QuoteBooking, Payment]:
        """Attach a payment receipt to an APPROVED quote without a version bump."""
        if not receipt_ref or not receipt_ref.strip():
            raise ValidationError("receiptUrl is required")
        receipt_ref = receipt_ref.strip()

        async with self._transaction():
            booking = await self.get(quote_id, kind)
            if booking.status != BookingStatus.APPROVED:
                raise StateConflict(
                    f"Cannot attach a receipt to a {booking.status.value} quote",
                    currentStatus=booking.status.value,
                    currentVersion=booking.version,
                )

            now = self.clock()
            result = await self.session.execute(
                update(QuoteBooking)
                .where(
                    QuoteBooking.id == booking.id,
                    QuoteBooking.version == booking.version,
                    QuoteBooking.status == BookingStatus.APPROVED,
                )
                .values(receipt_ref=receipt_ref, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StateConflict("Quote changed while the receipt was being attached; refresh and retry")

            booking = await self.get(quote_id)
            payment = await self.payments.open_receipt_payment(booking)
            self._log_event(booking, "receipt_submitted", booking.status, actor, data={
                "paymentId": str(payment.id),
                "receiptRef": receipt_ref,
            })
            self._enqueue(
                booking, EffectKind.RECEIPT_RECEIVED,
                dedupe_suffix=str(payment.id),
                extra={"receiptRef": receipt_ref},
            )

        logger.info(f"🧾 Receipt attached to {booking.reference_number}")
        return booking, payment

    async def expire(self, quote_id: uuid.UUID, now: Optional[datetime] = None) -> Optional[QuoteBooking]:
        """
        System-only transition to EXPIRED.

        Returns the expired record, or None when there was nothing to do:
        already terminal, paid, not yet due, or moved by another actor
        between the read and the conditional update.
        """
        now = now or self.clock()

        async with self._transaction():
            booking = await self.get(quote_id)
            previous = booking.status

            if previous not in EXPIRE_FROM or not self.is_due(booking, now):
                logger.debug(f"Expire of {booking.reference_number} is a no-op ({previous.value})")
                return None

            result = await self.session.execute(
                update(QuoteBooking)
                .where(
                    QuoteBooking.id == booking.id,
                    QuoteBooking.version == booking.version,
                    QuoteBooking.status == previous,
                )
                .values(
                    status=BookingStatus.EXPIRED,
                    version=QuoteBooking.version + 1,
                    expired_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info(f"Expire of {booking.reference_number} lost a race; skipping")
                return None

            updated = await self.get(quote_id)
            await self._release_hold(updated, previous)
            self._log_event(updated, "quote_expired", previous, SYSTEM_ACTOR)
            if previous == BookingStatus.APPROVED:
                self._enqueue(updated, EffectKind.EXPIRY_NOTICE)

        logger.info(
            f"⌛ Quote {updated.reference_number} expired: "
            f"{previous.value} -> EXPIRED (v{updated.version})"
        )
        return updated

    def is_due(self, booking: QuoteBooking, now: datetime) -> bool:
        """Whether the deadline or unconfirmed-hold TTL of `booking` has passed."""
        if booking.status == BookingStatus.APPROVED:
            return booking.payment_deadline is not None and now > _aware(booking.payment_deadline)
        if booking.status == BookingStatus.PENDING:
            # Charter quotes hold no inventory, so nothing to reclaim.
            return booking.kind == QuoteKind.EMPTY_LEG and now > _aware(booking.created_at) + self.hold_ttl
        return False

    # Internals

    def _check(
        self,
        booking: QuoteBooking,
        target: BookingStatus,
        expected_version: int,
        allowed_from: Iterable[BookingStatus],
    ) -> None:
        if booking.status not in allowed_from or not can_transition(booking.status, target):
            logger.info(
                f"Rejected {booking.status.value} -> {target.value} on {booking.reference_number}"
            )
            raise StateConflict(
                f"Cannot move a {booking.status.value} quote to {target.value}; refresh and retry",
                currentStatus=booking.status.value,
                currentVersion=booking.version,
            )
        if booking.version != expected_version:
            logger.info(
                f"Stale version on {booking.reference_number}: "
                f"expected {expected_version}, current {booking.version}"
            )
            raise StateConflict(
                "Quote was modified by someone else; refresh and retry",
                currentStatus=booking.status.value,
                currentVersion=booking.version,
            )

    async def _transition(
        self,
        booking: QuoteBooking,
        target: BookingStatus,
        expected_version: int,
        allowed_from: Iterable[BookingStatus],
        values: Dict[str, Any],
        actor: ActorContext,
        event: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> QuoteBooking:
        allowed_from = frozenset(allowed_from)
        self._check(booking, target, expected_version, allowed_from)
        previous = booking.status

        result = await self.session.execute(
            update(QuoteBooking)
            .where(
                QuoteBooking.id == booking.id,
                QuoteBooking.version == expected_version,
                QuoteBooking.status.in_(allowed_from),
            )
            .values(
                status=target,
                version=QuoteBooking.version + 1,
                updated_at=self.clock(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.get(booking.id)
            raise StateConflict(
                "Quote was modified by someone else; refresh and retry",
                currentStatus=current.status.value,
                currentVersion=current.version,
            )

        updated = await self.get(booking.id)
        self._log_event(updated, event, previous, actor, data=data)
        logger.info(
            f"✅ {updated.reference_number}: {previous.value} -> {target.value} (v{updated.version})"
        )
        return updated

    async def _release_hold(self, booking: QuoteBooking, previous: BookingStatus) -> None:
        if booking.kind == QuoteKind.EMPTY_LEG and releases_seats(previous, booking.status):
            await self.allocator.release(booking.flight_id, booking.seats_requested)

    def _enqueue(
        self,
        booking: QuoteBooking,
        effect_kind: EffectKind,
        dedupe_suffix: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> SideEffectJob:
        """Add an outbox job in the current transaction."""
        suffix = dedupe_suffix or f"v{booking.version}"
        payload = snapshot(booking)
        if extra:
            payload.update(extra)
        now = self.clock()

        job = SideEffectJob(
            id=uuid.uuid4(),
            quote_id=booking.id,
            effect_kind=effect_kind,
            quote_version=booking.version,
            dedupe_key=f"{booking.id}:{effect_kind.value}:{suffix}",
            payload=payload,
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=self.max_attempts,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(job)
        logger.debug(f"Queued {effect_kind.value} for {booking.reference_number}")
        return job

    def _log_event(
        self,
        booking: QuoteBooking,
        event: str,
        previous: Optional[BookingStatus],
        actor: ActorContext,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.session.add(EventLog(
            event=event,
            quote_id=booking.id,
            actor=actor.actor_id,
            ip_address=actor.ip_address,
            from_status=previous.value if previous else None,
            to_status=booking.status.value,
            version=booking.version,
            data=data,
            created_at=self.clock(),
        ))

    async def _new_reference(self, kind: QuoteKind, now: datetime) -> str:
        prefix = REFERENCE_PREFIXES[kind]
        for _ in range(10):
            suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(6))
            candidate = f"{prefix}-{now.year}-{suffix}"
            exists = await self.session.scalar(
                select(QuoteBooking.id).where(QuoteBooking.reference_number == candidate)
            )
            if not exists:
                return candidate
        raise RuntimeError("Could not generate a unique reference number")
