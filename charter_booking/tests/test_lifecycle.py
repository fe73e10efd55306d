"""
Lifecycle service tests: transitions, inventory coupling and the outbox.
"""
from datetime import timedelta
from decimal import Decimal
import uuid

import pytest
from sqlalchemy import select

from charter_booking.errors import (
    InventoryUnavailable, NotFoundError, PaymentMissing, StateConflict, ValidationError
)
from charter_booking.models import (
    BookingStatus, EffectKind, EventLog, JobStatus, Payment, PaymentMethod,
    PaymentStatus, QuoteBooking, QuoteKind
)
from charter_booking.services.lifecycle import CharterRoute, ClientContact
from charter_booking.services.payments import PaymentLedger, sign_payload, verify_signature

from .conftest import STAFF


class TestSubmit:

    @pytest.mark.asyncio
    async def test_empty_leg_submit_holds_seats(self, publish_flight, submit_empty_leg, available):
        flight_id = await publish_flight(total_seats=4, price_per_seat_usd=Decimal("1250.00"))

        booking = await submit_empty_leg(flight_id, seats=3)

        assert booking.status == BookingStatus.PENDING
        assert booking.version == 1
        assert booking.reference_number.startswith(f"PEX-EL-{booking.created_at.year}-")
        assert len(booking.reference_number.split("-")[-1]) == 6
        assert booking.total_price_usd == Decimal("3750.00")
        assert booking.departure_airport == "LFPB"
        assert await available(flight_id) == 1

    @pytest.mark.asyncio
    async def test_submit_creates_no_side_effects(self, publish_flight, submit_empty_leg, jobs_for):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        assert await jobs_for(booking.id) == []

    @pytest.mark.asyncio
    async def test_insufficient_seats(self, publish_flight, submit_empty_leg, available, session_factory):
        flight_id = await publish_flight(total_seats=2)

        with pytest.raises(InventoryUnavailable):
            await submit_empty_leg(flight_id, seats=3)

        assert await available(flight_id) == 2
        async with session_factory() as session:
            result = await session.execute(select(QuoteBooking))
            assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_unknown_flight(self, submit_empty_leg):
        with pytest.raises(NotFoundError):
            await submit_empty_leg(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_departed_flight_is_unavailable(self, publish_flight, submit_empty_leg, clock):
        flight_id = await publish_flight(days_ahead=1)
        clock.advance(days=2)
        with pytest.raises(InventoryUnavailable):
            await submit_empty_leg(flight_id)

    @pytest.mark.asyncio
    async def test_incomplete_contact_is_rejected(self, session_factory, make_service, publish_flight):
        flight_id = await publish_flight()
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await make_service(session).submit(
                    QuoteKind.EMPTY_LEG, 1,
                    ClientContact(name="", email="ada@example.com", phone="+4477"),
                    flight_id=flight_id,
                )

    @pytest.mark.asyncio
    async def test_charter_submit(self, session_factory, make_service, clock):
        async with session_factory() as session:
            booking = await make_service(session).submit(
                QuoteKind.CHARTER, 6,
                ClientContact(name="Grace Hopper", email="grace@example.com", phone="+12025550100"),
                route=CharterRoute("KTEB", "KPBI", clock() + timedelta(days=10), "Challenger 350"),
            )

        assert booking.kind == QuoteKind.CHARTER
        assert booking.reference_number.startswith("PEX-QT-")
        assert booking.flight_id is None
        assert booking.total_price_usd is None


class TestApprove:

    @pytest.mark.asyncio
    async def test_approve_stamps_terms_and_enqueues_confirmation(
        self, publish_flight, submit_empty_leg, approve, available, jobs_for, clock
    ):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=4)
        deadline = clock() + timedelta(hours=3)

        approved = await approve(booking.id, price=Decimal("5000"), payment_deadline=deadline)

        assert approved.status == BookingStatus.APPROVED
        assert approved.version == 2
        assert approved.total_price_usd == Decimal("5000.00")
        assert approved.payment_deadline == deadline
        assert approved.bank_details["bankName"] == "Barclays"
        assert approved.approved_by == "staff-1"
        assert await available(flight_id) == 0

        jobs = await jobs_for(booking.id)
        assert [job.effect_kind for job in jobs] == [EffectKind.QUOTE_CONFIRMATION]
        assert jobs[0].dedupe_key == f"{booking.id}:QUOTE_CONFIRMATION:v2"
        assert jobs[0].payload["totalPriceUsd"] == "5000.00"
        assert jobs[0].payload["bankDetails"]["accountNumber"] == "12345678"

    @pytest.mark.asyncio
    async def test_default_deadline(self, publish_flight, submit_empty_leg, session_factory, make_service, clock):
        from .conftest import bank_details

        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        async with session_factory() as session:
            approved = await make_service(session).approve(
                booking.id, Decimal("900"), bank_details(), expected_version=1
            )
        assert approved.payment_deadline == clock() + timedelta(hours=3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", [Decimal("0"), Decimal("-10")])
    async def test_price_must_be_positive(self, publish_flight, submit_empty_leg, approve, price):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        with pytest.raises(ValidationError):
            await approve(booking.id, price=price)

    @pytest.mark.asyncio
    async def test_deadline_must_be_in_future(self, publish_flight, submit_empty_leg, approve, clock):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        with pytest.raises(ValidationError):
            await approve(booking.id, payment_deadline=clock() - timedelta(minutes=1))

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, publish_flight, submit_empty_leg, approve, load):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)

        with pytest.raises(StateConflict) as exc:
            await approve(booking.id, version=7)

        assert exc.value.context["currentVersion"] == 1
        assert (await load(QuoteBooking, booking.id)).status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_approve_rejected_quote_conflicts(
        self, publish_flight, submit_empty_leg, approve, session_factory, make_service
    ):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        async with session_factory() as session:
            await make_service(session).reject(booking.id, "AIRCRAFT_UNAVAILABLE", expected_version=1)

        with pytest.raises(StateConflict):
            await approve(booking.id, version=2)

    @pytest.mark.asyncio
    async def test_seat_increase_takes_extra_hold(self, publish_flight, submit_empty_leg, approve, available):
        flight_id = await publish_flight(total_seats=6)
        booking = await submit_empty_leg(flight_id, seats=2)

        approved = await approve(booking.id, seats_requested=5)

        assert approved.seats_requested == 5
        assert await available(flight_id) == 1

    @pytest.mark.asyncio
    async def test_seat_decrease_releases_difference(self, publish_flight, submit_empty_leg, approve, available):
        flight_id = await publish_flight(total_seats=6)
        booking = await submit_empty_leg(flight_id, seats=4)

        await approve(booking.id, seats_requested=1)

        assert await available(flight_id) == 5

    @pytest.mark.asyncio
    async def test_seat_increase_beyond_inventory_changes_nothing(
        self, publish_flight, submit_empty_leg, approve, available, load, jobs_for
    ):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=2)
        await submit_empty_leg(flight_id, seats=1, phone="+447700900999")

        with pytest.raises(InventoryUnavailable):
            await approve(booking.id, seats_requested=4)

        current = await load(QuoteBooking, booking.id)
        assert current.status == BookingStatus.PENDING
        assert current.version == 1
        assert current.seats_requested == 2
        assert await available(flight_id) == 1
        assert await jobs_for(booking.id) == []

    @pytest.mark.asyncio
    async def test_staff_contact_edit(self, publish_flight, submit_empty_leg, approve):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)

        approved = await approve(
            booking.id,
            client_contact=ClientContact(name="Ada King", email="ada.king@example.com", phone="+447700900555"),
        )

        assert approved.client_name == "Ada King"
        assert approved.client_phone == "+447700900555"


class TestRejectAndResend:

    @pytest.mark.asyncio
    async def test_reject_pending_releases_seats(self, publish_flight, submit_empty_leg, session_factory,
                                                 make_service, available, jobs_for):
        flight_id = await publish_flight(total_seats=4)
        await submit_empty_leg(flight_id, seats=2, phone="+447700900001")
        booking = await submit_empty_leg(flight_id, seats=2)
        assert await available(flight_id) == 0

        async with session_factory() as session:
            rejected = await make_service(session).reject(
                booking.id, "AIRCRAFT_UNAVAILABLE", expected_version=1, note="Maintenance"
            )

        assert rejected.status == BookingStatus.REJECTED
        assert rejected.rejection_note == "Maintenance"
        assert await available(flight_id) == 2
        jobs = await jobs_for(booking.id)
        assert [job.effect_kind for job in jobs] == [EffectKind.REJECTION_NOTICE]

    @pytest.mark.asyncio
    async def test_reject_scenario_returns_all_seats(self, publish_flight, submit_empty_leg, session_factory,
                                                     make_service, available):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=2)
        assert await available(flight_id) == 2

        async with session_factory() as session:
            await make_service(session).reject(booking.id, "AIRCRAFT_UNAVAILABLE", expected_version=1)

        assert await available(flight_id) == 4

    @pytest.mark.asyncio
    async def test_reject_approved(self, publish_flight, submit_empty_leg, approve, session_factory,
                                   make_service, available):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=3)
        await approve(booking.id)

        async with session_factory() as session:
            rejected = await make_service(session).reject(booking.id, "NO_PAYMENT_MADE", expected_version=2)

        assert rejected.version == 3
        assert await available(flight_id) == 4

    @pytest.mark.asyncio
    async def test_unknown_reason(self, publish_flight, submit_empty_leg, session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        async with session_factory() as session:
            with pytest.raises(ValidationError) as exc:
                await make_service(session).reject(booking.id, "BAD_WEATHER", expected_version=1)
        assert "OTHER" in exc.value.context["allowed"]

    @pytest.mark.asyncio
    async def test_rejecting_twice_conflicts(self, publish_flight, submit_empty_leg, session_factory,
                                             make_service, available):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=2)
        async with session_factory() as session:
            await make_service(session).reject(booking.id, "OTHER", expected_version=1)

        async with session_factory() as session:
            with pytest.raises(StateConflict):
                await make_service(session).reject(booking.id, "OTHER", expected_version=2)

        assert await available(flight_id) == 4

    @pytest.mark.asyncio
    async def test_resend_preserves_inventory(self, publish_flight, submit_empty_leg, approve,
                                              session_factory, make_service, available, jobs_for, clock):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=3)
        await approve(booking.id)
        after_approve = await available(flight_id)

        async with session_factory() as session:
            resent = await make_service(session).resend(booking.id, Decimal("4200"), expected_version=2)

        assert resent.status == BookingStatus.APPROVED
        assert resent.version == 3
        assert resent.total_price_usd == Decimal("4200.00")
        assert resent.payment_deadline == clock() + timedelta(hours=24)
        assert await available(flight_id) == after_approve
        kinds = [job.effect_kind for job in await jobs_for(booking.id)]
        assert kinds == [EffectKind.QUOTE_CONFIRMATION, EffectKind.UPDATED_QUOTE]

    @pytest.mark.asyncio
    async def test_resend_clears_receipt(self, publish_flight, submit_empty_leg, approve,
                                         session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)
        async with session_factory() as session:
            await make_service(session).submit_receipt(booking.id, "https://files.test/receipt-1.pdf")

        async with session_factory() as session:
            resent = await make_service(session).resend(booking.id, Decimal("4000"), expected_version=2)

        assert resent.receipt_ref is None

    @pytest.mark.asyncio
    async def test_resend_pending_conflicts(self, publish_flight, submit_empty_leg, session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        async with session_factory() as session:
            with pytest.raises(StateConflict):
                await make_service(session).resend(booking.id, Decimal("4000"), expected_version=1)


class TestPayment:

    @pytest.mark.asyncio
    async def test_scenario_submit_approve_confirm(self, publish_flight, submit_empty_leg, approve,
                                                   session_factory, make_service, available, jobs_for):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=4)
        assert await available(flight_id) == 0

        await approve(booking.id, price=Decimal("5000"))
        async with session_factory() as session:
            await make_service(session).submit_receipt(booking.id, "https://files.test/receipt.pdf")

        async with session_factory() as session:
            paid, payment = await make_service(session).confirm_payment(booking.id, expected_version=2)

        assert paid.status == BookingStatus.PAID
        assert paid.paid_at is not None
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.method == PaymentMethod.BANK_TRANSFER
        assert payment.amount_usd == Decimal("5000.00")
        assert await available(flight_id) == 0

        kinds = {job.effect_kind for job in await jobs_for(booking.id)}
        assert {EffectKind.FLIGHT_CONFIRMATION, EffectKind.PAYMENT_RECEIPT, EffectKind.RECEIPT_RECEIVED} <= kinds

    @pytest.mark.asyncio
    async def test_confirm_without_payment_or_receipt(self, publish_flight, submit_empty_leg, approve,
                                                      session_factory, make_service, load):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)

        async with session_factory() as session:
            with pytest.raises(PaymentMissing):
                await make_service(session).confirm_payment(booking.id, expected_version=2)

        current = await load(QuoteBooking, booking.id)
        assert current.status == BookingStatus.APPROVED
        assert current.version == 2

    @pytest.mark.asyncio
    async def test_confirm_pending_conflicts(self, publish_flight, submit_empty_leg, session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        async with session_factory() as session:
            with pytest.raises(StateConflict) as exc:
                await make_service(session).confirm_payment(booking.id, expected_version=1)
        assert not isinstance(exc.value, PaymentMissing)

    @pytest.mark.asyncio
    async def test_confirm_with_gateway_payment(self, publish_flight, submit_empty_leg, approve,
                                                session_factory, make_service, clock):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)

        async with session_factory() as session:
            await PaymentLedger(session, clock=clock).record_gateway_payment(
                booking.reference_number, "TX-100", Decimal("5000"), PaymentStatus.SUCCESS
            )

        async with session_factory() as session:
            paid, payment = await make_service(session).confirm_payment(booking.id, expected_version=2)

        assert paid.status == BookingStatus.PAID
        assert payment.method == PaymentMethod.GATEWAY
        assert payment.transaction_ref == "TX-100"

    @pytest.mark.asyncio
    async def test_short_gateway_payment_is_not_enough(self, publish_flight, submit_empty_leg, approve,
                                                       session_factory, make_service, clock, load):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id, price=Decimal("5000"))

        async with session_factory() as session:
            await PaymentLedger(session, clock=clock).record_gateway_payment(
                booking.reference_number, "TX-101", Decimal("1"), PaymentStatus.SUCCESS
            )

        async with session_factory() as session:
            with pytest.raises(PaymentMissing) as exc:
                await make_service(session).confirm_payment(booking.id, expected_version=2)

        assert exc.value.context["paidUsd"] == "1.00"
        assert exc.value.context["totalPriceUsd"] == "5000.00"
        assert (await load(QuoteBooking, booking.id)).status == BookingStatus.APPROVED

    @pytest.mark.asyncio
    async def test_payment_before_price_increase_is_not_enough(self, publish_flight, submit_empty_leg, approve,
                                                               session_factory, make_service, clock):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id, price=Decimal("5000"))
        async with session_factory() as session:
            await PaymentLedger(session, clock=clock).record_gateway_payment(
                booking.reference_number, "TX-102", Decimal("5000"), PaymentStatus.SUCCESS
            )
        async with session_factory() as session:
            await make_service(session).resend(booking.id, Decimal("6500"), expected_version=2)

        async with session_factory() as session:
            with pytest.raises(PaymentMissing):
                await make_service(session).confirm_payment(booking.id, expected_version=3)

        # A top-up covering the new price settles it
        async with session_factory() as session:
            await PaymentLedger(session, clock=clock).record_gateway_payment(
                booking.reference_number, "TX-103", Decimal("6500"), PaymentStatus.SUCCESS
            )
        async with session_factory() as session:
            paid, payment = await make_service(session).confirm_payment(booking.id, expected_version=3)

        assert paid.status == BookingStatus.PAID
        assert payment.transaction_ref == "TX-103"

    @pytest.mark.asyncio
    async def test_gateway_amount_must_be_positive(self, publish_flight, submit_empty_leg, session_factory, clock):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)

        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await PaymentLedger(session, clock=clock).record_gateway_payment(
                    booking.reference_number, "TX-104", Decimal("0"), PaymentStatus.SUCCESS
                )

    def test_callback_signature(self):
        body = b'{"transactionRef": "TX-1"}'
        signature = sign_payload(body, "secret")

        assert verify_signature(body, signature, "secret")
        assert not verify_signature(body + b" ", signature, "secret")
        assert not verify_signature(body, signature, "other")
        assert not verify_signature(body, None, "secret")
        assert not verify_signature(body, signature, None)

    @pytest.mark.asyncio
    async def test_success_payment_is_immutable(self, publish_flight, submit_empty_leg, session_factory, clock, load):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)

        async with session_factory() as session:
            first = await PaymentLedger(session, clock=clock).record_gateway_payment(
                booking.reference_number, "TX-200", Decimal("2500"), PaymentStatus.SUCCESS
            )
        async with session_factory() as session:
            await PaymentLedger(session, clock=clock).record_gateway_payment(
                booking.reference_number, "TX-200", Decimal("1"), PaymentStatus.FAILED
            )

        stored = await load(Payment, first.id)
        assert stored.status == PaymentStatus.SUCCESS
        assert stored.amount_usd == Decimal("2500.00")

    @pytest.mark.asyncio
    async def test_receipt_requires_approved(self, publish_flight, submit_empty_leg, session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        async with session_factory() as session:
            with pytest.raises(StateConflict):
                await make_service(session).submit_receipt(booking.id, "https://files.test/r.pdf")

    @pytest.mark.asyncio
    async def test_receipt_keeps_version(self, publish_flight, submit_empty_leg, approve,
                                         session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)

        async with session_factory() as session:
            updated, payment = await make_service(session).submit_receipt(booking.id, "https://files.test/r.pdf")

        assert updated.version == 2
        assert updated.receipt_ref == "https://files.test/r.pdf"
        assert payment.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_complete_after_payment(self, publish_flight, submit_empty_leg, approve,
                                          session_factory, make_service, available):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=2)
        await approve(booking.id)
        async with session_factory() as session:
            await make_service(session).submit_receipt(booking.id, "https://files.test/r.pdf")
        async with session_factory() as session:
            await make_service(session).confirm_payment(booking.id, expected_version=2)

        async with session_factory() as session:
            completed = await make_service(session).complete(booking.id, expected_version=3)

        assert completed.status == BookingStatus.COMPLETED
        assert completed.completed_at is not None
        assert await available(flight_id) == 2


class TestExpire:

    @pytest.mark.asyncio
    async def test_expire_is_idempotent(self, publish_flight, submit_empty_leg, approve,
                                        session_factory, make_service, clock, available):
        flight_id = await publish_flight(total_seats=4)
        booking = await submit_empty_leg(flight_id, seats=4)
        await approve(booking.id)
        clock.advance(hours=3, minutes=1)

        async with session_factory() as session:
            first = await make_service(session).expire(booking.id)
        async with session_factory() as session:
            second = await make_service(session).expire(booking.id)

        assert first.status == BookingStatus.EXPIRED
        assert first.version == 3
        assert second is None
        assert await available(flight_id) == 4

    @pytest.mark.asyncio
    async def test_expire_before_deadline_is_noop(self, publish_flight, submit_empty_leg, approve,
                                                  session_factory, make_service, load):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)

        async with session_factory() as session:
            assert await make_service(session).expire(booking.id) is None
        assert (await load(QuoteBooking, booking.id)).status == BookingStatus.APPROVED

    @pytest.mark.asyncio
    async def test_expiry_notice_only_for_approved(self, publish_flight, submit_empty_leg, approve,
                                                   session_factory, make_service, clock, jobs_for):
        flight_id = await publish_flight(total_seats=6)
        pending = await submit_empty_leg(flight_id, seats=1, phone="+447700900010")
        approved = await submit_empty_leg(flight_id, seats=1, phone="+447700900011")
        await approve(approved.id)
        clock.advance(hours=4)

        async with session_factory() as session:
            await make_service(session).expire(pending.id)
        async with session_factory() as session:
            await make_service(session).expire(approved.id)

        assert await jobs_for(pending.id) == []
        assert [job.effect_kind for job in await jobs_for(approved.id)] == [
            EffectKind.QUOTE_CONFIRMATION, EffectKind.EXPIRY_NOTICE
        ]

    @pytest.mark.asyncio
    async def test_paid_booking_never_expires(self, publish_flight, submit_empty_leg, approve,
                                              session_factory, make_service, clock):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)
        async with session_factory() as session:
            await make_service(session).submit_receipt(booking.id, "https://files.test/r.pdf")
        async with session_factory() as session:
            await make_service(session).confirm_payment(booking.id, expected_version=2)
        clock.advance(days=2)

        async with session_factory() as session:
            assert await make_service(session).expire(booking.id) is None


class TestAuditTrail:

    @pytest.mark.asyncio
    async def test_each_transition_is_logged(self, publish_flight, submit_empty_leg, approve,
                                             session_factory, make_service):
        flight_id = await publish_flight()
        booking = await submit_empty_leg(flight_id)
        await approve(booking.id)
        async with session_factory() as session:
            await make_service(session).reject(booking.id, "PRICING_ISSUE", expected_version=2, actor=STAFF)

        async with session_factory() as session:
            result = await session.execute(
                select(EventLog).where(EventLog.quote_id == booking.id).order_by(EventLog.version)
            )
            events = result.scalars().all()

        assert [(e.event, e.from_status, e.to_status, e.version) for e in events] == [
            ("quote_submitted", None, "PENDING", 1),
            ("quote_approved", "PENDING", "APPROVED", 2),
            ("quote_rejected", "APPROVED", "REJECTED", 3),
        ]
        assert events[2].actor == "staff-1"
        assert events[2].ip_address == "10.0.0.1"


def test_job_status_values():
    assert {s.value for s in JobStatus} == {"PENDING", "PROCESSING", "SUCCEEDED", "FAILED"}
