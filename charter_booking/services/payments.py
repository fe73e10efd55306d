"""
Payment ledger: receipts, gateway callbacks and settlement checks.
"""
from decimal import Decimal
from typing import Callable, List, Optional
from datetime import datetime
import hashlib
import hmac
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError, PaymentMissing, ValidationError
from ..models import (
    Payment, PaymentMethod, PaymentStatus, QuoteBooking, utcnow
)

logger = logging.getLogger(__name__)


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a gateway callback signature (hex HMAC-SHA256 of the raw body)."""
    if not secret:
        logger.error("PAYMENT_WEBHOOK_SECRET not configured")
        return False
    if not signature:
        return False
    return hmac.compare_digest(signature, sign_payload(payload, secret))


class PaymentLedger:
    """Reads and writes Payment rows for a quote.

    `settle_for_confirmation` runs inside the caller's transaction;
    `record_gateway_payment` is a standalone unit of work and commits.
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    async def successful_payments(self, quote_id) -> List[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.quote_id == quote_id, Payment.status == PaymentStatus.SUCCESS)
            .order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    async def open_receipt_payment(self, booking: QuoteBooking) -> Payment:
        """Record a pending bank-transfer payment for a submitted receipt."""
        payment = Payment(
            quote_id=booking.id,
            method=PaymentMethod.BANK_TRANSFER,
            status=PaymentStatus.PENDING,
            amount_usd=booking.total_price_usd,
            receipt_ref=booking.receipt_ref,
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def settle_for_confirmation(self, booking: QuoteBooking) -> Payment:
        """
        Return the payment that justifies moving `booking` to PAID.

        A SUCCESS payment covering the current price wins. Otherwise an
        attached receipt is settled: its pending bank-transfer payment
        becomes SUCCESS (staff have checked the transfer). With neither,
        raise PaymentMissing.
        """
        price = booking.total_price_usd
        paid = await self.successful_payments(booking.id)
        for payment in paid:
            if payment.amount_usd is not None and price is not None and payment.amount_usd >= price:
                return payment

        if not booking.receipt_ref:
            if paid:
                best = max(p.amount_usd or Decimal("0") for p in paid)
                logger.warning(
                    f"Payment for {booking.reference_number} is short: {best} of {price}"
                )
                raise PaymentMissing(
                    "Successful payment is short of the quoted price",
                    referenceNumber=booking.reference_number,
                    paidUsd=str(best),
                    totalPriceUsd=str(price),
                )
            raise PaymentMissing(
                "No payment receipt or successful payment on record",
                referenceNumber=booking.reference_number,
            )

        now = self.clock()
        result = await self.session.execute(
            select(Payment)
            .where(
                Payment.quote_id == booking.id,
                Payment.method == PaymentMethod.BANK_TRANSFER,
                Payment.status == PaymentStatus.PENDING,
                Payment.receipt_ref == booking.receipt_ref,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            payment = Payment(
                quote_id=booking.id,
                method=PaymentMethod.BANK_TRANSFER,
                receipt_ref=booking.receipt_ref,
                created_at=now,
            )
            self.session.add(payment)

        payment.status = PaymentStatus.SUCCESS
        payment.amount_usd = booking.total_price_usd
        payment.paid_at = now
        payment.updated_at = now
        await self.session.flush()

        logger.info(f"💰 Bank transfer settled for {booking.reference_number}")
        return payment

    async def record_gateway_payment(
        self,
        reference_number: str,
        transaction_ref: str,
        amount_usd: Decimal,
        status: PaymentStatus,
    ) -> Payment:
        """Upsert a gateway payment keyed by its transaction reference."""
        if not transaction_ref:
            raise ValidationError("transactionRef is required")
        if amount_usd is None or amount_usd <= 0:
            raise ValidationError("amountUsd must be positive", amountUsd=str(amount_usd))
        if status == PaymentStatus.REFUNDED:
            raise ValidationError("Refunds are not reported through the payment callback")

        result = await self.session.execute(
            select(QuoteBooking).where(QuoteBooking.reference_number == reference_number)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError(
                f"Quote {reference_number} not found",
                referenceNumber=reference_number,
            )

        result = await self.session.execute(
            select(Payment).where(Payment.transaction_ref == transaction_ref)
        )
        payment = result.scalar_one_or_none()
        now = self.clock()

        if payment and payment.quote_id != booking.id:
            raise ValidationError(
                "transactionRef already belongs to another quote",
                transactionRef=transaction_ref,
            )

        if payment and payment.status == PaymentStatus.SUCCESS:
            if status != PaymentStatus.SUCCESS:
                logger.warning(
                    f"Ignoring {status.value} callback for settled payment {transaction_ref}"
                )
            return payment

        try:
            if payment is None:
                payment = Payment(
                    quote_id=booking.id,
                    method=PaymentMethod.GATEWAY,
                    transaction_ref=transaction_ref,
                    created_at=now,
                )
                self.session.add(payment)

            payment.status = status
            payment.amount_usd = amount_usd
            payment.updated_at = now
            if status == PaymentStatus.SUCCESS:
                payment.paid_at = now

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"💳 Gateway payment {transaction_ref} for {reference_number}: {status.value}"
        )
        return payment
