"""
Payment gateway callback.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import PAYMENT_WEBHOOK_SECRET
from ...database import get_session
from ...errors import BookingError, to_http_exception
from ...schemas import PaymentCallbackRequest, PaymentResponse
from ...services.payments import PaymentLedger, verify_signature
from ..deps import get_clock, internal_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Payments"])


def get_webhook_secret() -> Optional[str]:
    return PAYMENT_WEBHOOK_SECRET


async def verify_gateway_signature(
    request: Request,
    signature: Optional[str] = Header(None, alias="X-Signature"),
    secret: Optional[str] = Depends(get_webhook_secret),
) -> None:
    payload = await request.body()
    if not verify_signature(payload, signature, secret):
        logger.warning(f"Invalid payment callback signature from {request.client.host if request.client else '?'}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "INVALID_SIGNATURE", "message": "Invalid signature"},
        )


@router.post(
    "/payments/callback",
    response_model=PaymentResponse,
    dependencies=[Depends(verify_gateway_signature)],
)
async def payment_callback(
    body: PaymentCallbackRequest,
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """
    Record a gateway result keyed by transactionRef. The raw body must be
    signed (X-Signature: hex HMAC-SHA256). Replays are acknowledged; a
    SUCCESS payment is never changed afterwards.
    """
    try:
        payment = await PaymentLedger(session, clock=clock).record_gateway_payment(
            reference_number=body.reference_number,
            transaction_ref=body.transaction_ref,
            amount_usd=body.amount_usd,
            status=body.status,
        )
        return PaymentResponse.from_model(payment)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("record payment callback", e)
