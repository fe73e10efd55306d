"""
Quote/booking API - public submission plus the staff transition endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Header, Request, status
from typing import Awaitable, Callable, List, Optional
import logging
import uuid

from ...config import IDEMPOTENCY_TTL_SECONDS
from ...errors import BookingError, to_http_exception
from ...models import QuoteKind
from ...ratelimit import rate_limit
from ...redis_service import RedisService, get_redis, idempotency_cache_key
from ...schemas import (
    ApproveRequest, CharterQuoteRequest, ConfirmPaymentResponse, EmptyLegQuoteRequest,
    EventLogResponse, MessageLogResponse, PaymentResponse, QuoteResponse, ReceiptRequest,
    ReceiptResponse, RejectRequest, ResendRequest, SubmitResponse, VersionedRequest
)
from ...services.lifecycle import (
    ActorContext, BankDetails, CharterRoute, ClientContact, QuoteLifecycleService
)
from ..deps import get_actor, get_lifecycle, internal_error, resolve_kind, wake_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Quotes"])


def _contact(info) -> ClientContact:
    return ClientContact(name=info.name, email=info.email, phone=info.phone)


def _submit_response(booking) -> SubmitResponse:
    return SubmitResponse(
        id=booking.id,
        reference_number=booking.reference_number,
        kind=booking.kind.value,
        status=booking.status.value,
        version=booking.version,
        total_price_usd=float(booking.total_price_usd) if booking.total_price_usd is not None else None,
    )


async def _idempotent_submit(
    scope: str,
    idempotency_key: Optional[str],
    redis: RedisService,
    create: Callable[[], Awaitable[SubmitResponse]],
) -> SubmitResponse:
    """
    Replay the stored response for a repeated Idempotency-Key, otherwise
    create once and store the result for IDEMPOTENCY_TTL_SECONDS.
    """
    if not idempotency_key:
        return await create()

    cached = await redis.get_idempotent_response(scope, idempotency_key)
    if cached:
        logger.info(f"Returning cached result for idempotency key on {scope}")
        cached["createdFromIdempotency"] = True
        return SubmitResponse(**cached)

    lock = idempotency_cache_key(scope, idempotency_key)
    if not await redis.acquire_lock(lock, timeout=30):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "IDEMPOTENCY_IN_PROGRESS",
                "message": "A request with this Idempotency-Key is still being processed",
            },
        )
    try:
        response = await create()
        await redis.store_idempotent_response(
            scope, idempotency_key,
            response.model_dump(mode="json", by_alias=True),
            IDEMPOTENCY_TTL_SECONDS,
        )
        return response
    finally:
        await redis.release_lock(lock)


@router.post(
    "/quotes/empty-leg",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit())],
)
async def submit_empty_leg_quote(
    body: EmptyLegQuoteRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: QuoteLifecycleService = Depends(get_lifecycle),
    redis: RedisService = Depends(get_redis),
    actor: ActorContext = Depends(get_actor),
):
    """
    Book seats on a published empty-leg flight.

    Seats are held immediately; the quote starts PENDING. Fails with 409
    when the flight cannot cover `seatsRequested`.

    Headers:
    - **Idempotency-Key**: Optional key; repeats return the first result
    """
    async def create() -> SubmitResponse:
        booking = await service.submit(
            QuoteKind.EMPTY_LEG,
            body.seats_requested,
            _contact(body.contact_info),
            flight_id=body.empty_leg_id,
            actor=actor,
        )
        return _submit_response(booking)

    try:
        return await _idempotent_submit("quotes:empty-leg", idempotency_key, redis, create)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("submit empty leg quote", e)


@router.post(
    "/quotes/charter",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit())],
)
async def submit_charter_quote(
    body: CharterQuoteRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: QuoteLifecycleService = Depends(get_lifecycle),
    redis: RedisService = Depends(get_redis),
    actor: ActorContext = Depends(get_actor),
):
    """Request a charter quote. No shared inventory is involved."""
    async def create() -> SubmitResponse:
        booking = await service.submit(
            QuoteKind.CHARTER,
            body.passengers,
            _contact(body.contact_info),
            route=CharterRoute(
                departure_airport=body.departure_airport,
                arrival_airport=body.arrival_airport,
                departure_at=body.departure_date_time,
                aircraft_name=body.aircraft_name,
            ),
            actor=actor,
        )
        return _submit_response(booking)

    try:
        return await _idempotent_submit("quotes:charter", idempotency_key, redis, create)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("submit charter quote", e)


@router.get("/quotes/{kind}/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    kind: str,
    quote_id: uuid.UUID,
    service: QuoteLifecycleService = Depends(get_lifecycle),
):
    """Current state of a quote, including the version to send back on the next action."""
    try:
        booking = await service.get(quote_id, resolve_kind(kind))
        return QuoteResponse.from_model(booking)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("get quote", e)


@router.get("/quotes/{kind}/{quote_id}/messages", response_model=List[MessageLogResponse])
async def list_quote_messages(
    kind: str,
    quote_id: uuid.UUID,
    service: QuoteLifecycleService = Depends(get_lifecycle),
):
    """Delivery log: one row per notification attempt."""
    try:
        messages = await service.messages(quote_id, resolve_kind(kind))
        return [MessageLogResponse.from_model(m) for m in messages]
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("list quote messages", e)


@router.get("/quotes/{kind}/{quote_id}/events", response_model=List[EventLogResponse])
async def list_quote_events(
    kind: str,
    quote_id: uuid.UUID,
    service: QuoteLifecycleService = Depends(get_lifecycle),
):
    try:
        events = await service.events(quote_id, resolve_kind(kind))
        return [EventLogResponse.from_model(e) for e in events]
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("list quote events", e)


@router.post("/quotes/{kind}/{quote_id}/approve", response_model=QuoteResponse)
async def approve_quote(
    kind: str,
    quote_id: uuid.UUID,
    body: ApproveRequest,
    request: Request,
    service: QuoteLifecycleService = Depends(get_lifecycle),
    actor: ActorContext = Depends(get_actor),
):
    """
    Approve a PENDING quote with its price, payment deadline and bank details.

    - **expectedVersion**: version the caller last read; stale values get 409
    - **paymentDeadline**: defaults to the standard payment window
    - **clientContact** / **departureDateTime** / **seatsRequested**: optional staff edits
    """
    try:
        contact = _contact(body.client_contact) if body.client_contact else None
        booking = await service.approve(
            quote_id,
            total_price_usd=body.total_price_usd,
            bank_details=BankDetails(
                bank_name=body.bank_details.bank_name,
                account_name=body.bank_details.account_name,
                account_number=body.bank_details.account_number,
                sort_code=body.bank_details.sort_code,
            ),
            expected_version=body.expected_version,
            payment_deadline=body.payment_deadline,
            client_contact=contact,
            departure_at=body.departure_date_time,
            seats_requested=body.seats_requested,
            kind=resolve_kind(kind),
            actor=actor,
        )
        wake_dispatcher(request)
        return QuoteResponse.from_model(booking)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("approve quote", e)


@router.post("/quotes/{kind}/{quote_id}/reject", response_model=QuoteResponse)
async def reject_quote(
    kind: str,
    quote_id: uuid.UUID,
    body: RejectRequest,
    request: Request,
    service: QuoteLifecycleService = Depends(get_lifecycle),
    actor: ActorContext = Depends(get_actor),
):
    """Reject a PENDING or APPROVED quote; held seats return to the flight."""
    try:
        booking = await service.reject(
            quote_id,
            reason=body.rejection_reason,
            expected_version=body.expected_version,
            note=body.rejection_note,
            kind=resolve_kind(kind),
            actor=actor,
        )
        wake_dispatcher(request)
        return QuoteResponse.from_model(booking)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("reject quote", e)


@router.post("/quotes/{kind}/{quote_id}/resend", response_model=QuoteResponse)
async def resend_quote(
    kind: str,
    quote_id: uuid.UUID,
    body: ResendRequest,
    request: Request,
    service: QuoteLifecycleService = Depends(get_lifecycle),
    actor: ActorContext = Depends(get_actor),
):
    """Re-issue an APPROVED quote at a new price. Seats are not touched."""
    try:
        booking = await service.resend(
            quote_id,
            total_price_usd=body.total_price_usd,
            expected_version=body.expected_version,
            payment_deadline=body.payment_deadline,
            kind=resolve_kind(kind),
            actor=actor,
        )
        wake_dispatcher(request)
        return QuoteResponse.from_model(booking)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("resend quote", e)


@router.post("/quotes/{kind}/{quote_id}/confirm-payment", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    kind: str,
    quote_id: uuid.UUID,
    body: VersionedRequest,
    request: Request,
    service: QuoteLifecycleService = Depends(get_lifecycle),
    actor: ActorContext = Depends(get_actor),
):
    """Mark an APPROVED quote PAID. Needs a successful payment or an attached receipt."""
    try:
        booking, payment = await service.confirm_payment(
            quote_id,
            expected_version=body.expected_version,
            kind=resolve_kind(kind),
            actor=actor,
        )
        wake_dispatcher(request)
        return ConfirmPaymentResponse(
            quote=QuoteResponse.from_model(booking),
            payment=PaymentResponse.from_model(payment),
        )
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("confirm payment", e)


@router.post("/quotes/{kind}/{quote_id}/complete", response_model=QuoteResponse)
async def complete_booking(
    kind: str,
    quote_id: uuid.UUID,
    body: VersionedRequest,
    service: QuoteLifecycleService = Depends(get_lifecycle),
    actor: ActorContext = Depends(get_actor),
):
    """Close out a PAID booking after the flight."""
    try:
        booking = await service.complete(
            quote_id,
            expected_version=body.expected_version,
            kind=resolve_kind(kind),
            actor=actor,
        )
        return QuoteResponse.from_model(booking)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("complete booking", e)


@router.post("/quotes/{kind}/{quote_id}/receipt", response_model=ReceiptResponse)
async def submit_receipt(
    kind: str,
    quote_id: uuid.UUID,
    body: ReceiptRequest,
    request: Request,
    service: QuoteLifecycleService = Depends(get_lifecycle),
    actor: ActorContext = Depends(get_actor),
):
    """Attach the client's bank-transfer receipt to an APPROVED quote."""
    try:
        booking, payment = await service.submit_receipt(
            quote_id,
            body.receipt_url,
            kind=resolve_kind(kind),
            actor=actor,
        )
        wake_dispatcher(request)
        return ReceiptResponse(
            quote=QuoteResponse.from_model(booking),
            payment=PaymentResponse.from_model(payment),
        )
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("submit receipt", e)
