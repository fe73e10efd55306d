"""
Empty-leg flight inventory API.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import uuid

from ...database import get_session
from ...errors import BookingError, to_http_exception
from ...schemas import FlightCleanupResponse, FlightCreateRequest, FlightResponse, ReconcileResponse
from ...services.inventory import SeatAllocator
from ..deps import get_clock, internal_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Flights"])


@router.post("/flights", response_model=FlightResponse, status_code=status.HTTP_201_CREATED)
async def publish_flight(
    body: FlightCreateRequest,
    session: AsyncSession = Depends(get_session),
):
    """Publish an empty-leg flight; every seat starts available."""
    try:
        flight = await SeatAllocator(session).publish(
            departure_airport=body.departure_airport,
            arrival_airport=body.arrival_airport,
            departure_at=body.departure_date_time,
            total_seats=body.total_seats,
            aircraft_name=body.aircraft_name,
            price_per_seat_usd=body.price_per_seat_usd,
        )
        await session.commit()
        return FlightResponse.from_model(flight)
    except BookingError as e:
        await session.rollback()
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        await session.rollback()
        raise internal_error("publish flight", e)


@router.get("/flights/{flight_id}", response_model=FlightResponse)
async def get_flight(
    flight_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    try:
        flight = await SeatAllocator(session).get_flight(flight_id)
        return FlightResponse.from_model(flight)
    except BookingError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error("get flight", e)


@router.post("/flights/{flight_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_flight(
    flight_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """
    Recompute available seats from the bookings that hold them and
    report any drift in the cached counter.
    """
    try:
        report = await SeatAllocator(session).reconcile(flight_id)
        await session.commit()
        return ReconcileResponse(**report)
    except BookingError as e:
        await session.rollback()
        raise to_http_exception(e)
    except Exception as e:
        await session.rollback()
        raise internal_error("reconcile flight", e)


@router.post("/flights/{flight_id}/close", response_model=FlightResponse)
async def close_flight(
    flight_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Withdraw a deal: no further holds. Existing bookings keep their seats."""
    try:
        flight = await SeatAllocator(session).close(flight_id)
        await session.commit()
        return FlightResponse.from_model(flight)
    except BookingError as e:
        await session.rollback()
        raise to_http_exception(e)
    except Exception as e:
        await session.rollback()
        raise internal_error("close flight", e)


@router.post("/flights/cleanup", response_model=FlightCleanupResponse)
async def cleanup_departed_flights(
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
):
    """Close every published flight whose departure time has passed."""
    try:
        flight_ids = await SeatAllocator(session).close_departed(clock())
        await session.commit()
        return FlightCleanupResponse(closed_count=len(flight_ids), flight_ids=flight_ids)
    except Exception as e:
        await session.rollback()
        raise internal_error("clean up departed flights", e)
