"""
Seat inventory allocator for empty-leg flights.

Every seat mutation is a single-row conditional UPDATE, so concurrent holds
on the same flight serialize on that row and can never take
available_seats below zero. Holding a seat is also committing it: approval
does not re-check inventory. Only PUBLISHED flights accept holds.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging
import uuid

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InventoryUnavailable, NotFoundError, ValidationError
from ..models import EmptyLegFlight, FlightStatus, QuoteBooking, utcnow
from .state_machine import HOLDING_STATUSES

logger = logging.getLogger(__name__)


class SeatAllocator:
    """Per-flight seat counters with hold/release/commit operations.

    The allocator never commits; it runs inside the caller's transaction
    so that a seat change and the quote transition land together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def publish(
        self,
        departure_airport: str,
        arrival_airport: str,
        departure_at: datetime,
        total_seats: int,
        aircraft_name: Optional[str] = None,
        price_per_seat_usd: Optional[Decimal] = None,
    ) -> EmptyLegFlight:
        """Create a PUBLISHED flight with every seat available."""
        if total_seats <= 0:
            raise ValidationError("totalSeats must be positive", totalSeats=total_seats)
        if departure_airport == arrival_airport:
            raise ValidationError("Departure and arrival airports must differ")
        if departure_at.tzinfo is None:
            departure_at = departure_at.replace(tzinfo=timezone.utc)
        if departure_at <= utcnow():
            raise ValidationError("departureDateTime must be in the future")

        flight = EmptyLegFlight(
            id=uuid.uuid4(),
            departure_airport=departure_airport,
            arrival_airport=arrival_airport,
            departure_at=departure_at,
            aircraft_name=aircraft_name,
            total_seats=total_seats,
            available_seats=total_seats,
            price_per_seat_usd=price_per_seat_usd,
            status=FlightStatus.PUBLISHED,
        )
        self.session.add(flight)
        await self.session.flush()
        logger.info(
            f"🛫 Published flight {flight.id} {departure_airport} → {arrival_airport} "
            f"with {total_seats} seat(s)"
        )
        return flight

    async def get_flight(self, flight_id: uuid.UUID) -> EmptyLegFlight:
        result = await self.session.execute(
            select(EmptyLegFlight)
            .where(EmptyLegFlight.id == flight_id)
            .execution_options(populate_existing=True)
        )
        flight = result.scalar_one_or_none()
        if not flight:
            raise NotFoundError(f"Flight {flight_id} not found", flightId=str(flight_id))
        return flight

    async def close(self, flight_id: uuid.UUID) -> EmptyLegFlight:
        """
        Stop accepting holds on a flight. Seats already held stay with
        their bookings. Closing a closed flight is a no-op.
        """
        await self.session.execute(
            update(EmptyLegFlight)
            .where(EmptyLegFlight.id == flight_id, EmptyLegFlight.status == FlightStatus.PUBLISHED)
            .values(status=FlightStatus.CLOSED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        flight = await self.get_flight(flight_id)
        logger.info(f"🚫 Flight {flight_id} closed ({flight.available_seats} seat(s) unsold)")
        return flight

    async def close_departed(self, now: datetime) -> List[uuid.UUID]:
        """Close every published flight whose departure time has passed."""
        departed = and_(
            EmptyLegFlight.status == FlightStatus.PUBLISHED,
            EmptyLegFlight.departure_at <= now,
        )
        result = await self.session.execute(select(EmptyLegFlight.id).where(departed))
        flight_ids = list(result.scalars().all())
        if not flight_ids:
            return []

        await self.session.execute(
            update(EmptyLegFlight)
            .where(EmptyLegFlight.id.in_(flight_ids), departed)
            .values(status=FlightStatus.CLOSED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info(f"🚫 Closed {len(flight_ids)} departed flight(s)")
        return flight_ids

    async def hold(self, flight_id: uuid.UUID, seats: int) -> int:
        """Reserve `seats`; returns the remaining available seats."""
        if seats <= 0:
            raise ValidationError("Seat count must be positive", seats=seats)

        result = await self.session.execute(
            update(EmptyLegFlight)
            .where(
                EmptyLegFlight.id == flight_id,
                EmptyLegFlight.status == FlightStatus.PUBLISHED,
                EmptyLegFlight.available_seats >= seats,
            )
            .values(
                available_seats=EmptyLegFlight.available_seats - seats,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            flight = await self.get_flight(flight_id)
            if flight.status != FlightStatus.PUBLISHED:
                raise InventoryUnavailable(
                    "This deal is no longer available",
                    flightId=str(flight_id),
                    availableSeats=0,
                )
            raise InventoryUnavailable(
                f"Only {flight.available_seats} seats available",
                flightId=str(flight_id),
                availableSeats=flight.available_seats,
            )

        remaining = await self._available(flight_id)
        logger.info(f"🔒 Held {seats} seat(s) on flight {flight_id} ({remaining} left)")
        return remaining

    async def commit(self, flight_id: uuid.UUID, seats: int) -> None:
        """No-op: a hold already commits its seats."""
        logger.debug(f"Commit of {seats} seat(s) on flight {flight_id} is implied by the hold")

    async def release(self, flight_id: uuid.UUID, seats: int) -> int:
        """Return `seats` to inventory, saturating at total_seats."""
        if seats <= 0:
            raise ValidationError("Seat count must be positive", seats=seats)

        restored = EmptyLegFlight.available_seats + seats
        result = await self.session.execute(
            update(EmptyLegFlight)
            .where(EmptyLegFlight.id == flight_id)
            .values(
                available_seats=case(
                    (restored > EmptyLegFlight.total_seats, EmptyLegFlight.total_seats),
                    else_=restored,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"Flight {flight_id} not found", flightId=str(flight_id))

        remaining = await self._available(flight_id)
        logger.info(f"🔓 Released {seats} seat(s) on flight {flight_id} ({remaining} available)")
        return remaining

    async def held_seats(self, flight_id: uuid.UUID) -> int:
        """Sum of seats held by bookings in a holding status."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(QuoteBooking.seats_requested), 0))
            .where(
                QuoteBooking.flight_id == flight_id,
                QuoteBooking.status.in_(HOLDING_STATUSES),
            )
        )
        return int(result.scalar_one())

    async def reconcile(self, flight_id: uuid.UUID) -> Dict[str, Any]:
        """
        Recompute available_seats as total_seats minus held seats.
        Locks the flight row (where supported) so no hold interleaves.
        """
        result = await self.session.execute(
            select(EmptyLegFlight)
            .where(EmptyLegFlight.id == flight_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        flight = result.scalar_one_or_none()
        if not flight:
            raise NotFoundError(f"Flight {flight_id} not found", flightId=str(flight_id))

        held = await self.held_seats(flight_id)
        expected = max(flight.total_seats - held, 0)
        drift = flight.available_seats - expected

        if drift:
            logger.warning(
                f"⚠️ Inventory drift on flight {flight_id}: "
                f"cached {flight.available_seats}, expected {expected}"
            )
            flight.available_seats = expected
            flight.updated_at = utcnow()

        return {
            "flight_id": str(flight_id),
            "total_seats": flight.total_seats,
            "held_seats": held,
            "available_seats": expected,
            "drift": drift,
            "oversold": held > flight.total_seats,
        }

    async def _available(self, flight_id: uuid.UUID) -> Optional[int]:
        result = await self.session.execute(
            select(EmptyLegFlight.available_seats).where(EmptyLegFlight.id == flight_id)
        )
        return result.scalar_one_or_none()
