"""
Deadline reaper - expires APPROVED quotes past their payment deadline and
abandoned PENDING empty-leg holds past the unconfirmed-hold TTL, and
closes published flights that have departed.

Several reapers may sweep at once: each candidate is expired in its own
transaction through QuoteLifecycleService.expire, which is a no-op when
another worker (or a staff action) got there first.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import REAPER_BATCH_SIZE, REAPER_INTERVAL_SECONDS, UNCONFIRMED_HOLD_TTL_MINUTES
from ..models import BookingStatus, QuoteBooking, QuoteKind, utcnow
from .inventory import SeatAllocator
from .lifecycle import QuoteLifecycleService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    errors: int = 0
    closed_flights: int = 0
    expired_references: List[str] = field(default_factory=list)


class DeadlineReaper:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        hold_ttl: timedelta = timedelta(minutes=UNCONFIRMED_HOLD_TTL_MINUTES),
        batch_size: int = REAPER_BATCH_SIZE,
        interval_seconds: float = REAPER_INTERVAL_SECONDS,
        on_expired: Optional[Callable[[], None]] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.hold_ttl = hold_ttl
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.on_expired = on_expired
        self._stop = asyncio.Event()

    async def candidates(self, now: datetime) -> List:
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuoteBooking.id)
                .where(or_(
                    and_(
                        QuoteBooking.status == BookingStatus.APPROVED,
                        QuoteBooking.payment_deadline < now,
                    ),
                    and_(
                        QuoteBooking.status == BookingStatus.PENDING,
                        QuoteBooking.kind == QuoteKind.EMPTY_LEG,
                        QuoteBooking.created_at < now - self.hold_ttl,
                    ),
                ))
                .order_by(QuoteBooking.created_at)
                .limit(self.batch_size)
            )
            return list(result.scalars().all())

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Expire everything due at `now`."""
        now = now or self.clock()
        report = SweepReport()

        for quote_id in await self.candidates(now):
            report.scanned += 1
            try:
                async with self.session_factory() as session:
                    service = QuoteLifecycleService(session, clock=self.clock, hold_ttl=self.hold_ttl)
                    expired = await service.expire(quote_id, now=now)
            except Exception as e:
                report.errors += 1
                logger.error(f"❌ Failed to expire quote {quote_id}: {e}")
                continue

            if expired is None:
                report.skipped += 1
            else:
                report.expired += 1
                report.expired_references.append(expired.reference_number)

        try:
            async with self.session_factory() as session:
                closed = await SeatAllocator(session).close_departed(now)
                await session.commit()
            report.closed_flights = len(closed)
        except Exception as e:
            report.errors += 1
            logger.error(f"❌ Failed to close departed flights: {e}")

        if report.scanned or report.closed_flights:
            logger.info(
                f"🧹 Reaper sweep: {report.expired} expired, {report.skipped} skipped, "
                f"{report.closed_flights} flight(s) closed, {report.errors} errors"
            )
        if report.expired and self.on_expired:
            self.on_expired()
        return report

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self) -> None:
        logger.info(f"🚀 Deadline reaper started (every {self.interval_seconds:.0f}s)")
        while not self._stop.is_set():
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"❌ Reaper sweep failed: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("📴 Deadline reaper stopped")
