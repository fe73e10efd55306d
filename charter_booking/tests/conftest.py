"""
Shared fixtures: a fresh file-backed SQLite database per test, a
controllable clock and in-memory doubles for Redis and the external
document/notification services.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import json
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from charter_booking.api.deps import get_clock
from charter_booking.api.routes.payments import get_webhook_secret
from charter_booking.database import build_engine, get_session, init_db
from charter_booking.models import EmptyLegFlight, QuoteKind, SideEffectJob
from charter_booking.redis_service import get_redis, idempotency_cache_key
from charter_booking.server import app
from charter_booking.services.dispatcher import SideEffectDispatcher
from charter_booking.services.inventory import SeatAllocator
from charter_booking.services.lifecycle import (
    ActorContext, BankDetails, ClientContact, QuoteLifecycleService
)
from charter_booking.services.payments import sign_payload
from charter_booking.services.reaper import DeadlineReaper

STAFF = ActorContext(actor_id="staff-1", ip_address="10.0.0.1")
WEBHOOK_SECRET = "whsec-test"


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeDocuments:
    """Records render calls; raises queued failures first."""

    def __init__(self):
        self.calls = []
        self.failures = []

    async def render(self, document_kind, payload, idempotency_key):
        self.calls.append((document_kind, payload["referenceNumber"], idempotency_key))
        if self.failures:
            raise self.failures.pop(0)
        return f"https://docs.test/{document_kind}/{payload['referenceNumber']}.pdf"


class FakeNotifier:
    """Records sends; raises queued failures first, or `always_fail` forever."""

    def __init__(self):
        self.sent = []
        self.failures = []
        self.always_fail = None

    async def send(self, to, template, message, idempotency_key, media_url=None, channel=None):
        if self.always_fail is not None:
            raise self.always_fail
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append({
            "to": to,
            "template": template,
            "message": message,
            "idempotency_key": idempotency_key,
            "media_url": media_url,
        })
        return {"status": "sent", "external_id": f"msg-{len(self.sent)}"}


class FakeRedis:
    """In-memory stand-in for RedisService."""

    def __init__(self):
        self.values = {}
        self.locks = set()
        self.windows = {}
        self.redis_client = None

    async def get_idempotent_response(self, scope, key):
        value = self.values.get(idempotency_cache_key(scope, key))
        return dict(value) if value else None

    async def store_idempotent_response(self, scope, key, response, ttl):
        self.values[idempotency_cache_key(scope, key)] = dict(response)
        return True

    async def acquire_lock(self, resource, timeout=30):
        if resource in self.locks:
            return False
        self.locks.add(resource)
        return True

    async def release_lock(self, resource):
        self.locks.discard(resource)

    async def hit_rate_window(self, key, window):
        hits = self.windows.setdefault(key, [])
        count = len(hits)
        hits.append(window)
        return count


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def documents():
    return FakeDocuments()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def dispatcher(session_factory, documents, notifier, clock):
    return SideEffectDispatcher(
        session_factory,
        documents=documents,
        notifier=notifier,
        clock=clock,
        base_delay=10,
        max_delay=900,
        visibility_timeout=300,
    )


@pytest.fixture
def reaper(session_factory, clock, dispatcher):
    return DeadlineReaper(session_factory, clock=clock, on_expired=dispatcher.wake)


@pytest.fixture
def make_service(clock):
    def factory(session, **kwargs):
        kwargs.setdefault("max_attempts", 3)
        return QuoteLifecycleService(session, clock=clock, **kwargs)
    return factory


@pytest.fixture
def publish_flight(session_factory):
    async def publish(total_seats=4, price_per_seat_usd=Decimal("1250.00"), days_ahead=7):
        async with session_factory() as session:
            flight = await SeatAllocator(session).publish(
                departure_airport="LFPB",
                arrival_airport="EGLF",
                departure_at=datetime.now(timezone.utc) + timedelta(days=days_ahead),
                total_seats=total_seats,
                aircraft_name="Citation XLS",
                price_per_seat_usd=price_per_seat_usd,
            )
            await session.commit()
            return flight.id
    return publish


@pytest.fixture
def submit_empty_leg(session_factory, make_service):
    async def submit(flight_id, seats=2, phone="+447700900123"):
        async with session_factory() as session:
            return await make_service(session).submit(
                QuoteKind.EMPTY_LEG,
                seats,
                ClientContact(name="Ada Lovelace", email="ada@example.com", phone=phone),
                flight_id=flight_id,
            )
    return submit


@pytest.fixture
def approve(session_factory, make_service, clock):
    async def approve_quote(quote_id, version=1, price=Decimal("5000"), **kwargs):
        kwargs.setdefault("payment_deadline", clock() + timedelta(hours=3))
        async with session_factory() as session:
            return await make_service(session).approve(
                quote_id,
                total_price_usd=price,
                bank_details=bank_details(),
                expected_version=version,
                actor=STAFF,
                **kwargs,
            )
    return approve_quote


@pytest.fixture
def load(session_factory):
    """Fresh read of any row by primary key."""
    async def get(model, row_id):
        async with session_factory() as session:
            return await session.get(model, row_id)
    return get


@pytest.fixture
def available(load):
    async def seats(flight_id: uuid.UUID) -> int:
        flight = await load(EmptyLegFlight, flight_id)
        return flight.available_seats
    return seats


@pytest.fixture
def jobs_for(session_factory):
    async def jobs(quote_id):
        async with session_factory() as session:
            result = await session.execute(
                select(SideEffectJob)
                .where(SideEffectJob.quote_id == quote_id)
                .order_by(SideEffectJob.created_at, SideEffectJob.effect_kind)
            )
            return list(result.scalars().all())
    return jobs


def bank_details() -> BankDetails:
    return BankDetails(
        bank_name="Barclays",
        account_name="Charter Ops Ltd",
        account_number="12345678",
        sort_code="20-00-00",
    )


@pytest_asyncio.fixture
async def client(session_factory, clock, fake_redis, dispatcher, reaper):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET
    app.state.dispatcher = dispatcher
    app.state.reaper = reaper

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()
    app.state.dispatcher = None
    app.state.reaper = None


@pytest.fixture
def gateway_callback(client):
    """POST a payment callback signed the way the gateway signs it."""
    async def post(payload, signature=None):
        body = json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Signature": signature or sign_payload(body, WEBHOOK_SECRET),
        }
        return await client.post("/api/payments/callback", content=body, headers=headers)
    return post
