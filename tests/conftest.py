"""
Test configuration and fixtures
Each test gets its own SQLite database file and an in-memory artifact store
"""

import pytest
import pytest_asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4
import json
import os

from sqlalchemy import func, select
from httpx import AsyncClient, ASGITransport

# Set test environment
os.environ["APP_ENV"] = "testing"

from turnstile.config import settings
from turnstile.core.database import Base, DatabaseManager, build_engine, build_session_factory
from turnstile.core.exceptions import ArtifactStoreError
from turnstile.core.locks import LocalKeyedLock
from turnstile.core.security import sign_payment_callback
from turnstile.models import Event, Reservation, ReservationSeat, TicketType, User
from turnstile.services.artifact_store import ArtifactStore, UploadResult
from turnstile.services.reservation_engine import ReservationEngine
from turnstile.services.reservation_service import ReservationService
from turnstile.services.ticket_codec import TicketCodec
from turnstile.services.ticket_service import TicketIssuer

TEST_TICKET_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TICKET_BASE_URL = "https://tickets.test"
EVENT_DATE = date(2030, 6, 1)
PAYMENT_SECRET = "whsec_test_secret"


class FrozenClock:
    """Settable UTC clock for hold expiry"""

    def __init__(self):
        self.now = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeArtifactStore(ArtifactStore):
    """In-memory store; set ``failures_remaining`` to simulate an outage"""

    def __init__(self):
        self.objects = {}
        self.uploads = 0
        self.failures_remaining = 0

    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> UploadResult:
        self.uploads += 1
        if self.failures_remaining:
            self.failures_remaining -= 1
            raise ArtifactStoreError(key, "simulated outage")
        self.objects[key] = data
        return UploadResult(key=key, url=f"{TICKET_BASE_URL}/{key}")


async def persist(db: DatabaseManager, obj):
    async with db.atomic_transaction() as session:
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
    return obj


async def fetch(db: DatabaseManager, model, identifier):
    async with db.read_session() as session:
        return await session.get(model, identifier)


async def count_reservations(db: DatabaseManager, event_id) -> int:
    async with db.read_session() as session:
        result = await session.execute(
            select(func.count()).select_from(Reservation).where(Reservation.event_id == event_id)
        )
        return result.scalar_one()


async def count_held_seats(db: DatabaseManager, event_id, seat_label: str) -> int:
    async with db.read_session() as session:
        result = await session.execute(
            select(func.count()).select_from(ReservationSeat).where(
                ReservationSeat.event_id == event_id,
                ReservationSeat.seat_label == seat_label,
            )
        )
        return result.scalar_one()


def signed(payload: dict, secret: str = PAYMENT_SECRET):
    """Body and headers of a payment callback signed the way the processor does"""
    body = json.dumps(payload).encode()
    return body, {
        "Content-Type": "application/json",
        "X-Payment-Signature": sign_payment_callback(secret, body),
    }


def scan_text(codec: TicketCodec, reservation, event, user) -> str:
    """What a scanner reads from the rendered QR code"""
    return codec.wrap(codec.encode(reservation, event.name, user.username, is_free=event.is_free))


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database per test"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield DatabaseManager(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def codec():
    return TicketCodec(TEST_TICKET_KEY)


@pytest.fixture
def artifact_store():
    return FakeArtifactStore()


@pytest.fixture
def seat_lock():
    return LocalKeyedLock(timeout=5.0)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def reservation_engine(db, seat_lock, clock):
    return ReservationEngine(db, seat_lock, max_seats=4, hold_ttl=timedelta(minutes=7), clock=clock)


@pytest.fixture
def issuer(db, codec, artifact_store):
    return TicketIssuer(db, codec, artifact_store, timeout=5.0, upload_attempts=2, retry_backoff=0)


@pytest.fixture
def service(db, reservation_engine, issuer, codec):
    return ReservationService(db, reservation_engine, issuer, codec)


@pytest_asyncio.fixture
async def client(service, monkeypatch):
    """HTTP client against the app wired to the test service"""
    from turnstile.main import app

    monkeypatch.setattr(settings, "PAYMENT_CALLBACK_SECRET", PAYMENT_SECRET)
    app.state.reservation_service = service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


# Data fixtures
@pytest_asyncio.fixture
async def organizer(db):
    return await persist(db, User(username="olivia", email=f"olivia_{uuid4().hex[:8]}@example.com"))


@pytest_asyncio.fixture
async def attendee(db):
    return await persist(db, User(username="alice", email=f"alice_{uuid4().hex[:8]}@example.com"))


@pytest_asyncio.fixture
async def other_attendee(db):
    return await persist(db, User(username="bob", email=f"bob_{uuid4().hex[:8]}@example.com"))


@pytest_asyncio.fixture
async def free_event(db, organizer):
    """Free event E1 with seats A1 and A2"""
    return await persist(db, Event(
        name="E1",
        ticket_type=TicketType.FREE,
        ticket_price=Decimal("0"),
        total_seats=2,
        available_seats=["A1", "A2"],
        organizer_id=organizer.id,
    ))


@pytest_asyncio.fixture
async def paid_event(db, organizer):
    return await persist(db, Event(
        name="Gala",
        ticket_type=TicketType.PAID,
        ticket_price=Decimal("50.00"),
        total_seats=3,
        available_seats=["B1", "B2", "B3"],
        organizer_id=organizer.id,
    ))


@pytest_asyncio.fixture
async def general_admission_event(db, organizer):
    return await persist(db, Event(
        name="Open Air",
        ticket_type=TicketType.FREE,
        ticket_price=Decimal("0"),
        total_seats=0,
        available_seats=[],
        organizer_id=organizer.id,
    ))
