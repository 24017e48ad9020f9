"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool, NullPool

from ride_dispatch.app.main import app
from ride_dispatch.app.db.session import get_db, Base
from ride_dispatch.app.models.user import User
from ride_dispatch.app.models.trip import TransportTrip
from ride_dispatch.app.models.driver_live_location import DriverLiveLocation
from ride_dispatch.app.models.enums import UserRole
from ride_dispatch.app.models.trip_enums import TripStatus, PaymentStatus

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class FakeNotifier:
    """Records emitted real-time events."""

    def __init__(self, fail_channels=()):
        self.events = []
        self.fail_channels = set(fail_channels)

    async def emit(self, channel, event, payload):
        if channel in self.fail_channels:
            raise ConnectionError(f"socket gateway unreachable for {channel}")
        self.events.append((channel, event, payload))


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    File-backed database where every session gets its own connection,
    so concurrent writers really contend for the row.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_notifier():
    return FakeNotifier


@pytest.fixture
def now():
    return datetime.utcnow().replace(microsecond=0)


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    async def _make_user(role=UserRole.DRIVER, is_available=True, is_active=True, user_id=None):
        counter["n"] += 1
        user = User(
            id=user_id,
            username=f"{role.value.lower()}_{counter['n']}",
            role=role,
            is_available=is_available,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_trip(db_session, now):
    async def _make_trip(
        user_id,
        created_at=None,
        scheduled_time=None,
        pickup=(-6.7924, 39.2083),
        status=TripStatus.PENDING_ASSIGNMENT,
        payment_status=PaymentStatus.PAID,
        driver_id=None
    ):
        trip = TransportTrip(
            user_id=user_id,
            created_at=created_at or now - timedelta(minutes=1),
            scheduled_time=scheduled_time or now + timedelta(minutes=5),
            pickup_latitude=pickup[0],
            pickup_longitude=pickup[1],
            status=status,
            payment_status=payment_status,
            driver_id=driver_id,
        )
        db_session.add(trip)
        await db_session.commit()
        return trip

    return _make_trip


@pytest.fixture
def place_driver(db_session):
    async def _place_driver(driver_id, lat, lng, updated_at=None):
        location = DriverLiveLocation(
            driver_id=driver_id,
            latitude=lat,
            longitude=lng,
            updated_at=updated_at or datetime.utcnow(),
        )
        db_session.add(location)
        await db_session.commit()
        return location

    return _place_driver


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Point the API at the test database for the whole session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
