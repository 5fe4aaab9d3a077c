"""Test configuration and fixtures"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

from datetime import date, time, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from tablehold.main import app
from tablehold.config import settings
from tablehold.database import Base, get_db, utcnow
from tablehold.models import (
    Reservation,
    ReservationSettings,
    ReservationStatus,
    Restaurant,
    Table,
)


# Test database URL (use in-memory SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Far enough ahead that the cancellation window never interferes
FUTURE_DATE = date.today() + timedelta(days=30)


@pytest.fixture(autouse=True)
def quiet_settings(monkeypatch):
    """Keep tests off the broker and independent of a local .env"""
    monkeypatch.setattr(settings, "notifications_enabled", False)
    monkeypatch.setattr(settings, "payment_webhook_enabled", True)
    monkeypatch.setattr(settings, "payment_webhook_secret", None)
    monkeypatch.setattr(settings, "environment", "test")


@pytest.fixture
def future_date():
    return FUTURE_DATE


@pytest.fixture
async def test_db():
    """Create test database"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def seed(test_db):
    """Restaurant with tables T1..T5 and a 90 minute / 12 hour policy.

    Returns plain ids; ORM instances expire whenever a service rolls back.
    """
    restaurant = Restaurant(name="Test Restaurant", timezone="UTC")
    test_db.add(restaurant)
    await test_db.flush()

    tables = {}
    for number, capacity in (("T1", 2), ("T2", 4), ("T3", 4), ("T4", 6), ("T5", 6)):
        table = Table(restaurant_id=restaurant.id, table_number=number, capacity=capacity)
        test_db.add(table)
        tables[number] = table

    test_db.add(ReservationSettings(
        restaurant_id=restaurant.id,
        cancellation_window_hours=12,
        reservation_duration_minutes=90,
    ))
    await test_db.commit()

    return {
        "restaurant_id": restaurant.id,
        "tables": {number: table.id for number, table in tables.items()},
    }


@pytest.fixture
def make_reservation(test_db, seed):
    """Insert a reservation row directly, bypassing the booking checks"""
    async def _make(
        table="T5",
        status=ReservationStatus.CONFIRMED,
        reservation_time=time(18, 0),
        reservation_date=FUTURE_DATE,
        **fields,
    ) -> int:
        reservation = Reservation(
            restaurant_id=seed["restaurant_id"],
            table_id=seed["tables"][table] if table else None,
            customer_name=fields.pop("customer_name", "Test Customer"),
            party_size=fields.pop("party_size", 2),
            reservation_date=reservation_date,
            reservation_time=reservation_time,
            status=status,
            **fields,
        )
        if status == ReservationStatus.TENTATIVE and "expires_at" not in fields:
            reservation.expires_at = utcnow() + timedelta(minutes=15)
        test_db.add(reservation)
        await test_db.commit()
        return reservation.id

    return _make


@pytest.fixture
async def client(test_db):
    """Create test client with overridden database"""
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def authenticated_client(client):
    """Client carrying a bearer token for user 42"""
    from tablehold.api.auth import create_access_token

    token = create_access_token(42)
    client.headers["Authorization"] = f"Bearer {token}"

    return client
