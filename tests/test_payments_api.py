"""Tests for payment API endpoints"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from httpx import AsyncClient

from tablehold.config import settings
from tablehold.database import utcnow
from tablehold.models import Reservation, ReservationStatus, Table, TableStatus
from tablehold.main import app
from tablehold.services.intents import issue_intent
from tablehold.services.payment_provider import SimulatedPaymentProvider, get_payment_provider


async def _reload(db, model, pk):
    return await db.get(model, pk, populate_existing=True)


class RecordingProvider(SimulatedPaymentProvider):
    def __init__(self):
        self.refunded = []

    async def refund(self, payment_id, amount=None, reason=None):
        self.refunded.append(payment_id)
        return await super().refund(payment_id, amount=amount, reason=reason)


@pytest.fixture
def recording_provider():
    provider = RecordingProvider()
    app.dependency_overrides[get_payment_provider] = lambda: provider
    yield provider
    app.dependency_overrides.pop(get_payment_provider, None)


@pytest.mark.asyncio
async def test_create_payment_intent(client: AsyncClient, seed):
    response = await client.post("/payments/create-intent", json={"amount": 2500})

    assert response.status_code == 201
    data = response.json()
    assert data["id"].startswith("pi_")
    assert data["amount"] == 2500
    assert data["currency"] == "USD"
    assert data["status"] == "pending"


@pytest.mark.asyncio
async def test_create_payment_intent_extends_hold(client: AsyncClient, test_db, seed, make_reservation):
    reservation_id = await make_reservation(
        table="T3",
        status=ReservationStatus.TENTATIVE,
        expires_at=utcnow() + timedelta(seconds=30),
    )

    response = await client.post(
        "/payments/create-intent", json={"amount": 2500, "reservation_id": reservation_id}
    )

    assert response.status_code == 201
    assert response.json()["reservation_id"] == reservation_id
    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.expires_at > utcnow() + timedelta(minutes=4)


@pytest.mark.asyncio
async def test_create_payment_intent_for_lapsed_hold(client: AsyncClient, seed, make_reservation):
    reservation_id = await make_reservation(
        table="T3",
        status=ReservationStatus.TENTATIVE,
        expires_at=utcnow() - timedelta(minutes=1),
    )

    response = await client.post(
        "/payments/create-intent", json={"amount": 2500, "reservation_id": reservation_id}
    )

    assert response.status_code == 410
    assert response.json()["code"] == "EXPIRED"


@pytest.mark.asyncio
async def test_confirm_payment_by_reservation(client: AsyncClient, test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T3", status=ReservationStatus.TENTATIVE)

    response = await client.post(
        "/payments/confirm", json={"payment_id": "pay_c1", "reservation_id": reservation_id}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["reservation"]["status"] == "confirmed"
    assert data["payment"]["id"] == "pay_c1"
    table = await _reload(test_db, Table, seed["tables"]["T3"])
    assert table.status == TableStatus.RESERVED


@pytest.mark.asyncio
async def test_confirm_payment_by_intent(authenticated_client: AsyncClient, seed, future_date):
    token, _ = issue_intent(
        restaurant_id=seed["restaurant_id"],
        table_id=seed["tables"]["T2"],
        customer_name="Barbara",
        party_size=2,
        reservation_date=future_date,
        reservation_time=time(13, 0),
        user_id=42,
    )

    response = await authenticated_client.post(
        "/payments/confirm", json={"payment_id": "pay_i1", "intent_token": token}
    )

    assert response.status_code == 200
    reservation = response.json()["reservation"]
    assert reservation["status"] == "confirmed"
    assert reservation["payment_id"] == "pay_i1"
    assert reservation["user_id"] == 42


@pytest.mark.asyncio
async def test_confirm_payment_intent_of_other_user(authenticated_client: AsyncClient, seed, future_date):
    token, _ = issue_intent(
        restaurant_id=seed["restaurant_id"],
        table_id=seed["tables"]["T2"],
        customer_name="Barbara",
        party_size=2,
        reservation_date=future_date,
        reservation_time=time(13, 0),
        user_id=7,
    )

    response = await authenticated_client.post(
        "/payments/confirm", json={"payment_id": "pay_i2", "intent_token": token}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_confirm_payment_with_expired_intent(client: AsyncClient, seed):
    token, _ = issue_intent(
        restaurant_id=seed["restaurant_id"],
        customer_name="Late",
        party_size=2,
        reservation_date=date(2030, 1, 1),
        reservation_time=time(13, 0),
        now=datetime.now(timezone.utc) - timedelta(minutes=settings.intent_expire_minutes + 1),
    )

    response = await client.post(
        "/payments/confirm", json={"payment_id": "pay_old", "intent_token": token}
    )

    assert response.status_code == 410
    assert response.json()["code"] == "EXPIRED"


@pytest.mark.asyncio
async def test_confirm_payment_needs_a_target(client: AsyncClient, seed):
    response = await client.post("/payments/confirm", json={"payment_id": "pay_x"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_refund_cancels_reservation(client: AsyncClient, test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T3", payment_id="pay_r1")

    response = await client.post(
        "/payments/refund",
        json={"payment_id": "pay_r1", "amount": 2500, "reason": "requested_by_customer"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["refund"]["payment_id"] == "pay_r1"
    assert data["refund"]["amount"] == 2500
    assert data["reservation"]["id"] == reservation_id
    assert data["reservation"]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_refund_inside_window_is_refused(client: AsyncClient, test_db, seed, make_reservation):
    start = utcnow() + timedelta(hours=2)
    reservation_id = await make_reservation(
        table="T3",
        payment_id="pay_r2",
        reservation_date=start.date(),
        reservation_time=start.time().replace(microsecond=0),
    )

    response = await client.post(
        "/payments/refund", json={"payment_id": "pay_r2", "reservation_id": reservation_id}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "REFUND_WINDOW_PASSED"
    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_refund_with_mismatched_payment(client: AsyncClient, seed, make_reservation):
    reservation_id = await make_reservation(table="T3", payment_id="pay_r3")

    response = await client.post(
        "/payments/refund", json={"payment_id": "pay_other", "reservation_id": reservation_id}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_refund_without_reservation(client: AsyncClient, seed):
    response = await client.post("/payments/refund", json={"payment_id": "pay_unknown"})

    assert response.status_code == 200
    assert response.json()["reservation"] is None


@pytest.mark.asyncio
async def test_repeated_refund_is_not_issued_twice(client: AsyncClient, test_db, seed, make_reservation, recording_provider):
    reservation_id = await make_reservation(table="T3", payment_id="pay_1")
    body = {"payment_id": "pay_1", "reservation_id": reservation_id, "amount": 2500}

    first = await client.post("/payments/refund", json=body)
    second = await client.post("/payments/refund", json=body)

    assert first.status_code == 200
    assert first.json()["reservation"]["status"] == "cancelled"
    assert second.status_code == 400
    assert second.json()["code"] == "INVALID_STATUS"
    assert recording_provider.refunded == ["pay_1"]


@pytest.mark.asyncio
async def test_refund_by_payment_of_cancelled_reservation(client: AsyncClient, seed, make_reservation, recording_provider):
    await make_reservation(table="T3", status=ReservationStatus.CANCELLED, payment_id="pay_done")

    response = await client.post("/payments/refund", json={"payment_id": "pay_done"})

    assert response.status_code == 400
    assert recording_provider.refunded == []
