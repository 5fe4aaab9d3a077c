"""Tests for booking, hold maintenance and detail updates"""

from datetime import time, timedelta

import pytest

from tablehold.database import utcnow
from tablehold.exceptions import Expired, InvalidStatus, NotFound, SlotConflict, ValidationFailed
from tablehold.models import Reservation, ReservationStatus, Restaurant, Table, TableStatus
from tablehold.services.booking import (
    bind_updates,
    create_reservation,
    expire_stale_tentative,
    extend_hold,
    update_reservation_details,
)


async def _reload(db, model, pk):
    return await db.get(model, pk, populate_existing=True)


def booking_data(seed, future_date, table="T4", at=time(19, 0), **overrides):
    data = {
        "restaurant_id": seed["restaurant_id"],
        "table_id": seed["tables"][table] if table else None,
        "customer_name": "Grace",
        "customer_phone": "+15550001111",
        "party_size": 4,
        "reservation_date": future_date,
        "reservation_time": at,
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_immediate_booking_is_confirmed(test_db, seed, future_date):
    reservation = await create_reservation(test_db, booking_data(seed, future_date), user_id=3)
    reservation_id = reservation.id

    reservation = await _reload(test_db, Reservation, reservation_id)
    table = await _reload(test_db, Table, seed["tables"]["T4"])
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.confirmed_at is not None
    assert reservation.expires_at is None
    assert reservation.user_id == 3
    assert table.status == TableStatus.RESERVED


@pytest.mark.asyncio
async def test_immediate_booking_respects_pending_rows(test_db, seed, make_reservation, future_date):
    await make_reservation(table="T4", status=ReservationStatus.PENDING, reservation_time=time(18, 30))

    with pytest.raises(SlotConflict) as exc_info:
        await create_reservation(test_db, booking_data(seed, future_date))

    assert exc_info.value.persist is False


@pytest.mark.asyncio
async def test_booking_checks_capacity(test_db, seed, future_date):
    with pytest.raises(ValidationFailed):
        await create_reservation(test_db, booking_data(seed, future_date, table="T1", party_size=6))


@pytest.mark.asyncio
async def test_booking_rejects_table_of_other_restaurant(test_db, seed, future_date):
    other = Restaurant(name="Elsewhere")
    test_db.add(other)
    await test_db.flush()
    foreign = Table(restaurant_id=other.id, table_number="X1", capacity=8)
    test_db.add(foreign)
    await test_db.commit()
    foreign_id = foreign.id

    with pytest.raises(NotFound):
        await create_reservation(test_db, booking_data(seed, future_date, table_id=foreign_id))


@pytest.mark.asyncio
async def test_booking_unknown_restaurant(test_db, seed, future_date):
    with pytest.raises(NotFound):
        await create_reservation(test_db, booking_data(seed, future_date, restaurant_id=999, table_id=None))


@pytest.mark.asyncio
async def test_tentative_holds_may_overlap(test_db, seed, make_reservation, future_date):
    await make_reservation(table="T4", status=ReservationStatus.TENTATIVE, reservation_time=time(19, 0))

    before = utcnow()
    reservation = await create_reservation(test_db, booking_data(seed, future_date), tentative=True)

    assert reservation.status == ReservationStatus.TENTATIVE
    assert reservation.confirmed_at is None
    assert before + timedelta(minutes=14) < reservation.expires_at <= utcnow() + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_tentative_hold_blocked_by_confirmed(test_db, seed, make_reservation, future_date):
    await make_reservation(table="T4", reservation_time=time(19, 45))

    with pytest.raises(SlotConflict):
        await create_reservation(test_db, booking_data(seed, future_date), tentative=True)


@pytest.mark.asyncio
async def test_extend_hold_pushes_deadline(test_db, seed, make_reservation):
    reservation_id = await make_reservation(
        table="T4",
        status=ReservationStatus.TENTATIVE,
        expires_at=utcnow() + timedelta(minutes=1),
    )

    await extend_hold(test_db, reservation_id)

    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.expires_at > utcnow() + timedelta(minutes=4)


@pytest.mark.asyncio
async def test_extend_confirmed_hold_is_a_no_op(test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T4")

    reservation = await extend_hold(test_db, reservation_id)

    assert reservation.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_extend_lapsed_hold_expires_it(test_db, seed, make_reservation):
    reservation_id = await make_reservation(
        table="T4",
        status=ReservationStatus.TENTATIVE,
        expires_at=utcnow() - timedelta(seconds=5),
    )

    with pytest.raises(Expired):
        await extend_hold(test_db, reservation_id)

    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.EXPIRED


@pytest.mark.asyncio
async def test_extend_hold_on_taken_slot_expires_it(test_db, seed, make_reservation):
    await make_reservation(table="T4", reservation_time=time(18, 0))
    reservation_id = await make_reservation(
        table="T4", status=ReservationStatus.TENTATIVE, reservation_time=time(18, 30)
    )

    with pytest.raises(SlotConflict):
        await extend_hold(test_db, reservation_id)

    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.status == ReservationStatus.EXPIRED
    assert reservation.expires_at is None


@pytest.mark.asyncio
async def test_extend_hold_for_other_restaurant(test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T4", status=ReservationStatus.TENTATIVE)

    with pytest.raises(ValidationFailed):
        await extend_hold(test_db, reservation_id, restaurant_id=seed["restaurant_id"] + 1)


def test_bind_updates_rejects_unknown_fields():
    with pytest.raises(ValidationFailed):
        bind_updates({"status": "confirmed"})
    with pytest.raises(ValidationFailed):
        bind_updates({})

    assert bind_updates({"party_size": 3}) == {"party_size": 3}


def test_bind_updates_rejects_null_required_fields():
    with pytest.raises(ValidationFailed) as exc_info:
        bind_updates({"party_size": None})
    assert "party_size" in exc_info.value.message

    with pytest.raises(ValidationFailed):
        bind_updates({"reservation_date": None, "special_requests": "Quiet table"})
    with pytest.raises(ValidationFailed):
        bind_updates({"reservation_time": None})

    assert bind_updates({"special_requests": None}) == {"special_requests": None}


@pytest.mark.asyncio
async def test_update_details(test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T4")

    await update_reservation_details(
        test_db, reservation_id, {"party_size": 5, "special_requests": "Window seat"}
    )

    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.party_size == 5
    assert reservation.special_requests == "Window seat"


@pytest.mark.asyncio
async def test_update_over_capacity(test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T1")

    with pytest.raises(ValidationFailed):
        await update_reservation_details(test_db, reservation_id, {"party_size": 6})


@pytest.mark.asyncio
async def test_moving_confirmed_into_taken_slot(test_db, seed, make_reservation):
    await make_reservation(table="T4", reservation_time=time(21, 0))
    reservation_id = await make_reservation(table="T4", reservation_time=time(18, 0))

    with pytest.raises(SlotConflict):
        await update_reservation_details(test_db, reservation_id, {"reservation_time": time(20, 30)})

    reservation = await _reload(test_db, Reservation, reservation_id)
    assert reservation.reservation_time == time(18, 0)


@pytest.mark.asyncio
async def test_completed_reservation_cannot_be_edited(test_db, seed, make_reservation):
    reservation_id = await make_reservation(table="T4", status=ReservationStatus.COMPLETED)

    with pytest.raises(InvalidStatus):
        await update_reservation_details(test_db, reservation_id, {"party_size": 2})


@pytest.mark.asyncio
async def test_expire_stale_tentative(test_db, seed, make_reservation):
    stale_ids = [
        await make_reservation(
            table="T1",
            status=ReservationStatus.TENTATIVE,
            expires_at=utcnow() - timedelta(minutes=minutes),
        )
        for minutes in (1, 30)
    ]
    fresh_id = await make_reservation(table="T2", status=ReservationStatus.TENTATIVE)

    count = await expire_stale_tentative(test_db)

    assert count == 2
    for reservation_id in stale_ids:
        reservation = await _reload(test_db, Reservation, reservation_id)
        assert reservation.status == ReservationStatus.EXPIRED
        assert reservation.expires_at is None
    fresh = await _reload(test_db, Reservation, fresh_id)
    assert fresh.status == ReservationStatus.TENTATIVE
