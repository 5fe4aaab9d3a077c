"""Reservation creation, hold maintenance and detail updates"""

from datetime import date, datetime, time, timedelta
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.config import settings
from tablehold.database import transaction, utcnow
from tablehold.exceptions import Expired, InvalidStatus, NotFound, SlotConflict, ValidationFailed
from tablehold.models.reservation import (
    IMMEDIATE_BOOKING_STATUSES,
    OCCUPYING_STATUSES,
    Reservation,
    ReservationStatus,
)
from tablehold.models.restaurant import Restaurant, Table
from tablehold.services.availability import find_conflicts
from tablehold.services.confirmation import lock_reservation
from tablehold.services.notifications import notify_reservation_created
from tablehold.services.settings_resolver import resolve_settings
from tablehold.services.table_status import lock_table, sync_table_status

logger = structlog.get_logger()

# Fields a caller may change through a detail update
UPDATABLE_FIELDS = frozenset({
    "customer_phone",
    "customer_email",
    "party_size",
    "special_requests",
    "reservation_date",
    "reservation_time",
})

SLOT_FIELDS = frozenset({"reservation_date", "reservation_time"})

# Columns that are NOT NULL; an explicit null in an update is a caller error
REQUIRED_FIELDS = frozenset({"party_size", "reservation_date", "reservation_time"})

EDITABLE_STATUSES = (
    ReservationStatus.TENTATIVE,
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
)


async def validate_booking_target(
    db: AsyncSession,
    restaurant_id: int,
    table_id: Optional[int],
    party_size: int,
) -> Optional[Table]:
    """Restaurant must exist; a requested table must belong to it and fit the party"""
    restaurant = await db.get(Restaurant, restaurant_id)
    if restaurant is None or not restaurant.is_active:
        raise NotFound("Restaurant not found", restaurant_id=restaurant_id)

    if table_id is None:
        return None

    result = await db.execute(
        select(Table).where(Table.id == table_id, Table.restaurant_id == restaurant_id)
    )
    table = result.scalar_one_or_none()
    if table is None:
        raise NotFound("Table not found or does not belong to this restaurant", table_id=table_id)

    if table.capacity < party_size:
        raise ValidationFailed(
            f"Table capacity ({table.capacity}) is insufficient for party size ({party_size})"
        )
    return table


async def preview_conflicts(
    db: AsyncSession,
    *,
    restaurant_id: int,
    table_id: int,
    reservation_date: date,
    reservation_time: time,
    exclude_reservation_id: Optional[int] = None,
) -> list:
    """Lock-free availability read; may be stale by the time anyone confirms"""
    policy = await resolve_settings(db, restaurant_id)
    return await find_conflicts(
        db,
        table_id,
        reservation_date,
        reservation_time,
        policy.duration_minutes,
        exclude_reservation_id=exclude_reservation_id,
    )


async def _ensure_slot_free(
    db: AsyncSession,
    *,
    restaurant_id: int,
    table_id: int,
    reservation_date: date,
    reservation_time: time,
    statuses: Sequence[ReservationStatus],
    exclude_reservation_id: Optional[int] = None,
) -> None:
    policy = await resolve_settings(db, restaurant_id)
    conflicts = await find_conflicts(
        db,
        table_id,
        reservation_date,
        reservation_time,
        policy.duration_minutes,
        exclude_reservation_id=exclude_reservation_id,
        statuses=statuses,
    )
    if conflicts:
        raise SlotConflict(
            "Table is already reserved for this time slot",
            persist=False,
            conflicting_reservation_id=conflicts[0].id,
        )


async def create_reservation(
    db: AsyncSession,
    data: Mapping[str, Any],
    *,
    tentative: bool = False,
    user_id: Optional[int] = None,
) -> Reservation:
    """Immediate booking (confirmed, no payment) or a legacy tentative hold.

    Tentative holds only check against confirmed/seated rows, so several may
    coexist for one slot and the first to pay wins.
    """
    restaurant_id = data["restaurant_id"]
    table_id = data.get("table_id")

    async with transaction(db):
        await validate_booking_target(db, restaurant_id, table_id, data["party_size"])

        if table_id is not None:
            await lock_table(db, table_id)
            await _ensure_slot_free(
                db,
                restaurant_id=restaurant_id,
                table_id=table_id,
                reservation_date=data["reservation_date"],
                reservation_time=data["reservation_time"],
                statuses=OCCUPYING_STATUSES if tentative else IMMEDIATE_BOOKING_STATUSES,
            )

        now = utcnow()
        reservation = Reservation(
            restaurant_id=restaurant_id,
            table_id=table_id,
            user_id=user_id,
            customer_name=data["customer_name"],
            customer_phone=data.get("customer_phone"),
            customer_email=data.get("customer_email"),
            party_size=data["party_size"],
            reservation_date=data["reservation_date"],
            reservation_time=data["reservation_time"],
            special_requests=data.get("special_requests"),
        )
        if tentative:
            reservation.status = ReservationStatus.TENTATIVE
            reservation.expires_at = now + timedelta(minutes=settings.tentative_hold_minutes)
        else:
            reservation.status = ReservationStatus.CONFIRMED
            reservation.confirmed_at = now

        db.add(reservation)
        await db.flush()

        if not tentative:
            await sync_table_status(db, table_id, ReservationStatus.CONFIRMED)

    logger.info(
        "Reservation created",
        reservation_id=reservation.id,
        status=reservation.status.value,
        table_id=table_id,
        expires_at=reservation.expires_at.isoformat() if reservation.expires_at else None,
    )
    notify_reservation_created(reservation.id)
    return reservation


async def extend_hold(
    db: AsyncSession,
    reservation_id: int,
    restaurant_id: Optional[int] = None,
) -> Reservation:
    """Re-verify a tentative hold before payment and push its deadline out"""
    async with transaction(db):
        reservation = await lock_reservation(db, reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found", reservation_id=reservation_id)

        if restaurant_id is not None and reservation.restaurant_id != restaurant_id:
            raise ValidationFailed("This reservation is for a different restaurant")

        if reservation.status == ReservationStatus.CONFIRMED:
            return reservation

        if reservation.status != ReservationStatus.TENTATIVE:
            raise InvalidStatus(f"Reservation not tentative (status={reservation.status.value})")

        now = utcnow()
        if reservation.expires_at is not None and reservation.expires_at < now:
            reservation.status = ReservationStatus.EXPIRED
            reservation.expires_at = None
            raise Expired("Reservation time no longer available. Please make a new reservation.")

        if reservation.table_id is not None:
            await lock_table(db, reservation.table_id)
            conflicts = await preview_conflicts(
                db,
                restaurant_id=reservation.restaurant_id,
                table_id=reservation.table_id,
                reservation_date=reservation.reservation_date,
                reservation_time=reservation.reservation_time,
                exclude_reservation_id=reservation.id,
            )
            if conflicts:
                reservation.status = ReservationStatus.EXPIRED
                reservation.expires_at = None
                raise SlotConflict(
                    "Reservation time no longer available. Another customer booked this slot.",
                    conflicting_reservation_id=conflicts[0].id,
                )

        reservation.expires_at = now + timedelta(minutes=settings.hold_extension_minutes)

    logger.info(
        "Tentative hold extended",
        reservation_id=reservation.id,
        expires_at=reservation.expires_at.isoformat(),
    )
    return reservation


def bind_updates(changes: Mapping[str, Any]) -> dict:
    """Keep only whitelisted fields; anything else is a caller error"""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationFailed(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if not changes:
        raise ValidationFailed("No fields to update")
    cleared = sorted(name for name in REQUIRED_FIELDS if name in changes and changes[name] is None)
    if cleared:
        raise ValidationFailed(f"Fields cannot be null: {', '.join(cleared)}")
    return {name: changes[name] for name in changes if name in UPDATABLE_FIELDS}


async def update_reservation_details(
    db: AsyncSession,
    reservation_id: int,
    changes: Mapping[str, Any],
) -> Reservation:
    values = bind_updates(changes)

    async with transaction(db):
        reservation = await lock_reservation(db, reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found", reservation_id=reservation_id)

        if reservation.status not in EDITABLE_STATUSES:
            raise InvalidStatus(f"Cannot update a {reservation.status.value} reservation")

        if "party_size" in values and reservation.table_id is not None:
            table = await db.get(Table, reservation.table_id)
            if table is not None and table.capacity < values["party_size"]:
                raise ValidationFailed(
                    f"Table capacity ({table.capacity}) is insufficient for party size ({values['party_size']})"
                )

        moves_slot = bool(SLOT_FIELDS & set(values))
        if moves_slot and reservation.table_id is not None and reservation.status == ReservationStatus.CONFIRMED:
            await lock_table(db, reservation.table_id)
            await _ensure_slot_free(
                db,
                restaurant_id=reservation.restaurant_id,
                table_id=reservation.table_id,
                reservation_date=values.get("reservation_date", reservation.reservation_date),
                reservation_time=values.get("reservation_time", reservation.reservation_time),
                statuses=OCCUPYING_STATUSES,
                exclude_reservation_id=reservation.id,
            )

        for name, value in values.items():
            setattr(reservation, name, value)

    logger.info("Reservation updated", reservation_id=reservation.id, fields=sorted(values))
    return reservation


async def expire_stale_tentative(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Mark every tentative hold past its deadline as expired.

    Lazy expiry at confirmation time stays authoritative; this only frees
    listings sooner. One UPDATE, so each row flips atomically.
    """
    now = now or utcnow()
    async with transaction(db):
        result = await db.execute(
            update(Reservation)
            .where(
                Reservation.status == ReservationStatus.TENTATIVE,
                Reservation.expires_at.is_not(None),
                Reservation.expires_at < now,
            )
            .values(status=ReservationStatus.EXPIRED, expires_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    return result.rowcount or 0
