"""Cancellation policy"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.exceptions import InvalidStatus, RefundWindowPassed
from tablehold.models.reservation import Reservation, ReservationStatus
from tablehold.models.restaurant import Restaurant
from tablehold.services.settings_resolver import resolve_settings
from tablehold.services.table_status import sync_table_status

logger = structlog.get_logger()

# Cancellable regardless of the window: no payment has been taken
UNPAID_STATUSES = (ReservationStatus.TENTATIVE, ReservationStatus.PENDING)


def hours_until_start(reservation: Reservation, now: datetime) -> float:
    start = datetime.combine(reservation.reservation_date, reservation.reservation_time)
    return (start - now).total_seconds() / 3600


def check_cancellation_allowed(
    reservation: Reservation,
    window_hours: int,
    now: datetime,
) -> None:
    """Raise unless the reservation may be cancelled at ``now`` (restaurant local time)"""
    if reservation.status in UNPAID_STATUSES:
        return

    if reservation.status != ReservationStatus.CONFIRMED:
        raise InvalidStatus(f"Cannot cancel a {reservation.status.value} reservation")

    if hours_until_start(reservation, now) < window_hours:
        raise RefundWindowPassed(
            f"Refunds are not allowed within {window_hours} hours of the reservation time",
            window_hours=window_hours,
        )


async def restaurant_now(db: AsyncSession, restaurant_id: int) -> datetime:
    """Current wall-clock time in the restaurant's timezone, naive"""
    result = await db.execute(select(Restaurant.timezone).where(Restaurant.id == restaurant_id))
    tz_name = result.scalar_one_or_none() or "UTC"
    try:
        zone = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown restaurant timezone, using UTC", restaurant_id=restaurant_id, timezone=tz_name)
        zone = ZoneInfo("UTC")
    return datetime.now(zone).replace(tzinfo=None)


async def cancel_locked_reservation(
    db: AsyncSession,
    reservation: Reservation,
    now: Optional[datetime] = None,
) -> Reservation:
    """Enforce the policy and cancel a reservation whose row lock is held"""
    if reservation.status == ReservationStatus.CANCELLED:
        return reservation

    policy = await resolve_settings(db, reservation.restaurant_id)
    if now is None:
        now = await restaurant_now(db, reservation.restaurant_id)

    check_cancellation_allowed(reservation, policy.cancellation_window_hours, now)

    reservation.status = ReservationStatus.CANCELLED
    reservation.expires_at = None
    await sync_table_status(db, reservation.table_id, ReservationStatus.CANCELLED)

    logger.info(
        "Reservation cancelled",
        reservation_id=reservation.id,
        table_id=reservation.table_id,
    )
    return reservation
