"""Table availability checks"""

from datetime import date, time
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.exceptions import AvailabilityCheckFailed
from tablehold.models.reservation import OCCUPYING_STATUSES, Reservation, ReservationStatus

logger = structlog.get_logger()


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def times_conflict(first: time, second: time, buffer_minutes: int) -> bool:
    """Two start times on the same day conflict when closer than the buffer"""
    return abs(minutes_of_day(first) - minutes_of_day(second)) < buffer_minutes


async def find_conflicts(
    db: AsyncSession,
    table_id: int,
    reservation_date: date,
    reservation_time: time,
    buffer_minutes: int,
    exclude_reservation_id: Optional[int] = None,
    statuses: Sequence[ReservationStatus] = OCCUPYING_STATUSES,
) -> List[Reservation]:
    """Reservations on the table and date that overlap the requested start.

    Raises AvailabilityCheckFailed when the lookup itself fails; callers must
    treat that as "conflict unknown" and refuse to confirm.
    """
    query = select(Reservation).where(
        Reservation.table_id == table_id,
        Reservation.reservation_date == reservation_date,
        Reservation.status.in_(list(statuses)),
    )
    if exclude_reservation_id is not None:
        query = query.where(Reservation.id != exclude_reservation_id)

    try:
        result = await db.execute(query.order_by(Reservation.reservation_time))
        candidates = result.scalars().all()
    except SQLAlchemyError as exc:
        logger.error(
            "Availability lookup failed",
            table_id=table_id,
            reservation_date=str(reservation_date),
            error=str(exc),
        )
        raise AvailabilityCheckFailed(
            "Could not verify table availability, please retry"
        ) from exc

    conflicts = [
        candidate for candidate in candidates
        if times_conflict(candidate.reservation_time, reservation_time, buffer_minutes)
    ]

    if conflicts:
        logger.info(
            "Reservation conflict detected",
            table_id=table_id,
            reservation_date=str(reservation_date),
            reservation_time=reservation_time.strftime("%H:%M"),
            conflicting_ids=[c.id for c in conflicts],
        )

    return conflicts
