"""Effective reservation policy for a restaurant"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tablehold.config import settings
from tablehold.models.restaurant import ReservationSettings


@dataclass(frozen=True)
class ResolvedSettings:
    duration_minutes: int
    cancellation_window_hours: int


async def resolve_settings(db: AsyncSession, restaurant_id: Optional[int] = None) -> ResolvedSettings:
    """Restaurant-specific row, then the global row, then configured defaults.

    Within each level the most recently updated row wins. Never cached, so a
    policy change applies to the next request.
    """
    row = None
    if restaurant_id is not None:
        row = await _latest(db, ReservationSettings.restaurant_id == restaurant_id)
    if row is None:
        row = await _latest(db, ReservationSettings.restaurant_id.is_(None))

    if row is None:
        return ResolvedSettings(
            duration_minutes=settings.default_reservation_duration_minutes,
            cancellation_window_hours=settings.default_cancellation_window_hours,
        )

    return ResolvedSettings(
        duration_minutes=row.reservation_duration_minutes
        if row.reservation_duration_minutes is not None
        else settings.default_reservation_duration_minutes,
        cancellation_window_hours=row.cancellation_window_hours
        if row.cancellation_window_hours is not None
        else settings.default_cancellation_window_hours,
    )


async def _latest(db: AsyncSession, criterion) -> Optional[ReservationSettings]:
    result = await db.execute(
        select(ReservationSettings)
        .where(criterion)
        .order_by(ReservationSettings.updated_at.desc(), ReservationSettings.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
