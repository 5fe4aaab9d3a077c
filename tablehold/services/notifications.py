"""Fire-and-forget notification dispatch"""

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.config import settings
from tablehold.database import transaction, utcnow
from tablehold.models.reservation import Reservation

logger = structlog.get_logger()


def notify_reservation_created(reservation_id: int) -> None:
    """Queue the creation notice; a broker outage never fails the booking"""
    if not settings.notifications_enabled:
        return

    from tablehold.jobs.celery_app import celery_app

    try:
        celery_app.send_task("send_reservation_notification", args=[reservation_id])
    except Exception as e:
        logger.warning(
            "Notification dispatch failed",
            reservation_id=reservation_id,
            error=str(e),
        )


async def mark_confirmation_sent(db: AsyncSession, reservation_id: int) -> bool:
    """Record the notice once; returns False when already sent or missing"""
    async with transaction(db):
        reservation = await db.get(Reservation, reservation_id, with_for_update=True)
        if reservation is None or reservation.confirmation_sent is not None:
            return False
        reservation.confirmation_sent = utcnow()
    return True
