"""Background job tasks"""

import asyncio
from sqlalchemy.pool import NullPool
import structlog

from tablehold.config import settings
from tablehold.database import Database
from tablehold.jobs.celery_app import celery_app

logger = structlog.get_logger()


def run_async(coro):
    """Helper to run async functions in sync context"""
    return asyncio.run(coro)


def task_database() -> Database:
    """Each task run gets its own event loop, so pooled connections can't be shared"""
    return Database(settings.database_url, poolclass=NullPool)


@celery_app.task(name="send_reservation_notification")
def send_reservation_notification(reservation_id: int):
    """Hand a newly created reservation to the notification channel"""
    logger.info("Sending reservation notification", reservation_id=reservation_id)

    async def _send():
        from tablehold.services.notifications import mark_confirmation_sent

        database = task_database()
        try:
            async with database.session() as db:
                sent = await mark_confirmation_sent(db, reservation_id)
        finally:
            await database.dispose()

        if sent:
            logger.info("Reservation notification sent", reservation_id=reservation_id)
        else:
            logger.info("Reservation notification skipped", reservation_id=reservation_id)

    run_async(_send())


@celery_app.task(name="expire_stale_reservations")
def expire_stale_reservations():
    """Expire tentative holds whose deadline has passed"""
    logger.info("Expiring stale tentative reservations")

    async def _expire():
        from tablehold.services.booking import expire_stale_tentative

        database = task_database()
        try:
            async with database.session() as db:
                count = await expire_stale_tentative(db)
        finally:
            await database.dispose()

        logger.info("Stale tentative reservations expired", count=count)

    run_async(_expire())
