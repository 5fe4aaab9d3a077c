"""Keeps a table's occupancy flag consistent with its reservations"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.models.reservation import Reservation, ReservationStatus, TERMINAL_STATUSES
from tablehold.models.restaurant import Table, TableStatus

logger = structlog.get_logger()


async def lock_table(db: AsyncSession, table_id: int) -> Optional[Table]:
    """SELECT ... FOR UPDATE on the table row.

    Serializes check-then-write sequences on the same table. Always taken
    after the reservation row lock, never before.
    """
    result = await db.execute(
        select(Table)
        .where(Table.id == table_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _count_on_table(db: AsyncSession, table_id: int, status: ReservationStatus) -> int:
    result = await db.execute(
        select(func.count(Reservation.id)).where(
            Reservation.table_id == table_id,
            Reservation.status == status,
        )
    )
    return result.scalar() or 0


async def sync_table_status(
    db: AsyncSession,
    table_id: Optional[int],
    entered_status: ReservationStatus,
) -> Optional[TableStatus]:
    """Apply the occupancy change implied by a reservation entering a status.

    Must run in the same transaction as the reservation write, after it has
    been applied to the session.
    """
    if table_id is None:
        return None

    table = await lock_table(db, table_id)
    if table is None:
        logger.warning("Reservation references missing table", table_id=table_id)
        return None

    previous = table.status

    if entered_status == ReservationStatus.CONFIRMED:
        if table.status not in (TableStatus.OCCUPIED, TableStatus.UNAVAILABLE):
            table.status = TableStatus.RESERVED
    elif entered_status == ReservationStatus.SEATED:
        table.status = TableStatus.OCCUPIED
    elif entered_status in TERMINAL_STATUSES:
        await db.flush()
        if table.status != TableStatus.UNAVAILABLE:
            if await _count_on_table(db, table_id, ReservationStatus.SEATED) == 0:
                remaining = await _count_on_table(db, table_id, ReservationStatus.CONFIRMED)
                table.status = TableStatus.RESERVED if remaining else TableStatus.AVAILABLE

    if table.status != previous:
        logger.info(
            "Table status changed",
            table_id=table_id,
            previous=previous.value,
            status=table.status.value,
            trigger=entered_status.value,
        )

    return table.status
