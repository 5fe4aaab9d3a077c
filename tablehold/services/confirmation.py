"""Reservation confirmation engine.

Two ways to reach ``confirmed``:

* Path A, by reservation id: a tentative row exists and is locked for the
  whole decision (ownership, idempotency, expiry, conflict re-check, write,
  table sync). Whoever takes the row lock first decides; a racing client
  call, payment webhook or refund webhook sees the committed result.
* Path B, by intent token: no row exists yet. The token is re-validated,
  the table row is locked across the conflict check and the insert, and the
  reservation is created directly as confirmed.

Both must be called after any provider round-trip has completed; nothing
here awaits the network while holding a lock.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.database import transaction, utcnow
from tablehold.exceptions import (
    Expired,
    Forbidden,
    InvalidStatus,
    NotFound,
    PaymentAlreadyUsed,
    SlotConflict,
)
from tablehold.models.reservation import Reservation, ReservationStatus
from tablehold.services.availability import find_conflicts
from tablehold.services.intents import ReservationIntent, decode_intent
from tablehold.services.notifications import notify_reservation_created
from tablehold.services.settings_resolver import resolve_settings
from tablehold.services.table_status import lock_table, sync_table_status

logger = structlog.get_logger()


async def lock_reservation(db: AsyncSession, reservation_id: int) -> Optional[Reservation]:
    """SELECT ... FOR UPDATE on the reservation row, refreshing any cached copy"""
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_by_payment_id(
    db: AsyncSession,
    payment_id: str,
    lock: bool = False,
) -> Optional[Reservation]:
    query = select(Reservation).where(Reservation.payment_id == payment_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


def _check_owner(owner_id: Optional[int], requesting_user_id: Optional[int]) -> None:
    if owner_id is not None and requesting_user_id is not None and owner_id != requesting_user_id:
        raise Forbidden("Not allowed to confirm this reservation")


async def apply_payment(
    db: AsyncSession,
    *,
    reservation_id: int,
    payment_id: str,
    requesting_user_id: Optional[int] = None,
) -> Reservation:
    """Path A. Runs inside the caller's transaction; see :func:`confirm_reservation`.

    Raises Expired or SlotConflict after marking the row expired; both are
    flagged to be committed.
    """
    reservation = await lock_reservation(db, reservation_id)
    if reservation is None:
        raise NotFound("Reservation not found", reservation_id=reservation_id)

    _check_owner(reservation.user_id, requesting_user_id)

    if reservation.status == ReservationStatus.CONFIRMED:
        logger.info(
            "Reservation already confirmed",
            reservation_id=reservation.id,
            payment_id=payment_id,
            stored_payment_id=reservation.payment_id,
        )
        return reservation

    if reservation.status != ReservationStatus.TENTATIVE:
        raise InvalidStatus(
            f"Cannot confirm reservation with status '{reservation.status.value}'"
        )

    now = utcnow()
    if reservation.expires_at is not None and reservation.expires_at < now:
        reservation.status = ReservationStatus.EXPIRED
        reservation.expires_at = None
        logger.warning("Reservation expired before confirmation", reservation_id=reservation.id)
        raise Expired("Reservation expired before confirmation")

    other = await find_by_payment_id(db, payment_id)
    if other is not None and other.id != reservation.id:
        raise PaymentAlreadyUsed(
            "Payment already applied to another reservation",
            reservation_id=other.id,
        )

    if reservation.table_id is not None:
        await lock_table(db, reservation.table_id)
        policy = await resolve_settings(db, reservation.restaurant_id)
        conflicts = await find_conflicts(
            db,
            reservation.table_id,
            reservation.reservation_date,
            reservation.reservation_time,
            policy.duration_minutes,
            exclude_reservation_id=reservation.id,
        )
        if conflicts:
            reservation.status = ReservationStatus.EXPIRED
            reservation.expires_at = None
            logger.warning(
                "Slot taken before confirmation, hold expired",
                reservation_id=reservation.id,
                conflicting_id=conflicts[0].id,
            )
            raise SlotConflict(
                "Time slot no longer available",
                conflicting_reservation_id=conflicts[0].id,
            )

    reservation.status = ReservationStatus.CONFIRMED
    reservation.payment_id = payment_id
    reservation.confirmed_at = now
    reservation.expires_at = None
    await sync_table_status(db, reservation.table_id, ReservationStatus.CONFIRMED)

    logger.info(
        "Reservation confirmed",
        reservation_id=reservation.id,
        payment_id=payment_id,
        table_id=reservation.table_id,
    )
    return reservation


async def confirm_reservation(
    db: AsyncSession,
    *,
    reservation_id: int,
    payment_id: str,
    requesting_user_id: Optional[int] = None,
) -> Reservation:
    """Path A in its own transaction"""
    async with transaction(db):
        return await apply_payment(
            db,
            reservation_id=reservation_id,
            payment_id=payment_id,
            requesting_user_id=requesting_user_id,
        )


async def apply_intent(
    db: AsyncSession,
    intent: ReservationIntent,
    payment_id: str,
) -> Reservation:
    """Path B inside the caller's transaction; the caller has checked that
    no reservation carries ``payment_id`` yet.
    """
    if intent.table_id is not None:
        await lock_table(db, intent.table_id)
        policy = await resolve_settings(db, intent.restaurant_id)
        conflicts = await find_conflicts(
            db,
            intent.table_id,
            intent.reservation_date,
            intent.reservation_time,
            policy.duration_minutes,
        )
        if conflicts:
            logger.warning(
                "Slot taken before intent redemption",
                table_id=intent.table_id,
                conflicting_id=conflicts[0].id,
            )
            raise SlotConflict(
                "Time slot no longer available",
                persist=False,
                conflicting_reservation_id=conflicts[0].id,
            )

    reservation = Reservation(
        restaurant_id=intent.restaurant_id,
        table_id=intent.table_id,
        user_id=intent.user_id,
        customer_name=intent.customer_name,
        customer_phone=intent.customer_phone,
        customer_email=intent.customer_email,
        party_size=intent.party_size,
        reservation_date=intent.reservation_date,
        reservation_time=intent.reservation_time,
        special_requests=intent.special_requests,
        status=ReservationStatus.CONFIRMED,
        payment_id=payment_id,
        confirmed_at=utcnow(),
    )
    db.add(reservation)
    await db.flush()
    await sync_table_status(db, reservation.table_id, ReservationStatus.CONFIRMED)

    logger.info(
        "Reservation created from intent",
        reservation_id=reservation.id,
        payment_id=payment_id,
        table_id=reservation.table_id,
    )
    return reservation


async def redeem_intent(
    db: AsyncSession,
    *,
    intent_token: str,
    payment_id: str,
    requesting_user_id: Optional[int] = None,
) -> Reservation:
    """Path B: create a confirmed reservation from a paid intent"""
    intent = decode_intent(intent_token)
    _check_owner(intent.user_id, requesting_user_id)

    async with transaction(db):
        existing = await find_by_payment_id(db, payment_id)
        if existing is not None:
            logger.info(
                "Intent payment already redeemed",
                reservation_id=existing.id,
                payment_id=payment_id,
            )
            return existing

        reservation = await apply_intent(db, intent, payment_id)

    notify_reservation_created(reservation.id)
    return reservation
