"""Staff-driven status changes and policy-checked cancellation"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.database import transaction, utcnow
from tablehold.exceptions import Forbidden, InvalidStatus, NotFound, SlotConflict, ValidationFailed
from tablehold.models.reservation import Reservation, ReservationStatus, can_transition
from tablehold.services.availability import find_conflicts
from tablehold.services.cancellation import (
    cancel_locked_reservation,
    check_cancellation_allowed,
    restaurant_now,
)
from tablehold.services.confirmation import find_by_payment_id, lock_reservation
from tablehold.services.settings_resolver import resolve_settings
from tablehold.services.table_status import lock_table, sync_table_status

logger = structlog.get_logger()


async def _locked(db: AsyncSession, reservation_id: int) -> Reservation:
    reservation = await lock_reservation(db, reservation_id)
    if reservation is None:
        raise NotFound("Reservation not found", reservation_id=reservation_id)
    return reservation


async def change_status(
    db: AsyncSession,
    reservation_id: int,
    new_status: ReservationStatus,
    now: Optional[datetime] = None,
) -> Reservation:
    """Move a reservation along the lifecycle graph on behalf of staff"""
    async with transaction(db):
        reservation = await _locked(db, reservation_id)
        current = reservation.status

        if current == new_status:
            return reservation

        if not can_transition(current, new_status):
            raise InvalidStatus(
                f"Cannot change reservation from '{current.value}' to '{new_status.value}'"
            )

        if new_status == ReservationStatus.CANCELLED:
            return await cancel_locked_reservation(db, reservation, now=now)

        if new_status == ReservationStatus.CONFIRMED and reservation.table_id is not None:
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
                raise SlotConflict(
                    "Time slot no longer available",
                    persist=False,
                    conflicting_reservation_id=conflicts[0].id,
                )

        reservation.status = new_status
        if new_status == ReservationStatus.CONFIRMED:
            reservation.confirmed_at = utcnow()
        elif new_status == ReservationStatus.SEATED:
            reservation.arrived_at = utcnow()
        if new_status != ReservationStatus.TENTATIVE:
            reservation.expires_at = None

        await sync_table_status(db, reservation.table_id, new_status)

    logger.info(
        "Reservation status changed",
        reservation_id=reservation.id,
        previous=current.value,
        status=new_status.value,
    )
    return reservation


async def cancel_reservation(
    db: AsyncSession,
    reservation_id: int,
    requesting_user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Reservation:
    """Customer cancellation under the cancellation window policy"""
    async with transaction(db):
        reservation = await _locked(db, reservation_id)
        if (
            reservation.user_id is not None
            and requesting_user_id is not None
            and reservation.user_id != requesting_user_id
        ):
            raise Forbidden("Not allowed to cancel this reservation")
        return await cancel_locked_reservation(db, reservation, now=now)


async def refund_and_cancel(
    db: AsyncSession,
    provider,
    *,
    payment_id: str,
    reservation_id: Optional[int] = None,
    amount: Optional[int] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
):
    """Refund a payment and cancel the reservation it paid for.

    The policy is checked lock-free first so a refused cancellation never
    reaches the provider, then re-checked under the row lock after the
    provider has answered.
    """
    if reservation_id is not None:
        reservation = await db.get(Reservation, reservation_id, populate_existing=True)
        if reservation is None:
            raise NotFound("Reservation not found", reservation_id=reservation_id)
        if reservation.payment_id is not None and reservation.payment_id != payment_id:
            raise ValidationFailed("Payment does not belong to this reservation")
    else:
        reservation = await find_by_payment_id(db, payment_id)

    target_id = reservation.id if reservation is not None else None
    if reservation is not None:
        if reservation.status == ReservationStatus.CANCELLED:
            # A cancelled row's payment has already been refunded
            raise InvalidStatus(
                "Reservation already cancelled; payment was refunded",
                reservation_id=reservation.id,
            )
        policy = await resolve_settings(db, reservation.restaurant_id)
        check_now = now or await restaurant_now(db, reservation.restaurant_id)
        check_cancellation_allowed(reservation, policy.cancellation_window_hours, check_now)
    # Release the read snapshot before talking to the provider
    await db.rollback()

    refund = await provider.refund(payment_id, amount=amount, reason=reason)

    if target_id is None:
        return refund, None

    async with transaction(db):
        locked = await _locked(db, target_id)
        cancelled = await cancel_locked_reservation(db, locked, now=now)

    return refund, cancelled
