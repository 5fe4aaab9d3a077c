"""Reservation management API endpoints"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tablehold.api.auth import get_current_user_id, get_requesting_user_id
from tablehold.database import get_db
from tablehold.exceptions import NotFound, SlotConflict
from tablehold.models.reservation import Reservation, ReservationStatus
from tablehold.models.restaurant import Restaurant
from tablehold.schemas.reservation import (
    AvailabilityRequest,
    AvailabilityResponse,
    ConfirmReservationRequest,
    ConflictSummary,
    DailyReservationsResponse,
    IntentCreate,
    IntentResponse,
    IntentVerifyRequest,
    IntentVerifyResponse,
    ReservationCreate,
    ReservationListResponse,
    ReservationResponse,
    ReservationUpdate,
    StatusUpdate,
    VerifyHoldRequest,
)
from tablehold.services import booking, confirmation, lifecycle
from tablehold.services.cancellation import restaurant_now
from tablehold.services.intents import decode_intent, issue_intent
from tablehold.services.payment_provider import get_payment_provider
from tablehold.services.settings_resolver import resolve_settings

router = APIRouter()

# Rows left out of the day view: nobody is coming for them
INACTIVE_STATUSES = (
    ReservationStatus.CANCELLED,
    ReservationStatus.EXPIRED,
    ReservationStatus.NO_SHOW,
)


async def _paginate(db: AsyncSession, filters: list, page: int, page_size: int) -> ReservationListResponse:
    total_result = await db.execute(select(func.count(Reservation.id)).where(*filters))
    total = total_result.scalar()

    offset = (page - 1) * page_size
    query = (
        select(Reservation)
        .where(*filters)
        .order_by(Reservation.reservation_date.desc(), Reservation.reservation_time.desc())
        .offset(offset)
        .limit(page_size)
    )
    result = await db.execute(query)
    reservations = result.scalars().all()

    return ReservationListResponse(
        items=reservations,
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("", response_model=ReservationListResponse)
async def list_reservations(
    restaurant_id: Optional[int] = None,
    table_id: Optional[int] = None,
    status: Optional[ReservationStatus] = None,
    reservation_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
):
    """List reservations with pagination; signed-in users see their own"""
    filters = []
    if restaurant_id is not None:
        filters.append(Reservation.restaurant_id == restaurant_id)
    if table_id is not None:
        filters.append(Reservation.table_id == table_id)
    if status is not None:
        filters.append(Reservation.status == status)
    if reservation_date is not None:
        filters.append(Reservation.reservation_date == reservation_date)
    if user_id is not None:
        filters.append(Reservation.user_id == user_id)

    return await _paginate(db, filters, page, page_size)


@router.get("/me", response_model=ReservationListResponse)
async def list_my_reservations(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Reservations owned by the signed-in user"""
    return await _paginate(db, [Reservation.user_id == user_id], page, page_size)


@router.get("/restaurant/{restaurant_id}/today", response_model=DailyReservationsResponse)
async def list_todays_reservations(
    restaurant_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Today's active reservations for a restaurant, earliest first"""
    restaurant = await db.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise NotFound("Restaurant not found", restaurant_id=restaurant_id)

    today = (await restaurant_now(db, restaurant_id)).date()
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.restaurant_id == restaurant_id,
            Reservation.reservation_date == today,
            Reservation.status.not_in(INACTIVE_STATUSES),
        )
        .order_by(Reservation.reservation_time.asc())
    )
    reservations = result.scalars().all()

    return DailyReservationsResponse(
        reservation_date=today,
        items=reservations,
        count=len(reservations),
    )


@router.post("", response_model=ReservationResponse, status_code=201)
async def create_reservation(
    reservation_data: ReservationCreate,
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Book immediately as confirmed"""
    return await booking.create_reservation(db, reservation_data.model_dump(), user_id=user_id)


@router.post("/tentative", response_model=ReservationResponse, status_code=201)
async def create_tentative_reservation(
    reservation_data: ReservationCreate,
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Hold a slot as tentative until payment"""
    return await booking.create_reservation(
        db, reservation_data.model_dump(), tentative=True, user_id=user_id
    )


@router.post("/availability", response_model=AvailabilityResponse)
async def check_availability(
    request: AvailabilityRequest,
    db: AsyncSession = Depends(get_db),
):
    """Lock-free availability preview for one table slot"""
    await booking.validate_booking_target(db, request.restaurant_id, request.table_id, party_size=1)
    policy = await resolve_settings(db, request.restaurant_id)
    conflicts = await booking.preview_conflicts(
        db,
        restaurant_id=request.restaurant_id,
        table_id=request.table_id,
        reservation_date=request.reservation_date,
        reservation_time=request.reservation_time,
    )
    return AvailabilityResponse(
        available=not conflicts,
        buffer_minutes=policy.duration_minutes,
        conflicts=[
            ConflictSummary(id=r.id, status=r.status, reservation_time=r.reservation_time)
            for r in conflicts
        ],
    )


@router.post("/intent", response_model=IntentResponse, status_code=201)
async def create_intent(
    intent_data: IntentCreate,
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Issue a signed reservation intent; nothing is written"""
    await booking.validate_booking_target(
        db, intent_data.restaurant_id, intent_data.table_id, intent_data.party_size
    )
    if intent_data.table_id is not None:
        conflicts = await booking.preview_conflicts(
            db,
            restaurant_id=intent_data.restaurant_id,
            table_id=intent_data.table_id,
            reservation_date=intent_data.reservation_date,
            reservation_time=intent_data.reservation_time,
        )
        if conflicts:
            raise SlotConflict(
                "Table is already reserved for this time slot",
                persist=False,
                conflicting_reservation_id=conflicts[0].id,
            )

    token, expires_at = issue_intent(user_id=user_id, **intent_data.model_dump())
    return IntentResponse(intent_token=token, expires_at=expires_at)


@router.post("/intent/verify", response_model=IntentVerifyResponse)
async def verify_intent(
    request: IntentVerifyRequest,
    db: AsyncSession = Depends(get_db),
):
    """Decode an intent and report whether its slot is still free"""
    intent = decode_intent(request.intent_token)
    available = True
    if intent.table_id is not None:
        conflicts = await booking.preview_conflicts(
            db,
            restaurant_id=intent.restaurant_id,
            table_id=intent.table_id,
            reservation_date=intent.reservation_date,
            reservation_time=intent.reservation_time,
        )
        available = not conflicts

    return IntentVerifyResponse(
        restaurant_id=intent.restaurant_id,
        table_id=intent.table_id,
        user_id=intent.user_id,
        customer_name=intent.customer_name,
        party_size=intent.party_size,
        reservation_date=intent.reservation_date,
        reservation_time=intent.reservation_time,
        expires_at=intent.expires_at,
        available=available,
    )


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get reservation details"""
    reservation = await db.get(Reservation, reservation_id)
    if not reservation:
        raise NotFound("Reservation not found", reservation_id=reservation_id)
    return reservation


@router.put("/{reservation_id}", response_model=ReservationResponse)
async def update_reservation(
    reservation_id: int,
    update_data: ReservationUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update whitelisted reservation details"""
    changes = update_data.model_dump(exclude_unset=True)
    return await booking.update_reservation_details(db, reservation_id, changes)


@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
async def confirm_reservation(
    reservation_id: int,
    request: ConfirmReservationRequest,
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_payment_provider),
):
    """Confirm a tentative reservation once its payment is verified"""
    await provider.verify_payment(request.payment_id)
    return await confirmation.confirm_reservation(
        db,
        reservation_id=reservation_id,
        payment_id=request.payment_id,
        requesting_user_id=user_id,
    )


@router.post("/{reservation_id}/verify", response_model=ReservationResponse)
async def verify_hold(
    reservation_id: int,
    request: Optional[VerifyHoldRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Re-check a tentative hold before payment and extend it"""
    restaurant_id = request.restaurant_id if request else None
    return await booking.extend_hold(db, reservation_id, restaurant_id=restaurant_id)


@router.patch("/{reservation_id}/status", response_model=ReservationResponse)
async def update_status(
    reservation_id: int,
    request: StatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Move a reservation along its lifecycle"""
    return await lifecycle.change_status(db, reservation_id, request.status)


@router.post("/{reservation_id}/checkin", response_model=ReservationResponse)
async def check_in(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Seat the party of a confirmed reservation"""
    return await lifecycle.change_status(db, reservation_id, ReservationStatus.SEATED)


@router.delete("/{reservation_id}", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: int,
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel under the restaurant's cancellation window"""
    return await lifecycle.cancel_reservation(db, reservation_id, requesting_user_id=user_id)
