"""Payment API endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.api.auth import get_requesting_user_id
from tablehold.database import get_db
from tablehold.schemas.payment import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    RefundRequest,
    RefundResponse,
)
from tablehold.services import booking, confirmation, lifecycle
from tablehold.services.payment_provider import get_payment_provider

router = APIRouter()
logger = structlog.get_logger()


@router.post("/create-intent", response_model=PaymentIntentResponse, status_code=201)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_payment_provider),
):
    """Start a payment; a linked tentative hold is re-verified and extended first"""
    if request.reservation_id is not None:
        await booking.extend_hold(db, request.reservation_id)

    intent = await provider.create_payment_intent(
        request.amount,
        currency=request.currency,
        reservation_id=request.reservation_id,
    )
    return intent.to_dict()


@router.post("/confirm", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    user_id: Optional[int] = Depends(get_requesting_user_id),
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_payment_provider),
):
    """Confirm a verified payment against a reservation or an intent token"""
    payment = await provider.verify_payment(request.payment_id)

    if request.reservation_id is not None:
        reservation = await confirmation.confirm_reservation(
            db,
            reservation_id=request.reservation_id,
            payment_id=request.payment_id,
            requesting_user_id=user_id,
        )
    else:
        reservation = await confirmation.redeem_intent(
            db,
            intent_token=request.intent_token,
            payment_id=request.payment_id,
            requesting_user_id=user_id,
        )

    return ConfirmPaymentResponse(
        message="Payment confirmed successfully",
        reservation=reservation,
        payment=payment.to_dict(),
    )


@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    request: RefundRequest,
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_payment_provider),
):
    """Refund a payment and cancel the reservation it paid for"""
    refund, reservation = await lifecycle.refund_and_cancel(
        db,
        provider,
        payment_id=request.payment_id,
        reservation_id=request.reservation_id,
        amount=request.amount,
        reason=request.reason,
    )
    if reservation is None:
        logger.warning("Refund issued for unknown reservation", payment_id=request.payment_id)

    return RefundResponse(
        message="Refund processed successfully",
        refund=refund.to_dict(),
        reservation=reservation,
    )
