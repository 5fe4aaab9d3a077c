"""Payment schemas"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from tablehold.schemas.reservation import ReservationResponse


class CreatePaymentIntentRequest(BaseModel):
    """Start a payment, optionally tied to a tentative reservation"""
    amount: int = Field(..., gt=0)  # minor units
    currency: str = "USD"
    reservation_id: Optional[int] = None


class PaymentIntentResponse(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str
    reservation_id: Optional[int] = None


class ConfirmPaymentRequest(BaseModel):
    """Confirm a payment against a reservation id or an intent token"""
    payment_id: str = Field(..., min_length=1, max_length=255)
    reservation_id: Optional[int] = None
    intent_token: Optional[str] = None

    @model_validator(mode="after")
    def require_target(self):
        if self.reservation_id is None and not self.intent_token:
            raise ValueError("reservation_id or intent_token is required")
        return self


class PaymentConfirmationResponse(BaseModel):
    id: str
    status: str
    confirmed_at: datetime


class ConfirmPaymentResponse(BaseModel):
    success: bool = True
    message: str
    reservation: ReservationResponse
    payment: PaymentConfirmationResponse


class RefundRequest(BaseModel):
    payment_id: str = Field(..., min_length=1, max_length=255)
    reservation_id: Optional[int] = None
    amount: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = None


class RefundResultResponse(BaseModel):
    id: str
    payment_id: str
    amount: Optional[int]
    reason: Optional[str]
    status: str
    refunded_at: datetime


class RefundResponse(BaseModel):
    success: bool = True
    message: str
    refund: RefundResultResponse
    reservation: Optional[ReservationResponse] = None
