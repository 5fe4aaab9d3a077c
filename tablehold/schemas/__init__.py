"""Pydantic schemas for API request/response validation"""

from tablehold.schemas.reservation import (
    ReservationCreate,
    ReservationUpdate,
    ReservationResponse,
    ReservationListResponse,
    DailyReservationsResponse,
    StatusUpdate,
    ConfirmReservationRequest,
    AvailabilityRequest,
    AvailabilityResponse,
    IntentCreate,
    IntentResponse,
)
from tablehold.schemas.payment import (
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    RefundRequest,
    RefundResponse,
)

__all__ = [
    "ReservationCreate",
    "ReservationUpdate",
    "ReservationResponse",
    "ReservationListResponse",
    "DailyReservationsResponse",
    "StatusUpdate",
    "ConfirmReservationRequest",
    "AvailabilityRequest",
    "AvailabilityResponse",
    "IntentCreate",
    "IntentResponse",
    "CreatePaymentIntentRequest",
    "PaymentIntentResponse",
    "ConfirmPaymentRequest",
    "ConfirmPaymentResponse",
    "RefundRequest",
    "RefundResponse",
]
