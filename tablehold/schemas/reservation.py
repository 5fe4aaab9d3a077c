"""Reservation schemas"""

from datetime import date, datetime, time
from typing import Optional, List
from pydantic import BaseModel, Field

from tablehold.models.reservation import ReservationStatus


class ReservationCreate(BaseModel):
    """Create reservation request"""
    restaurant_id: int
    table_id: Optional[int] = None
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=20)
    customer_email: Optional[str] = Field(None, max_length=255)
    party_size: int = Field(..., gt=0)
    reservation_date: date
    reservation_time: time
    special_requests: Optional[str] = None


class ReservationUpdate(BaseModel):
    """Update reservation details; status changes go through their own endpoint"""
    customer_phone: Optional[str] = Field(None, max_length=20)
    customer_email: Optional[str] = Field(None, max_length=255)
    party_size: Optional[int] = Field(None, gt=0)
    special_requests: Optional[str] = None
    reservation_date: Optional[date] = None
    reservation_time: Optional[time] = None


class StatusUpdate(BaseModel):
    """Staff status change"""
    status: ReservationStatus


class ConfirmReservationRequest(BaseModel):
    """Confirm a tentative reservation after payment"""
    payment_id: str = Field(..., min_length=1, max_length=255)


class VerifyHoldRequest(BaseModel):
    """Re-verify a tentative hold before payment"""
    restaurant_id: Optional[int] = None


class ReservationResponse(BaseModel):
    """Reservation response"""
    id: int
    restaurant_id: int
    table_id: Optional[int]
    user_id: Optional[int]
    customer_name: str
    customer_phone: Optional[str]
    customer_email: Optional[str]
    party_size: int
    reservation_date: date
    reservation_time: time
    status: ReservationStatus
    payment_id: Optional[str]
    special_requests: Optional[str]
    has_pre_order: bool
    confirmed_at: Optional[datetime]
    expires_at: Optional[datetime]
    arrived_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReservationListResponse(BaseModel):
    """Paginated reservation list"""
    items: List[ReservationResponse]
    total: int
    page: int
    page_size: int


class DailyReservationsResponse(BaseModel):
    """A restaurant's reservations for one day, by time"""
    reservation_date: date
    items: List[ReservationResponse]
    count: int


class AvailabilityRequest(BaseModel):
    """Availability preview for a table slot"""
    restaurant_id: int
    table_id: int
    reservation_date: date
    reservation_time: time


class ConflictSummary(BaseModel):
    id: int
    status: ReservationStatus
    reservation_time: time


class AvailabilityResponse(BaseModel):
    """Availability preview response"""
    available: bool
    buffer_minutes: int
    conflicts: List[ConflictSummary] = []


class IntentCreate(ReservationCreate):
    """Reservation intent request; same fields as a reservation"""


class IntentResponse(BaseModel):
    """Signed reservation intent"""
    intent_token: str
    expires_at: datetime


class IntentVerifyRequest(BaseModel):
    intent_token: str


class IntentVerifyResponse(BaseModel):
    """Decoded intent claims"""
    restaurant_id: int
    table_id: Optional[int]
    user_id: Optional[int]
    customer_name: str
    party_size: int
    reservation_date: date
    reservation_time: time
    expires_at: datetime
    available: bool = True
