"""Reservation model"""

import enum
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship

from tablehold.database import Base, utcnow


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle states"""
    TENTATIVE = "tentative"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NO_SHOW = "no-show"


# Allowed staff moves of the lifecycle; anything else is rejected.
# A confirmed row only expires when the confirmation engine re-checks it.
TRANSITIONS = {
    ReservationStatus.TENTATIVE: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.EXPIRED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.PENDING: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.CONFIRMED: frozenset({
        ReservationStatus.SEATED,
        ReservationStatus.CANCELLED,
        ReservationStatus.NO_SHOW,
    }),
    ReservationStatus.SEATED: frozenset({
        ReservationStatus.COMPLETED,
        ReservationStatus.NO_SHOW,
    }),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
}

# Statuses that block a table slot
OCCUPYING_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.SEATED)

# The immediate-booking path also respects legacy pending rows
IMMEDIATE_BOOKING_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.SEATED,
)

TERMINAL_STATUSES = (
    ReservationStatus.COMPLETED,
    ReservationStatus.CANCELLED,
    ReservationStatus.EXPIRED,
    ReservationStatus.NO_SHOW,
)


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class Reservation(Base):
    """Table reservations"""
    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_table_date", "table_id", "reservation_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True)
    user_id = Column(Integer, nullable=True)  # owner in the external auth service

    # Customer information
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(20))
    customer_email = Column(String(255))

    # Reservation details
    party_size = Column(Integer, nullable=False)
    reservation_date = Column(Date, nullable=False)
    reservation_time = Column(Time, nullable=False)
    special_requests = Column(Text)
    has_pre_order = Column(Boolean, default=False, nullable=False)

    # Status
    status = Column(
        Enum(
            ReservationStatus,
            name="reservation_status",
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        default=ReservationStatus.TENTATIVE,
        nullable=False,
    )

    # Payment correlation
    payment_id = Column(String(255), unique=True, nullable=True)

    # Lifecycle timestamps
    confirmed_at = Column(DateTime)
    expires_at = Column(DateTime)  # only set while tentative
    arrived_at = Column(DateTime)
    confirmation_sent = Column(DateTime)

    # Metadata
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="reservations")
    table = relationship("Table")
