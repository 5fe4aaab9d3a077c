"""Restaurant-related models"""

import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Integer, Enum
from sqlalchemy.orm import relationship

from tablehold.database import Base, utcnow


class TableStatus(str, enum.Enum):
    """Aggregate occupancy of a dining table"""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    UNAVAILABLE = "unavailable"


class Restaurant(Base):
    """Restaurant owning tables and reservations"""
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    timezone = Column(String(50), default="UTC", nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    tables = relationship("Table", back_populates="restaurant")
    settings = relationship("ReservationSettings", back_populates="restaurant")
    reservations = relationship("Reservation", back_populates="restaurant")


class Table(Base):
    """Dining table; status is maintained by the table status synchronizer"""
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    table_number = Column(String(20), nullable=False)
    capacity = Column(Integer, nullable=False)
    status = Column(
        Enum(
            TableStatus,
            name="table_status",
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        default=TableStatus.AVAILABLE,
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="tables")


class ReservationSettings(Base):
    """Reservation policy; a row without restaurant_id is the global default"""
    __tablename__ = "reservation_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=True)
    cancellation_window_hours = Column(Integer, nullable=False, default=12)
    reservation_duration_minutes = Column(Integer, nullable=False, default=90)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="settings")
