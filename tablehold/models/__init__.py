"""Database models"""

from tablehold.models.restaurant import Restaurant, Table, TableStatus, ReservationSettings
from tablehold.models.reservation import Reservation, ReservationStatus
from tablehold.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Restaurant",
    "Table",
    "TableStatus",
    "ReservationSettings",
    "Reservation",
    "ReservationStatus",
    "ProcessedWebhookEvent",
]
