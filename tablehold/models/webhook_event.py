"""Processed webhook event marker"""

from sqlalchemy import Column, String, DateTime

from tablehold.database import Base, utcnow


class ProcessedWebhookEvent(Base):
    """Provider event ids already applied; used only for deduplication"""
    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100))
    received_at = Column(DateTime, default=utcnow)
