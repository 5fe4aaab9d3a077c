"""Celery application configuration"""

from celery import Celery
from tablehold.config import settings

# Create Celery app
celery_app = Celery(
    "tablehold",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "tablehold.jobs.tasks",
    ],
)

beat_schedule = {}
if settings.stale_reservation_sweep_enabled:
    beat_schedule["expire-stale-reservations"] = {
        "task": "expire_stale_reservations",
        "schedule": 3600.0,  # Every hour
    }

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule=beat_schedule,
)
