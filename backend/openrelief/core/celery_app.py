"""
Celery application configuration for task queue and scheduling.
"""

from celery import Celery
from celery.schedules import crontab

from openrelief.core.config import settings

# Create Celery instance
celery_app = Celery(
    "openrelief",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["openrelief.tasks.scheduled"],
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,  # Results expire after 1 hour
    task_track_started=True,
    task_time_limit=600,  # 10 minutes hard limit
    task_soft_time_limit=540,  # 9 minutes soft limit
    worker_prefetch_multiplier=1,
)

# Configure scheduled tasks with Celery Beat
celery_app.conf.beat_schedule = {
    # Close unconfirmed pending reports every 15 minutes
    "expire-pending-events": {
        "task": "scheduled.expire_pending_events",
        "schedule": crontab(minute="*/15"),
        "args": (),
    },
    # Report events past their retention window daily at 3 AM
    "archival-sweep": {
        "task": "scheduled.archival_sweep",
        "schedule": crontab(hour=3, minute=0),
        "args": (),
    },
}

# Task routing for different queues
celery_app.conf.task_routes = {
    "scheduled.*": {"queue": "scheduled"},
}

# Retry configuration
celery_app.conf.task_annotations = {
    "*": {
        "max_retries": 3,
        "default_retry_delay": 60,  # 1 minute
    },
}
