"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue) and
the worker (to execute).
"""
from celery import Celery
from core.config import settings

# Create Celery app instance
celery_app = Celery(
    "care_circle",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Notifications are the only tasks; nothing here should outlive the dispatch bound.
    task_time_limit=settings.NOTIFICATION_DISPATCH_TIMEOUT_S + 5,
    task_soft_time_limit=settings.NOTIFICATION_DISPATCH_TIMEOUT_S,
    # Publishing happens inside request handlers: fail fast when the broker is down.
    broker_connection_timeout=2,
    broker_connection_retry_on_startup=True,
)

# Import tasks to register them
from . import care_circle_tasks  # noqa: E402

__all__ = ["celery_app"]
