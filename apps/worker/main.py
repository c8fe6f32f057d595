"""
Celery worker entry point.

This imports the Celery app and tasks from the API module.

    celery -A main worker --loglevel=info
"""
import sys
import os

# Add API directory to path so we can import tasks
sys.path.insert(0, os.environ.get("API_PATH", os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "api")))

# Import Celery app and tasks from API
from tasks import celery_app  # noqa: E402

# Registers care_circle.send_notification
celery_app.autodiscover_tasks(['tasks'])


@celery_app.task(name="worker.health_check")
def health_check():
    """Health check task"""
    return {"status": "ok"}
