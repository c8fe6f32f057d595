"""
Care Circle notification tasks.

Enqueued by services.care_circle.notifications after a state change has been
committed. A failed send is logged and reported in the task result; the
connection it describes is never touched from here.
"""

import logging
from typing import Dict

from celery import Task

from core.config import settings
from core.logging import NOTIFY_LOGGER_NAME
from services.email_service import email_service
from tasks import celery_app

logger = logging.getLogger(NOTIFY_LOGGER_NAME)

SEND_NOTIFICATION_TASK = "care_circle.send_notification"


@celery_app.task(
    name=SEND_NOTIFICATION_TASK,
    bind=True,
    soft_time_limit=settings.NOTIFICATION_DISPATCH_TIMEOUT_S,
    time_limit=settings.NOTIFICATION_DISPATCH_TIMEOUT_S + 5,
    ignore_result=True,
)
def send_care_circle_notification_task(self: Task, kind: str, to_email: str, context: Dict) -> Dict:
    """Render and send one Care Circle email."""
    try:
        sent = email_service.send_care_circle(kind, to_email, context or {})
    except Exception as e:
        logger.error(
            f"Care Circle notification failed: {e}",
            extra={"extra_fields": {"kind": kind, "task_id": self.request.id}},
        )
        return {"status": "error", "kind": kind, "message": str(e)}

    logger.info(
        f"Care Circle notification processed: {kind}",
        extra={"extra_fields": {"kind": kind, "sent": sent, "task_id": self.request.id}},
    )
    return {"status": "sent" if sent else "skipped", "kind": kind}
