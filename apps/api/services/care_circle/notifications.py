"""
Care Circle Notification Dispatcher

Hands templated emails to the Celery worker once a state change is committed.
Publishing is bounded (message expiry, no publish retry) and every failure is
logged to ``carecircle.notify``; ``dispatch`` never raises.
"""

import logging
from typing import Any, Callable, Dict, Optional

from core.config import settings
from core.logging import NOTIFY_LOGGER_NAME

logger = logging.getLogger(NOTIFY_LOGGER_NAME)

NOTIFICATION_KINDS = frozenset({"invite", "accepted", "declined", "revoked"})

Publisher = Callable[[str, str, Dict[str, Any], int], Any]


def _publish_to_celery(kind: str, to_email: str, context: Dict[str, Any], timeout_s: int):
    from tasks.care_circle_tasks import send_care_circle_notification_task

    return send_care_circle_notification_task.apply_async(
        args=[kind, to_email, context],
        expires=timeout_s,
        retry=False,
    )


class NotificationDispatcher:
    def __init__(self, publisher: Optional[Publisher] = None, timeout_s: Optional[int] = None):
        self.publisher = publisher or _publish_to_celery
        self.timeout_s = timeout_s or settings.NOTIFICATION_DISPATCH_TIMEOUT_S

    def dispatch(self, kind: str, to_email: Optional[str], **context: Any) -> bool:
        """
        Queue one notification. Returns False when nothing was queued.
        """
        if kind not in NOTIFICATION_KINDS:
            logger.error(f"Unknown notification kind: {kind}")
            return False
        if not to_email:
            logger.info(f"Skipping {kind} notification: no recipient address")
            return False

        try:
            self.publisher(kind, to_email, context, self.timeout_s)
        except Exception as e:
            logger.error(
                f"Failed to queue {kind} notification: {e}",
                extra={"extra_fields": {"kind": kind}},
            )
            return False

        logger.info(f"Queued {kind} notification", extra={"extra_fields": {"kind": kind}})
        return True


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; tests override it with a recording fake."""
    return NotificationDispatcher()
