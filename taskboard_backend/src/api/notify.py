from __future__ import annotations

import logging
from typing import Optional

from .data_service import DataService
from .errors import DataServiceError
from .models import NOTIFICATIONS, NotificationType, Row, Task, utcnow
from .session import Session

logger = logging.getLogger(__name__)


def task_assigned(actor: Session, task_id: str, title: str, assignee_id: str) -> Row:
    return {
        "user_id": assignee_id,
        "message": f'{actor.display_name} assigned you a new task: "{title}"',
        "type": NotificationType.TASK_ASSIGNED,
        "read": False,
        "task_id": task_id,
        "created_at": utcnow(),
    }


def task_completed(actor: Session, task: Task) -> Row:
    return {
        "user_id": task.created_by,
        "message": f'{actor.display_name} completed the task "{task.title}"',
        "type": NotificationType.TASK_COMPLETED,
        "read": False,
        "task_id": task.id,
        "created_at": utcnow(),
    }


# PUBLIC_INTERFACE
def send(service: DataService, notification: Row) -> Optional[str]:
    """
    Insert a notification without letting a failure reach the caller.

    Returns the new id, or None when the insert failed (the failure is logged).
    """
    try:
        return service.insert(NOTIFICATIONS, notification)
    except DataServiceError:
        logger.exception(
            "Could not create %s notification for user %s",
            notification.get("type"),
            notification.get("user_id"),
        )
        return None
