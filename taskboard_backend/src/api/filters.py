from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .models import Notification, Task, TaskPriority, TaskStatus

TaskPredicate = Callable[[Task], bool]
NotificationPredicate = Callable[[Notification], bool]

SCOPES = ("all", "assigned", "created")


@dataclass(frozen=True)
class TaskFilter:
    """
    Filters for a task list.

    - search: case-insensitive substring over title and description
    - status / priority: exact match; None means any
    - scope: 'all', 'assigned' (assigned to the user) or 'created' (created by the user)
    """

    search: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    scope: str = "all"

    def predicates(self, user_id: str) -> List[TaskPredicate]:
        preds: List[TaskPredicate] = []
        if self.search:
            needle = self.search.lower()

            def matches(t: Task) -> bool:
                title_ok = needle in (t.title or "").lower()
                desc_ok = needle in t.description.lower() if t.description else False
                return title_ok or desc_ok

            preds.append(matches)
        if self.status is not None:
            status = self.status
            preds.append(lambda t: t.status == status)
        if self.priority is not None:
            priority = self.priority
            preds.append(lambda t: t.priority == priority)
        if self.scope == "assigned":
            preds.append(lambda t: t.assigned_to == user_id)
        elif self.scope == "created":
            preds.append(lambda t: t.created_by == user_id)
        return preds


@dataclass(frozen=True)
class NotificationFilter:
    """unread=True keeps unread only, False keeps read only, None keeps everything."""

    unread: Optional[bool] = None

    def predicates(self) -> List[NotificationPredicate]:
        if self.unread is None:
            return []
        wanted_read = not self.unread
        return [lambda n: n.read is wanted_read]


def count_by_status(tasks: Iterable[Task]) -> Dict[TaskStatus, int]:
    """Per-status counts with every status present, zero when absent."""
    counts = {s: 0 for s in TaskStatus}
    for t in tasks:
        counts[t.status] += 1
    return counts
