from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from .models import Task, as_aware, utcnow
from .schemas import ChartPoint, DashboardOut, TaskCounts

# Bar order on the dashboard chart.
CHART_BARS = (
    ("Assigned", "assigned"),
    ("Created", "created"),
    ("Completed", "completed"),
    ("Overdue", "overdue"),
    ("Upcoming", "upcoming"),
)


def count_tasks(tasks: Iterable[Task], user_id: str, now: datetime) -> TaskCounts:
    """
    Dashboard counters:
    - assigned: assigned to the user and not completed
    - created: created by the user
    - completed / total
    - overdue: due before `now` and not completed
    - upcoming: due at or after `now` and not completed
    """
    counts = TaskCounts()
    for t in tasks:
        counts.total += 1
        if t.created_by == user_id:
            counts.created += 1
        if t.is_completed():
            counts.completed += 1
        elif t.assigned_to == user_id:
            counts.assigned += 1
        if t.is_overdue(now):
            counts.overdue += 1
        elif t.is_upcoming(now):
            counts.upcoming += 1
    return counts


def upcoming_deadlines(tasks: Iterable[Task], now: datetime, limit: int = 5) -> List[Task]:
    """Open tasks due at or after `now`, soonest first, at most `limit`."""
    pending = [t for t in tasks if t.is_upcoming(now)]
    pending.sort(key=lambda t: t.due_date)  # type: ignore[arg-type,return-value]
    return pending[: max(limit, 0)]


def chart_series(counts: TaskCounts) -> List[ChartPoint]:
    return [ChartPoint(name=label, value=getattr(counts, attr)) for label, attr in CHART_BARS]


# PUBLIC_INTERFACE
def summarize(
    tasks: Iterable[Task],
    user_id: str,
    now: Optional[datetime] = None,
    upcoming_limit: int = 5,
) -> DashboardOut:
    """Build the dashboard for `user_id` from the tasks in their board."""
    now = as_aware(now) if now is not None else utcnow()
    items = list(tasks)
    counts = count_tasks(items, user_id, now)  # type: ignore[arg-type]
    return DashboardOut(
        counts=counts,
        chart=chart_series(counts),
        upcoming=upcoming_deadlines(items, now, upcoming_limit),  # type: ignore[arg-type]
    )
