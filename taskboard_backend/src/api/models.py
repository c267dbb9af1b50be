from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

# Untyped key/value map exchanged with the Data Service.
Row = Dict[str, Any]

TASKS = "tasks"
NOTIFICATIONS = "notifications"
PROFILES = "profiles"
TABLES = (TASKS, NOTIFICATIONS, PROFILES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so that comparisons never mix naive and aware values."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# PUBLIC_INTERFACE
class TaskStatus(str, Enum):
    """Closed set of task states. COMPLETED is terminal."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# PUBLIC_INTERFACE
class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationType:
    """Type tags the application writes. The column itself is free-form."""

    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"


class _RecordBase(BaseModel):
    model_config = ConfigDict(use_enum_values=False, validate_assignment=True)

    @field_validator("created_at", "updated_at", "due_date", check_fields=False)
    @classmethod
    def _aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_aware(v)


# PUBLIC_INTERFACE
class Task(_RecordBase):
    """
    A task as held by a TaskBoard.

    Fields:
    - id: opaque unique identifier
    - created_by: creator profile id, required and never changed after creation
    - assigned_to: optional assignee profile id
    - creator_name / assignee_name: denormalized display names, filled when loading
    """

    kind: Literal["task"] = "task"
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: str
    assigned_to: Optional[str] = None
    creator_name: Optional[str] = None
    assignee_name: Optional[str] = None

    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def is_overdue(self, now: datetime) -> bool:
        return self.due_date is not None and self.due_date < now and not self.is_completed()

    def is_upcoming(self, now: datetime) -> bool:
        return self.due_date is not None and self.due_date >= now and not self.is_completed()


# PUBLIC_INTERFACE
class Notification(_RecordBase):
    """
    A notification addressed to one user.

    `read` only ever goes from False to True. `task_id` is a lookup-only
    reference; deleting the task leaves the notification in place.
    """

    kind: Literal["notification"] = "notification"
    id: str
    user_id: str
    message: str
    type: str
    read: bool = False
    created_at: datetime
    task_id: Optional[str] = None


# PUBLIC_INTERFACE
class Profile(_RecordBase):
    kind: Literal["profile"] = "profile"
    id: str
    email: str
    name: Optional[str] = None
    role: str = "user"
    created_at: datetime


Record = Annotated[Union[Task, Notification, Profile], Field(discriminator="kind")]

_KIND_BY_TABLE = {TASKS: "task", NOTIFICATIONS: "notification", PROFILES: "profile"}
_record_adapter: TypeAdapter[Any] = TypeAdapter(Record)


# PUBLIC_INTERFACE
def record_from_row(table: str, row: Row) -> Union[Task, Notification, Profile]:
    """
    Parse an untyped Data Service row into the tagged record for `table`.

    Raises:
        KeyError: if `table` is not one of TABLES.
        pydantic.ValidationError: if the row does not fit the record shape.
    """
    data = dict(row)
    data["kind"] = _KIND_BY_TABLE[table]
    return _record_adapter.validate_python(data)

