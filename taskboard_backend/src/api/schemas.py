from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Notification, Task, TaskPriority, TaskStatus, as_aware

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_date input into an aware datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive results are taken as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return as_aware(value)

    if isinstance(value, date):
        # Promote a date to a datetime at midnight
        return as_aware(datetime(value.year, value.month, value.day, 0, 0, 0))

    if isinstance(value, str):
        s = value.strip()
        try:
            return as_aware(datetime.fromisoformat(s))
        except ValueError:
            # If only a date is provided, convert to midnight
            try:
                d = date.fromisoformat(s)
                return as_aware(datetime(d.year, d.month, d.day, 0, 0, 0))
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    # Any other type is invalid
    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _clean_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("title length must be between 1 and 200 characters")
    return s


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task.
    `assigned_to` defaults to the creating user when omitted.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Prepare release notes",
                "description": "Collect merged changes since the last tag",
                "status": "todo",
                "priority": "high",
                "due_date": "2025-02-01",
                "assigned_to": "7f0c5a9e2b8d4e1f9a3c6b5d4e3f2a1b",
            }
        }
    )

    title: str = Field(..., description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Initial status")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Priority")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00 UTC",
    )
    assigned_to: Optional[str] = Field(default=None, description="Assignee profile id")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        if v is None:
            raise ValueError("title is required")
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for editing an existing task.
    All fields are optional; only provided fields will be updated. Sending
    `due_date` or `assigned_to` as null clears them.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Prepare release notes for 2.1",
                "priority": "medium",
                "due_date": "2025-02-02T09:30:00",
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: Optional[TaskStatus] = Field(default=None, description="New status")
    priority: Optional[TaskPriority] = Field(default=None, description="New priority")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time as ISO8601")
    assigned_to: Optional[str] = Field(default=None, description="Assignee profile id")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 1..200 length.
        """
        return _clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    def changes(self) -> Dict[str, object]:
        """
        Fields the caller actually sent. Explicit nulls are kept only where a
        null is meaningful (description, due_date, assigned_to).
        """
        nullable = {"description", "due_date", "assigned_to"}
        data = self.model_dump(exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k in nullable}


# PUBLIC_INTERFACE
class StatusUpdate(BaseModel):
    status: TaskStatus = Field(..., description="New status: todo, in_progress or completed")


# PUBLIC_INTERFACE
class ProfileCreate(BaseModel):
    """Sign-up payload. The id is generated when omitted."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"email": "ada@example.com", "name": "Ada"}}
    )

    id: Optional[str] = Field(default=None, description="Profile id; generated when omitted")
    email: str = Field(..., min_length=3, max_length=320, description="Contact e-mail")
    name: Optional[str] = Field(default=None, max_length=200, description="Display name")
    role: str = Field(default="user", description="Role tag")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        s = v.strip()
        if "@" not in s:
            raise ValueError("email must contain '@'")
        return s


# PUBLIC_INTERFACE
class TaskListOut(BaseModel):
    """
    Envelope for task lists.
    """
    items: List[Task] = Field(..., description="Tasks matching the filters, newest first")
    total: int = Field(..., description="Number of tasks matching the filters")
    counts: Dict[str, int] = Field(..., description="Per-status counts over the matching tasks")


# PUBLIC_INTERFACE
class NotificationListOut(BaseModel):
    items: List[Notification] = Field(..., description="Notifications, newest first")
    total: int = Field(..., description="Number of notifications returned")
    unread_count: int = Field(..., description="Unread notifications in the feed")


# PUBLIC_INTERFACE
class TaskCounts(BaseModel):
    assigned: int = 0
    created: int = 0
    completed: int = 0
    overdue: int = 0
    upcoming: int = 0
    total: int = 0


# PUBLIC_INTERFACE
class ChartPoint(BaseModel):
    name: str
    value: int


# PUBLIC_INTERFACE
class DashboardOut(BaseModel):
    """
    Dashboard summary for the current user.
    """
    counts: TaskCounts
    chart: List[ChartPoint] = Field(..., description="Bar chart series")
    upcoming: List[Task] = Field(..., description="Soonest upcoming deadlines")
