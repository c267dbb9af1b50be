from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..filters import SCOPES, TaskFilter, count_by_status
from ..models import Task, TaskPriority, TaskStatus
from ..auth import get_views
from ..schemas import StatusUpdate, TaskCreate, TaskListOut, TaskUpdate
from ..utils import collection_envelope, enum_keys
from ..views import UserViews

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)

_NOT_FOUND = {"description": "Task not found"}


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TaskListOut,
    summary="List Tasks",
    description=(
        "List the caller's tasks (created by or assigned to them), newest first.\n\n"
        "Query parameters:\n"
        "- q: search text for title/description (substring match)\n"
        "- status: todo, in_progress or completed\n"
        "- priority: low, medium or high\n"
        "- scope: all (default), assigned or created\n"
        "- refresh: reload from the data service before filtering (default true; "
        "pass false to read the cached board)\n\n"
        "Returns an envelope with items, total and per-status counts of the matching tasks."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
def list_tasks(
    q: Optional[str] = Query(None, description="Search text for title/description"),
    status_: Optional[TaskStatus] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[TaskPriority] = Query(None, description="Filter by priority"),
    scope: str = Query("all", description="all, assigned or created"),
    refresh: bool = Query(True, description="Reload from the data service first"),
    views: UserViews = Depends(get_views),
) -> TaskListOut:
    """
    List tasks with filters.
    """
    scope_norm = scope.strip().lower()
    if scope_norm not in SCOPES:
        raise HTTPException(status_code=400, detail="scope must be 'all', 'assigned' or 'created'")
    board = views.board
    if refresh:
        board.initialize(views.session)

    task_filter = TaskFilter(
        search=q.strip() if q and q.strip() else None,
        status=status_,
        priority=priority,
        scope=scope_norm,
    )
    items = board.filter(*task_filter.predicates(views.session.user_id))
    envelope = collection_envelope(items, counts=enum_keys(count_by_status(items)))
    return TaskListOut(**envelope)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=Task,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description="Create a task owned by the caller. Assigning it to someone else notifies them.",
    responses={
        201: {"description": "Task created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_task(payload: TaskCreate, views: UserViews = Depends(get_views)) -> Task:
    """
    Create a new task.
    """
    return views.board.create(payload)


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=Task,
    summary="Get Task",
    description="Get a single task from the caller's board by ID.",
    responses={200: {"description": "Task found"}, 404: _NOT_FOUND},
)
def get_task(task_id: str, views: UserViews = Depends(get_views)) -> Task:
    """
    Retrieve a single task by its ID.
    """
    return views.board.get(task_id)


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=Task,
    summary="Update Task",
    description="Partially update fields of a task.",
    responses={200: {"description": "Task updated"}, 404: _NOT_FOUND},
)
def patch_task(task_id: str, payload: TaskUpdate, views: UserViews = Depends(get_views)) -> Task:
    """
    Partial update of a task.
    """
    return views.board.update(task_id, payload)


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}/status",
    response_model=Task,
    summary="Set Task Status",
    description=(
        "Move a task to a new status. Completing a task created by someone else "
        "notifies its creator."
    ),
    responses={200: {"description": "Status updated"}, 404: _NOT_FOUND, 502: {"description": "Data service failure"}},
)
def put_task_status(task_id: str, payload: StatusUpdate, views: UserViews = Depends(get_views)) -> Task:
    return views.board.update_status(task_id, payload.status)


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    description="Delete a task by ID. Only its creator may delete it.",
    responses={
        204: {"description": "Task deleted"},
        403: {"description": "Caller is not the creator"},
        404: _NOT_FOUND,
    },
)
def delete_task(task_id: str, views: UserViews = Depends(get_views)) -> None:
    """
    Delete a task. Returns 204 on success.
    """
    views.board.delete(task_id)
    return None
