from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..auth import get_views
from ..filters import NotificationFilter
from ..models import Notification
from ..schemas import NotificationListOut
from ..utils import collection_envelope
from ..views import UserViews

router = APIRouter(
    prefix="/api/v1/notifications",
    tags=["notifications"],
)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=NotificationListOut,
    summary="List Notifications",
    description=(
        "The caller's most recent notifications, newest first, with the unread count. "
        "Pass unread=true for the unread tab."
    ),
)
def list_notifications(
    unread: Optional[bool] = Query(None, description="true: unread only, false: read only"),
    refresh: bool = Query(False, description="Reload from the data service first"),
    views: UserViews = Depends(get_views),
) -> NotificationListOut:
    feed = views.feed
    if refresh:
        feed.initialize(views.session)
    items = feed.filter(*NotificationFilter(unread=unread).predicates())
    return NotificationListOut(**collection_envelope(items, unread_count=feed.unread_count))


# PUBLIC_INTERFACE
@router.post(
    "/{notification_id}/read",
    response_model=Notification,
    summary="Mark Notification Read",
    responses={404: {"description": "Notification not found"}},
)
def mark_read(notification_id: str, views: UserViews = Depends(get_views)) -> Notification:
    """
    Mark one notification as read. The change is applied locally first; a failed
    remote write is only logged.
    """
    return views.feed.mark_read(notification_id)


# PUBLIC_INTERFACE
@router.post(
    "/read-all",
    summary="Mark All Notifications Read",
)
def mark_all_read(views: UserViews = Depends(get_views)) -> Dict[str, int]:
    """
    Mark every notification as read.

    Returns:
        {"updated": <local notifications flipped>, "unread_count": 0}
    """
    changed = views.feed.mark_all_read()
    return {"updated": changed, "unread_count": views.feed.unread_count}
