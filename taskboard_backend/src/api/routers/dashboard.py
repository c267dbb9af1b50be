from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from ..auth import get_views
from ..dashboard import summarize
from ..schemas import DashboardOut
from ..views import UserViews

router = APIRouter(
    prefix="/api/v1/dashboard",
    tags=["dashboard"],
)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=DashboardOut,
    summary="Dashboard",
    description=(
        "Task counters, chart series and upcoming deadlines for the caller. "
        "The board is reloaded first so that edits by other users are counted."
    ),
)
def get_dashboard(
    request: Request,
    refresh: bool = Query(True, description="Reload from the data service first"),
    views: UserViews = Depends(get_views),
) -> DashboardOut:
    if refresh:
        views.board.initialize(views.session)
    limit = request.app.state.settings.upcoming_limit
    return summarize(views.board.records, views.session.user_id, upcoming_limit=limit)
