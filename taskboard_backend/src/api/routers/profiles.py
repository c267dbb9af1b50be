from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import get_data_service, get_registry, get_session
from ..data_service import DataService, Filter, Order
from ..models import PROFILES, Profile, record_from_row, utcnow
from ..schemas import ProfileCreate
from ..session import Session
from ..views import ViewRegistry

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["profiles"],
)


# PUBLIC_INTERFACE
@router.post(
    "/profiles",
    response_model=Profile,
    status_code=status.HTTP_201_CREATED,
    summary="Sign Up",
    description="Create a profile. Its id identifies the caller in the X-User-Id header.",
    responses={
        201: {"description": "Profile created"},
        409: {"description": "A profile with this id already exists"},
    },
)
def create_profile(payload: ProfileCreate, service: DataService = Depends(get_data_service)) -> Profile:
    row = payload.model_dump(exclude_none=True)
    if payload.id and service.query(PROFILES, Filter.eq(id=payload.id), limit=1):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Profile id already exists")
    row["created_at"] = utcnow()
    profile_id = service.insert(PROFILES, row)
    logger.info("Profile %s created", profile_id)
    return record_from_row(PROFILES, service.get(PROFILES, profile_id))  # type: ignore[return-value]


# PUBLIC_INTERFACE
@router.get(
    "/profiles",
    response_model=List[Profile],
    summary="List Profiles",
    description="Every profile ordered by name, for picking an assignee.",
)
def list_profiles(
    session: Session = Depends(get_session),
    service: DataService = Depends(get_data_service),
) -> List[Profile]:
    rows = service.query(PROFILES, order=Order("name", descending=False))
    return [record_from_row(PROFILES, r) for r in rows]  # type: ignore[misc]


# PUBLIC_INTERFACE
@router.get("/profiles/me", response_model=Profile, summary="Current Profile")
def get_me(
    session: Session = Depends(get_session),
    service: DataService = Depends(get_data_service),
) -> Profile:
    return record_from_row(PROFILES, service.get(PROFILES, session.user_id))  # type: ignore[return-value]


# PUBLIC_INTERFACE
@router.delete(
    "/session",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End Session",
    description="Tear down the caller's live views and their push subscriptions.",
)
def end_session(
    session: Session = Depends(get_session),
    registry: ViewRegistry = Depends(get_registry),
) -> None:
    registry.close(session.user_id)
    return None
