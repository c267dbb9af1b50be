from __future__ import annotations

from typing import Optional, cast

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .data_service import DataService
from .errors import NotAuthenticated, NotFound
from .models import PROFILES, Profile, record_from_row
from .session import Session
from .settings import Settings
from .views import UserViews, ViewRegistry

_security = HTTPBasic(auto_error=False)


# PUBLIC_INTERFACE
def get_basic_auth_dependency(settings: Settings):
    """
    Return a FastAPI dependency callable that enforces HTTP Basic Auth only when
    ENABLE_BASIC_AUTH is enabled in settings. When disabled, the dependency is a no-op.

    Behavior:
    - If settings.enable_basic_auth is False (default): returns a dependency that does nothing.
    - If True: validates provided credentials against BASIC_AUTH_USERNAME/BASIC_AUTH_PASSWORD.
      If credentials are missing or invalid, raises 401 with WWW-Authenticate: Basic.

    The gate protects the whole API; the acting user is identified separately
    by `get_session`.
    """
    # If basic auth is disabled, return a no-op dependency
    if not settings.enable_basic_auth:
        async def _noop() -> None:  # noqa: D401 - trivial
            """No-op dependency (auth disabled)."""
            return None

        return _noop

    expected_user: Optional[str] = settings.basic_auth_username
    expected_pass: Optional[str] = settings.basic_auth_password

    async def _enforce(creds: Optional[HTTPBasicCredentials] = Depends(_security)) -> None:
        """
        Enforce HTTP Basic authentication when enabled.

        Raises:
            HTTPException(401) if credentials are missing or invalid.
        """
        if creds is None or creds.username is None or creds.password is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Basic"},
            )

        if expected_user is None or expected_pass is None:
            # Misconfiguration: auth enabled but username/password not provided
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Server authentication not configured",
                headers={"WWW-Authenticate": "Basic"},
            )

        if not (creds.username == expected_user and creds.password == expected_pass):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Basic"},
            )

    return _enforce


def get_data_service(request: Request) -> DataService:
    return request.app.state.data_service


def get_registry(request: Request) -> ViewRegistry:
    return request.app.state.views


# PUBLIC_INTERFACE
def get_session(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    service: DataService = Depends(get_data_service),
) -> Session:
    """
    Session provider for HTTP requests: the caller names its profile in the
    X-User-Id header.

    Raises:
        NotAuthenticated: header missing or naming an unknown profile.
    """
    if not x_user_id or not x_user_id.strip():
        raise NotAuthenticated()
    try:
        row = service.get(PROFILES, x_user_id.strip())
    except NotFound:
        raise NotAuthenticated("Unknown user") from None
    profile = cast(Profile, record_from_row(PROFILES, row))
    return Session.from_profile(profile)


# PUBLIC_INTERFACE
def get_views(
    session: Session = Depends(get_session),
    registry: ViewRegistry = Depends(get_registry),
) -> UserViews:
    """The caller's views with pending push events applied."""
    views = registry.open(session)
    views.sync()
    return views
