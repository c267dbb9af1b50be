from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import NotAuthenticated
from .models import Profile


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Session:
    """
    Identity of the acting user, passed explicitly to every view.

    Supplied by the session provider (the HTTP layer resolves it from the
    request); views never read it from global state.
    """

    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = "user"

    @property
    def display_name(self) -> str:
        return self.name or "Someone"

    @classmethod
    def from_profile(cls, profile: Profile) -> "Session":
        return cls(user_id=profile.id, name=profile.name, email=profile.email, role=profile.role)


# PUBLIC_INTERFACE
def require_session(session: Optional[Session]) -> Session:
    """Return `session` or raise NotAuthenticated when there is none."""
    if session is None or not session.user_id:
        raise NotAuthenticated()
    return session
