from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Dict, Optional

from .data_service import DataService
from .errors import DataServiceError
from .session import Session, require_session
from .settings import Settings
from .sync import NotificationFeed, TaskBoard

logger = logging.getLogger(__name__)


@dataclass
class UserViews:
    """The live views of one signed-in user."""

    session: Session
    feed: NotificationFeed
    board: TaskBoard

    def refresh(self) -> None:
        self.feed.initialize(self.session)
        self.board.initialize(self.session)

    def sync(self) -> None:
        """Apply pending push events to both views."""
        self.feed.poll()
        self.board.poll()

    def close(self) -> None:
        self.feed.stop()
        self.board.stop()


# PUBLIC_INTERFACE
class ViewRegistry:
    """
    Per-user views for the running app.

    Views are opened and initialized on a user's first request and kept until
    `close(user_id)` (sign-out) or `close_all()` (shutdown).
    """

    def __init__(self, service: DataService, settings: Settings) -> None:
        self._service = service
        self._settings = settings
        self._lock = RLock()
        self._views: Dict[str, UserViews] = {}

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._views

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)

    def _build(self, session: Session) -> UserViews:
        return UserViews(
            session=session,
            feed=NotificationFeed(
                self._service,
                page_size=self._settings.notification_page_size,
                rollback_on_failure=self._settings.optimistic_rollback,
            ),
            board=TaskBoard(
                self._service,
                page_size=self._settings.task_page_size,
                rollback_on_failure=self._settings.optimistic_rollback,
            ),
        )

    def open(self, session: Optional[Session]) -> UserViews:
        """
        Return the user's views, creating and initializing them on first use.

        Raises NotAuthenticated without a session. If the first load fails the
        half-built views are torn down and the DataServiceError propagates.
        """
        session = require_session(session)
        with self._lock:
            views = self._views.get(session.user_id)
            if views is not None:
                views.session = session
                # Same user: refreshes the session value, never re-subscribes.
                views.feed.start(session)
                views.board.start(session)
                return views
            views = self._build(session)
            try:
                views.refresh()
            except DataServiceError:
                views.close()
                raise
            self._views[session.user_id] = views
            logger.info("Opened views for user %s", session.user_id)
            return views

    def close(self, user_id: str) -> bool:
        with self._lock:
            views = self._views.pop(user_id, None)
        if views is None:
            return False
        views.close()
        logger.info("Closed views for user %s", user_id)
        return True

    def close_all(self) -> None:
        with self._lock:
            user_ids = list(self._views)
        for user_id in user_ids:
            self.close(user_id)
