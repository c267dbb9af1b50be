"""
View-state synchronizers.

A synchronizer keeps one user's ordered collection of records (tasks or
notifications) consistent across three producers:

- the initial bulk fetch (`initialize`)
- optimistic local mutations issued by the user
- insert events pushed by the Data Service (`poll` / `apply_remote_insert`)

and maintains a derived aggregate over the collection (unread count,
per-status counts). State changes happen under a lock, so each handler runs
to completion before the next one starts; there is no transaction spanning
handlers and no sequence numbering between a fetch and a push.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from threading import RLock
from typing import Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import ValidationError

from . import notify
from .data_service import DataService, Filter, Order, Subscription
from .errors import DataServiceError, NotFound, PermissionDenied
from .filters import count_by_status
from .models import (
    NOTIFICATIONS,
    PROFILES,
    TASKS,
    Notification,
    Row,
    Task,
    TaskStatus,
    record_from_row,
    utcnow,
)
from .schemas import TaskCreate, TaskUpdate
from .session import Session, require_session

logger = logging.getLogger(__name__)

R = TypeVar("R", Task, Notification)


class ViewStateSynchronizer(ABC, Generic[R]):
    """
    Ordered, newest-first collection of one user's records plus a derived aggregate.

    Lifecycle: `start(session)` opens the push subscription, `stop()` closes it.
    Each happens exactly once per user session; starting again for the same
    user is a no-op and starting for another user tears the old session down
    first.
    """

    table: str = ""
    order = Order("created_at", descending=True)

    def __init__(
        self,
        service: DataService,
        *,
        page_size: Optional[int] = None,
        rollback_on_failure: bool = False,
    ) -> None:
        self._service = service
        self._page_size = page_size
        self._rollback = rollback_on_failure
        self._lock = RLock()
        self._records: List[R] = []
        self._session: Optional[Session] = None
        self._subscription: Optional[Subscription] = None
        self._reset_aggregates()

    # ---- aggregate hooks ----

    @abstractmethod
    def scope(self, user_id: str) -> Filter:
        """Data Service filter selecting the records that belong in this user's view."""

    @abstractmethod
    def _reset_aggregates(self) -> None:
        """Recompute the aggregate from the current collection."""

    @abstractmethod
    def _count_insert(self, record: R) -> None:
        ...

    @abstractmethod
    def _count_remove(self, record: R) -> None:
        ...

    # ---- state accessors ----

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    @property
    def records(self) -> List[R]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def find(self, record_id: str) -> Optional[R]:
        with self._lock:
            for r in self._records:
                if r.id == record_id:
                    return r
        return None

    def _index_of(self, record_id: str) -> int:
        for i, r in enumerate(self._records):
            if r.id == record_id:
                return i
        return -1

    def _require_session(self) -> Session:
        return require_session(self._session)

    # ---- lifecycle ----

    def start(self, session: Session) -> None:
        """Open the push subscription for `session`'s user."""
        session = require_session(session)
        with self._lock:
            if self._subscription is not None and self._session is not None:
                if self._session.user_id == session.user_id:
                    self._session = session
                    return
                self.stop()
            self._subscription = self._service.subscribe(self.table, self.scope(session.user_id))
            self._session = session
        logger.info("Subscribed to %s for user %s", self.table, session.user_id)

    def stop(self) -> None:
        """Close the push subscription and discard the collection. Safe to call twice."""
        with self._lock:
            sub, self._subscription = self._subscription, None
            user_id = self._session.user_id if self._session else None
            self._session = None
            self._records = []
            self._reset_aggregates()
            self._on_stop()
        if sub is not None:
            self._service.unsubscribe(sub)
            logger.info("Unsubscribed from %s for user %s", self.table, user_id)

    def _on_stop(self) -> None:
        return None

    # ---- producers ----

    def initialize(self, session: Optional[Session]) -> List[R]:
        """
        Load the user's newest-first page and replace the collection.

        Raises:
            NotAuthenticated: when `session` is None.
            DataServiceError: when the fetch fails; the previous collection is kept.
        """
        session = require_session(session)
        self.start(session)
        try:
            rows = self._service.query(self.table, self.scope(session.user_id), self.order, self._page_size)
            records = self._load(rows)
        except DataServiceError:
            logger.exception("Loading %s failed for user %s", self.table, session.user_id)
            raise
        with self._lock:
            self._records = records
            self._reset_aggregates()
        logger.debug("Loaded %d %s for user %s", len(records), self.table, session.user_id)
        return list(records)

    def apply_remote_insert(self, record: Union[R, Row]) -> Optional[R]:
        """
        Prepend a pushed record and bump the aggregate.

        No de-duplication and no timestamp ordering: a record already fetched by
        `initialize` shows up twice when its push event is applied afterwards.
        Rows that do not parse are logged and dropped.
        """
        parsed = self._coerce(record)
        if parsed is None:
            return None
        with self._lock:
            self._records.insert(0, parsed)
            self._count_insert(parsed)
        return parsed

    def poll(self) -> int:
        """Apply every queued push event; return how many were applied."""
        sub = self._subscription
        if sub is None:
            return 0
        applied = 0
        for row in sub.events():
            if self.apply_remote_insert(row) is not None:
                applied += 1
        return applied

    # ---- reads ----

    def filter(self, *predicates: Callable[[R], bool]) -> List[R]:
        """Records matching every predicate, in collection order. Never touches the Data Service."""
        with self._lock:
            snapshot = list(self._records)
        return [r for r in snapshot if all(p(r) for p in predicates)]

    # ---- writes ----

    def delete(self, record_id: str) -> None:
        """
        Delete remotely, then drop exactly one local entry with that id.

        On failure the collection is untouched and the error propagates.
        """
        session = self._require_session()
        self._authorize_delete(session, record_id)
        try:
            self._service.delete(self.table, record_id)
        except DataServiceError:
            logger.exception("Deleting %s %s failed", self.table, record_id)
            raise
        with self._lock:
            idx = self._index_of(record_id)
            if idx >= 0:
                self._count_remove(self._records.pop(idx))

    def _authorize_delete(self, session: Session, record_id: str) -> None:
        return None

    # ---- parsing ----

    def _parse_row(self, row: Row) -> Optional[R]:
        try:
            return record_from_row(self.table, row)  # type: ignore[return-value]
        except ValidationError as exc:
            logger.warning("Dropping malformed %s row %r: %s", self.table, row.get("id"), exc)
            return None

    def _coerce(self, record: Union[R, Row]) -> Optional[R]:
        if isinstance(record, dict):
            parsed = self._parse_row(record)
            return None if parsed is None else self._decorate(parsed)
        return self._decorate(record)

    def _load(self, rows: List[Row]) -> List[R]:
        out: List[R] = []
        for row in rows:
            parsed = self._parse_row(row)
            if parsed is not None:
                out.append(parsed)
        return out

    def _decorate(self, record: R) -> R:
        return record

    def _replace(self, expected: R, replacement: R) -> bool:
        """Swap `expected` for `replacement` if it is still the current entry for its id."""
        with self._lock:
            idx = self._index_of(expected.id)
            if idx < 0 or self._records[idx] is not expected:
                return False
            self._count_remove(expected)
            self._records[idx] = replacement
            self._count_insert(replacement)
            return True


# PUBLIC_INTERFACE
class NotificationFeed(ViewStateSynchronizer[Notification]):
    """The user's notifications with an unread count."""

    table = NOTIFICATIONS

    def __init__(self, service: DataService, *, page_size: Optional[int] = 20, rollback_on_failure: bool = False) -> None:
        self._unread = 0
        super().__init__(service, page_size=page_size, rollback_on_failure=rollback_on_failure)

    def scope(self, user_id: str) -> Filter:
        return Filter.eq(user_id=user_id)

    @property
    def unread_count(self) -> int:
        return self._unread

    def recount(self) -> int:
        with self._lock:
            return sum(1 for n in self._records if not n.read)

    def _reset_aggregates(self) -> None:
        self._unread = sum(1 for n in self._records if not n.read)

    def _count_insert(self, record: Notification) -> None:
        if not record.read:
            self._unread += 1

    def _count_remove(self, record: Notification) -> None:
        if not record.read:
            self._unread = max(0, self._unread - 1)

    def mark_read(self, notification_id: str) -> Notification:
        """
        Flip one notification to read locally, then persist it.

        Already-read notifications are left alone, so calling this twice never
        decrements twice. A failed remote write is logged only; the local flag
        stays set unless rollback is enabled.
        """
        self._require_session()
        with self._lock:
            idx = self._index_of(notification_id)
            if idx < 0:
                raise NotFound(self.table, notification_id)
            before = self._records[idx]
            if before.read:
                return before
            after = before.model_copy(update={"read": True})
            self._records[idx] = after
            self._unread = max(0, self._unread - 1)
        try:
            self._service.update(self.table, notification_id, {"read": True})
        except DataServiceError:
            logger.exception("Marking notification %s as read failed", notification_id)
            if self._rollback and self._replace(after, before):
                return before
        return after

    def mark_all_read(self) -> int:
        """
        Flip every local notification to read and zero the unread count, then
        persist for all of the user's unread notifications. Returns how many
        local records changed.
        """
        session = self._require_session()
        with self._lock:
            previous = list(self._records)
            self._records = [n if n.read else n.model_copy(update={"read": True}) for n in previous]
            self._unread = 0
            changed = sum(1 for n in previous if not n.read)
        try:
            self._service.update_where(self.table, Filter.eq(user_id=session.user_id, read=False), {"read": True})
        except DataServiceError:
            logger.exception("Marking all notifications as read failed for user %s", session.user_id)
            if self._rollback:
                self._restore_unread(previous)
        return changed

    def _restore_unread(self, previous: List[Notification]) -> None:
        was_unread = {n.id for n in previous if not n.read}
        with self._lock:
            self._records = [
                n.model_copy(update={"read": False}) if n.id in was_unread and n.read else n for n in self._records
            ]
            self._reset_aggregates()


# PUBLIC_INTERFACE
class TaskBoard(ViewStateSynchronizer[Task]):
    """
    Tasks the user created or is assigned to, with per-status counts.

    Creator and assignee display names are looked up from profiles and cached
    for the lifetime of the session.
    """

    table = TASKS

    def __init__(self, service: DataService, *, page_size: Optional[int] = None, rollback_on_failure: bool = False) -> None:
        self._counts: Dict[TaskStatus, int] = {}
        self._names: Dict[str, Optional[str]] = {}
        super().__init__(service, page_size=page_size, rollback_on_failure=rollback_on_failure)

    def scope(self, user_id: str) -> Filter:
        return Filter.either(created_by=user_id, assigned_to=user_id)

    @property
    def status_counts(self) -> Dict[TaskStatus, int]:
        with self._lock:
            return dict(self._counts)

    def recount(self) -> Dict[TaskStatus, int]:
        with self._lock:
            return count_by_status(self._records)

    def _reset_aggregates(self) -> None:
        self._counts = count_by_status(self._records)

    def _count_insert(self, record: Task) -> None:
        self._counts[record.status] = self._counts.get(record.status, 0) + 1

    def _count_remove(self, record: Task) -> None:
        self._counts[record.status] = max(0, self._counts.get(record.status, 0) - 1)

    def _on_stop(self) -> None:
        self._names = {}

    # ---- display names ----

    def _name_of(self, profile_id: Optional[str]) -> Optional[str]:
        if not profile_id:
            return None
        if profile_id not in self._names:
            rows = self._service.query(PROFILES, Filter.eq(id=profile_id), limit=1)
            self._names[profile_id] = rows[0].get("name") if rows else None
        return self._names[profile_id]

    def _decorate(self, record: Task) -> Task:
        try:
            names = {
                "creator_name": self._name_of(record.created_by),
                "assignee_name": self._name_of(record.assigned_to),
            }
        except DataServiceError:
            logger.warning("Profile lookup failed for task %s; names left empty", record.id)
            return record
        return record.model_copy(update=names)

    def _load(self, rows: List[Row]) -> List[Task]:
        return [self._decorate(t) for t in super()._load(rows)]

    # ---- reads ----

    def get(self, task_id: str) -> Task:
        found = self.find(task_id)
        if found is None:
            raise NotFound(self.table, task_id)
        return found

    # ---- writes ----

    def create(self, data: TaskCreate) -> Task:
        """
        Insert a new task created by the session user.

        The task reaches the collection through the push feed. Assigning it to
        someone else notifies the assignee; that notification is fire-and-forget.
        """
        session = self._require_session()
        assignee = data.assigned_to or session.user_id
        row: Row = {
            "title": data.title,
            "description": data.description,
            "status": data.status.value,
            "priority": data.priority.value,
            "due_date": data.due_date,
            "created_by": session.user_id,
            "assigned_to": assignee,
            "created_at": utcnow(),
        }
        try:
            task_id = self._service.insert(self.table, row)
        except DataServiceError:
            logger.exception("Creating task %r failed for user %s", data.title, session.user_id)
            raise
        logger.info("Task %s created by %s", task_id, session.user_id)

        if assignee != session.user_id:
            notify.send(self._service, notify.task_assigned(session, task_id, data.title, assignee))

        self.poll()
        found = self.find(task_id)
        if found is not None:
            return found
        parsed = self._coerce({**row, "id": task_id})
        if parsed is None:
            raise DataServiceError(f"created task {task_id!r} could not be read back", table=self.table)
        return parsed

    def update_status(self, task_id: str, status: Union[TaskStatus, str]) -> Task:
        """
        Optimistically move a task to `status`, stamping updated_at, then persist.

        A failed remote write is logged and re-raised; the local change stays
        unless rollback is enabled. Completing someone else's task notifies its
        creator (fire-and-forget).
        """
        session = self._require_session()
        new_status = TaskStatus(status)
        now = utcnow()
        with self._lock:
            idx = self._index_of(task_id)
            if idx < 0:
                raise NotFound(self.table, task_id)
            before = self._records[idx]
            after = before.model_copy(update={"status": new_status, "updated_at": now})
            self._records[idx] = after
            self._count_remove(before)
            self._count_insert(after)
        try:
            self._service.update(self.table, task_id, {"status": new_status.value, "updated_at": now})
        except DataServiceError:
            logger.exception("Updating status of task %s to %s failed", task_id, new_status.value)
            if self._rollback:
                self._replace(after, before)
            raise

        if new_status == TaskStatus.COMPLETED and after.created_by != session.user_id:
            notify.send(self._service, notify.task_completed(session, after))
        return after

    def update(self, task_id: str, changes: TaskUpdate) -> Task:
        """
        Edit task fields remotely, then refresh the local copy.

        created_by cannot be changed. Re-assigning to another user notifies the
        new assignee; completing someone else's task notifies its creator.
        """
        session = self._require_session()
        before = self.get(task_id)
        patch = changes.changes()
        if not patch:
            return before
        patch["updated_at"] = utcnow()
        remote_patch = {k: getattr(v, "value", v) for k, v in patch.items()}
        try:
            self._service.update(self.table, task_id, remote_patch)
        except DataServiceError:
            logger.exception("Updating task %s failed", task_id)
            raise

        after = self._decorate(before.model_copy(update=patch))
        if not self._replace(before, after):
            # The entry moved or vanished meanwhile; the remote write still stands.
            logger.debug("Task %s changed locally during update; keeping current entry", task_id)

        new_assignee = patch.get("assigned_to")
        if new_assignee and new_assignee != before.assigned_to and new_assignee != session.user_id:
            notify.send(self._service, notify.task_assigned(session, task_id, after.title, new_assignee))
        if (
            patch.get("status") == TaskStatus.COMPLETED
            and before.status != TaskStatus.COMPLETED
            and after.created_by != session.user_id
        ):
            notify.send(self._service, notify.task_completed(session, after))
        return after

    def _authorize_delete(self, session: Session, task_id: str) -> None:
        local = self.find(task_id)
        # Tasks outside the board are checked against the stored row; NotFound propagates.
        creator = local.created_by if local is not None else self._service.get(self.table, task_id).get("created_by")
        if creator != session.user_id:
            raise PermissionDenied("Only the task creator can delete it", table=self.table)
