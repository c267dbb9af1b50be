from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from queue import Empty, SimpleQueue
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from .errors import DataServiceError, NotFound
from .models import NOTIFICATIONS, PROFILES, TABLES, TASKS, Row, utcnow
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Row], None]

# Column defaults applied on insert, mirroring the table definitions.
_DEFAULTS: Dict[str, Dict[str, Any]] = {
    TASKS: {
        "description": None,
        "status": "todo",
        "priority": "medium",
        "due_date": None,
        "updated_at": None,
        "assigned_to": None,
    },
    NOTIFICATIONS: {"read": False, "task_id": None},
    PROFILES: {"name": None, "role": "user"},
}


@dataclass(frozen=True)
class Filter:
    """
    Row filter.

    - equals: every (field, value) pair must match
    - any_of: at least one (field, value) pair must match (ignored when empty)
    """

    equals: Mapping[str, Any] = field(default_factory=dict)
    any_of: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def eq(cls, **fields: Any) -> "Filter":
        return cls(equals=dict(fields))

    @classmethod
    def either(cls, **fields: Any) -> "Filter":
        return cls(any_of=dict(fields))

    def matches(self, row: Mapping[str, Any]) -> bool:
        if any(row.get(k) != v for k, v in self.equals.items()):
            return False
        if self.any_of and not any(row.get(k) == v for k, v in self.any_of.items()):
            return False
        return True


@dataclass(frozen=True)
class Order:
    """Sort order for queries. Rows missing the field sort last in either direction."""

    field: str = "created_at"
    descending: bool = True


# PUBLIC_INTERFACE
class Subscription:
    """
    Handle for a live insert feed on one table.

    Events are queued on an unbounded channel and drained lazily with
    `events()`. When `on_insert` is given, events are handed to the callback
    at delivery time instead of being queued. A closed subscription drops
    every further event; subscribing again yields a fresh channel.
    """

    def __init__(self, table: str, row_filter: Optional[Filter] = None, on_insert: Optional[InsertCallback] = None) -> None:
        self.id = uuid.uuid4().hex
        self.table = table
        self.filter = row_filter or Filter()
        self._on_insert = on_insert
        self._channel: "SimpleQueue[Row]" = SimpleQueue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, row: Row) -> None:
        if self._closed or not self.filter.matches(row):
            return
        if self._on_insert is not None:
            self._on_insert(dict(row))
        else:
            self._channel.put(dict(row))

    def events(self) -> Iterator[Row]:
        """Yield queued insert events until the channel is empty or the subscription closes."""
        while not self._closed:
            try:
                yield self._channel.get_nowait()
            except Empty:
                return

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return f"Subscription(id={self.id!r}, table={self.table!r}, closed={self._closed})"


class SubscriptionHub:
    """Fan-out of committed inserts to the live subscriptions of each table."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._subs: Dict[str, Subscription] = {}

    def add(self, sub: Subscription) -> Subscription:
        with self._lock:
            self._subs[sub.id] = sub
        return sub

    def remove(self, sub: Subscription) -> bool:
        sub.close()
        with self._lock:
            return self._subs.pop(sub.id, None) is not None

    def publish(self, table: str, row: Row) -> None:
        with self._lock:
            targets = [s for s in self._subs.values() if s.table == table]
        for sub in targets:
            try:
                sub.deliver(row)
            except Exception:
                # One broken consumer must not stop delivery to the others.
                logger.exception("Insert callback failed for %r", sub)

    def active(self, table: Optional[str] = None) -> List[Subscription]:
        with self._lock:
            return [s for s in self._subs.values() if table is None or s.table == table]


def check_table(table: str) -> None:
    if table not in TABLES:
        raise DataServiceError(f"Unknown table {table!r}", table=table)


def _sort_rows(rows: List[Row], order: Optional[Order]) -> List[Row]:
    if order is None:
        return rows
    present = [r for r in rows if r.get(order.field) is not None]
    missing = [r for r in rows if r.get(order.field) is None]
    present.sort(key=lambda r: r[order.field], reverse=order.descending)
    return present + missing


def apply_insert_defaults(table: str, row: Mapping[str, Any]) -> Row:
    out: Row = dict(_DEFAULTS[table])
    out.update(row)
    if not out.get("id"):
        out["id"] = uuid.uuid4().hex
    if out.get("created_at") is None:
        out["created_at"] = utcnow()
    return out


# PUBLIC_INTERFACE
class DataService(ABC):
    """
    Abstract contract of the external persistence, query and push-feed collaborator.

    Every method may raise DataServiceError; `update` and `delete` raise its
    NotFound subclass when the id is absent. Rows are plain dicts.
    """

    @abstractmethod
    def query(
        self,
        table: str,
        row_filter: Optional[Filter] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Return copies of the matching rows, sorted by `order` and capped at `limit`."""

    @abstractmethod
    def insert(self, table: str, row: Mapping[str, Any]) -> str:
        """Insert a row (id and created_at are filled when absent) and return its id."""

    @abstractmethod
    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        """Apply `patch` to one row."""

    @abstractmethod
    def update_where(self, table: str, row_filter: Filter, patch: Mapping[str, Any]) -> int:
        """Apply `patch` to every matching row and return how many were changed."""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> None:
        """Delete one row."""

    @abstractmethod
    def subscribe(
        self, table: str, row_filter: Optional[Filter] = None, on_insert: Optional[InsertCallback] = None
    ) -> Subscription:
        """Open a live insert feed on `table` restricted to rows matching `row_filter`."""

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        """Close a feed. Unsubscribing twice is harmless."""

    def get(self, table: str, record_id: str) -> Row:
        """Return one row by id or raise NotFound."""
        rows = self.query(table, Filter.eq(id=record_id), limit=1)
        if not rows:
            raise NotFound(table, record_id)
        return rows[0]

    def close(self) -> None:
        """Release resources held by the service."""
        return None


class InMemoryDataService(DataService):
    """
    Thread-safe in-memory Data Service suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._tables: Dict[str, Dict[str, Row]] = {t: {} for t in TABLES}
        self._hub = SubscriptionHub()

    def query(
        self,
        table: str,
        row_filter: Optional[Filter] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        check_table(table)
        f = row_filter or Filter()
        with self._lock:
            rows = [dict(r) for r in self._tables[table].values() if f.matches(r)]
        rows = _sort_rows(rows, order)
        if limit is not None:
            rows = rows[: max(limit, 0)]
        return rows

    def insert(self, table: str, row: Mapping[str, Any]) -> str:
        check_table(table)
        stored = apply_insert_defaults(table, row)
        with self._lock:
            if stored["id"] in self._tables[table]:
                raise DataServiceError(f"duplicate id {stored['id']!r} in {table}", table=table)
            self._tables[table][stored["id"]] = stored
        self._hub.publish(table, dict(stored))
        return stored["id"]

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        check_table(table)
        with self._lock:
            existing = self._tables[table].get(record_id)
            if existing is None:
                raise NotFound(table, record_id)
            updated = existing.copy()
            updated.update({k: v for k, v in patch.items() if k != "id"})
            self._tables[table][record_id] = updated

    def update_where(self, table: str, row_filter: Filter, patch: Mapping[str, Any]) -> int:
        check_table(table)
        changes = {k: v for k, v in patch.items() if k != "id"}
        with self._lock:
            hits = [rid for rid, r in self._tables[table].items() if row_filter.matches(r)]
            for rid in hits:
                self._tables[table][rid] = {**self._tables[table][rid], **changes}
            return len(hits)

    def delete(self, table: str, record_id: str) -> None:
        check_table(table)
        with self._lock:
            if self._tables[table].pop(record_id, None) is None:
                raise NotFound(table, record_id)

    def subscribe(
        self, table: str, row_filter: Optional[Filter] = None, on_insert: Optional[InsertCallback] = None
    ) -> Subscription:
        check_table(table)
        return self._hub.add(Subscription(table, row_filter, on_insert))

    def unsubscribe(self, subscription: Subscription) -> None:
        self._hub.remove(subscription)

    def subscriptions(self, table: Optional[str] = None) -> List[Subscription]:
        """Live subscriptions, optionally restricted to one table."""
        return self._hub.active(table)


# PUBLIC_INTERFACE
def build_data_service(settings: Optional[Settings] = None) -> DataService:
    """
    Factory to return the configured Data Service based on settings.
    - memory: InMemoryDataService
    - sqlite: SQLiteDataService (standard library sqlite3)
    """
    settings = settings or get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteDataService

        return SQLiteDataService(settings.sqlite_db_path)
    return InMemoryDataService()
