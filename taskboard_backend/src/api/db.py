from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generator, List, Mapping, Optional, Tuple

from .data_service import (
    DataService,
    Filter,
    InsertCallback,
    Order,
    Subscription,
    SubscriptionHub,
    check_table,
    apply_insert_defaults,
)
from .errors import DataServiceError, NotFound
from .models import NOTIFICATIONS, PROFILES, TASKS, Row, as_aware

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Table:
    name: str
    columns: Tuple[Tuple[str, str], ...]
    datetimes: Tuple[str, ...] = ()
    booleans: Tuple[str, ...] = ()
    indexes: Tuple[str, ...] = ()

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c for c, _ in self.columns)


_SCHEMA: Dict[str, _Table] = {
    PROFILES: _Table(
        name=PROFILES,
        columns=(
            ("id", "TEXT PRIMARY KEY"),
            ("email", "TEXT NOT NULL"),
            ("name", "TEXT NULL"),
            ("role", "TEXT NOT NULL DEFAULT 'user'"),
            ("created_at", "TEXT NOT NULL"),
        ),
        datetimes=("created_at",),
        indexes=("name",),
    ),
    TASKS: _Table(
        name=TASKS,
        columns=(
            ("id", "TEXT PRIMARY KEY"),
            ("title", "TEXT NOT NULL"),
            ("description", "TEXT NULL"),
            ("status", "TEXT NOT NULL DEFAULT 'todo'"),
            ("priority", "TEXT NOT NULL DEFAULT 'medium'"),
            ("due_date", "TEXT NULL"),
            ("created_at", "TEXT NOT NULL"),
            ("updated_at", "TEXT NULL"),
            ("created_by", "TEXT NOT NULL REFERENCES profiles(id)"),
            ("assigned_to", "TEXT NULL REFERENCES profiles(id)"),
        ),
        datetimes=("due_date", "created_at", "updated_at"),
        indexes=("created_by", "assigned_to", "created_at"),
    ),
    NOTIFICATIONS: _Table(
        name=NOTIFICATIONS,
        columns=(
            ("id", "TEXT PRIMARY KEY"),
            ("user_id", "TEXT NOT NULL REFERENCES profiles(id)"),
            ("message", "TEXT NOT NULL"),
            ("type", "TEXT NOT NULL"),
            ("read", "INTEGER NOT NULL DEFAULT 0"),
            ("created_at", "TEXT NOT NULL"),
            # Lookup only: no ON DELETE CASCADE and no enforced reference.
            ("task_id", "TEXT NULL"),
        ),
        datetimes=("created_at",),
        booleans=("read",),
        indexes=("user_id", "created_at"),
    ),
}


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return as_aware(value).astimezone(timezone.utc).isoformat()  # type: ignore[union-attr]
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class SQLiteDataService(DataService):
    """
    Lightweight SQLite Data Service implementing the DataService interface.

    Each call opens its own connection. Push events are fanned out in-process
    once an insert has been committed.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._hub = SubscriptionHub()
        self._init_db()
        logger.info("SQLiteDataService ready db=%s", db_path)

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise DataServiceError(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise DataServiceError(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            for spec in _SCHEMA.values():
                cols = ",\n    ".join(f"{name} {decl}" for name, decl in spec.columns)
                conn.execute(f"CREATE TABLE IF NOT EXISTS {spec.name} (\n    {cols}\n)")
                for col in spec.indexes:
                    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{spec.name}_{col} ON {spec.name}({col})")

    def _row_to_dict(self, spec: _Table, row: sqlite3.Row) -> Row:
        out: Row = {}
        for name in spec.column_names:
            value = row[name]
            if value is not None and name in spec.datetimes:
                value = as_aware(datetime.fromisoformat(value))
            elif name in spec.booleans:
                value = bool(value)
            out[name] = value
        return out

    @staticmethod
    def _where(row_filter: Optional[Filter], spec: _Table) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if row_filter is not None:
            for col, value in row_filter.equals.items():
                if col not in spec.column_names:
                    raise DataServiceError(f"unknown column {col!r}", table=spec.name)
                if value is None:
                    clauses.append(f"{col} IS NULL")
                else:
                    clauses.append(f"{col} = ?")
                    params.append(_to_db(value))
            alternatives: List[str] = []
            for col, value in row_filter.any_of.items():
                if col not in spec.column_names:
                    raise DataServiceError(f"unknown column {col!r}", table=spec.name)
                alternatives.append(f"{col} = ?")
                params.append(_to_db(value))
            if alternatives:
                clauses.append(f"({' OR '.join(alternatives)})")
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where_sql, params

    def query(
        self,
        table: str,
        row_filter: Optional[Filter] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        check_table(table)
        spec = _SCHEMA[table]
        where_sql, params = self._where(row_filter, spec)

        order_sql = ""
        if order is not None:
            if order.field not in spec.column_names:
                raise DataServiceError(f"unknown column {order.field!r}", table=table)
            # Missing values last in either direction
            order_sql = (
                f"ORDER BY {order.field} IS NULL, {order.field} {'DESC' if order.descending else 'ASC'}"
            )
        page_sql = ""
        if limit is not None:
            page_sql = "LIMIT ?"
            params = [*params, max(limit, 0)]

        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {table} {where_sql} {order_sql} {page_sql}", params
            ).fetchall()
            return [self._row_to_dict(spec, r) for r in rows]

    def insert(self, table: str, row: Mapping[str, Any]) -> str:
        check_table(table)
        spec = _SCHEMA[table]
        stored = apply_insert_defaults(table, row)
        cols = [c for c in spec.column_names if c in stored]
        placeholders = ", ".join("?" for _ in cols)
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
                [_to_db(stored[c]) for c in cols],
            )
        # Publish what a reader would get back, not what the caller passed in.
        published = {c: stored.get(c) for c in spec.column_names}
        self._hub.publish(table, published)
        return stored["id"]

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        check_table(table)
        spec = _SCHEMA[table]
        changes = {k: v for k, v in patch.items() if k != "id"}
        unknown = set(changes) - set(spec.column_names)
        if unknown:
            raise DataServiceError(f"unknown columns {sorted(unknown)}", table=table)
        with self._conn() as conn:
            if changes:
                assignments = ", ".join(f"{c} = ?" for c in changes)
                cur = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*(_to_db(v) for v in changes.values()), record_id],
                )
                found = cur.rowcount > 0
            else:
                found = conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)).fetchone() is not None
        if not found:
            raise NotFound(table, record_id)

    def update_where(self, table: str, row_filter: Filter, patch: Mapping[str, Any]) -> int:
        check_table(table)
        spec = _SCHEMA[table]
        changes = {k: v for k, v in patch.items() if k != "id"}
        if not changes:
            return 0
        where_sql, params = self._where(row_filter, spec)
        assignments = ", ".join(f"{c} = ?" for c in changes)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {assignments} {where_sql}",
                [*(_to_db(v) for v in changes.values()), *params],
            )
            return cur.rowcount

    def delete(self, table: str, record_id: str) -> None:
        check_table(table)
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            deleted = cur.rowcount > 0
        if not deleted:
            raise NotFound(table, record_id)

    def subscribe(
        self, table: str, row_filter: Optional[Filter] = None, on_insert: Optional[InsertCallback] = None
    ) -> Subscription:
        check_table(table)
        return self._hub.add(Subscription(table, row_filter, on_insert))

    def unsubscribe(self, subscription: Subscription) -> None:
        self._hub.remove(subscription)
