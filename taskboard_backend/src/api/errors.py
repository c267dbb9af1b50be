from __future__ import annotations

from typing import Optional


class TaskboardError(Exception):
    """Base class for all application errors."""


# PUBLIC_INTERFACE
class NotAuthenticated(TaskboardError):
    """Raised when an operation needs a user session and none is present."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


# PUBLIC_INTERFACE
class DataServiceError(TaskboardError):
    """
    Any failure of a Data Service call (network, storage, permission).

    The cause is opaque to callers; the original exception, when there is one,
    is chained via ``raise ... from``.
    """

    def __init__(self, message: str = "Data service call failed", *, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.table = table


# PUBLIC_INTERFACE
class NotFound(DataServiceError):
    """Raised when an operation references a record the Data Service does not hold."""

    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(f"{table} record {record_id!r} not found", table=table)
        self.record_id = record_id


# PUBLIC_INTERFACE
class PermissionDenied(DataServiceError):
    """Raised when the acting user may not perform the operation on the record."""
