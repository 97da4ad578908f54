"""
tablesync/errors.py
-------------------
Exception hierarchy shared by every component.

``DatabaseConnectionError`` carries the "connection" role; it is not named
``ConnectionError`` so it never shadows the builtin.
"""
from __future__ import annotations


class TableSyncError(Exception):
    """Base class for every error raised by this package."""


class SchemaError(TableSyncError):
    """A table or column could not be found in the catalog."""


class AlreadyExistsError(TableSyncError):
    """The target table exists when the operation requires it not to."""


class ValidationError(TableSyncError):
    """Malformed input: non-SELECT query, empty or illegal identifier, bad limit."""


class DatabaseError(TableSyncError):
    """Raised for statement failures reported by the MySQL driver."""


class TransactionError(DatabaseError):
    """An insert or commit failed inside a chunk transaction."""


class DatabaseConnectionError(DatabaseError):
    """Pool exhaustion, failed ping, or unreachable host."""
