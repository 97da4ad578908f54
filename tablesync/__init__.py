"""tablesync/__init__.py"""
from tablesync.errors import (
    AlreadyExistsError,
    DatabaseConnectionError,
    DatabaseError,
    SchemaError,
    TableSyncError,
    TransactionError,
    ValidationError,
)
from tablesync.models import (
    BackupResult,
    CopyResult,
    RestoreResult,
    StructureResult,
    SyncResult,
    TableRef,
)
from tablesync.database import Connection, DatabaseContext, DatabasePool
from tablesync.structure import replicate_structure
from tablesync.copier import copy_rows
from tablesync.syncer import DeltaSyncer, sync_table
from tablesync.materializer import materialize
from tablesync.backup import backup_query, restore_csv, normalize_datetime
from tablesync.engine import TableSync

__all__ = [
    "AlreadyExistsError",
    "DatabaseConnectionError",
    "DatabaseError",
    "SchemaError",
    "TableSyncError",
    "TransactionError",
    "ValidationError",
    "BackupResult",
    "CopyResult",
    "RestoreResult",
    "StructureResult",
    "SyncResult",
    "TableRef",
    "Connection",
    "DatabaseContext",
    "DatabasePool",
    "replicate_structure",
    "copy_rows",
    "DeltaSyncer",
    "sync_table",
    "materialize",
    "backup_query",
    "restore_csv",
    "normalize_datetime",
    "TableSync",
]
