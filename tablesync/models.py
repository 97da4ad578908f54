"""
tablesync/models.py
-------------------
Typed data models for catalog metadata and operation results.

Descriptors are read fresh from the catalog at the start of every
operation and never cached across operations.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from tablesync.errors import ValidationError

# An ordered column → value mapping. Column order is fixed once per
# operation and reused for positional parameter binding.
Row = dict[str, Any]

ProgressCallback = Callable[[str, int, int], None]  # message, current, total


class CanonicalType(str, Enum):
    """Small type vocabulary every native MySQL type collapses into."""
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    JSON = "json"


@dataclass(frozen=True)
class TableRef:
    """
    Optionally schema-qualified table name.

    Attributes:
        name:   Table name exactly as requested (case preserved).
        schema: Database name, or None for the connection's current database.
    """
    name: str
    schema: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Table name cannot be empty.")
        if self.schema is not None and not self.schema.strip():
            raise ValidationError("Schema name cannot be empty.")

    @classmethod
    def parse(cls, text: str) -> "TableRef":
        """Parse ``"table"`` or ``"schema.table"``."""
        text = (text or "").strip()
        if "." in text:
            schema, name = text.split(".", 1)
            return cls(name=name, schema=schema)
        return cls(name=text)

    def with_name(self, name: str) -> "TableRef":
        return TableRef(name=name, schema=self.schema)

    def with_schema(self, schema: str | None) -> "TableRef":
        return TableRef(name=self.name, schema=schema)

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


@dataclass(frozen=True)
class ColumnDescriptor:
    """One column as reported by ``information_schema.COLUMNS``."""
    name: str
    data_type: str                 # DATA_TYPE, e.g. "varchar"
    column_type: str = ""          # COLUMN_TYPE, e.g. "varchar(50)"
    nullable: bool = True
    is_primary_key: bool = False
    canonical: CanonicalType = CanonicalType.TEXT
    collation: str | None = None   # COLLATION_NAME; None for non-text columns

    @property
    def is_temporal(self) -> bool:
        return self.canonical in (CanonicalType.DATE, CanonicalType.DATETIME)


@dataclass(frozen=True)
class IndexDescriptor:
    """An index with its member columns in catalog sequence order."""
    name: str
    columns: tuple[str, ...]
    unique: bool = False

    PRIMARY = "PRIMARY"

    @property
    def is_primary(self) -> bool:
        return self.name.upper() == self.PRIMARY


@dataclass(frozen=True)
class TableDescription:
    """Result of introspecting one table."""
    ref: TableRef                  # carries the actual stored name
    columns: tuple[ColumnDescriptor, ...]
    primary_key: tuple[str, ...] = ()
    indexes: tuple[IndexDescriptor, ...] = ()

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def has_primary_key(self) -> bool:
        return len(self.primary_key) > 0

    def column(self, name: str) -> ColumnDescriptor | None:
        lowered = name.lower()
        return next((c for c in self.columns if c.name.lower() == lowered), None)


@dataclass(frozen=True)
class FieldDescriptor:
    """
    Result-set field metadata.

    ``nullable`` is None when the driver did not report usable flags; the
    DDL builder then falls back to ``NULL``.
    """
    name: str
    type_name: str
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    nullable: bool | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class SyncCursor:
    """In-memory progress of a running delta sync. Never persisted."""
    batch_size: int
    total_missing: int = 0
    synced_rows: int = 0
    batch_index: int = 0

    @property
    def total_batches(self) -> int:
        if self.batch_size <= 0:
            return 0
        return -(-self.total_missing // self.batch_size)


@dataclass
class StructureResult:
    """Outcome of a structure replication."""
    requested_name: str
    actual_name: str
    indexes_created: int = 0
    indexes_skipped: int = 0
    indexes_failed: int = 0

    @property
    def case_folded(self) -> bool:
        return self.actual_name != self.requested_name

    def __str__(self) -> str:
        name = self.requested_name
        if self.case_folded:
            name = f"{self.requested_name} (stored as {self.actual_name})"
        return (
            f"Table {name}: {self.indexes_created} index(es) created, "
            f"{self.indexes_skipped} embedded, {self.indexes_failed} failed"
        )


@dataclass
class CopyResult:
    """Outcome of a batch copy or custom-query materialization."""
    copied_rows: int = 0
    skipped_rows: int = 0
    chunks: int = 0

    def __str__(self) -> str:
        if self.skipped_rows:
            return f"0 rows copied ({self.skipped_rows} existing rows, target left untouched)"
        return f"{self.copied_rows} rows copied in {self.chunks} chunk(s)"


@dataclass
class SyncResult:
    """Outcome of a delta sync."""
    synced_rows: int = 0
    total_batches: int = 0
    strategy: str = ""

    def __str__(self) -> str:
        return f"{self.synced_rows} rows synced in {self.total_batches} batch(es) [{self.strategy}]"


@dataclass
class BackupResult:
    path: str
    rows: int = 0
    columns: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.rows} rows exported to {self.path}"


@dataclass
class RestoreResult:
    table_name: str
    inserted_rows: int = 0
    skipped_lines: int = 0
    date_columns: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        text = f"{self.inserted_rows} rows restored into {self.table_name}"
        if self.skipped_lines:
            text += f" ({self.skipped_lines} malformed line(s) skipped)"
        return text
