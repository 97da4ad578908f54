"""
tablesync/introspect.py
-----------------------
Reads table, column, primary-key and index metadata from
``information_schema``.

Every lookup is issued fresh; callers must not cache results across
operations because the schema may change between them. Existence checks
are case-insensitive so a case mismatch (e.g. a server running with
``lower_case_table_names=1``) can be told apart from a missing table.

``describe_query`` recovers the declared column types of an arbitrary
SELECT, which the result-set metadata alone does not carry.
"""
from __future__ import annotations

from typing import Any

from logger import get_logger
from tablesync.database import Connection
from tablesync.errors import SchemaError
from tablesync.models import (
    ColumnDescriptor,
    FieldDescriptor,
    IndexDescriptor,
    TableDescription,
    TableRef,
)
from tablesync.sql import build_count, qualified_name, quote_identifier
from tablesync.type_mapping import canonical_type, field_from_column_type

log = get_logger(__name__)

_FIND_TABLE_SQL = (
    "SELECT TABLE_NAME FROM information_schema.TABLES "
    "WHERE TABLE_SCHEMA = {schema} AND UPPER(TABLE_NAME) = UPPER(%s)"
)
_COLUMNS_SQL = (
    "SELECT COLUMN_NAME, DATA_TYPE, COLUMN_TYPE, IS_NULLABLE, COLUMN_KEY, COLLATION_NAME "
    "FROM information_schema.COLUMNS "
    "WHERE TABLE_SCHEMA = {schema} AND TABLE_NAME = %s "
    "ORDER BY ORDINAL_POSITION"
)
_INDEXES_SQL = (
    "SELECT INDEX_NAME, COLUMN_NAME, SEQ_IN_INDEX, NON_UNIQUE "
    "FROM information_schema.STATISTICS "
    "WHERE TABLE_SCHEMA = {schema} AND TABLE_NAME = %s "
    "ORDER BY INDEX_NAME, SEQ_IN_INDEX"
)


def _as_text(value: Any) -> str:
    # Some server/driver combinations return catalog text as bytes.
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return "" if value is None else str(value)


def _scoped(sql: str, ref: TableRef, name: str) -> tuple[str, tuple[str, ...]]:
    """Fill the schema slot with DATABASE() or a bound schema parameter."""
    if ref.schema:
        return sql.format(schema="%s"), (ref.schema, name)
    return sql.format(schema="DATABASE()"), (name,)


def current_database(conn: Connection) -> str:
    """
    Return the connection's selected database.

    Raises:
        SchemaError: If no database is selected.
    """
    name = conn.scalar("SELECT DATABASE() AS db")
    if not name:
        raise SchemaError(f"[{conn.label}] no database selected.")
    return _as_text(name)


def find_table(conn: Connection, ref: TableRef) -> str | None:
    """Return the stored name of *ref* (case-insensitive match), or None."""
    sql, params = _scoped(_FIND_TABLE_SQL, ref, ref.name)
    rows, _ = conn.execute(sql, params)
    names = [_as_text(r["TABLE_NAME"]) for r in rows]
    if not names:
        return None
    # A case-sensitive server may hold both `Users` and `users`.
    return ref.name if ref.name in names else names[0]


def table_exists(conn: Connection, ref: TableRef) -> bool:
    return find_table(conn, ref) is not None


def resolve_table(conn: Connection, ref: TableRef) -> TableRef:
    """
    Return *ref* carrying the actual stored name.

    Raises:
        SchemaError: If the table does not exist.
    """
    actual = find_table(conn, ref)
    if actual is None:
        raise SchemaError(f"[{conn.label}] table {ref} not found.")
    if actual != ref.name:
        log.info(
            "[%s] table %s requested as '%s' is stored as '%s' (name case mismatch).",
            conn.label, ref, ref.name, actual,
        )
    return ref.with_name(actual)


def count_rows(conn: Connection, ref: TableRef) -> int:
    value = conn.scalar(build_count(ref))
    return int(value or 0)


def show_create_table(conn: Connection, ref: TableRef) -> str:
    """Return the server's native ``CREATE TABLE`` statement for *ref*."""
    rows, _ = conn.execute(f"SHOW CREATE TABLE {qualified_name(ref)}")
    if not rows or "Create Table" not in rows[0]:
        raise SchemaError(f"[{conn.label}] could not read definition of {ref}.")
    return _as_text(rows[0]["Create Table"])


def lower_case_table_names(conn: Connection) -> str | None:
    """Value of the server's ``lower_case_table_names`` variable, if readable."""
    rows, _ = conn.execute("SHOW VARIABLES LIKE 'lower_case_table_names'")
    if not rows:
        return None
    return _as_text(rows[0].get("Value"))


def list_indexes(conn: Connection, ref: TableRef) -> list[IndexDescriptor]:
    """
    Group per-column STATISTICS rows into indexes, keeping intra-index order.

    Functional index parts (no COLUMN_NAME) are skipped.
    """
    sql, params = _scoped(_INDEXES_SQL, ref, ref.name)
    rows, _ = conn.execute(sql, params)

    grouped: dict[str, list[str]] = {}
    unique: dict[str, bool] = {}
    for row in rows:
        index_name = _as_text(row["INDEX_NAME"])
        column = row.get("COLUMN_NAME")
        grouped.setdefault(index_name, [])
        unique[index_name] = int(row["NON_UNIQUE"]) == 0
        if column is not None:
            grouped[index_name].append(_as_text(column))

    return [
        IndexDescriptor(name=name, columns=tuple(cols), unique=unique[name])
        for name, cols in grouped.items()
        if cols
    ]


def describe_table(conn: Connection, ref: TableRef) -> TableDescription:
    """
    Read columns, primary key and indexes for *ref*.

    Args:
        conn: Connection to the database holding the table.
        ref:  Requested table (any case).

    Returns:
        :class:`TableDescription` whose ``ref`` carries the stored name.

    Raises:
        SchemaError: If the table is absent or reports no columns.
    """
    actual = resolve_table(conn, ref)

    sql, params = _scoped(_COLUMNS_SQL, actual, actual.name)
    rows, _ = conn.execute(sql, params)
    if not rows:
        raise SchemaError(f"[{conn.label}] table {actual} has no readable columns.")

    columns: list[ColumnDescriptor] = []
    for row in rows:
        data_type = _as_text(row["DATA_TYPE"]).lower()
        columns.append(
            ColumnDescriptor(
                name=_as_text(row["COLUMN_NAME"]),
                data_type=data_type,
                column_type=_as_text(row.get("COLUMN_TYPE")) or data_type,
                nullable=_as_text(row.get("IS_NULLABLE")).upper() == "YES",
                is_primary_key=_as_text(row.get("COLUMN_KEY")).upper() == "PRI",
                canonical=canonical_type(data_type),
                collation=_as_text(row.get("COLLATION_NAME")) or None,
            )
        )

    indexes = list_indexes(conn, actual)
    primary = next((i for i in indexes if i.is_primary), None)
    if primary is not None:
        primary_key = primary.columns
    else:
        primary_key = tuple(c.name for c in columns if c.is_primary_key)

    log.debug(
        "[%s] described %s: %d column(s), pk=%s, %d index(es)",
        conn.label, actual, len(columns), list(primary_key), len(indexes),
    )
    return TableDescription(
        ref=actual,
        columns=tuple(columns),
        primary_key=primary_key,
        indexes=tuple(indexes),
    )


_RESULT_SHAPE_TABLE = "_tablesync_result_shape"


def describe_query(conn: Connection, query: str) -> list[FieldDescriptor]:
    """
    Return the declared column types of *query*'s result set.

    The wire protocol does not carry declared sizes, so the result shape
    is materialized into an empty session TEMPORARY TABLE and read back
    with SHOW COLUMNS. The temporary table is dropped before returning.

    Raises:
        DatabaseError: If the session may not create temporary tables
                       (callers fall back to wire metadata).
    """
    table = quote_identifier(_RESULT_SHAPE_TABLE)
    conn.execute_update(
        f"CREATE TEMPORARY TABLE {table} AS SELECT * FROM ({query}) AS result_shape LIMIT 0"
    )
    try:
        rows, _ = conn.execute(f"SHOW COLUMNS FROM {table}")
    finally:
        conn.execute_update(f"DROP TEMPORARY TABLE IF EXISTS {table}")

    return [
        field_from_column_type(
            _as_text(row["Field"]),
            _as_text(row["Type"]),
            _as_text(row.get("Null")).upper() == "YES",
        )
        for row in rows
    ]
