"""
tablesync/sql.py
----------------
Identifier quoting and statement builders.

Identifiers (table / column / index names) are validated against an
allow-list pattern and backtick-quoted; they are the only text ever
interpolated into SQL. Every value is bound through a positional ``%s``
placeholder.
"""
from __future__ import annotations

import re
from typing import Iterable, Sequence

from tablesync.errors import ValidationError
from tablesync.models import TableRef

# MySQL's hard limit on placeholders in one prepared statement.
MAX_PLACEHOLDERS = 65535

_IDENTIFIER_RE = re.compile(r"^[\w$]{1,64}$")
_SELECT_RE = re.compile(r"^\s*select\b", re.IGNORECASE)


def validate_identifier(name: str) -> str:
    """Return *name* unchanged, or raise ValidationError if it is not allow-listed."""
    if not name:
        raise ValidationError("Identifier cannot be empty.")
    if not _IDENTIFIER_RE.match(name):
        raise ValidationError(f"Illegal identifier: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    """Backtick-quote a validated identifier: ``users`` → ```users```."""
    return f"`{validate_identifier(name)}`"


def qualified_name(ref: TableRef) -> str:
    """```schema`.`table``` when the ref carries a schema, else ```table```."""
    if ref.schema:
        return f"{quote_identifier(ref.schema)}.{quote_identifier(ref.name)}"
    return quote_identifier(ref.name)


def column_list(columns: Iterable[str], alias: str | None = None) -> str:
    prefix = f"{alias}." if alias else ""
    return ", ".join(f"{prefix}{quote_identifier(c)}" for c in columns)


def placeholders(count: int) -> str:
    return ", ".join(["%s"] * count)


def is_select(query: str) -> bool:
    return bool(query and _SELECT_RE.match(query))


def require_select(query: str) -> str:
    """Return the stripped query, or raise ValidationError if it is not a SELECT."""
    if not is_select(query):
        raise ValidationError("Custom query must be a SELECT statement.")
    return query.strip().rstrip(";")


def max_rows_per_statement(column_count: int, chunk_size: int) -> int:
    """Largest chunk that honours both the row cap and the placeholder limit."""
    if column_count <= 0:
        return chunk_size
    return max(1, min(chunk_size, MAX_PLACEHOLDERS // column_count))


def build_insert(ref: TableRef, columns: Sequence[str], row_count: int) -> str:
    """``INSERT INTO `t` (`a`, `b`) VALUES (%s, %s), (%s, %s)``"""
    if not columns:
        raise ValidationError(f"No columns to insert into {ref}.")
    group = f"({placeholders(len(columns))})"
    values = ", ".join([group] * row_count)
    return f"INSERT INTO {qualified_name(ref)} ({column_list(columns)}) VALUES {values}"


def build_select_all(ref: TableRef, limit: int | None = None) -> str:
    sql = f"SELECT * FROM {qualified_name(ref)}"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return sql


def build_count(ref: TableRef) -> str:
    return f"SELECT COUNT(*) AS count FROM {qualified_name(ref)}"


def build_order_by(columns: Sequence[str], alias: str | None = None) -> str:
    return "ORDER BY " + column_list(columns, alias)


def build_key_tuple(columns: Sequence[str], alias: str | None = None) -> str:
    """``(`a`, `b`)`` for row-constructor comparisons."""
    return f"({column_list(columns, alias)})"


def build_join_condition(columns: Sequence[str], left: str = "s", right: str = "t") -> str:
    return " AND ".join(
        f"{left}.{quote_identifier(c)} = {right}.{quote_identifier(c)}" for c in columns
    )


def build_null_safe_match(columns: Sequence[str]) -> str:
    """Every column as a null-safe equality predicate (``<=>``)."""
    return " AND ".join(f"{quote_identifier(c)} <=> %s" for c in columns)
