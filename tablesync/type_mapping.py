"""
tablesync/type_mapping.py
-------------------------
Maps native MySQL types into the canonical type vocabulary and renders
column DDL for tables synthesized from result-set metadata.

Two spellings of a native type reach this module: declared catalog names
(``varchar``, ``bigint`` from ``information_schema``) and wire-protocol
field type names (``VAR_STRING``, ``LONGLONG`` from the driver's
``FieldType``). Both are normalized to the catalog spelling first.
Sizes only survive in the declared spelling; the driver reports none.

Mapping (canonical → rendered DDL):

    text      VARCHAR(<length or 255>)
    integer   INT  (BIGINT kept as BIGINT)
    decimal   DECIMAL(p,s) / FLOAT / DOUBLE
    date      DATE
    datetime  DATETIME   (datetime and timestamp)
    time      TIME
    json      JSON
    other     VARCHAR(255)
"""
from __future__ import annotations

import re
from typing import Iterable

from tablesync.models import CanonicalType, FieldDescriptor, TableRef
from tablesync.sql import quote_identifier, qualified_name

DEFAULT_TEXT_LENGTH = 255
# MySQL caps VARCHAR at 65,535 bytes per row; anything wider stays TEXT-ish.
_MAX_VARCHAR_LENGTH = 16383

# ---------------------------------------------------------------------------
# Type category sets
# ---------------------------------------------------------------------------
_INTEGER_TYPES = frozenset(
    {"tinyint", "smallint", "mediumint", "int", "integer", "bigint", "year"}
)
_DECIMAL_TYPES = frozenset({"decimal", "numeric", "fixed", "float", "double", "real"})
_TEXT_TYPES = frozenset(
    {"char", "varchar", "tinytext", "text", "mediumtext", "longtext"}
)
_DATE_TYPES = frozenset({"date", "newdate"})
_DATETIME_TYPES = frozenset({"datetime", "timestamp"})
_TIME_TYPES = frozenset({"time"})
_JSON_TYPES = frozenset({"json"})

_CAT_MAP = (
    (CanonicalType.INTEGER, _INTEGER_TYPES),
    (CanonicalType.DECIMAL, _DECIMAL_TYPES),
    (CanonicalType.TEXT, _TEXT_TYPES),
    (CanonicalType.DATE, _DATE_TYPES),
    (CanonicalType.DATETIME, _DATETIME_TYPES),
    (CanonicalType.TIME, _TIME_TYPES),
    (CanonicalType.JSON, _JSON_TYPES),
)

# Wire-protocol names (mysql.connector FieldType.get_info) → catalog names
_PROTOCOL_ALIASES: dict[str, str] = {
    "tiny": "tinyint",
    "short": "smallint",
    "int24": "mediumint",
    "long": "int",
    "longlong": "bigint",
    "newdecimal": "decimal",
    "var_string": "varchar",
    "string": "char",
    "tiny_blob": "tinytext",
    "blob": "text",
    "medium_blob": "mediumtext",
    "long_blob": "longtext",
}


def get_base_type(dtype_string: str) -> str:
    """
    Extract the normalized base type keyword from a type string.

    Examples::

        get_base_type("VARCHAR(255) NOT NULL")  →  "varchar"
        get_base_type("INT UNSIGNED")           →  "int"
        get_base_type("LONGLONG")               →  "bigint"
        get_base_type("")                       →  ""
    """
    if not dtype_string or not dtype_string.strip():
        return ""
    base = dtype_string.split("(")[0].split()[0].lower()
    return _PROTOCOL_ALIASES.get(base, base)


def canonical_type(dtype_string: str) -> CanonicalType:
    """Classify a native type; unknown types fall back to TEXT."""
    base = get_base_type(dtype_string)
    for cat, types in _CAT_MAP:
        if base in types:
            return cat
    return CanonicalType.TEXT


_DECLARED_TYPE_RE = re.compile(r"^\s*(\w+)\s*(?:\(([^)]*)\))?")


def field_from_column_type(
    name: str, column_type: str, nullable: bool | None = None
) -> FieldDescriptor:
    """
    Build a FieldDescriptor from a declared type such as ``varchar(50)``
    or ``decimal(10,2) unsigned`` (the ``Type`` column of SHOW COLUMNS).
    """
    match = _DECLARED_TYPE_RE.match(column_type or "")
    if not match:
        return FieldDescriptor(name=name, type_name=column_type or "", nullable=nullable)
    base = match.group(1).lower()
    args = [a.strip() for a in (match.group(2) or "").split(",") if a.strip().isdigit()]
    sizes = [int(a) for a in args]

    if base in _DECIMAL_TYPES and sizes:
        return FieldDescriptor(
            name=name,
            type_name=base,
            precision=sizes[0],
            scale=sizes[1] if len(sizes) > 1 else 0,
            nullable=nullable,
        )
    length = sizes[0] if base in _TEXT_TYPES and sizes else None
    return FieldDescriptor(name=name, type_name=base, length=length, nullable=nullable)


def render_type(field: FieldDescriptor) -> str:
    """Render the DDL type for one result-set field."""
    base = get_base_type(field.type_name)
    cat = canonical_type(field.type_name)

    if cat == CanonicalType.INTEGER:
        return "BIGINT" if base == "bigint" else "INT"
    if cat == CanonicalType.DECIMAL:
        if base in ("float", "double"):
            return base.upper()
        if base == "real":
            return "DOUBLE"
        if field.precision:
            return f"DECIMAL({field.precision},{field.scale or 0})"
        return "DECIMAL(65,30)"
    if cat == CanonicalType.DATE:
        return "DATE"
    if cat == CanonicalType.DATETIME:
        return "DATETIME"
    if cat == CanonicalType.TIME:
        return "TIME"
    if cat == CanonicalType.JSON:
        return "JSON"
    if base in _TEXT_TYPES and field.length and field.length <= _MAX_VARCHAR_LENGTH:
        return f"VARCHAR({field.length})"
    return f"VARCHAR({DEFAULT_TEXT_LENGTH})"


def column_ddl(field: FieldDescriptor) -> str:
    """```name` TYPE NULL|NOT NULL``; unknown nullability defaults to NULL."""
    null_clause = "NOT NULL" if field.nullable is False else "NULL"
    return f"{quote_identifier(field.name)} {render_type(field)} {null_clause}"


def build_create_table(
    ref: TableRef,
    fields: Iterable[FieldDescriptor],
    engine: str = "InnoDB",
    charset: str = "utf8mb4",
) -> str:
    """
    Generate a ``CREATE TABLE`` statement from result-set field metadata.

    Example::

        build_create_table(TableRef("active_users"), fields)
        # CREATE TABLE `active_users` (
        #   `id` INT NOT NULL,
        #   `name` VARCHAR(50) NULL
        # ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """
    body = ",\n  ".join(column_ddl(f) for f in fields)
    return (
        f"CREATE TABLE {qualified_name(ref)} (\n  {body}\n"
        f") ENGINE={engine} DEFAULT CHARSET={charset}"
    )
