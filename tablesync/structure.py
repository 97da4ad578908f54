"""
tablesync/structure.py
----------------------
Replicates a source table's structure onto the target.

The source's native ``SHOW CREATE TABLE`` output is reused rather than
regenerated: the table name is swapped (case-insensitive match,
case-preserving replacement) and the ``AUTO_INCREMENT=<n>`` table option
is dropped because the counter is not portable. Indexes not embedded in
that statement are added afterwards; an index that fails to build is
logged and counted but never aborts the copy.
"""
from __future__ import annotations

import re

from logger import get_logger
from tablesync.database import Connection
from tablesync.errors import AlreadyExistsError, DatabaseError, SchemaError
from tablesync.introspect import (
    find_table,
    list_indexes,
    lower_case_table_names,
    resolve_table,
    show_create_table,
)
from tablesync.models import IndexDescriptor, StructureResult, TableRef
from tablesync.sql import column_list, qualified_name, quote_identifier

log = get_logger(__name__)

_AUTO_INCREMENT_RE = re.compile(r"\s*AUTO_INCREMENT=\d+", re.IGNORECASE)
_STRICT_SQL_MODE = (
    "STRICT_TRANS_TABLES,NO_ZERO_IN_DATE,NO_ZERO_DATE,"
    "ERROR_FOR_DIVISION_BY_ZERO,NO_ENGINE_SUBSTITUTION"
)


def rewrite_create_statement(create_sql: str, source_name: str, target: TableRef) -> str:
    """
    Point a native CREATE statement at *target* and strip the auto-increment start.

    Raises:
        SchemaError: If the statement does not start with the expected header.
    """
    header = re.compile(
        r"CREATE\s+TABLE\s+`" + re.escape(source_name) + r"`", re.IGNORECASE
    )
    rewritten, count = header.subn(
        lambda _m: f"CREATE TABLE {qualified_name(target)}", create_sql, count=1
    )
    if count == 0:
        raise SchemaError(f"Unexpected CREATE statement for table {source_name}.")
    return _AUTO_INCREMENT_RE.sub("", rewritten)


def index_is_embedded(index_name: str, create_sql_lower: str) -> bool:
    """True if the lower-cased CREATE statement already declares *index_name*."""
    name = index_name.lower()
    needles = (
        f"key `{name}`",
        f"index `{name}`",
        f"unique key `{name}`",
        f"unique index `{name}`",
    )
    return any(needle in create_sql_lower for needle in needles)


def build_add_index(target: TableRef, index: IndexDescriptor) -> str:
    kind = "UNIQUE INDEX" if index.unique else "INDEX"
    return (
        f"ALTER TABLE {qualified_name(target)} ADD {kind} "
        f"{quote_identifier(index.name)} ({column_list(index.columns)})"
    )


def copy_indexes(
    source_conn: Connection,
    target_conn: Connection,
    source: TableRef,
    target: TableRef,
    create_sql: str,
    result: StructureResult,
) -> None:
    """Re-create every non-PRIMARY source index missing from *create_sql*."""
    indexes = list_indexes(source_conn, source)
    if not indexes:
        log.info("No indexes found on %s", source)
        return

    lowered = create_sql.lower()
    for index in indexes:
        if index.is_primary or index_is_embedded(index.name, lowered):
            result.indexes_skipped += 1
            continue
        try:
            target_conn.execute_update(build_add_index(target, index))
            result.indexes_created += 1
            log.info(
                "Created %sindex %s on %s", "unique " if index.unique else "", index.name, target
            )
        except DatabaseError as exc:
            result.indexes_failed += 1
            log.warning("Failed to create index %s on %s: %s", index.name, target, exc)

    if result.indexes_created:
        log.info("Created %d additional index(es) on %s", result.indexes_created, target)
    else:
        log.info("All indexes were already included in the table structure")


def replicate_structure(
    source_conn: Connection,
    target_conn: Connection,
    source_ref: TableRef,
    target_ref: TableRef,
) -> StructureResult:
    """
    Create *target_ref* on the target with the structure of *source_ref*.

    Returns:
        :class:`StructureResult` whose ``actual_name`` is the name the
        target server actually stored (it may have folded the case).

    Raises:
        SchemaError:        If the source table does not exist.
        AlreadyExistsError: If the target table already exists.
        DatabaseError:      If the CREATE statement fails.
    """
    source = resolve_table(source_conn, source_ref)
    log.info("Copying table structure from %s to %s", source, target_ref)

    existing = find_table(target_conn, target_ref)
    if existing is not None:
        raise AlreadyExistsError(
            f"Target table {existing} already exists. Use sync-table to sync data "
            f"or copy-data to copy data into the existing table."
        )

    create_sql = show_create_table(source_conn, source)
    rewritten = rewrite_create_statement(create_sql, source.name, target_ref)

    target_conn.execute_update(f"SET SESSION sql_mode = '{_STRICT_SQL_MODE}'")
    log.info("Creating table %s in target database", target_ref)
    log.debug("CREATE statement:\n%s", rewritten)
    target_conn.execute_update(rewritten)

    result = StructureResult(requested_name=target_ref.name, actual_name=target_ref.name)
    copy_indexes(source_conn, target_conn, source, target_ref, create_sql, result)

    actual = find_table(target_conn, target_ref)
    if actual is None:
        log.error("Table %s not found after CREATE; keeping requested name", target_ref)
    elif actual != target_ref.name:
        result.actual_name = actual
        setting = _lower_case_setting(target_conn)
        log.info(
            "Table %s created as '%s' (lower_case_table_names=%s)",
            target_ref.name, actual, setting if setting is not None else "?",
        )
    log.info("Structure copy finished: %s", result)
    return result


def _lower_case_setting(conn: Connection) -> str | None:
    try:
        return lower_case_table_names(conn)
    except DatabaseError as exc:
        log.debug("Could not read lower_case_table_names: %s", exc)
        return None
