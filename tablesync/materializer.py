"""
tablesync/materializer.py
-------------------------
Runs an arbitrary SELECT on the source and lands its result set in a
target table, creating that table from the result's field metadata when
it does not exist yet.

Column types for a new table come from the declared types of the query
result (see ``describe_query``). When the source session may not create
temporary tables, the wire metadata is used and sizes fall back to the
rendering defaults.
"""
from __future__ import annotations

from config import CONFIG
from logger import get_logger
from tablesync.database import Connection
from tablesync.errors import DatabaseConnectionError, DatabaseError
from tablesync.inserter import insert_rows
from tablesync.introspect import describe_query, find_table
from tablesync.models import CopyResult, FieldDescriptor, ProgressCallback, TableRef
from tablesync.sql import require_select, validate_identifier
from tablesync.type_mapping import build_create_table

log = get_logger(__name__)


def _declared_shape(
    conn: Connection, query: str, fields: list[FieldDescriptor]
) -> list[FieldDescriptor]:
    try:
        shape = describe_query(conn, query)
    except DatabaseConnectionError:
        raise
    except DatabaseError as exc:
        log.warning("Could not read declared column types (%s); using result metadata", exc)
        return fields
    if [f.name for f in shape] != [f.name for f in fields]:
        log.warning("Declared columns do not line up with the result set; using result metadata")
        return fields
    return shape


def materialize(
    source_conn: Connection,
    target_conn: Connection,
    select_query: str,
    target_ref: TableRef,
    chunk_size: int | None = None,
    progress_cb: ProgressCallback | None = None,
) -> CopyResult:
    """
    Execute *select_query* on the source and insert the rows into *target_ref*.

    An existing target is appended to as-is; its columns must match the
    query's result columns by name.

    Raises:
        ValidationError:  If the query is not a SELECT, or a result column
                          name is not a legal identifier.
        TransactionError: If a chunk insert fails.
    """
    query = require_select(select_query)
    log.info("Executing custom query and inserting results into %s", target_ref)
    log.debug("Custom query: %.500s", query)

    rows, fields = source_conn.execute(query)
    if not rows:
        log.info("Custom query returned no results")
        return CopyResult()

    columns = [validate_identifier(f.name) for f in fields]
    log.info("Query returned %d rows with %d column(s)", len(rows), len(columns))

    actual = find_table(target_conn, target_ref)
    if actual is None:
        log.info("Target table %s does not exist. Creating table structure...", target_ref)
        shape = _declared_shape(source_conn, query, fields)
        create_sql = build_create_table(target_ref, shape, charset=CONFIG.target.charset)
        log.debug("CREATE statement:\n%s", create_sql)
        target_conn.execute_update(create_sql)
        actual = find_table(target_conn, target_ref) or target_ref.name
        if actual != target_ref.name:
            log.info("Table %s created as '%s'", target_ref.name, actual)
        else:
            log.info("Created table %s", actual)
    target = target_ref.with_name(actual)

    result = insert_rows(
        target_conn,
        target,
        columns,
        rows,
        chunk_size or CONFIG.sync.chunk_size,
        progress_cb=progress_cb,
        total=len(rows),
    )
    log.info("Successfully inserted %d rows into %s", result.copied_rows, target)
    return result
