"""
tablesync/copier.py
-------------------
Full-table copy into an existing, empty target table.

A non-empty target is left untouched and reported through
``CopyResult.skipped_rows``, which makes a repeated ``copy-data`` a no-op
rather than a duplicate load.
"""
from __future__ import annotations

from config import CONFIG
from logger import get_logger
from tablesync.database import Connection
from tablesync.errors import SchemaError, ValidationError
from tablesync.inserter import insert_rows
from tablesync.introspect import count_rows, find_table, resolve_table
from tablesync.models import CopyResult, ProgressCallback, TableRef
from tablesync.sql import build_select_all

log = get_logger(__name__)


def copy_rows(
    source_conn: Connection,
    target_conn: Connection,
    source_ref: TableRef,
    target_ref: TableRef,
    limit: int | None = None,
    chunk_size: int | None = None,
    progress_cb: ProgressCallback | None = None,
) -> CopyResult:
    """
    Copy all rows (or the first *limit*) of *source_ref* into *target_ref*.

    Rows are read in one fetch, then written in chunk-sized transactions.
    The INSERT column list comes from the fetch's field metadata and is
    reused positionally for every row.

    Raises:
        ValidationError:  If *limit* is not a positive integer.
        SchemaError:      If either table does not exist.
        TransactionError: If a chunk fails (earlier chunks stay committed).
    """
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        raise ValidationError(f"Row limit must be a positive integer, got {limit!r}.")

    source = resolve_table(source_conn, source_ref)
    log.info("Copying data from %s to %s", source, target_ref)

    actual_target = find_table(target_conn, target_ref)
    if actual_target is None:
        raise SchemaError(
            f"Target table {target_ref} does not exist. "
            f"Use copy-table to create the structure first."
        )
    target = target_ref.with_name(actual_target)

    existing = count_rows(target_conn, target)
    if existing > 0:
        log.info(
            "Target table %s has %d existing rows; copy-data only fills empty tables. "
            "Use sync-table to sync data into existing tables.",
            target, existing,
        )
        return CopyResult(copied_rows=0, skipped_rows=existing)

    if limit is not None:
        log.info("Limiting copy to %d rows", limit)
    rows, fields = source_conn.execute(build_select_all(source, limit))
    if not rows:
        log.info("No data found in %s", source)
        return CopyResult()

    log.info("Found %d rows to copy from %s", len(rows), source)
    columns = [f.name for f in fields]
    result = insert_rows(
        target_conn,
        target,
        columns,
        rows,
        chunk_size or CONFIG.sync.chunk_size,
        progress_cb=progress_cb,
        total=len(rows),
    )
    log.info("Copied %d rows from %s to %s", result.copied_rows, source, target)
    return result
