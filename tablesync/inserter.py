"""
tablesync/inserter.py
---------------------
The one transactional-insert primitive every writer shares.

Each chunk becomes one multi-row ``INSERT`` wrapped in its own
transaction. A failing chunk is rolled back and re-raised as
:class:`TransactionError`, which aborts the remaining chunks; chunks
committed before it stay committed.
"""
from __future__ import annotations

from itertools import islice
from typing import Iterable, Iterator, Sequence

from logger import get_logger
from tablesync.database import Connection
from tablesync.errors import DatabaseError, TransactionError
from tablesync.models import CopyResult, ProgressCallback, Row, TableRef
from tablesync.sql import build_insert, max_rows_per_statement

log = get_logger(__name__)


def chunked(rows: Iterable[Row], size: int) -> Iterator[list[Row]]:
    """Yield successive lists of at most *size* rows, consuming *rows* lazily."""
    iterator = iter(rows)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def insert_chunk(
    conn: Connection,
    ref: TableRef,
    columns: Sequence[str],
    rows: Sequence[Row],
) -> int:
    """
    Insert *rows* as one statement inside one transaction.

    Values are bound positionally in *columns* order.

    Returns:
        Number of rows the server reports as inserted.

    Raises:
        TransactionError: If the insert or the commit fails; the chunk has
                          been rolled back.
    """
    if not rows:
        return 0
    sql = build_insert(ref, columns, len(rows))
    params = [row[col] for row in rows for col in columns]
    try:
        with conn.transaction():
            return conn.execute_update(sql, params)
    except DatabaseError as exc:
        raise TransactionError(f"Insert into {ref} failed ({len(rows)} rows): {exc}") from exc


def insert_rows(
    conn: Connection,
    ref: TableRef,
    columns: Sequence[str],
    rows: Iterable[Row],
    chunk_size: int,
    progress_cb: ProgressCallback | None = None,
    total: int = 0,
) -> CopyResult:
    """
    Write *rows* to *ref* in chunk-sized transactions, in order.

    The effective chunk is capped so ``rows × columns`` never exceeds the
    server's placeholder limit.
    """
    per_chunk = max_rows_per_statement(len(columns), chunk_size)
    result = CopyResult()
    for chunk in chunked(rows, per_chunk):
        inserted = insert_chunk(conn, ref, columns, chunk)
        result.chunks += 1
        result.copied_rows += inserted
        log.info("Inserted chunk %d into %s: %d rows", result.chunks, ref, inserted)
        if progress_cb is not None:
            progress_cb(f"Copying → {ref}", result.copied_rows, total)
    return result
