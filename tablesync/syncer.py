"""
tablesync/syncer.py
-------------------
Delta sync: copy only the source rows the target is missing.

Design Decisions:
    * Missing rows are found by primary key. Three strategies exist:

      - ``empty``:   target has no rows, so every source row is missing;
                     pages are read with ``ORDER BY pk LIMIT/OFFSET`` and
                     no JOIN is issued.
      - ``join``:    both databases live on one server; a LEFT JOIN from
                     the schema-qualified source to the schema-qualified
                     target keeps rows whose target key is NULL.
      - ``compare``: the databases are on different servers and cannot be
                     joined; source pages are read by keyset
                     (``WHERE (pk) > (last)``) and the target is asked
                     which of those keys it already holds. Keys are compared the way
                     the target key column's collation compares them.

    * The missing-row query is re-run for every batch. Rows inserted by
      the previous batch drop out of the next result on their own; a
      precomputed snapshot would miss or duplicate rows under LIMIT
      pagination.
    * Tables without a primary key fall back to one full-row existence
      query per source row (``<=>`` on every column). This is O(n)
      queries and only used when no key is declared.
    * Each batch insert is its own transaction and batches are separated
      by a short pause to bound load on the target.
    * Progress is observational only; nothing is persisted, and re-running
      the sync is the recovery path after an interruption.
"""
from __future__ import annotations

import time
import unicodedata
from typing import Any, Callable, Sequence

from config import CONFIG
from logger import get_logger
from tablesync.database import Connection
from tablesync.inserter import chunked, insert_rows
from tablesync.introspect import (
    count_rows,
    current_database,
    describe_table,
    find_table,
    resolve_table,
)
from tablesync.models import (
    ProgressCallback,
    Row,
    SyncCursor,
    SyncResult,
    TableDescription,
    TableRef,
)
from tablesync.sql import (
    build_join_condition,
    build_key_tuple,
    build_null_safe_match,
    build_order_by,
    build_select_all,
    column_list,
    placeholders,
    qualified_name,
    quote_identifier,
)
from tablesync.structure import replicate_structure

log = get_logger(__name__)

STRATEGY_EMPTY = "empty"
STRATEGY_JOIN = "join"
STRATEGY_COMPARE = "compare"
STRATEGY_FULL_ROW = "full-row"


def _exact(value: Any) -> Any:
    return value


def collation_folder(collation: str | None) -> Callable[[Any], Any]:
    """
    Return a function mapping a key value to what *collation* compares.

    Binary and ``_cs`` collations compare strings exactly. ``_ci``
    collations ignore case, and also accents unless they are ``_as_ci``.
    Collations older than the 0900 family are PAD SPACE and ignore
    trailing spaces. Non-string values always compare exactly.
    """
    name = (collation or "").lower()
    ignore_case = name.endswith("_ci")
    ignore_accents = ignore_case and "_as_" not in name
    pad_space = bool(name) and "_0900_" not in name and name != "binary"
    if not (ignore_case or pad_space):
        return _exact

    def fold(value: Any) -> Any:
        if not isinstance(value, str):
            return value
        if pad_space:
            value = value.rstrip(" ")
        if ignore_accents:
            value = "".join(
                ch for ch in unicodedata.normalize("NFKD", value) if not unicodedata.combining(ch)
            )
        return value.casefold() if ignore_case else value

    return fold


def _key_of(
    row: Row, key_columns: Sequence[str], folders: Sequence[Callable[[Any], Any]]
) -> tuple[Any, ...]:
    return tuple(fold(row[c]) for c, fold in zip(key_columns, folders))


class DeltaSyncer:
    """
    Copies missing rows of one table from source to target.

    Args:
        source_conn:   Connection to the source database.
        target_conn:   Connection to the target database.
        shared_server: True when both databases live on one MySQL server,
                       enabling the cross-schema ``join`` strategy.
        batch_size:    Rows per batch (default from config, 1000).
        batch_delay:   Seconds to pause between batches (default 0.01).
        progress_cb:   Optional ``(message, current, total)`` callback.
        sleep:         Injectable sleep function.

    Example::

        syncer = DeltaSyncer(src, tgt, shared_server=False)
        result = syncer.sync_table(TableRef("orders"))
    """

    def __init__(
        self,
        source_conn: Connection,
        target_conn: Connection,
        shared_server: bool = False,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        progress_cb: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._src = source_conn
        self._tgt = target_conn
        self._shared_server = shared_server
        self._batch_size = batch_size or CONFIG.sync.batch_size
        self._batch_delay = CONFIG.sync.batch_delay if batch_delay is None else batch_delay
        self._progress_cb = progress_cb or self._default_progress
        self._sleep = sleep

    @staticmethod
    def _default_progress(msg: str, current: int, total: int) -> None:
        log.debug("%s (%d/%s)", msg, current, total if total else "?")

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def sync_table(self, table: TableRef) -> SyncResult:
        """
        Bring the target copy of *table* up to date with the source.

        Creates the target table through structure replication when it is
        absent, then picks a strategy (see module docstring).

        Raises:
            SchemaError:      If the source table does not exist.
            TransactionError: If a batch insert fails; earlier batches stay
                              committed and a re-run resumes the delta.
        """
        log.info("Starting table sync: %s (source → target, missing rows only)", table)
        source = resolve_table(self._src, table)

        target_name = find_table(self._tgt, table)
        if target_name is None:
            log.info("Target table %s not found. Creating table structure first...", table)
            structure = replicate_structure(self._src, self._tgt, source, table)
            target_name = structure.actual_name
        target = table.with_name(target_name)

        description = describe_table(self._src, source)
        if not description.has_primary_key:
            log.warning(
                "No primary key found in %s. Sync will use full column comparison.", source
            )
            return self.sync_table_without_primary_key(source, target, description)

        log.info("Using primary key columns for sync: %s", ", ".join(description.primary_key))

        source_count = count_rows(self._src, source)
        target_count = count_rows(self._tgt, target)
        log.debug("Source %s has %d rows; target %s has %d rows",
                  source, source_count, target, target_count)

        if target_count == 0:
            return self._sync_into_empty(source, target, description, source_count)
        if self._shared_server:
            return self._sync_by_join(source, target, description)
        return self._sync_by_compare(source, target, description, source_count, target_count)

    def sync_table_without_primary_key(
        self,
        source: TableRef,
        target: TableRef,
        description: TableDescription,
    ) -> SyncResult:
        """
        Full-row comparison sync for tables without a primary key.

        Every source row costs one existence query against the target.
        Duplicate source rows all match the same target row, so which
        duplicates get copied is arbitrary; this is kept as-is.
        """
        log.info("Performing full column comparison sync for %s", source)
        columns = description.column_names

        rows, _ = self._src.execute(build_select_all(source))
        if not rows:
            log.info("No records found in source table %s", source)
            return SyncResult(strategy=STRATEGY_FULL_ROW)

        log.info("Checking %d records against target table...", len(rows))
        exists_sql = (
            f"SELECT COUNT(*) AS count FROM {qualified_name(target)} "
            f"WHERE {build_null_safe_match(columns)}"
        )
        to_sync: list[Row] = []
        for checked, row in enumerate(rows, start=1):
            found = self._tgt.scalar(exists_sql, [row[c] for c in columns])
            if not found:
                to_sync.append(row)
            if checked % 1000 == 0:
                log.info("Checked %d/%d records...", checked, len(rows))

        if not to_sync:
            log.info("Table %s is already up to date. No records to sync.", target)
            return SyncResult(strategy=STRATEGY_FULL_ROW)

        cursor = SyncCursor(batch_size=self._batch_size, total_missing=len(to_sync))
        log.info("Found %d records to sync in %d batch(es) of %d",
                 len(to_sync), cursor.total_batches, self._batch_size)
        for batch in chunked(to_sync, self._batch_size):
            cursor.batch_index += 1
            self._insert_batch(target, columns, batch, cursor)
            self._pause()

        return self._finish(source, target, cursor, STRATEGY_FULL_ROW)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _sync_into_empty(
        self,
        source: TableRef,
        target: TableRef,
        description: TableDescription,
        source_count: int,
    ) -> SyncResult:
        if source_count == 0:
            log.info("Source %s is empty. Nothing to sync.", source)
            return SyncResult(strategy=STRATEGY_EMPTY)

        log.info("Target table is empty. Will sync all %d records from source.", source_count)
        columns = description.column_names
        cursor = SyncCursor(batch_size=self._batch_size, total_missing=source_count)
        order_by = build_order_by(description.primary_key)

        offset = 0
        while offset < source_count:
            cursor.batch_index += 1
            rows, _ = self._src.execute(
                f"SELECT * FROM {qualified_name(source)} {order_by} "
                f"LIMIT {self._batch_size} OFFSET {offset}"
            )
            if not rows:
                log.info("[BATCH %d] No more records to sync.", cursor.batch_index)
                cursor.batch_index -= 1
                break
            self._insert_batch(target, columns, rows, cursor)
            offset += len(rows)
            self._pause()

        return self._finish(source, target, cursor, STRATEGY_EMPTY)

    def _sync_by_join(
        self,
        source: TableRef,
        target: TableRef,
        description: TableDescription,
    ) -> SyncResult:
        pk = description.primary_key
        s_ref = source if source.schema else source.with_schema(current_database(self._src))
        t_ref = target if target.schema else target.with_schema(current_database(self._tgt))

        missing_from = (
            f"FROM {qualified_name(s_ref)} s "
            f"LEFT JOIN {qualified_name(t_ref)} t ON {build_join_condition(pk)} "
            f"WHERE t.{quote_identifier(pk[0])} IS NULL"
        )
        total = int(self._src.scalar(f"SELECT COUNT(*) AS count {missing_from}") or 0)
        if total == 0:
            log.info("Table %s is already up to date. No records to sync.", target)
            return SyncResult(strategy=STRATEGY_JOIN)

        log.info("Found %d records to sync from %s to %s", total, s_ref, t_ref)
        columns = description.column_names
        cursor = SyncCursor(batch_size=self._batch_size, total_missing=total)
        batch_sql = (
            f"SELECT s.* {missing_from} {build_order_by(pk, 's')} LIMIT {self._batch_size}"
        )

        fetched = 0
        while fetched < total:
            cursor.batch_index += 1
            log.debug("Batch %d query: %.500s", cursor.batch_index, batch_sql)
            rows, _ = self._src.execute(batch_sql)
            if not rows:
                log.info("[BATCH %d] No more records to sync.", cursor.batch_index)
                cursor.batch_index -= 1
                break
            inserted = self._insert_batch(target, columns, rows, cursor)
            if inserted == 0:
                log.warning(
                    "Batch %d inserted 0 records. This might indicate a data issue.",
                    cursor.batch_index,
                )
            fetched += len(rows)
            self._pause()

        return self._finish(source, target, cursor, STRATEGY_JOIN)

    def _sync_by_compare(
        self,
        source: TableRef,
        target: TableRef,
        description: TableDescription,
        source_count: int,
        target_count: int,
    ) -> SyncResult:
        pk = description.primary_key
        columns = description.column_names
        # Upper bound on pages; the exact missing count is only known at the end.
        cursor = SyncCursor(
            batch_size=self._batch_size,
            total_missing=max(source_count - target_count, 0),
        )
        pages = -(-source_count // self._batch_size)
        log.info(
            "Comparing %d source keys against %d target rows in up to %d page(s)",
            source_count, target_count, pages,
        )

        folders = self._key_folders(target, pk)
        order_by = build_order_by(pk)
        last_key: list[Any] | None = None
        page = 0
        while True:
            page += 1
            if last_key is None:
                sql = f"SELECT * FROM {qualified_name(source)} {order_by} LIMIT {self._batch_size}"
                params: list[Any] | None = None
            else:
                sql = (
                    f"SELECT * FROM {qualified_name(source)} "
                    f"WHERE {build_key_tuple(pk)} > ({placeholders(len(pk))}) "
                    f"{order_by} LIMIT {self._batch_size}"
                )
                params = last_key
            rows, _ = self._src.execute(sql, params)
            if not rows:
                break

            existing = self._existing_keys(target, pk, rows, folders)
            missing = [r for r in rows if _key_of(r, pk, folders) not in existing]
            log.debug("Page %d/%d: %d rows, %d missing", page, pages, len(rows), len(missing))
            if missing:
                cursor.batch_index += 1
                self._insert_batch(target, columns, missing, cursor)

            last_key = [rows[-1][c] for c in pk]
            if len(rows) < self._batch_size:
                break
            self._pause()

        if cursor.synced_rows == 0:
            log.info("Table %s is already up to date. No records to sync.", target)
        return self._finish(source, target, cursor, STRATEGY_COMPARE)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key_folders(self, target: TableRef, pk: Sequence[str]) -> list[Callable[[Any], Any]]:
        """Key comparison follows the collation of each target key column."""
        description = describe_table(self._tgt, target)
        folders = []
        for name in pk:
            column = description.column(name)
            folders.append(collation_folder(column.collation if column else None))
        return folders

    def _existing_keys(
        self,
        target: TableRef,
        pk: Sequence[str],
        rows: Sequence[Row],
        folders: Sequence[Callable[[Any], Any]],
    ) -> set[tuple[Any, ...]]:
        """Return which primary-key tuples of *rows* the target already holds."""
        group = f"({placeholders(len(pk))})"
        sql = (
            f"SELECT {column_list(pk)} FROM {qualified_name(target)} "
            f"WHERE {build_key_tuple(pk)} IN ({', '.join([group] * len(rows))})"
        )
        params = [row[c] for row in rows for c in pk]
        found, _ = self._tgt.execute(sql, params)
        return {_key_of(r, pk, folders) for r in found}

    def _insert_batch(
        self,
        target: TableRef,
        columns: Sequence[str],
        rows: Sequence[Row],
        cursor: SyncCursor,
    ) -> int:
        total_batches = max(cursor.total_batches, cursor.batch_index)
        log.info("[BATCH %d/%d] Syncing %d records...", cursor.batch_index, total_batches, len(rows))
        result = insert_rows(self._tgt, target, columns, rows, self._batch_size)
        cursor.synced_rows += result.copied_rows
        log.info(
            "[BATCH %d] Synced %d records (Total: %d/%d)",
            cursor.batch_index, result.copied_rows, cursor.synced_rows, cursor.total_missing,
        )
        self._progress_cb(f"Syncing → {target}", cursor.synced_rows, cursor.total_missing)
        return result.copied_rows

    def _pause(self) -> None:
        if self._batch_delay > 0:
            self._sleep(self._batch_delay)

    @staticmethod
    def _finish(
        source: TableRef, target: TableRef, cursor: SyncCursor, strategy: str
    ) -> SyncResult:
        if cursor.synced_rows:
            log.info(
                "Table sync completed! Synced %d records from %s to %s",
                cursor.synced_rows, source, target,
            )
        return SyncResult(
            synced_rows=cursor.synced_rows,
            total_batches=cursor.batch_index,
            strategy=strategy,
        )


def sync_table(
    source_conn: Connection,
    target_conn: Connection,
    table: TableRef,
    *,
    shared_server: bool = False,
    progress_cb: ProgressCallback | None = None,
) -> SyncResult:
    """Functional wrapper around :meth:`DeltaSyncer.sync_table`."""
    syncer = DeltaSyncer(
        source_conn, target_conn, shared_server=shared_server, progress_cb=progress_cb
    )
    return syncer.sync_table(table)
