"""
tablesync/engine.py
-------------------
Operation facade: one method per user-facing command.

Design Decisions:
    * The engine is a plain class holding an opened :class:`DatabaseContext`;
      no global state. Every operation acquires its own source/target
      connection pair and releases it before returning, whatever happens.
    * Progress is reported via a callback (``progress_cb``) so the CLI, or
      any other caller, can display updates without coupling this module
      to a front-end.
    * Errors propagate as :mod:`tablesync.errors` exceptions; the caller
      decides how to report them.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from logger import get_logger
from tablesync.backup import backup_query, default_backup_filename, restore_csv
from tablesync.copier import copy_rows
from tablesync.database import Connection, DatabaseContext
from tablesync.errors import TableSyncError, ValidationError
from tablesync.materializer import materialize
from tablesync.models import (
    BackupResult,
    CopyResult,
    ProgressCallback,
    RestoreResult,
    StructureResult,
    SyncResult,
    TableRef,
)
from tablesync.structure import replicate_structure
from tablesync.syncer import DeltaSyncer

log = get_logger(__name__)

SIDES = ("source", "target")


class TableSync:
    """
    Runs table operations between the source and target databases.

    Args:
        ctx:         Opened :class:`DatabaseContext`.
        progress_cb: Optional callback ``(message, current, total)``.

    Example::

        with DatabaseContext.from_config() as ctx:
            engine = TableSync(ctx)
            engine.copy_table("users", "users_copy", limit=100)
    """

    def __init__(self, ctx: DatabaseContext, progress_cb: ProgressCallback | None = None) -> None:
        self._ctx = ctx
        self._progress_cb = progress_cb

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def copy_structure(self, source_table: str, target_table: str) -> StructureResult:
        with self._ctx.connections() as (src, tgt):
            return replicate_structure(
                src, tgt, TableRef.parse(source_table), TableRef.parse(target_table)
            )

    def copy_data(
        self, source_table: str, target_table: str, limit: int | None = None
    ) -> CopyResult:
        with self._ctx.connections() as (src, tgt):
            return copy_rows(
                src,
                tgt,
                TableRef.parse(source_table),
                TableRef.parse(target_table),
                limit=limit,
                progress_cb=self._progress_cb,
            )

    def copy_table(
        self, source_table: str, target_table: str, limit: int | None = None
    ) -> tuple[StructureResult, CopyResult]:
        """Create the target from the source structure, then copy the data into it."""
        source = TableRef.parse(source_table)
        target = TableRef.parse(target_table)
        log.info("Starting complete table copy: %s → %s", source, target)
        with self._ctx.connections() as (src, tgt):
            structure = replicate_structure(src, tgt, source, target)
            copied = copy_rows(
                src,
                tgt,
                source,
                target.with_name(structure.actual_name),
                limit=limit,
                progress_cb=self._progress_cb,
            )
        log.info("Complete table copy finished: %s", copied)
        return structure, copied

    def custom_query(self, select_query: str, target_table: str) -> CopyResult:
        with self._ctx.connections() as (src, tgt):
            return materialize(
                src, tgt, select_query, TableRef.parse(target_table),
                progress_cb=self._progress_cb,
            )

    def sync_table(self, table: str) -> SyncResult:
        with self._ctx.connections() as (src, tgt):
            syncer = DeltaSyncer(
                src,
                tgt,
                shared_server=self._ctx.shares_server,
                progress_cb=self._progress_cb,
            )
            return syncer.sync_table(TableRef.parse(table))

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def backup(self, side: str, select_query: str, path: str | None = None) -> BackupResult:
        with self._connection(side) as conn:
            return backup_query(conn, select_query, path or default_backup_filename())

    def restore(self, side: str, path: str, table: str) -> RestoreResult:
        with self._connection(side) as conn:
            return restore_csv(conn, path, TableRef.parse(table))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def check_connections(self) -> dict[str, tuple[bool, str]]:
        """
        Ping each database and run ``SELECT 1``.

        Returns:
            ``{"source": (ok, message), "target": (ok, message)}``; never raises.
        """
        report: dict[str, tuple[bool, str]] = {}
        for side in SIDES:
            pool = self._ctx.source if side == "source" else self._ctx.target
            try:
                with self._connection(side) as conn:
                    conn.ping()
                    conn.scalar("SELECT 1")
                report[side] = (True, f"connected to {pool.config.address}")
                log.info("%s database connection OK (%s)", side, pool.config.address)
            except TableSyncError as exc:
                report[side] = (False, str(exc))
                log.error("%s database connection failed: %s", side, exc)
        return report

    @contextmanager
    def _connection(self, side: str) -> Iterator[Connection]:
        if side not in SIDES:
            raise ValidationError(f"Database must be 'source' or 'target', got {side!r}.")
        pool = self._ctx.source if side == "source" else self._ctx.target
        conn = pool.acquire()
        try:
            yield conn
        finally:
            conn.release()
