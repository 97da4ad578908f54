"""
tablesync/database.py
---------------------
Connection pools and the query interface every component talks to.

Design Decisions:
    * Two ``MySQLConnectionPool`` instances (source, target) live inside an
      explicitly constructed :class:`DatabaseContext` instead of module
      globals; ``open()`` creates and ping-validates both, ``close()``
      tears them down.
    * A :class:`Connection` wraps one pooled connection and exposes the
      small surface the engine needs: ``execute`` returning rows plus
      field metadata, a single-pass ``stream`` for large reads, explicit
      transactions, and ``release``.
    * Pooled connections run with ``autocommit=True`` so every read sees
      rows committed by the other connection; writes that need atomicity
      open an explicit transaction.
    * Pool creation is retried with linear back-off for transient errors.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Callable, Generator, Iterator, Sequence

import mysql.connector
from mysql.connector.constants import FieldFlag, FieldType
from mysql.connector.pooling import MySQLConnectionPool

from config import CONFIG, DatabaseConfig
from logger import get_logger
from tablesync.errors import DatabaseConnectionError, DatabaseError
from tablesync.models import FieldDescriptor, Row

log = get_logger(__name__)

PoolFactory = Callable[..., Any]

_CONNECTION_ERRORS = (
    mysql.connector.errors.InterfaceError,
    mysql.connector.errors.OperationalError,
    mysql.connector.errors.PoolError,
)


def field_from_description(desc: Sequence[Any]) -> FieldDescriptor:
    """
    Convert one DB-API ``cursor.description`` entry into a FieldDescriptor.

    mysql.connector reports ``(name, type_code, display_size, internal_size,
    precision, scale, null_ok, flags, ...)`` but leaves the four size slots
    as None (the protocol parser drops the column length). Declared
    lengths therefore come from :func:`tablesync.introspect.describe_query`;
    the slots are still honoured when a driver does fill them.
    """
    name = desc[0]
    if isinstance(name, (bytes, bytearray)):
        name = name.decode("utf-8")
    type_code = desc[1]
    type_name = FieldType.get_info(type_code) if isinstance(type_code, int) else None

    def _int_or_none(idx: int) -> int | None:
        value = desc[idx] if len(desc) > idx else None
        return value if isinstance(value, int) and value > 0 else None

    flags = desc[7] if len(desc) > 7 else None
    nullable: bool | None = None
    if isinstance(flags, int):
        nullable = not (flags & FieldFlag.NOT_NULL)

    return FieldDescriptor(
        name=name,
        type_name=str(type_name or type_code or "VAR_STRING"),
        length=_int_or_none(3),
        precision=_int_or_none(4),
        scale=desc[5] if len(desc) > 5 and isinstance(desc[5], int) else None,
        nullable=nullable,
    )


class Connection:
    """
    One pooled connection: the "Relational Source/Target" interface.

    Example::

        with context.connections() as (src, tgt):
            rows, fields = src.execute("SELECT * FROM `users` LIMIT %s", (10,))
            with tgt.transaction():
                tgt.execute_update(insert_sql, params)
    """

    def __init__(self, raw: Any, label: str) -> None:
        self._raw = raw
        self.label = label

    def __repr__(self) -> str:
        return f"Connection({self.label})"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        if self._raw is None:
            raise DatabaseConnectionError(f"[{self.label}] connection already released.")
        cursor = self._raw.cursor(dictionary=True)
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def _driver_errors(self, sql: str) -> Iterator[None]:
        """Translate mysql.connector errors raised while running *sql*."""
        try:
            yield
        except _CONNECTION_ERRORS as exc:
            log.error("[%s] connection error: %s", self.label, exc)
            raise DatabaseConnectionError(f"[{self.label}] {exc}") from exc
        except mysql.connector.Error as exc:
            log.error("[%s] SQL execution error: %s | SQL: %.500s", self.label, exc, sql)
            raise DatabaseError(f"[{self.label}] {exc}") from exc

    def execute(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> tuple[list[Row], list[FieldDescriptor]]:
        """
        Execute a statement and return ``(rows, fields)``.

        Rows are dicts in column order; statements without a result set
        return two empty lists.

        Raises:
            DatabaseConnectionError: If the connection dropped.
            DatabaseError: On any other MySQL execution error.
        """
        with self._cursor() as cursor, self._driver_errors(sql):
            cursor.execute(sql, tuple(params) if params is not None else None)
            if not cursor.description:
                return [], []
            fields = [field_from_description(d) for d in cursor.description]
            rows = cursor.fetchall() or []
            return [dict(r) for r in rows], fields

    def stream(
        self, sql: str, params: Sequence[Any] | None = None, batch_size: int = 1000
    ) -> Iterator[tuple[list[Row], list[FieldDescriptor]]]:
        """
        Run one query on an unbuffered cursor and yield ``(rows, fields)`` batches.

        The result is read in a single pass, so every row arrives exactly
        once without the query being re-run per page. The connection must
        not run other statements until the generator is exhausted or closed;
        unread rows are discarded on close (``consume_results``).
        """
        if self._raw is None:
            raise DatabaseConnectionError(f"[{self.label}] connection already released.")
        cursor = self._raw.cursor(dictionary=True, buffered=False)
        try:
            with self._driver_errors(sql):
                cursor.execute(sql, tuple(params) if params is not None else None)
                if not cursor.description:
                    return
                fields = [field_from_description(d) for d in cursor.description]
                while True:
                    rows = cursor.fetchmany(batch_size)
                    if not rows:
                        break
                    yield [dict(r) for r in rows], fields
        finally:
            cursor.close()

    def execute_update(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Execute a DML/DDL statement and return the affected row count."""
        with self._cursor() as cursor, self._driver_errors(sql):
            cursor.execute(sql, tuple(params) if params is not None else None)
            return max(cursor.rowcount, 0)

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """Return the first column of the first row, or None."""
        rows, _ = self.execute(sql, params)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self) -> None:
        try:
            self._raw.start_transaction()
        except mysql.connector.Error as exc:
            raise DatabaseError(f"[{self.label}] could not start transaction: {exc}") from exc

    def commit(self) -> None:
        try:
            self._raw.commit()
        except mysql.connector.Error as exc:
            raise DatabaseError(f"[{self.label}] commit failed: {exc}") from exc

    def rollback(self) -> None:
        try:
            self._raw.rollback()
            log.debug("[%s] transaction rolled back.", self.label)
        except mysql.connector.Error as exc:
            log.warning("[%s] rollback failed: %s", self.label, exc)

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Explicit transaction: commits on clean exit, rolls back on any exception.
        """
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> None:
        try:
            self._raw.ping(reconnect=False)
        except mysql.connector.Error as exc:
            raise DatabaseConnectionError(f"[{self.label}] ping failed: {exc}") from exc

    def release(self) -> None:
        """Return the connection to its pool. Safe to call twice."""
        if self._raw is None:
            return
        try:
            self._raw.close()
        except mysql.connector.Error as exc:
            log.warning("[%s] error releasing connection: %s", self.label, exc)
        finally:
            self._raw = None


class DatabasePool:
    """
    A named, lazily validated connection pool for one database.

    Args:
        label:        "source" or "target"; used in logs and pool names.
        config:       Connection settings.
        pool_factory: Callable building the underlying pool (injectable
                      for tests); defaults to ``MySQLConnectionPool``.
        max_retries:  Pool creation attempts before giving up.
        retry_delay:  Seconds multiplied by the attempt number between tries.
    """

    def __init__(
        self,
        label: str,
        config: DatabaseConfig,
        pool_factory: PoolFactory = MySQLConnectionPool,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.label = label
        self.config = config
        self._pool_factory = pool_factory
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._pool: Any = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self) -> None:
        """
        Create the pool and validate it with a ping round-trip.

        Raises:
            DatabaseConnectionError: If the pool cannot be created or pinged.
        """
        if self._pool is not None:
            return
        for attempt in range(1, self._max_retries + 1):
            try:
                log.info(
                    "Connecting %s pool to %s (attempt %d/%d)",
                    self.label, self.config.address, attempt, self._max_retries,
                )
                self._pool = self._pool_factory(
                    pool_name=f"tablesync_{self.label}",
                    pool_size=self.config.pool_size,
                    host=self.config.host,
                    port=self.config.port,
                    user=self.config.user,
                    password=self.config.password,
                    database=self.config.database or None,
                    charset=self.config.charset,
                    connection_timeout=self.config.connect_timeout,
                    autocommit=True,
                    consume_results=True,
                )
                break
            except mysql.connector.Error as exc:
                log.warning("%s pool attempt %d failed: %s", self.label, attempt, exc)
                if attempt < self._max_retries:
                    time.sleep(self._retry_delay * attempt)
        else:
            raise DatabaseConnectionError(
                f"Could not connect to {self.label} database at {self.config.address} "
                f"after {self._max_retries} attempts."
            )

        conn = self.acquire()
        try:
            conn.ping()
        finally:
            conn.release()
        log.info("%s connection established (%s)", self.label, self.config.address)

    def acquire(self) -> Connection:
        if self._pool is None:
            raise DatabaseConnectionError(
                f"{self.label} pool not initialized. Call open() first."
            )
        try:
            return Connection(self._pool.get_connection(), self.label)
        except mysql.connector.Error as exc:
            raise DatabaseConnectionError(
                f"Could not acquire {self.label} connection: {exc}"
            ) from exc

    def close(self) -> None:
        if self._pool is None:
            return
        try:
            # mysql.connector exposes no public teardown for pools.
            remove_connections = getattr(self._pool, "_remove_connections", None)
            if remove_connections is None:
                log.warning(
                    "%s pool has no teardown hook; idle connections close with the process",
                    self.label,
                )
            else:
                remove_connections()
                log.info("%s pool closed", self.label)
        except mysql.connector.Error as exc:
            log.warning("Error closing %s pool: %s", self.label, exc)
        finally:
            self._pool = None


class DatabaseContext:
    """
    Owns the source and target pools for one process run.

    Example::

        with DatabaseContext.from_config() as ctx:
            with ctx.connections() as (src, tgt):
                ...
    """

    def __init__(self, source: DatabasePool, target: DatabasePool) -> None:
        self.source = source
        self.target = target

    @classmethod
    def from_config(cls, pool_factory: PoolFactory = MySQLConnectionPool) -> "DatabaseContext":
        """Convenience factory using the DB1 / DB2 settings from the app config."""
        return cls(
            source=DatabasePool("source", CONFIG.source, pool_factory),
            target=DatabasePool("target", CONFIG.target, pool_factory),
        )

    @property
    def shares_server(self) -> bool:
        """True when both sides live on one MySQL server (cross-schema joins possible)."""
        a, b = self.source.config, self.target.config
        return a.host.lower() == b.host.lower() and a.port == b.port

    def open(self) -> "DatabaseContext":
        log.info("Initializing database connections...")
        self.source.open()
        self.target.open()
        return self

    def close(self) -> None:
        self.source.close()
        self.target.close()

    def __enter__(self) -> "DatabaseContext":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False  # Never suppress exceptions

    @contextmanager
    def connections(self) -> Iterator[tuple[Connection, Connection]]:
        """
        Acquire one connection from each pool for the duration of an operation.

        Both are released regardless of success or failure.
        """
        src: Connection | None = None
        tgt: Connection | None = None
        try:
            src = self.source.acquire()
            tgt = self.target.acquire()
            yield src, tgt
        finally:
            if src is not None:
                src.release()
            if tgt is not None:
                tgt.release()
