"""
tablesync/backup.py
-------------------
CSV backup of a SELECT result and CSV restore into an existing table.

Design Decisions:
    * Backups run the query once on an unbuffered cursor and write it out
      in batches, so a large result never sits in memory at once and no
      row is skipped or repeated between batches.
    * Every value is written double-quoted; NULL and the empty string both
      become an empty field and both restore as NULL.
    * Restore reads the file lazily and inserts through the same chunked
      transaction primitive as the copier. Rows whose field count does not
      match the header are skipped, not fatal.
    * Values bound for DATE / DATETIME / TIMESTAMP columns are normalised
      to ``YYYY-MM-DD HH:MM:SS`` first, since backups produced by other
      tools carry ISO, JavaScript ``Date.toString()`` or US-style dates.
"""
from __future__ import annotations

import csv
import os
import re
from datetime import date, datetime, timezone
from typing import Any, Iterator, Sequence

from config import CONFIG
from logger import get_logger
from tablesync.database import Connection
from tablesync.errors import SchemaError, ValidationError
from tablesync.inserter import insert_rows
from tablesync.introspect import describe_table
from tablesync.models import BackupResult, ColumnDescriptor, RestoreResult, Row, TableRef
from tablesync.sql import require_select, validate_identifier

log = get_logger(__name__)

MYSQL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_MYSQL_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
_MYSQL_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Tue Mar 05 2024 14:30:00 GMT+0700 (Indochina Time)
_JS_DATE_RE = re.compile(
    r"^\w{3} (\w{3} \d{1,2} \d{4} \d{1,2}:\d{2}:\d{2}) GMT([+-]\d{4})?"
)
_US_DATE_RE = re.compile(
    r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})(?:[ T](\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)


def default_backup_filename(now: datetime | None = None) -> str:
    """``backup_2024-03-05T14-30-00.csv``"""
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"backup_{stamp}.csv"


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------

def format_value(value: Any) -> str:
    """Render one database value as CSV text."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(MYSQL_DATETIME_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return str(value)


def normalize_datetime(text: str | None) -> str | None:
    """
    Coerce a date/time string into MySQL ``YYYY-MM-DD HH:MM:SS`` form.

    Unrecognised input is returned unchanged (the server gets the final
    say); an empty string becomes None.
    """
    if text is None or not text.strip():
        return None
    text = text.strip()

    if _MYSQL_DATETIME_RE.match(text):
        return text
    if _MYSQL_DATE_RE.match(text):
        return f"{text} 00:00:00"

    if "GMT" in text and "(" in text:
        match = _JS_DATE_RE.match(text)
        if match:
            try:
                # Wall-clock time as written; the GMT offset is informational.
                parsed = datetime.strptime(match.group(1), "%b %d %Y %H:%M:%S")
                return parsed.strftime(MYSQL_DATETIME_FORMAT)
            except ValueError:
                pass
        log.warning("Could not parse date: %s", text)
        return text

    if "T" in text or text.endswith("Z"):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            log.warning("Could not parse ISO date: %s", text)
            return text
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed.strftime(MYSQL_DATETIME_FORMAT)

    match = _US_DATE_RE.match(text)
    if match:
        month, day, year, hour, minute, second = match.groups()
        try:
            parsed = datetime(
                int(year), int(month), int(day),
                int(hour or 0), int(minute or 0), int(second or 0),
            )
            return parsed.strftime(MYSQL_DATETIME_FORMAT)
        except ValueError:
            pass

    log.warning("Unrecognized date format, using as-is: %s", text)
    return text


# ---------------------------------------------------------------------------
# Row sink / source
# ---------------------------------------------------------------------------

class CsvRowSink:
    """
    Writes a header and rows to a CSV file, quoting every field.

    Example::

        with CsvRowSink("out.csv") as sink:
            sink.write_header(["id", "name"])
            sink.write_rows(rows)
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.columns: list[str] = []
        self.rows_written = 0
        self._handle = None
        self._writer = None

    def __enter__(self) -> "CsvRowSink":
        self._handle = open(self.path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._handle, quoting=csv.QUOTE_ALL)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        return False

    def write_header(self, columns: Sequence[str]) -> None:
        self.columns = list(columns)
        self._writer.writerow(self.columns)

    def write_rows(self, rows: Sequence[Row]) -> None:
        for row in rows:
            self._writer.writerow([format_value(row.get(c)) for c in self.columns])
        self.rows_written += len(rows)


def read_csv_rows(
    handle, expected_fields: int, result: RestoreResult
) -> Iterator[list[str]]:
    """
    Yield data rows from an open CSV file, skipping malformed ones.

    Rows whose field count differs from *expected_fields* are counted in
    ``result.skipped_lines``; blank lines are ignored.
    """
    reader = csv.reader(handle)
    try:
        for fields in reader:
            if not fields or (len(fields) == 1 and not fields[0].strip()):
                continue
            if len(fields) != expected_fields:
                result.skipped_lines += 1
                log.warning(
                    "Skipping malformed record %d: expected %d fields, got %d",
                    reader.line_num, expected_fields, len(fields),
                )
                continue
            yield fields
    except csv.Error as exc:
        raise ValidationError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def backup_query(
    conn: Connection,
    select_query: str,
    path: str,
    batch_size: int | None = None,
) -> BackupResult:
    """
    Export the result of *select_query* to a CSV file at *path*.

    The query runs once and its rows are streamed to disk *batch_size* at
    a time, so the file holds each result row exactly once, in the order
    the server produced them.

    Raises:
        ValidationError: If the query is not a SELECT or returns no rows.
                         The partial file is removed.
    """
    query = require_select(select_query)
    batch_size = batch_size or CONFIG.sync.backup_batch_size
    log.info("Backing up query results to %s (batch size %d)", path, batch_size)

    try:
        with CsvRowSink(path) as sink:
            for rows, fields in conn.stream(query, batch_size=batch_size):
                if not sink.columns:
                    sink.write_header([f.name for f in fields])
                sink.write_rows(rows)
                log.info("Exported %d rows...", sink.rows_written)
            if not sink.rows_written:
                raise ValidationError("Query returned no results")
    except Exception:
        if os.path.exists(path):
            os.remove(path)
        raise

    log.info("Backup completed: %d rows, columns: %s", sink.rows_written, ", ".join(sink.columns))
    return BackupResult(path=path, rows=sink.rows_written, columns=sink.columns)


def _restore_rows(
    handle,
    columns: Sequence[ColumnDescriptor],
    result: RestoreResult,
) -> Iterator[Row]:
    for fields in read_csv_rows(handle, len(columns), result):
        row: Row = {}
        for column, raw in zip(columns, fields):
            if raw == "":
                row[column.name] = None
            elif column.is_temporal:
                row[column.name] = normalize_datetime(raw)
            else:
                row[column.name] = raw
        yield row


def restore_csv(
    conn: Connection,
    path: str,
    table: TableRef,
    batch_size: int | None = None,
) -> RestoreResult:
    """
    Insert the rows of a CSV backup into an existing table.

    The header row names the target columns (matched case-insensitively).

    Raises:
        SchemaError:      If the table or a header column does not exist.
        ValidationError:  If the file is empty, a header is not a legal
                          identifier, or no valid data rows were found.
        TransactionError: If a batch insert fails.
    """
    description = describe_table(conn, table)
    target = description.ref
    log.info("Restoring %s into %s", path, target)

    with open(path, newline="", encoding="utf-8") as handle:
        header_line = handle.readline()
        if not header_line.strip():
            raise ValidationError(f"CSV file {path} is empty.")
        header = next(csv.reader([header_line]))
        names = [validate_identifier(h.strip().strip('"')) for h in header]

        columns: list[ColumnDescriptor] = []
        for name in names:
            column = description.column(name)
            if column is None:
                raise SchemaError(f"Column {name} does not exist in {target}.")
            columns.append(column)

        result = RestoreResult(
            table_name=str(target),
            date_columns=[c.name for c in columns if c.is_temporal],
        )
        copied = insert_rows(
            conn,
            target,
            [c.name for c in columns],
            _restore_rows(handle, columns, result),
            batch_size or CONFIG.sync.chunk_size,
        )

    result.inserted_rows = copied.copied_rows
    if copied.chunks == 0:
        raise ValidationError("No valid data rows found in CSV")
    if result.date_columns:
        log.info("Date columns processed: %s", ", ".join(result.date_columns))
    log.info("Restore completed: %s", result)
    return result
