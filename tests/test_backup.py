"""
tests/test_backup.py
--------------------
Tests for tablesync/backup.py: value formatting, date normalisation,
CSV backup and CSV restore.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from fakes import FakeConnection, FakeServer
from tablesync.backup import (
    backup_query,
    default_backup_filename,
    format_value,
    normalize_datetime,
    restore_csv,
)
from tablesync.errors import SchemaError, ValidationError
from tablesync.models import FieldDescriptor, TableRef

QUERY = "SELECT id, note, created_at FROM events"
FIELDS = [
    FieldDescriptor("id", "LONG"),
    FieldDescriptor("note", "VAR_STRING"),
    FieldDescriptor("created_at", "DATETIME"),
]
EVENT_COLUMNS = [("id", "int", False), ("note", "varchar(100)", True), ("created_at", "datetime", True)]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

class TestFormatValue:
    def test_none_is_empty(self) -> None:
        assert format_value(None) == ""

    def test_datetime(self) -> None:
        assert format_value(datetime(2024, 3, 5, 14, 30, 0)) == "2024-03-05 14:30:00"

    def test_date(self) -> None:
        assert format_value(date(2024, 3, 5)) == "2024-03-05"

    def test_decimal_and_bytes(self) -> None:
        assert format_value(Decimal("1.50")) == "1.50"
        assert format_value(b"abc") == "abc"


class TestNormalizeDatetime:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2024-03-05 14:30:00", "2024-03-05 14:30:00"),
            ("2024-03-05", "2024-03-05 00:00:00"),
            ("2024-03-05T14:30:00Z", "2024-03-05 14:30:00"),
            ("2024-03-05T14:30:00+02:00", "2024-03-05 12:30:00"),
            ("2024-03-05T14:30:00", "2024-03-05 14:30:00"),
            ("Tue Mar 05 2024 14:30:00 GMT+0700 (Indochina Time)", "2024-03-05 14:30:00"),
            ("03/05/2024", "2024-03-05 00:00:00"),
            ("3-5-2024 09:15", "2024-03-05 09:15:00"),
        ],
    )
    def test_recognised_formats(self, raw: str, expected: str) -> None:
        assert normalize_datetime(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_is_null(self, raw) -> None:
        assert normalize_datetime(raw) is None

    def test_unrecognised_passes_through(self) -> None:
        assert normalize_datetime("last tuesday") == "last tuesday"

    def test_default_filename(self) -> None:
        assert default_backup_filename(datetime(2024, 3, 5, 14, 30, 0)) == "backup_2024-03-05T14-30-00.csv"


# ---------------------------------------------------------------------------
# backup_query
# ---------------------------------------------------------------------------

class TestBackupQuery:
    def test_writes_quoted_csv(self, server: FakeServer, src: FakeConnection, tmp_path: Path) -> None:
        server.register_query(
            QUERY,
            [
                {"id": 1, "note": 'say "hi", then leave', "created_at": datetime(2024, 1, 2, 3, 4, 5)},
                {"id": 2, "note": None, "created_at": None},
            ],
            FIELDS,
        )
        out = tmp_path / "events.csv"

        result = backup_query(src, QUERY, str(out))

        assert result.rows == 2
        assert result.columns == ["id", "note", "created_at"]
        assert out.read_text(encoding="utf-8").splitlines() == [
            '"id","note","created_at"',
            '"1","say ""hi"", then leave","2024-01-02 03:04:05"',
            '"2","",""',
        ]

    def test_streams_single_query_in_batches(
        self, server: FakeServer, src: FakeConnection, tmp_path: Path
    ) -> None:
        rows = [{"id": i, "note": f"n{i}", "created_at": None} for i in range(1, 6)]
        server.register_query(QUERY, rows, FIELDS)

        result = backup_query(src, QUERY, str(tmp_path / "batched.csv"), batch_size=2)

        assert result.rows == 5
        assert server.statements.count(QUERY) == 1
        assert src.streamed_batches == [2, 2, 1]
        assert not server.statements_matching("OFFSET")

    def test_unordered_query_exports_every_row_once(
        self, server: FakeServer, src: FakeConnection, tmp_path: Path
    ) -> None:
        rows = [{"id": i, "note": f"n{i}", "created_at": None} for i in range(1, 8)]
        server.register_query(QUERY, rows, FIELDS, unstable_order=True)
        out = tmp_path / "unordered.csv"

        backup_query(src, QUERY, str(out), batch_size=3)

        exported = [line.split(",")[0] for line in out.read_text(encoding="utf-8").splitlines()[1:]]
        assert sorted(exported, key=lambda v: int(v.strip('"'))) == [f'"{i}"' for i in range(1, 8)]

    def test_empty_result_removes_file(self, server: FakeServer, src: FakeConnection, tmp_path: Path) -> None:
        server.register_query(QUERY, [], FIELDS)
        out = tmp_path / "empty.csv"

        with pytest.raises(ValidationError, match="no results"):
            backup_query(src, QUERY, str(out))
        assert not out.exists()

    def test_rejects_non_select(self, src: FakeConnection, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            backup_query(src, "DROP TABLE events", str(tmp_path / "x.csv"))


# ---------------------------------------------------------------------------
# restore_csv
# ---------------------------------------------------------------------------

class TestRestoreCsv:
    @pytest.fixture
    def events(self, server: FakeServer):
        return server.create_table("app_copy", "events", EVENT_COLUMNS, primary_key=("id",))

    def test_restores_rows_and_normalises_dates(
        self, events, tgt: FakeConnection, tmp_path: Path
    ) -> None:
        path = tmp_path / "events.csv"
        path.write_text(
            '"id","note","created_at"\n'
            '"1","first","2024-01-02"\n'
            '"2","","2024-01-02T10:00:00Z"\n'
            '"3","third",""\n',
            encoding="utf-8",
        )

        result = restore_csv(tgt, str(path), TableRef("events"))

        assert result.inserted_rows == 3
        assert result.date_columns == ["created_at"]
        assert events.rows == [
            {"id": "1", "note": "first", "created_at": "2024-01-02 00:00:00"},
            {"id": "2", "note": None, "created_at": "2024-01-02 10:00:00"},
            {"id": "3", "note": "third", "created_at": None},
        ]

    def test_malformed_lines_skipped(self, events, tgt: FakeConnection, tmp_path: Path) -> None:
        path = tmp_path / "events.csv"
        path.write_text(
            "id,note,created_at\n"
            "1,ok,2024-01-02 00:00:00\n"
            "2,too,many,fields\n"
            "3,short\n"
            "4,fine,\n",
            encoding="utf-8",
        )

        result = restore_csv(tgt, str(path), TableRef("events"))

        assert result.inserted_rows == 2
        assert result.skipped_lines == 2
        assert [r["id"] for r in events.rows] == ["1", "4"]

    def test_round_trip(
        self, server: FakeServer, src: FakeConnection, tgt: FakeConnection, events, tmp_path: Path
    ) -> None:
        server.register_query(
            QUERY,
            [{"id": 7, "note": 'quote " inside', "created_at": datetime(2023, 12, 31, 23, 59, 59)}],
            FIELDS,
        )
        path = str(tmp_path / "rt.csv")

        backup_query(src, QUERY, path)
        restore_csv(tgt, path, TableRef("events"))

        assert events.rows == [
            {"id": "7", "note": 'quote " inside', "created_at": "2023-12-31 23:59:59"}
        ]

    def test_missing_table(self, tgt: FakeConnection, tmp_path: Path) -> None:
        path = tmp_path / "x.csv"
        path.write_text("id\n1\n", encoding="utf-8")
        with pytest.raises(SchemaError):
            restore_csv(tgt, str(path), TableRef("ghost"))

    def test_unknown_header_column(self, events, tgt: FakeConnection, tmp_path: Path) -> None:
        path = tmp_path / "x.csv"
        path.write_text("id,color\n1,red\n", encoding="utf-8")
        with pytest.raises(SchemaError, match="color"):
            restore_csv(tgt, str(path), TableRef("events"))

    def test_illegal_header_rejected(self, events, tgt: FakeConnection, tmp_path: Path) -> None:
        path = tmp_path / "x.csv"
        path.write_text('"id; DROP TABLE events"\n1\n', encoding="utf-8")
        with pytest.raises(ValidationError):
            restore_csv(tgt, str(path), TableRef("events"))

    def test_no_valid_rows(self, events, tgt: FakeConnection, tmp_path: Path) -> None:
        path = tmp_path / "x.csv"
        path.write_text("id,note,created_at\n1,2\n", encoding="utf-8")
        with pytest.raises(ValidationError, match="No valid data rows"):
            restore_csv(tgt, str(path), TableRef("events"))

    def test_empty_file(self, events, tgt: FakeConnection, tmp_path: Path) -> None:
        path = tmp_path / "x.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValidationError, match="empty"):
            restore_csv(tgt, str(path), TableRef("events"))
