"""
tests/test_materializer.py
--------------------------
Tests for tablesync/materializer.py (custom query → target table).
Run with: python -m pytest tests/
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
from mysql.connector.constants import FieldFlag, FieldType

from fakes import FakeConnection, FakeServer, wire_field
from tablesync.errors import ValidationError
from tablesync.materializer import materialize
from tablesync.models import FieldDescriptor, TableRef

QUERY = "SELECT id, name, balance, created_at FROM users WHERE active = 1"

# What a live cursor reports: type codes and NOT NULL flags, no sizes.
FIELDS = [
    wire_field("id", FieldType.LONG, 11, flags=FieldFlag.NOT_NULL),
    wire_field("name", FieldType.VAR_STRING, 200),
    wire_field("balance", FieldType.NEWDECIMAL, 12, decimals=2),
    wire_field("created_at", FieldType.DATETIME, 19),
]

DECLARED = [
    ("id", "int", False),
    ("name", "varchar(50)", True),
    ("balance", "decimal(10,2)", True),
    ("created_at", "datetime", True),
]

ROWS = [
    {"id": 1, "name": "Alice", "balance": Decimal("10.50"), "created_at": datetime(2024, 1, 2, 3, 4, 5)},
    {"id": 2, "name": "Bob", "balance": None, "created_at": None},
    {"id": 3, "name": None, "balance": Decimal("0.00"), "created_at": datetime(2024, 5, 6)},
]


@pytest.fixture
def canned(server: FakeServer) -> FakeServer:
    server.register_query(QUERY, ROWS, FIELDS, columns=DECLARED)
    return server


class TestMaterialize:
    def test_rejects_non_select(self, src: FakeConnection, tgt: FakeConnection) -> None:
        with pytest.raises(ValidationError, match="SELECT"):
            materialize(src, tgt, "DELETE FROM users", TableRef("x"))

    def test_creates_table_from_declared_types(
        self, canned: FakeServer, src: FakeConnection, tgt: FakeConnection
    ) -> None:
        result = materialize(src, tgt, QUERY, TableRef("active_users"))

        create = canned.statements_matching(r"^CREATE TABLE `active_users`")
        assert create == [
            "CREATE TABLE `active_users` (\n"
            "  `id` INT NOT NULL,\n"
            "  `name` VARCHAR(50) NULL,\n"
            "  `balance` DECIMAL(10,2) NULL,\n"
            "  `created_at` DATETIME NULL\n"
            ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
        ]
        assert result.copied_rows == 3
        assert canned.table("app_copy", "active_users").rows == ROWS

    def test_declared_types_read_through_temporary_table(
        self, canned: FakeServer, src: FakeConnection, tgt: FakeConnection
    ) -> None:
        materialize(src, tgt, QUERY, TableRef("active_users"))

        assert canned.statements_matching(
            r"^CREATE TEMPORARY TABLE `_tablesync_result_shape` AS SELECT \* FROM \(SELECT id"
        )
        assert canned.statements_matching(r"^DROP TEMPORARY TABLE IF EXISTS `_tablesync_result_shape`$")
        assert src.temporary == {}

    def test_falls_back_to_result_metadata_without_temporary_tables(
        self, server: FakeServer, src: FakeConnection, tgt: FakeConnection
    ) -> None:
        server.register_query(QUERY, ROWS, FIELDS)

        result = materialize(src, tgt, QUERY, TableRef("active_users"))

        create = server.statements_matching(r"^CREATE TABLE `active_users`")
        assert create == [
            "CREATE TABLE `active_users` (\n"
            "  `id` INT NOT NULL,\n"
            "  `name` VARCHAR(255) NULL,\n"
            "  `balance` DECIMAL(65,30) NULL,\n"
            "  `created_at` DATETIME NULL\n"
            ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
        ]
        assert result.copied_rows == 3

    def test_existing_target_is_appended(
        self, canned: FakeServer, src: FakeConnection, tgt: FakeConnection
    ) -> None:
        table = canned.create_table(
            "app_copy", "active_users",
            [("id", "int", False), ("name", "varchar(50)", True),
             ("balance", "decimal(10,2)", True), ("created_at", "datetime", True)],
            primary_key=("id",),
            rows=[{"id": 99, "name": "old", "balance": None, "created_at": None}],
        )

        result = materialize(src, tgt, QUERY, TableRef("active_users"))

        assert result.copied_rows == 3
        assert len(table.rows) == 4
        assert not canned.statements_matching(r"^CREATE TABLE")
        assert not canned.statements_matching(r"^CREATE TEMPORARY TABLE")

    def test_empty_result_copies_nothing(
        self, server: FakeServer, src: FakeConnection, tgt: FakeConnection
    ) -> None:
        server.register_query("SELECT id FROM users WHERE 1 = 0", [], [FieldDescriptor("id", "LONG")])

        result = materialize(src, tgt, "SELECT id FROM users WHERE 1 = 0", TableRef("nothing"))

        assert result.copied_rows == 0
        assert server.table("app_copy", "nothing") is None

    def test_trailing_semicolon_accepted(
        self, canned: FakeServer, src: FakeConnection, tgt: FakeConnection
    ) -> None:
        assert materialize(src, tgt, f"  {QUERY};", TableRef("active_users")).copied_rows == 3

    def test_case_folding_target_name(self, src: FakeConnection) -> None:
        src.server.register_query(QUERY, ROWS, FIELDS)
        folding = FakeServer(lower_case_table_names=True)
        target = folding.connect("app_copy", "target")

        materialize(src, target, QUERY, TableRef("Active_Users"))

        assert len(folding.table("app_copy", "active_users").rows) == 3
