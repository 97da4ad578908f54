#!/usr/bin/env python3
"""
main.py
-------
Command-line entry point for the MySQL table sync tool.

Usage:
    python main.py <command> [args]      (or the ``tablesync`` console script)

Exit status is 0 on success (or when printing usage) and 1 on any failure,
wrong argument count, non-integer limit or unknown command. Both
connection pools are always closed before exit.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Callable, Sequence

from config import CONFIG
from logger import get_logger, progress_logger
from tablesync.database import DatabaseContext
from tablesync.engine import TableSync
from tablesync.errors import TableSyncError

log = get_logger(__name__)

USAGE = f"""
{CONFIG.app_name} v{CONFIG.app_version}

Usage:
    tablesync <command> [args]

Commands:
    copy-structure <source_table> <target_table>
        Copy table structure (columns and indexes) from source to target
    copy-data <source_table> <target_table> [limit]
        Copy rows into an existing, empty target table
    copy-table <source_table> <target_table> [limit]
        Copy structure, then data
    custom-query "<SELECT ...>" <target_table>
        Run a SELECT on the source and insert the results into the target
    sync-table <table_name>
        Copy only the rows missing from the target (creates the table if absent)
    backup <source|target> "<SELECT ...>" [file]
        Export query results to CSV (default: backup_<timestamp>.csv)
    restore <source|target> <file> <table_name>
        Insert the rows of a CSV backup into an existing table
    test-connections
        Check both database connections

Examples:
    tablesync copy-table users users_copy 100
    tablesync custom-query "SELECT id, name FROM users WHERE active = 1" active_users
    tablesync sync-table orders
"""


class UsageError(Exception):
    """Bad command line: wrong argument count, bad limit or unknown command."""


@dataclass(frozen=True)
class Command:
    name: str
    min_args: int
    max_args: int
    run: Callable[[TableSync, list[str]], object]


def _parse_limit(args: Sequence[str], index: int) -> int | None:
    if len(args) <= index:
        return None
    try:
        return int(args[index])
    except ValueError:
        raise UsageError(f"Limit must be an integer, got {args[index]!r}.") from None


def _copy_data(engine: TableSync, args: list[str]):
    return engine.copy_data(args[0], args[1], _parse_limit(args, 2))


def _copy_table(engine: TableSync, args: list[str]):
    structure, copied = engine.copy_table(args[0], args[1], _parse_limit(args, 2))
    return f"{structure}\n{copied}"


def _backup(engine: TableSync, args: list[str]):
    return engine.backup(args[0], args[1], args[2] if len(args) > 2 else None)


def _test_connections(engine: TableSync, args: list[str]):
    report = engine.check_connections()
    lines = [f"{'✓' if ok else '✗'} {side}: {msg}" for side, (ok, msg) in report.items()]
    if not all(ok for ok, _ in report.values()):
        raise TableSyncError("\n".join(lines))
    return "\n".join(lines)


COMMANDS: dict[str, Command] = {
    c.name: c
    for c in (
        Command("copy-structure", 2, 2, lambda e, a: e.copy_structure(a[0], a[1])),
        Command("copy-data", 2, 3, _copy_data),
        Command("copy-table", 2, 3, _copy_table),
        Command("custom-query", 2, 2, lambda e, a: e.custom_query(a[0], a[1])),
        Command("sync-table", 1, 1, lambda e, a: e.sync_table(a[0])),
        Command("backup", 2, 3, _backup),
        Command("restore", 3, 3, lambda e, a: e.restore(a[0], a[1], a[2])),
        Command("test-connections", 0, 0, _test_connections),
    )
}


def resolve_command(argv: Sequence[str]) -> tuple[Command, list[str]]:
    """
    Look up the command and validate its argument count and limit.

    Raises:
        UsageError: On an unknown command, bad argument count or bad limit.
    """
    name, args = argv[0].lower(), list(argv[1:])
    command = COMMANDS.get(name)
    if command is None:
        raise UsageError(f"Unknown command: {argv[0]}")
    if not command.min_args <= len(args) <= command.max_args:
        raise UsageError(f"Wrong number of arguments for {command.name}.")
    if command.name in ("copy-data", "copy-table"):
        _parse_limit(args, 2)
    return command, args


def main(argv: Sequence[str] | None = None, context_factory=DatabaseContext.from_config) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        print(USAGE)
        return 0

    try:
        command, args = resolve_command(argv)
    except UsageError as exc:
        print(f"Error: {exc}")
        print("Run 'tablesync' without arguments for usage help")
        return 1

    ctx = context_factory()
    try:
        ctx.open()
        outcome = command.run(TableSync(ctx, progress_cb=progress_logger()), args)
        print(f"✓ {command.name} completed")
        if outcome is not None:
            print(outcome)
        return 0
    except TableSyncError as exc:
        log.error("%s failed: %s", command.name, exc)
        print(f"✗ {command.name} failed: {exc}")
        return 1
    except Exception:
        log.exception("Unexpected error during %s", command.name)
        return 1
    finally:
        ctx.close()
        log.info("Database connections closed")


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
