"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from contextlib import closing
from pathlib import Path
from typing import Any, Final

from todo_list_provider.persistence.schema import (
    DEFAULT_MIGRATIONS,
    Migration,
    MigrationSchema,
)

MIGRATION_0002: Final[Migration] = Migration.build(
    2,
    "todo_item_due_dates",
    (
        "ALTER TABLE todo_items ADD COLUMN due_at TEXT",
        """
        CREATE TABLE IF NOT EXISTS todo_tags (
            item_id INTEGER NOT NULL,
            tag TEXT NOT NULL CHECK (length(tag) > 0),
            PRIMARY KEY (item_id, tag),
            FOREIGN KEY(item_id) REFERENCES todo_items(id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_todo_items_due_at ON todo_items(due_at)",
    ),
)

MIGRATIONS_V2: Final[tuple[Migration, ...]] = (*DEFAULT_MIGRATIONS, MIGRATION_0002)


class RecordingSchema(MigrationSchema):
    """``MigrationSchema`` that records every lifecycle callback it receives."""

    def __init__(self, migrations: Sequence[Migration] = DEFAULT_MIGRATIONS, **kwargs: Any) -> None:
        super().__init__(migrations, **kwargs)
        self.calls: list[tuple[Any, ...]] = []

    @property
    def names(self) -> list[str]:
        return [str(call[0]) for call in self.calls]

    def on_configure(self, conn: sqlite3.Connection) -> None:
        self.calls.append(("configure",))
        super().on_configure(conn)

    def on_create(self, conn: sqlite3.Connection, version: int) -> None:
        self.calls.append(("create", version))
        super().on_create(conn, version)

    def on_upgrade(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        self.calls.append(("upgrade", old_version, new_version))
        super().on_upgrade(conn, old_version, new_version)

    def on_downgrade(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        self.calls.append(("downgrade", old_version, new_version))
        super().on_downgrade(conn, old_version, new_version)

    def on_open(self, conn: sqlite3.Connection, version: int) -> None:
        self.calls.append(("open", version))
        super().on_open(conn, version)


def table_names(conn: sqlite3.Connection) -> set[str]:
    return {
        str(row[0])
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        ).fetchall()
    }


def stored_version(path: Path) -> int:
    with closing(sqlite3.connect(path)) as conn:
        row = conn.execute("PRAGMA user_version").fetchone()
    assert row is not None
    return int(row[0])


__all__ = [
    "MIGRATIONS_V2",
    "MIGRATION_0002",
    "RecordingSchema",
    "stored_version",
    "table_names",
]
