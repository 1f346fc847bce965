"""
todo-list-provider — schema lifecycle callbacks

File: src/todo_list_provider/persistence/schema.py

Purpose
- Define the callback protocol the engine drives while opening a database.
- Provide the default migration-chain schema for the todo-list database.

What is included in this file
- ``SchemaCallbacks`` protocol (configure, create, upgrade, downgrade) and the
  optional ``OpenHook``.
- ``Migration`` definitions with deterministic checksums.
- ``MigrationSchema``: applies the chain, records each step in
  ``schema_migrations`` and verifies recorded checksums.

Functional requirements
- Migrations are additive and idempotent per version step.
- Downgrades either reject (default) or destructively reset the schema.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final, Literal, Protocol, TypeAlias

from todo_list_provider.persistence.errors import DowngradeError, MigrationError

logger = logging.getLogger(__name__)

DowngradePolicy: TypeAlias = Literal["reject", "reset"]
JournalMode: TypeAlias = Literal["wal", "delete", "truncate", "persist", "memory"]

DOWNGRADE_POLICIES: Final[tuple[DowngradePolicy, ...]] = ("reject", "reset")
JOURNAL_MODES: Final[tuple[JournalMode, ...]] = ("wal", "delete", "truncate", "persist", "memory")
DEFAULT_DOWNGRADE_POLICY: Final[DowngradePolicy] = "reject"
DEFAULT_JOURNAL_MODE: Final[JournalMode] = "wal"

MIGRATIONS_TABLE: Final[str] = "schema_migrations"

_MIGRATIONS_TABLE_SQL: Final[str] = f"""
CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""


class SchemaCallbacks(Protocol):
    """Hooks invoked by ``open_database``; none of them is called directly.

    ``on_configure`` runs again when the database is busy, so it must be
    idempotent. An ``on_open`` hook (see ``OpenHook``) is optional.
    """

    def on_configure(self, conn: sqlite3.Connection) -> None: ...

    def on_create(self, conn: sqlite3.Connection, version: int) -> None: ...

    def on_upgrade(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None: ...

    def on_downgrade(
        self, conn: sqlite3.Connection, old_version: int, new_version: int
    ) -> None: ...


class OpenHook(Protocol):
    """Optional hook called once per open after the schema is ready."""

    def on_open(self, conn: sqlite3.Connection, version: int) -> None: ...


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str

    @classmethod
    def build(cls, version: int, name: str, statements: Sequence[str]) -> Migration:
        frozen = tuple(statements)
        return cls(
            version=version,
            name=name,
            statements=frozen,
            checksum=migration_checksum(version, name, frozen),
        )


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


def migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    """SHA-256 over version, name and statements; whitespace runs do not count."""

    canonical = [f"{version}:{name}", *(" ".join(statement.split()) for statement in statements)]
    return hashlib.sha256(";\n".join(canonical).encode("utf-8")).hexdigest()


_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS todo_lists (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL CHECK (length(title) > 0),
        position INTEGER NOT NULL DEFAULT 0 CHECK (position >= 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS todo_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        list_id INTEGER NOT NULL,
        title TEXT NOT NULL CHECK (length(title) > 0),
        done INTEGER NOT NULL DEFAULT 0 CHECK (done IN (0, 1)),
        position INTEGER NOT NULL DEFAULT 0 CHECK (position >= 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(list_id) REFERENCES todo_lists(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_todo_lists_position ON todo_lists(position)",
    "CREATE INDEX IF NOT EXISTS idx_todo_items_list_position ON todo_items(list_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_todo_items_list_done ON todo_items(list_id, done)",
)

DEFAULT_MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration.build(1, "initial_todo_schema", _MIGRATION_0001_STATEMENTS),
)


def validate_migration_chain(migrations: Sequence[Migration], target_version: int) -> None:
    """Require exactly one migration for every version in ``1..target_version``."""

    if target_version < 1:
        raise MigrationError("target schema version must be >= 1")
    seen: dict[int, Migration] = {}
    for migration in migrations:
        if migration.version < 1:
            raise MigrationError(f"migration versions must be >= 1, got {migration.version}")
        if migration.version in seen:
            raise MigrationError(f"duplicate migration for schema version {migration.version}")
        if migration.checksum != migration_checksum(
            migration.version, migration.name, migration.statements
        ):
            raise MigrationError(f"stale checksum on migration {migration.version}")
        seen[migration.version] = migration
    known = max(seen, default=0)
    if target_version > known:
        raise MigrationError(
            f"schema target exceeds known migrations (target={target_version}, known={known})"
        )
    for version in range(1, target_version + 1):
        if version not in seen:
            raise MigrationError(f"missing migration for schema version {version}")


class MigrationSchema:
    """Default ``SchemaCallbacks`` implementation driven by a migration chain."""

    def __init__(
        self,
        migrations: Sequence[Migration] = DEFAULT_MIGRATIONS,
        *,
        journal_mode: JournalMode = DEFAULT_JOURNAL_MODE,
        busy_timeout_ms: int = 5_000,
        downgrade_policy: DowngradePolicy = DEFAULT_DOWNGRADE_POLICY,
    ) -> None:
        if journal_mode not in JOURNAL_MODES:
            allowed = ", ".join(JOURNAL_MODES)
            raise ValueError(f"journal_mode must be one of: {allowed}; got {journal_mode!r}")
        if downgrade_policy not in DOWNGRADE_POLICIES:
            allowed = ", ".join(DOWNGRADE_POLICIES)
            raise ValueError(
                f"downgrade_policy must be one of: {allowed}; got {downgrade_policy!r}"
            )
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        self._migrations = tuple(sorted(migrations, key=lambda item: item.version))
        self._journal_mode = journal_mode
        self._busy_timeout_ms = busy_timeout_ms
        self._downgrade_policy = downgrade_policy

    @property
    def migrations(self) -> tuple[Migration, ...]:
        return self._migrations

    @property
    def latest_version(self) -> int:
        return max((item.version for item in self._migrations), default=0)

    @property
    def downgrade_policy(self) -> DowngradePolicy:
        return self._downgrade_policy

    def on_configure(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        row = conn.execute(f"PRAGMA journal_mode={self._journal_mode}").fetchone()
        if row is None:
            raise MigrationError("failed to configure journal_mode")
        applied = str(row[0]).lower()
        # In-memory databases always report "memory".
        if applied != self._journal_mode and applied != "memory":
            raise MigrationError(f"journal_mode must be {self._journal_mode}, got {applied!r}")

    def on_create(self, conn: sqlite3.Connection, version: int) -> None:
        self._apply_range(conn, 0, version)

    def on_upgrade(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        self._apply_range(conn, old_version, new_version)

    def on_downgrade(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        if self._downgrade_policy == "reject":
            raise DowngradeError(old_version, new_version)

        logger.warning(
            "resetting schema after downgrade; existing data is discarded",
            extra={"from_version": old_version, "to_version": new_version},
        )
        drop_all_objects(conn)
        self._apply_range(conn, 0, new_version)

    def on_open(self, conn: sqlite3.Connection, version: int) -> None:
        del conn, version

    def applied_migrations(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        """Return recorded migrations keyed by version; empty when none were recorded."""

        exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (MIGRATIONS_TABLE,),
        ).fetchone()
        if exists is None:
            return {}
        rows = conn.execute(
            f"""
            SELECT version, name, checksum, applied_at
            FROM {MIGRATIONS_TABLE}
            ORDER BY version ASC
            """
        ).fetchall()
        out: dict[int, MigrationRecord] = {}
        for row in rows:
            version, name, checksum, applied_at = row[0], row[1], row[2], row[3]
            if not isinstance(version, int):
                raise MigrationError(f"{MIGRATIONS_TABLE}.version must be integer")
            if not isinstance(name, str) or not isinstance(checksum, str):
                raise MigrationError(f"{MIGRATIONS_TABLE}.name/checksum must be text")
            if not isinstance(applied_at, str):
                raise MigrationError(f"{MIGRATIONS_TABLE}.applied_at must be text")
            out[version] = MigrationRecord(
                version=version, name=name, checksum=checksum, applied_at=applied_at
            )
        return out

    def _apply_range(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        validate_migration_chain(self._migrations, new_version)
        conn.execute(_MIGRATIONS_TABLE_SQL)
        applied = self.applied_migrations(conn)

        for migration in self._migrations:
            if migration.version > new_version:
                break
            record = applied.get(migration.version)
            if record is not None:
                if record.checksum != migration.checksum:
                    raise MigrationError(
                        "migration checksum mismatch for version "
                        f"{migration.version}: db={record.checksum} code={migration.checksum}"
                    )
                continue
            if migration.version <= old_version:
                # Databases created before bookkeeping existed: trust user_version.
                continue

            for statement in migration.statements:
                conn.execute(statement)
            conn.execute(
                f"""
                INSERT INTO {MIGRATIONS_TABLE} (version, name, checksum, applied_at)
                VALUES (?, ?, ?, ?)
                """,
                (migration.version, migration.name, migration.checksum, _utc_now_iso()),
            )
            logger.debug(
                "applied migration %s",
                migration.version,
                extra={"migration": migration.name, "checksum": migration.checksum},
            )


def drop_all_objects(conn: sqlite3.Connection) -> None:
    """Drop every user table, view, index and trigger inside the current transaction."""

    # Child rows disappear with their tables; check foreign keys at commit instead.
    conn.execute("PRAGMA defer_foreign_keys=ON")
    rows = conn.execute(
        """
        SELECT type, name
        FROM sqlite_master
        WHERE name NOT LIKE 'sqlite_%'
        AND type IN ('view', 'trigger', 'table')
        ORDER BY CASE type WHEN 'view' THEN 0 WHEN 'trigger' THEN 1 ELSE 2 END, name
        """
    ).fetchall()
    for object_type, name in ((str(row[0]), str(row[1])) for row in rows):
        quoted = '"' + name.replace('"', '""') + '"'
        conn.execute(f"DROP {object_type.upper()} IF EXISTS {quoted}")
    has_sequence = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
    ).fetchone()
    if has_sequence is not None:
        conn.execute("DELETE FROM sqlite_sequence")


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_DOWNGRADE_POLICY",
    "DEFAULT_JOURNAL_MODE",
    "DEFAULT_MIGRATIONS",
    "DOWNGRADE_POLICIES",
    "JOURNAL_MODES",
    "MIGRATIONS_TABLE",
    "DowngradePolicy",
    "JournalMode",
    "Migration",
    "MigrationRecord",
    "MigrationSchema",
    "OpenHook",
    "SchemaCallbacks",
    "drop_all_objects",
    "migration_checksum",
    "validate_migration_chain",
]
