from __future__ import annotations

import sqlite3
from contextlib import closing

import pytest

from todo_list_provider.persistence.errors import MigrationError
from todo_list_provider.persistence.schema import (
    DEFAULT_MIGRATIONS,
    Migration,
    MigrationSchema,
    drop_all_objects,
    migration_checksum,
    validate_migration_chain,
)

from . import MIGRATION_0002, MIGRATIONS_V2, table_names


@pytest.mark.unit
def test_checksum_ignores_statement_whitespace() -> None:
    compact = migration_checksum(1, "init", ("CREATE TABLE t (id INTEGER)",))
    padded = migration_checksum(1, "init", ("\n   CREATE TABLE t (id INTEGER)   \n",))
    renamed = migration_checksum(1, "other", ("CREATE TABLE t (id INTEGER)",))

    assert compact == padded
    assert compact != renamed
    assert len(compact) == 64


@pytest.mark.unit
def test_validate_chain_accepts_contiguous_migrations() -> None:
    validate_migration_chain(MIGRATIONS_V2, 2)
    validate_migration_chain(MIGRATIONS_V2, 1)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("migrations", "target", "message"),
    [
        ((*DEFAULT_MIGRATIONS, *DEFAULT_MIGRATIONS), 1, "duplicate migration"),
        ((MIGRATION_0002,), 2, "missing migration for schema version 1"),
        (DEFAULT_MIGRATIONS, 2, "target exceeds known migrations"),
        (DEFAULT_MIGRATIONS, 0, "must be >= 1"),
    ],
)
def test_validate_chain_rejects_broken_chains(
    migrations: tuple[Migration, ...], target: int, message: str
) -> None:
    with pytest.raises(MigrationError, match=message):
        validate_migration_chain(migrations, target)


@pytest.mark.unit
def test_validate_chain_rejects_stale_checksum() -> None:
    original = DEFAULT_MIGRATIONS[0]
    stale = Migration(
        version=original.version,
        name=original.name,
        statements=(*original.statements, "SELECT 1"),
        checksum=original.checksum,
    )

    with pytest.raises(MigrationError, match="stale checksum"):
        validate_migration_chain((stale,), 1)


@pytest.mark.unit
def test_schema_sorts_migrations_and_reports_latest_version() -> None:
    schema = MigrationSchema((MIGRATION_0002, *DEFAULT_MIGRATIONS))

    assert [item.version for item in schema.migrations] == [1, 2]
    assert schema.latest_version == 2
    assert schema.downgrade_policy == "reject"


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs",
    [
        {"journal_mode": "bogus"},
        {"downgrade_policy": "ignore"},
        {"busy_timeout_ms": -1},
    ],
)
def test_schema_rejects_invalid_options(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        MigrationSchema(**kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
def test_on_create_applies_migrations_and_records_them() -> None:
    schema = MigrationSchema(MIGRATIONS_V2)
    with closing(sqlite3.connect(":memory:", isolation_level=None)) as conn:
        schema.on_configure(conn)
        schema.on_create(conn, 2)

        assert {"todo_lists", "todo_items", "todo_tags", "schema_migrations"}.issubset(
            table_names(conn)
        )
        recorded = schema.applied_migrations(conn)
        assert [record.name for record in recorded.values()] == [
            "initial_todo_schema",
            "todo_item_due_dates",
        ]
        assert all(record.applied_at.endswith("Z") for record in recorded.values())


@pytest.mark.unit
def test_applied_migrations_is_empty_without_bookkeeping_table() -> None:
    with closing(sqlite3.connect(":memory:")) as conn:
        assert MigrationSchema().applied_migrations(conn) == {}


@pytest.mark.unit
def test_upgrade_trusts_user_version_for_unrecorded_history() -> None:
    schema = MigrationSchema(MIGRATIONS_V2)
    with closing(sqlite3.connect(":memory:", isolation_level=None)) as conn:
        for statement in DEFAULT_MIGRATIONS[0].statements:
            conn.execute(statement)

        schema.on_upgrade(conn, 1, 2)

        assert sorted(schema.applied_migrations(conn)) == [2]
        assert "todo_tags" in table_names(conn)


@pytest.mark.unit
def test_foreign_keys_are_enforced_after_configure() -> None:
    schema = MigrationSchema()
    with closing(sqlite3.connect(":memory:", isolation_level=None)) as conn:
        schema.on_configure(conn)
        schema.on_create(conn, 1)

        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                """
                INSERT INTO todo_items (list_id, title, position, created_at, updated_at)
                VALUES (999, 'orphan', 0, '2026-01-01T00:00:00Z', '2026-01-01T00:00:00Z')
                """
            )


@pytest.mark.unit
def test_drop_all_objects_leaves_empty_schema() -> None:
    schema = MigrationSchema(MIGRATIONS_V2)
    with closing(sqlite3.connect(":memory:", isolation_level=None)) as conn:
        schema.on_configure(conn)
        schema.on_create(conn, 2)
        conn.execute("CREATE VIEW open_items AS SELECT * FROM todo_items WHERE done = 0")

        conn.execute("BEGIN")
        drop_all_objects(conn)
        conn.execute("COMMIT")

        remaining = conn.execute(
            "SELECT name FROM sqlite_master WHERE name NOT LIKE 'sqlite_%'"
        ).fetchall()
        assert remaining == []
