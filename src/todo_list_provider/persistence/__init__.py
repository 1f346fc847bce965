"""
todo-list-provider — persistence package

File: src/todo_list_provider/persistence/__init__.py

Purpose
- Shared connection lifecycle, SQLite open/close primitives, and the
  versioned schema callbacks run while opening.

Non-functional requirements
- SQLite only (standard library ``sqlite3``); no pooling or query helpers.
"""

from todo_list_provider.persistence.connection_factory import (
    ConnectionFactory,
    close_connection,
    get_connection_factory,
    open_connection,
    reset_connection_factory,
)
from todo_list_provider.persistence.engine import (
    Create,
    Downgrade,
    NoOp,
    SchemaTransition,
    Upgrade,
    close_database,
    open_database,
    plan_transition,
    read_stored_version,
)
from todo_list_provider.persistence.errors import (
    BusyError,
    CorruptionError,
    DowngradeError,
    MigrationError,
    OpenError,
    PersistenceError,
)
from todo_list_provider.persistence.schema import (
    DEFAULT_MIGRATIONS,
    Migration,
    MigrationRecord,
    MigrationSchema,
    OpenHook,
    SchemaCallbacks,
)

__all__ = [
    "DEFAULT_MIGRATIONS",
    "BusyError",
    "ConnectionFactory",
    "CorruptionError",
    "Create",
    "Downgrade",
    "DowngradeError",
    "Migration",
    "MigrationError",
    "MigrationRecord",
    "MigrationSchema",
    "NoOp",
    "OpenHook",
    "OpenError",
    "PersistenceError",
    "SchemaCallbacks",
    "SchemaTransition",
    "Upgrade",
    "close_connection",
    "close_database",
    "get_connection_factory",
    "open_connection",
    "open_database",
    "plan_transition",
    "read_stored_version",
    "reset_connection_factory",
]
