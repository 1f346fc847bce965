"""
todo-list-provider — SQLite open/close primitives

File: src/todo_list_provider/persistence/engine.py

Purpose
- Open a file-backed SQLite database and drive the versioned schema callbacks
  during the open sequence.

Open sequence
- ``NoFile -> Configure -> {Create | Upgrade | Downgrade | NoOp} -> Ready``.
- The stored version is ``PRAGMA user_version``; ``0`` means no prior schema.
- Create/Upgrade/Downgrade run inside a single ``BEGIN IMMEDIATE`` transaction
  together with the ``user_version`` write, so a failed callback leaves the
  file at its previous version.
- SQLITE_BUSY during configure or ``BEGIN IMMEDIATE`` is retried with
  exponential backoff before surfacing as ``BusyError``.
- Any failure closes the connection and raises ``OpenError`` (or a subclass).

Functional requirements
- Must re-plan the transition after taking the write lock, since another
  process may have migrated the file in the meantime.
- Must never run migration statements through ``executescript`` (it commits).
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Final, TypeAlias, TypeVar

from todo_list_provider.persistence.errors import (
    BusyError,
    CorruptionError,
    MigrationError,
    OpenError,
)

if TYPE_CHECKING:
    from todo_list_provider.persistence.schema import SchemaCallbacks
    from todo_list_provider.utils.paths import PathLike

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


@dataclass(frozen=True, slots=True)
class Create:
    """Fresh database: build the schema at ``version``."""

    kind: ClassVar[str] = "create"
    version: int


@dataclass(frozen=True, slots=True)
class Upgrade:
    """Stored schema is older than requested."""

    kind: ClassVar[str] = "upgrade"
    from_version: int
    to_version: int


@dataclass(frozen=True, slots=True)
class Downgrade:
    """Stored schema is newer than requested."""

    kind: ClassVar[str] = "downgrade"
    from_version: int
    to_version: int


@dataclass(frozen=True, slots=True)
class NoOp:
    """Stored schema already matches."""

    kind: ClassVar[str] = "noop"
    version: int


SchemaTransition: TypeAlias = Create | Upgrade | Downgrade | NoOp


def plan_transition(stored_version: int, requested_version: int) -> SchemaTransition:
    """Decide which lifecycle callback an open must dispatch."""

    if requested_version < 1:
        raise ValueError(f"requested schema version must be >= 1, got {requested_version}")
    if stored_version < 0:
        raise MigrationError(f"stored schema version must be >= 0, got {stored_version}")
    if stored_version == 0:
        return Create(version=requested_version)
    if stored_version < requested_version:
        return Upgrade(from_version=stored_version, to_version=requested_version)
    if stored_version > requested_version:
        return Downgrade(from_version=stored_version, to_version=requested_version)
    return NoOp(version=requested_version)


def read_stored_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    if row is None:
        raise MigrationError("PRAGMA user_version returned no row")
    value = row[0]
    if not isinstance(value, int):
        raise MigrationError(f"user_version must be an integer, got {type(value).__name__}")
    return value


def open_database(
    path: PathLike,
    *,
    version: int,
    callbacks: SchemaCallbacks,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
    busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
) -> sqlite3.Connection:
    """Open ``path`` at schema ``version``, running the lifecycle callbacks."""

    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ValueError(f"version must be an integer >= 1, got {version!r}")
    if busy_timeout_ms < 0:
        raise ValueError("busy_timeout_ms must be >= 0")
    if busy_retry_limit < 0:
        raise ValueError("busy_retry_limit must be >= 0")
    if busy_retry_backoff_ms < 0:
        raise ValueError("busy_retry_backoff_ms must be >= 0")

    target = Path(path).expanduser()
    existed = target.exists()
    logger.debug(
        "opening database",
        extra={"database": target, "requested_version": version, "file_existed": existed},
    )

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            target,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
    except (OSError, sqlite3.Error) as exc:
        raise _wrap_open_failure(exc, path=target, stage="connect") from exc

    stage = "configure"
    try:
        conn.row_factory = sqlite3.Row
        # Switching journal mode needs the file lock, so configure retries too.
        _with_busy_retry(
            lambda: callbacks.on_configure(conn),
            description="configure",
            retry_limit=busy_retry_limit,
            backoff_ms=busy_retry_backoff_ms,
            path=target,
        )

        stage = "read version"
        transition = plan_transition(read_stored_version(conn), version)
        if not isinstance(transition, NoOp):
            stage = "begin"
            _with_busy_retry(
                lambda: conn.execute("BEGIN IMMEDIATE"),
                description="BEGIN IMMEDIATE",
                retry_limit=busy_retry_limit,
                backoff_ms=busy_retry_backoff_ms,
                path=target,
            )
            try:
                transition = plan_transition(read_stored_version(conn), version)
                stage = transition.kind
                logger.info(
                    "applying schema transition %s",
                    transition.kind,
                    extra={"database": target, "transition": _describe(transition)},
                )
                _dispatch(conn, transition, callbacks)
                conn.execute(f"PRAGMA user_version = {int(version)}")
            except BaseException:
                if conn.in_transaction:
                    with suppress(sqlite3.Error):
                        conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

        stage = "open"
        on_open = getattr(callbacks, "on_open", None)
        if callable(on_open):
            on_open(conn, version)
    except OpenError as exc:
        _close_quietly(conn)
        if exc.path is None:
            exc.path = target
        raise
    except Exception as exc:
        _close_quietly(conn)
        raise _wrap_open_failure(exc, path=target, stage=stage) from exc
    except BaseException:
        _close_quietly(conn)
        raise

    logger.info(
        "database ready",
        extra={"database": target, "schema_version": version, "transition": transition.kind},
    )
    return conn


def close_database(conn: sqlite3.Connection) -> None:
    """Close ``conn``, rolling back any transaction left open by the caller."""

    if conn.in_transaction:
        conn.execute("ROLLBACK")
    conn.close()


def _dispatch(
    conn: sqlite3.Connection,
    transition: SchemaTransition,
    callbacks: SchemaCallbacks,
) -> None:
    if isinstance(transition, Create):
        callbacks.on_create(conn, transition.version)
    elif isinstance(transition, Upgrade):
        callbacks.on_upgrade(conn, transition.from_version, transition.to_version)
    elif isinstance(transition, Downgrade):
        callbacks.on_downgrade(conn, transition.from_version, transition.to_version)


def _describe(transition: SchemaTransition) -> dict[str, int | str]:
    if isinstance(transition, (Upgrade, Downgrade)):
        return {
            "kind": transition.kind,
            "from_version": transition.from_version,
            "to_version": transition.to_version,
        }
    return {"kind": transition.kind, "version": transition.version}


def _with_busy_retry(
    action: Callable[[], _T],
    *,
    description: str,
    retry_limit: int,
    backoff_ms: int,
    path: Path,
) -> _T:
    for attempt in range(retry_limit + 1):
        try:
            return action()
        except sqlite3.Error as exc:
            if not _is_busy_error(exc):
                raise
            if attempt < retry_limit:
                logger.debug(
                    "%s hit SQLITE_BUSY; retrying",
                    description,
                    extra={"database": path, "attempt": attempt + 1},
                )
                time.sleep((backoff_ms / 1000.0) * float(2**attempt))
                continue
            raise BusyError(
                f"{description} hit SQLITE_BUSY for {path} "
                f"after {retry_limit + 1} attempt(s): {exc}",
                path=path,
            ) from exc
    raise BusyError(f"{description} exhausted retries unexpectedly", path=path)


def _close_quietly(conn: sqlite3.Connection) -> None:
    try:
        conn.close()
    except sqlite3.Error:
        logger.warning("failed to close connection after open failure", exc_info=True)


def _is_busy_error(exc: sqlite3.Error) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


def _is_corruption_error(exc: sqlite3.Error) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)


def _wrap_open_failure(exc: BaseException, *, path: Path, stage: str) -> OpenError:
    if isinstance(exc, sqlite3.Error) and _is_corruption_error(exc):
        return CorruptionError(
            f"{stage} failed for {path}: {exc}. The file is not a usable SQLite database; "
            "restore it from a backup or remove it to start fresh.",
            path=path,
        )
    if isinstance(exc, sqlite3.Error) and _is_busy_error(exc):
        return BusyError(f"{stage} hit SQLITE_BUSY for {path}: {exc}", path=path)
    return OpenError(f"{stage} failed for {path}: {exc}", path=path)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "Create",
    "Downgrade",
    "NoOp",
    "SchemaTransition",
    "Upgrade",
    "close_database",
    "open_database",
    "plan_transition",
    "read_stored_version",
]
