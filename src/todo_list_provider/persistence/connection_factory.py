"""
todo-list-provider — shared database connection lifecycle

File: src/todo_list_provider/persistence/connection_factory.py

Purpose
- Own the single process-wide SQLite connection: open it lazily on first use,
  at most once even under concurrent callers, and close it on request.

Concurrency model
- ``open_connection`` reads the handle without the lock (fast path). Attribute
  assignment is a single reference store made after the connection is fully
  opened, so readers see either ``None`` or a ready handle.
- The slow path takes ``threading.Lock`` and re-checks before opening, so only
  one underlying open is ever in flight.
- ``close_connection`` is not synchronized against ``open_connection``. Callers
  must serialize lifecycle boundaries (startup/shutdown); a concurrent close and
  open may hand out a handle that is being closed.
- An in-flight open cannot be cancelled. Cancelling ``open_connection_async``
  abandons the await but the worker thread still finishes and stores the handle.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any
from uuid import uuid4

from todo_list_provider.constants import DATABASE_NAME, DATABASE_VERSION
from todo_list_provider.observability.logging import correlation_scope
from todo_list_provider.persistence.engine import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    close_database,
    open_database,
)
from todo_list_provider.persistence.errors import OpenError
from todo_list_provider.persistence.schema import MigrationSchema, SchemaCallbacks
from todo_list_provider.utils.paths import PathLike, database_path, platform_data_directory

logger = logging.getLogger(__name__)

Opener = Callable[..., sqlite3.Connection]
Closer = Callable[[sqlite3.Connection], None]


class ConnectionFactory:
    """Lazily opened, process-wide SQLite connection with schema callbacks."""

    def __init__(
        self,
        *,
        data_dir: PathLike | None = None,
        database_name: str = DATABASE_NAME,
        version: int = DATABASE_VERSION,
        callbacks: SchemaCallbacks | None = None,
        opener: Opener = open_database,
        closer: Closer = close_database,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise ValueError(f"version must be an integer >= 1, got {version!r}")
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")

        self._data_dir = Path(data_dir).expanduser() if data_dir else None
        self._database_name = database_name
        self._version = version
        self._callbacks: SchemaCallbacks = (
            callbacks if callbacks is not None else MigrationSchema(busy_timeout_ms=busy_timeout_ms)
        )
        self._opener = opener
        self._closer = closer
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms

        self._handle: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._open_count = 0

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        callbacks: SchemaCallbacks | None = None,
        version: int = DATABASE_VERSION,
    ) -> ConnectionFactory:
        """Build a factory from a validated config mapping (see ``load_config``)."""

        database = config["database"]
        busy_timeout_ms = int(database["busy_timeout_ms"])
        if callbacks is None:
            callbacks = MigrationSchema(
                journal_mode=database["journal_mode"],
                busy_timeout_ms=busy_timeout_ms,
                downgrade_policy=database["downgrade_policy"],
            )
        return cls(
            data_dir=database["data_dir"] or None,
            version=version,
            callbacks=callbacks,
            busy_timeout_ms=busy_timeout_ms,
            busy_retry_limit=int(database["busy_retry_limit"]),
            busy_retry_backoff_ms=int(database["busy_retry_backoff_ms"]),
        )

    @property
    def path(self) -> Path:
        data_dir = self._data_dir if self._data_dir is not None else platform_data_directory()
        return database_path(data_dir, self._database_name)

    @property
    def database_name(self) -> str:
        return self._database_name

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def open_count(self) -> int:
        """Number of underlying opens performed by this factory."""
        return self._open_count

    def open_connection(self) -> sqlite3.Connection:
        """Return the shared connection, opening it on first use."""

        handle = self._handle
        if handle is not None:
            return handle

        with self._lock:
            if self._handle is not None:
                return self._handle

            open_id = uuid4().hex
            with correlation_scope(open_id=open_id):
                target: Path | None = None
                try:
                    target = self.path
                    handle = self._opener(
                        target,
                        version=self._version,
                        callbacks=self._callbacks,
                        busy_timeout_ms=self._busy_timeout_ms,
                        busy_retry_limit=self._busy_retry_limit,
                        busy_retry_backoff_ms=self._busy_retry_backoff_ms,
                    )
                except OpenError:
                    logger.exception("failed to open shared connection")
                    raise
                except Exception as exc:
                    logger.exception("failed to open shared connection")
                    raise OpenError(
                        f"opening {self._database_name} failed: {exc}",
                        path=target,
                    ) from exc

                if handle is None:
                    raise OpenError(
                        f"opening {self._database_name} returned no connection", path=target
                    )
                self._open_count += 1
                self._handle = handle
                logger.info(
                    "shared connection opened",
                    extra={"database": target, "schema_version": self._version},
                )
            return handle

    def close_connection(self) -> None:
        """Close the shared connection if one is open; never raises."""

        handle = self._handle
        if handle is None:
            return
        try:
            self._closer(handle)
        except Exception:
            logger.warning("error while closing shared connection; ignoring", exc_info=True)
        finally:
            self._handle = None
        logger.info("shared connection closed", extra={"database_name": self._database_name})

    async def open_connection_async(self) -> sqlite3.Connection:
        handle = self._handle
        if handle is not None:
            return handle
        return await asyncio.to_thread(self.open_connection)

    async def close_connection_async(self) -> None:
        await asyncio.to_thread(self.close_connection)


_FACTORY_LOCK = threading.Lock()
_FACTORY: ConnectionFactory | None = None


def get_connection_factory() -> ConnectionFactory:
    """Return the process-wide factory, creating it from ``load_config()`` on first access."""

    global _FACTORY
    factory = _FACTORY
    if factory is not None:
        return factory
    with _FACTORY_LOCK:
        if _FACTORY is None:
            from todo_list_provider.config.loader import load_config

            _FACTORY = ConnectionFactory.from_config(load_config())
        return _FACTORY


def reset_connection_factory() -> None:
    """Close and discard the process-wide factory."""

    global _FACTORY
    with _FACTORY_LOCK:
        factory = _FACTORY
        _FACTORY = None
    if factory is not None:
        factory.close_connection()


def open_connection() -> sqlite3.Connection:
    """Open (or return) the shared connection of the process-wide factory."""

    return get_connection_factory().open_connection()


def close_connection() -> None:
    """Close the shared connection of the process-wide factory, if any."""

    with _FACTORY_LOCK:
        factory = _FACTORY
    if factory is not None:
        factory.close_connection()


__all__ = [
    "Closer",
    "ConnectionFactory",
    "Opener",
    "close_connection",
    "get_connection_factory",
    "open_connection",
    "reset_connection_factory",
]
