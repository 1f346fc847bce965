"""Exception hierarchy for database lifecycle failures."""

from __future__ import annotations

from pathlib import Path


class PersistenceError(RuntimeError):
    """Base class for persistence errors."""


class MigrationError(PersistenceError):
    """Raised when a migration chain is invalid or cannot be applied safely."""


class OpenError(PersistenceError):
    """Raised when the database cannot be opened; ``__cause__`` holds the underlying error."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class BusyError(OpenError):
    """Raised when bounded busy retries are exhausted while opening."""


class CorruptionError(OpenError):
    """Raised when SQLite reports possible corruption of the database file."""


class DowngradeError(OpenError):
    """Raised when the stored schema version is newer than the requested one."""

    def __init__(
        self,
        stored_version: int,
        requested_version: int,
        *,
        path: Path | None = None,
    ) -> None:
        location = f" for {path}" if path is not None else ""
        super().__init__(
            f"database schema is newer than supported{location} "
            f"(stored={stored_version}, requested={requested_version}); "
            "upgrade the application or remove the database file",
            path=path,
        )
        self.stored_version = stored_version
        self.requested_version = requested_version


__all__ = [
    "BusyError",
    "CorruptionError",
    "DowngradeError",
    "MigrationError",
    "OpenError",
    "PersistenceError",
]
