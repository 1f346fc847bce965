"""Stable constants shared across the persistence layer."""

from __future__ import annotations

from typing import Final

# Persisted database identity.
DATABASE_NAME: Final[str] = "TODO_LIST_PROVIDER.db"
DATABASE_VERSION: Final[int] = 1

# Directory created under the platform data directory.
APP_DIR_NAME: Final[str] = "todo_list_provider"

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Root logger name for the package.
LOGGER_NAME: Final[str] = "todo_list_provider"

__all__ = [
    "APP_DIR_NAME",
    "CONFIG_SCHEMA_VERSION",
    "DATABASE_NAME",
    "DATABASE_VERSION",
    "LOGGER_NAME",
]
