"""
todo-list-provider — platform path utilities

File: src/todo_list_provider/utils/paths.py

Purpose
- Resolve the per-user data directory the database file lives in, following
  each platform's storage convention.

Functional requirements
- Windows: ``%LOCALAPPDATA%`` (falling back to ``%APPDATA%``, then the home
  directory's ``AppData/Local``).
- macOS: ``~/Library/Application Support``.
- Other POSIX: ``$XDG_DATA_HOME`` when absolute, else ``~/.local/share``.

Non-functional requirements
- Standard library only; resolution never touches the filesystem.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from todo_list_provider.constants import APP_DIR_NAME, DATABASE_NAME

if TYPE_CHECKING:
    from collections.abc import Mapping

PathLike = str | os.PathLike[str]

__all__ = [
    "database_path",
    "platform_data_directory",
]


def platform_data_directory(
    app_name: str = APP_DIR_NAME,
    *,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> Path:
    """
    Return the platform-appropriate data directory for ``app_name``.

    ``platform``, ``environ`` and ``home`` default to the running process and
    exist so resolution can be exercised for every platform from one host.
    """

    name = _validate_component(app_name, label="app_name")
    resolved_platform = sys.platform if platform is None else platform
    env = os.environ if environ is None else environ
    home_dir = Path.home() if home is None else home

    if resolved_platform.startswith("win"):
        base = _first_absolute(env.get("LOCALAPPDATA"), env.get("APPDATA"))
        if base is None:
            base = home_dir / "AppData" / "Local"
    elif resolved_platform == "darwin":
        base = home_dir / "Library" / "Application Support"
    else:
        base = _first_absolute(env.get("XDG_DATA_HOME"))
        if base is None:
            base = home_dir / ".local" / "share"

    return base / name


def database_path(data_dir: PathLike, database_name: str = DATABASE_NAME) -> Path:
    """Join ``data_dir`` with the database file name."""

    name = _validate_component(database_name, label="database_name")
    return Path(data_dir).expanduser() / name


def _first_absolute(*candidates: str | None) -> Path | None:
    for candidate in candidates:
        if candidate is None:
            continue
        stripped = candidate.strip()
        if not stripped:
            continue
        path = Path(stripped)
        # XDG requires absolute paths; relative values are ignored.
        if path.is_absolute():
            return path
    return None


def _validate_component(value: str, *, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} must not be empty")
    if normalized in {".", ".."} or Path(normalized).name != normalized or "\\" in normalized:
        raise ValueError(f"{label} must be a single path component, got {value!r}")
    if "\x00" in normalized:
        raise ValueError(f"{label} must not contain NUL bytes")
    return normalized
