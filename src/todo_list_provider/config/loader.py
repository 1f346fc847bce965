"""
todo-list-provider — runtime config loader.

File: src/todo_list_provider/config/loader.py

Purpose
- Produce the effective configuration for the embedding application from
  built-in defaults, an optional config file, and programmatic overrides.

Precedence
- overrides > file > defaults.
- Without an explicit path, ``todo_list_provider.toml`` in the working
  directory is read when present. An explicit path must exist.
- ``.yaml``/``.yml`` files are parsed with PyYAML, everything else as TOML.
- There are no environment-variable overrides.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

import yaml

from todo_list_provider.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "todo_list_provider.toml"
YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})


class ConfigLoadError(ValueError):
    """Config file missing, unreadable or malformed, or an override key is invalid."""


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``overrides`` uses dotted keys, e.g. ``{"database.busy_timeout_ms": 250}``.
    Relative ``data_dir``/``log_dir`` values resolve against the config file's
    directory; empty values are kept so callers fall back to platform defaults.
    """

    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
        from_file = _read_config_file(source) if source.exists() else {}
    else:
        source = Path(config_path).expanduser().resolve()
        if not source.exists():
            raise ConfigLoadError(f"config file not found: {source}")
        from_file = _read_config_file(source)

    layered = merge_config(default_config(), from_file)
    layered = merge_config(layered, _expand_dotted(overrides or {}))
    validated = assert_valid_config(layered)
    return assert_valid_config(normalize_paths(validated, base_dir=source.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make non-empty path fields absolute (POSIX separators) relative to ``base_dir``."""

    out = merge_config({}, config)
    for section, key in PATH_FIELDS:
        values = out.get(section)
        if not isinstance(values, dict):
            continue
        raw = values.get(key)
        if isinstance(raw, str) and raw:
            values[key] = _absolute_posix(raw, base_dir)
    return out


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _parse_toml(path: Path) -> object:
    with path.open("rb") as stream:
        return tomllib.load(stream)


def _parse_yaml(path: Path) -> object:
    with path.open("r", encoding="utf-8") as stream:
        return yaml.safe_load(stream)


_PARSE_ERRORS: Final[tuple[type[Exception], ...]] = (tomllib.TOMLDecodeError, yaml.YAMLError)


def _read_config_file(path: Path) -> dict[str, Any]:
    is_yaml = path.suffix.lower() in YAML_SUFFIXES
    parse: Callable[[Path], object] = _parse_yaml if is_yaml else _parse_toml
    try:
        document = parse(path)
    except _PARSE_ERRORS as exc:
        kind = "YAML" if is_yaml else "TOML"
        raise ConfigLoadError(f"invalid {kind} in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    # An empty YAML document parses to None.
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")
    return document


def _expand_dotted(overrides: Mapping[str, object]) -> dict[str, Any]:
    tree: dict[str, Any] = {}
    for dotted, value in overrides.items():
        parts = [part for part in dotted.split(".") if part] if isinstance(dotted, str) else []
        if not parts or not all(part.strip() for part in parts):
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        node = tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[parts[-1]] = merge_config({}, value) if isinstance(value, Mapping) else value
    return tree


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "YAML_SUFFIXES",
    "ConfigLoadError",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
