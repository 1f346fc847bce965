"""
todo-list-provider — configuration schema and validation.

File: src/todo_list_provider/config/schema.py

Purpose
- Define configuration defaults and the per-field rules they are checked against.

What is included in this file
- ``DEFAULT_CONFIG`` with the ``meta``, ``database`` and ``observability`` sections.
- A field table mapping each section key to its parser.
- Structured validation issues (dotted path + message) and a deep merge helper.

Functional requirements
- Every section and field is required after merging with defaults; unknown
  keys are reported, never silently dropped.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from todo_list_provider.constants import CONFIG_SCHEMA_VERSION
from todo_list_provider.persistence.engine import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
)
from todo_list_provider.persistence.schema import (
    DEFAULT_DOWNGRADE_POLICY,
    DEFAULT_JOURNAL_MODE,
    DOWNGRADE_POLICIES,
    JOURNAL_MODES,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Paths normalized relative to the config file; an empty value means "use the default".
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("database", "data_dir"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class DatabaseConfig(TypedDict):
    data_dir: str
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int
    journal_mode: Literal["wal", "delete", "truncate", "persist", "memory"]
    downgrade_policy: Literal["reject", "reset"]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool


class ProviderConfig(TypedDict):
    meta: MetaConfig
    database: DatabaseConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[ProviderConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "database": {
        "data_dir": "",
        "busy_timeout_ms": DEFAULT_BUSY_TIMEOUT_MS,
        "busy_retry_limit": DEFAULT_BUSY_RETRY_LIMIT,
        "busy_retry_backoff_ms": DEFAULT_BUSY_RETRY_BACKOFF_MS,
        "journal_mode": DEFAULT_JOURNAL_MODE,
        "downgrade_policy": DEFAULT_DOWNGRADE_POLICY,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "",
        "log_to_stdout": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` lists every failure found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: unknown failure"))


class _FieldError(ValueError):
    pass


_Parser = Callable[[object], object]


def _integer(*, minimum: int) -> _Parser:
    def parse(value: object) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _FieldError(f"expected integer, got {type(value).__name__}")
        if value < minimum:
            raise _FieldError(f"must be >= {minimum}")
        return value

    return parse


def _choice(allowed: Sequence[str], *, upper: bool = False) -> _Parser:
    def parse(value: object) -> str:
        if not isinstance(value, str):
            raise _FieldError(f"expected string, got {type(value).__name__}")
        candidate = value.strip().upper() if upper else value.strip()
        if candidate not in allowed:
            raise _FieldError(
                f"invalid value {candidate!r}; expected one of: {', '.join(sorted(allowed))}"
            )
        return candidate

    return parse


def _path_text(value: object) -> str:
    if not isinstance(value, str):
        raise _FieldError(f"expected string, got {type(value).__name__}")
    if "\x00" in value:
        raise _FieldError("must not contain NUL bytes")
    return value.strip()


def _boolean(value: object) -> bool:
    if not isinstance(value, bool):
        raise _FieldError(f"expected boolean, got {type(value).__name__}")
    return value


_SECTIONS: Final[Mapping[str, Mapping[str, _Parser]]] = {
    "meta": {
        "schema_version": _integer(minimum=1),
    },
    "database": {
        "data_dir": _path_text,
        "busy_timeout_ms": _integer(minimum=0),
        "busy_retry_limit": _integer(minimum=0),
        "busy_retry_backoff_ms": _integer(minimum=0),
        "journal_mode": _choice(JOURNAL_MODES),
        "downgrade_policy": _choice(DOWNGRADE_POLICIES),
    },
    "observability": {
        "log_level": _choice(LOG_LEVELS, upper=True),
        "log_dir": _path_text,
        "log_to_stdout": _boolean,
    },
}


def default_config() -> ProviderConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade the config file to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade todo-list-provider"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither input is mutated."""

    merged: dict[str, Any] = {key: _copy_value(value) for key, value in base.items()}
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _copy_value(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against the field table, collecting every issue found."""

    if not isinstance(config, Mapping):
        issue = ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=(issue,))

    issues: list[ConfigValidationIssue] = []
    _check_keys(config, _SECTIONS, "", issues)

    out: dict[str, Any] = {}
    for section, fields in _SECTIONS.items():
        raw = config.get(section)
        if raw is None:
            continue
        if not isinstance(raw, Mapping):
            issues.append(
                ConfigValidationIssue(section, f"expected object, got {type(raw).__name__}")
            )
            continue
        _check_keys(raw, fields, section, issues)
        parsed: dict[str, Any] = {}
        for key, parse in fields.items():
            if key not in raw:
                continue
            try:
                parsed[key] = parse(raw[key])
            except _FieldError as exc:
                issues.append(ConfigValidationIssue(f"{section}.{key}", str(exc)))
        out[section] = parsed

    found_version = out.get("meta", {}).get("schema_version")
    if isinstance(found_version, int) and found_version != ConfigSchemaVersion:
        issues.append(
            ConfigValidationIssue("meta.schema_version", migration_guidance(found_version))
        )

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=out, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _check_keys(
    payload: Mapping[Any, object],
    expected: Mapping[str, object],
    prefix: str,
    issues: list[ConfigValidationIssue],
) -> None:
    location = prefix or "<root>"
    names = [key for key in payload if isinstance(key, str)]
    if len(names) != len(payload):
        issues.append(ConfigValidationIssue(location, "object keys must be strings"))
    for key in sorted(set(names) - set(expected)):
        issues.append(ConfigValidationIssue(_dotted(prefix, key), "unknown field"))
    for key in sorted(set(expected) - set(names)):
        issues.append(ConfigValidationIssue(_dotted(prefix, key), "missing required field"))


def _dotted(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _copy_value(value: object) -> object:
    if isinstance(value, Mapping):
        return merge_config({}, value)
    return copy.deepcopy(value)


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DatabaseConfig",
    "MetaConfig",
    "ObservabilityConfig",
    "ProviderConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
