"""
todo-list-provider config package public API.

File: src/todo_list_provider/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Non-functional requirements
- Keep import-time surface small and deterministic.
"""

from todo_list_provider.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from todo_list_provider.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ProviderConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "PATH_FIELDS",
    "ProviderConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "validate_config",
]
