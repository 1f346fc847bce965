"""
todo-list-provider — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML/YAML files, and
  explicit overrides.

What this test file should cover
- Precedence: overrides > file > defaults.
- Path normalization relative to the config file.
- Missing and malformed config files.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from todo_list_provider.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from todo_list_provider.config.schema import ConfigValidationError, default_config


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.unit
def test_missing_default_file_yields_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    assert load_config() == default_config()


@pytest.mark.unit
def test_default_file_is_read_from_working_directory(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_config(
        tmp_path / DEFAULT_CONFIG_FILE,
        """
[database]
busy_timeout_ms = 750
""".strip(),
    )
    monkeypatch.chdir(tmp_path)

    config = load_config()

    assert config["database"]["busy_timeout_ms"] == 750
    assert config["database"]["journal_mode"] == "wal"


@pytest.mark.unit
def test_precedence_overrides_file_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "provider.toml"
    _write_config(
        config_path,
        """
[database]
busy_retry_limit = 9
downgrade_policy = "reset"

[observability]
log_level = "debug"
""".strip(),
    )

    config = load_config(
        config_path,
        overrides={"database.busy_retry_limit": 2, "observability.log_to_stdout": True},
    )

    assert config["database"]["busy_retry_limit"] == 2
    assert config["database"]["downgrade_policy"] == "reset"
    assert config["database"]["busy_retry_backoff_ms"] == 25
    assert config["observability"]["log_level"] == "DEBUG"
    assert config["observability"]["log_to_stdout"] is True


@pytest.mark.unit
def test_relative_paths_resolve_against_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "etc" / "provider.toml"
    _write_config(
        config_path,
        """
[database]
data_dir = "../state"

[observability]
log_dir = "logs"
""".strip(),
    )

    config = load_config(config_path)

    assert config["database"]["data_dir"] == (tmp_path / "state").resolve().as_posix()
    assert config["observability"]["log_dir"] == (tmp_path / "etc" / "logs").resolve().as_posix()


@pytest.mark.unit
def test_empty_paths_are_left_for_platform_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "provider.toml"
    _write_config(config_path, "")

    config = load_config(config_path)

    assert config["database"]["data_dir"] == ""
    assert config["observability"]["log_dir"] == ""


@pytest.mark.unit
def test_yaml_config_is_supported(tmp_path: Path) -> None:
    config_path = tmp_path / "provider.yaml"
    _write_config(
        config_path,
        """
database:
  journal_mode: delete
  busy_timeout_ms: 100
""".strip(),
    )

    config = load_config(config_path)

    assert config["database"]["journal_mode"] == "delete"
    assert config["database"]["busy_timeout_ms"] == 100


@pytest.mark.unit
def test_empty_yaml_file_yields_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "provider.yml"
    _write_config(config_path, "")

    assert load_config(config_path)["database"] == default_config()["database"]


@pytest.mark.unit
def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "text", "message"),
    [
        ("broken.toml", "[database\nbusy_timeout_ms = 1", "invalid TOML"),
        ("broken.yaml", "database: [unclosed", "invalid YAML"),
        ("list.yaml", "- 1\n- 2", "config root must be an object"),
    ],
)
def test_malformed_files_raise_load_error(
    tmp_path: Path, name: str, text: str, message: str
) -> None:
    config_path = tmp_path / name
    _write_config(config_path, text)

    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path)


@pytest.mark.unit
def test_invalid_values_raise_validation_error(tmp_path: Path) -> None:
    config_path = tmp_path / "provider.toml"
    _write_config(
        config_path,
        """
[database]
journal_mode = "fast"
busy_timeout_ms = -5
""".strip(),
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path)

    paths = {issue.path for issue in excinfo.value.issues}
    assert paths == {"database.journal_mode", "database.busy_timeout_ms"}


@pytest.mark.unit
@pytest.mark.parametrize("key", ["", "   ", "..."])
def test_blank_override_keys_are_rejected(tmp_path: Path, key: str) -> None:
    config_path = tmp_path / "provider.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="invalid override key"):
        load_config(config_path, overrides={key: 1})


@pytest.mark.unit
def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "provider.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path))
    second = dump_effective_config(load_config(config_path))

    assert first == second
    assert json.loads(first)["meta"] == {"schema_version": 1}
