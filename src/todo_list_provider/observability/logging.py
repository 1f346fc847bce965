"""
todo-list-provider — structured logging

File: src/todo_list_provider/observability/logging.py

Purpose
- Emit one JSON object per log line to a per-session file, through a bounded
  queue so that callers on the open path never block on disk I/O.
- Carry correlation fields (session_id, open_id) bound with ``correlation_scope``.

Operational notes
- Correlation is captured on the emitting thread; the listener thread only formats.
- A full queue drops records and counts them instead of blocking.
- Library modules log through ``logging.getLogger(__name__)`` and never configure
  handlers themselves; ``setup_logging`` is for the embedding application.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import json
import logging
import logging.handlers
import math
import queue
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from todo_list_provider.constants import LOGGER_NAME
from todo_list_provider.utils.paths import platform_data_directory

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("session_id", "correlation_id", "open_id")

# Attributes every LogRecord carries; anything else came from ``extra=``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "asctime",
    "correlation",
    "message",
    "taskName",
}

_EXCEPTION_FORMATTER: Final[logging.Formatter] = logging.Formatter()

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "todo_list_provider_correlation", default=()
)

_ACTIVE_LOCK = threading.Lock()
_ACTIVE: StructuredLoggingHandle | None = None
_ATEXIT_HOOKED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one structured logging session."""

    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "todo_list_provider.jsonl"
    log_to_stdout: bool = False


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = LOGGER_NAME,
) -> logging.Logger:
    """Configure structured logging from the ``observability`` config section.

    ``log_dir`` overrides the configured directory. When neither is set (or the
    configured value is empty) logs go to ``<platform data dir>/logs``.
    """

    section = observability_config or {}
    configured_dir = log_dir if log_dir is not None else section.get("log_dir", "")
    if isinstance(configured_dir, (str, Path)) and str(configured_dir).strip():
        base_log_dir = Path(configured_dir)
    else:
        base_log_dir = platform_data_directory() / "logs"

    level = section.get("log_level", "INFO")
    handle = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=base_log_dir,
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
        )
    )
    return handle.logger


class _ContextQueueHandler(logging.handlers.QueueHandler):
    """Snapshots correlation on the caller's thread and drops records when full."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        snapshot = copy.copy(record)
        context = get_correlation_context()
        if context:
            snapshot.correlation = context
        snapshot.message = record.getMessage()
        snapshot.msg = snapshot.message
        snapshot.args = None
        if record.exc_info and not snapshot.exc_text:
            snapshot.exc_text = _EXCEPTION_FORMATTER.formatException(record.exc_info)
        snapshot.exc_info = None
        return snapshot

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, *, session_id: str) -> None:
        super().__init__()
        self._session_id = session_id

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {"session_id": self._session_id}

        bound = getattr(record, "correlation", None)
        if isinstance(bound, Mapping):
            event.update((str(key), str(value)) for key, value in bound.items())
        for key in _CORRELATION_KEYS:
            explicit = getattr(record, key, None)
            if isinstance(explicit, str) and explicit.strip():
                event[key] = explicit.strip()

        event["timestamp"] = _utc_timestamp(record.created)
        event["level"] = record.levelname
        event["logger"] = record.name
        event["message"] = record.getMessage()

        fields = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
            and key not in _CORRELATION_KEYS
            and not key.startswith("_")
        }
        if fields:
            event["fields"] = fields

        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            event["exception"] = record.exc_text

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """Owns the listener thread and sinks of one ``setup_structured_logging`` call."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_id: str,
        session_log_dir: Path,
        log_path: Path,
        queue_handler: _ContextQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.session_id = session_id
        self.session_log_dir = session_log_dir
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait (bounded) for queued records to be written, then flush sinks."""

        pending: queue.Queue[logging.LogRecord] = self._queue_handler.queue  # type: ignore[assignment]
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.005)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Replace any active session and start queue-backed JSON logging."""

    session_id = _non_empty(config.session_id, "session_id")
    logger_name = _non_empty(config.logger_name, "logger_name")
    log_filename = _non_empty(config.log_filename, "log_filename")
    if Path(log_filename).name != log_filename:
        raise ValueError("log_filename must not include path separators")
    if isinstance(config.queue_size, bool) or config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _resolve_level(config.level)

    shutdown_logging()

    session_log_dir = Path(config.base_log_dir) / session_id
    session_log_dir.mkdir(parents=True, exist_ok=True)
    log_path = session_log_dir / log_filename

    formatter = _JsonLinesFormatter(session_id=session_id)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    queue_handler = _ContextQueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        session_id=session_id,
        session_log_dir=session_log_dir,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    _activate(handle)
    return handle


def flush_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    target = handle if handle is not None else get_active_logging_handle()
    if target is not None:
        target.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Stop the listener and close sinks of ``handle`` (default: the active one)."""

    global _ACTIVE
    target = handle if handle is not None else get_active_logging_handle()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)
    with _ACTIVE_LOCK:
        if _ACTIVE is target:
            _ACTIVE = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _ACTIVE_LOCK:
        return _ACTIVE


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


def set_correlation_fields(
    **fields: str | None,
) -> contextvars.Token[tuple[tuple[str, str], ...]]:
    """Bind (or with ``None``, unbind) correlation fields; returns a reset token."""

    merged = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[_non_empty(key, "correlation key")] = _non_empty(value, "correlation value")
    return _CORRELATION.set(tuple(merged.items()))


def reset_correlation_fields(token: contextvars.Token[tuple[tuple[str, str], ...]]) -> None:
    _CORRELATION.reset(token)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def _activate(handle: StructuredLoggingHandle) -> None:
    global _ACTIVE, _ATEXIT_HOOKED
    with _ACTIVE_LOCK:
        _ACTIVE = handle
        if not _ATEXIT_HOOKED:
            atexit.register(shutdown_logging)
            _ATEXIT_HOOKED = True


def _non_empty(value: object, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{label} must not be empty")
    return stripped


def _resolve_level(level: int | str) -> int:
    if isinstance(level, bool):
        raise ValueError("level must be an int or a level name")
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        resolved = logging.getLevelNamesMapping().get(level.strip().upper())
        if resolved is not None:
            return resolved
    raise ValueError(f"unsupported logging level {level!r}")


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json(item) for item in value]
    return repr(value)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
