"""
wark — structured logging

File: src/wark/observability/logging.py
Last updated: 2026-10-18

Purpose
- Write one JSON object per log line for the engine, the sweeper and the CLI.

What should be included in this file
- ``setup_logging`` driven by the ``[observability]`` config table.
- A queue-backed pipeline: producers never block on disk; a ``QueueListener`` drains to sinks.
- ``configure_structlog`` so component loggers created with ``structlog.get_logger`` land in
  the same sinks as stdlib records.
- ``correlation_scope`` binding ticket/worker/claim/sweep identifiers onto every record.

Functional requirements
- Values under secret-looking keys, ``token=...`` style assignments and bearer tokens are
  masked before a line is written.
- A full queue drops the record and counts it; logging never raises into ticket operations.
"""

from __future__ import annotations

import atexit
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Final

import structlog

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

JSONValue = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]

MASK: Final[str] = "***REDACTED***"
_ROOT_LOGGER: Final[str] = "wark"

CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "session_id",
    "ticket_id",
    "ticket_key",
    "worker_id",
    "claim_id",
    "sweep_id",
)

_SECRET_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)
_ASSIGNMENT_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b(\s*[:=]\s*)[^\s,;]+"
)
_BEARER_RE: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord carries, plus the ones structlog's renderer adds.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName", "level", "timestamp", "event", "correlation"}


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    log_dir: Path | str = Path(".wark/logs")
    session_id: str | None = None
    logger_name: str = _ROOT_LOGGER
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "wark.jsonl"
    log_to_file: bool = True
    log_to_stderr: bool = False
    max_bytes: int = 10_000_000
    backup_count: int = 5
    redact_keys: tuple[str, ...] = ()


def configure_structlog() -> None:
    """Route ``structlog.get_logger(...)`` events into the stdlib ``wark`` logger tree."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


# Correlation


def get_correlation_context() -> dict[str, str]:
    return {
        key: value
        for key, value in structlog.contextvars.get_contextvars().items()
        if isinstance(value, str)
    }


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind identifiers for the duration of the block; ``None`` hides an outer binding."""

    previous = structlog.contextvars.get_contextvars()
    scoped = {key: value for key, value in previous.items() if fields.get(key, "") is not None}
    for key, value in fields.items():
        if value is not None and value.strip():
            scoped[key] = value.strip()
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**scoped)
    try:
        yield
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**previous)


# Record shaping


class _Redactor:
    def __init__(self, extra_terms: tuple[str, ...] = ()) -> None:
        self._terms = _SECRET_KEY_TERMS + tuple(
            term.strip().lower() for term in extra_terms if term.strip()
        )

    def __call__(self, value: JSONValue, key: str | None = None) -> JSONValue:
        if key is not None and any(term in key.lower() for term in self._terms):
            return MASK
        if isinstance(value, str):
            masked = _ASSIGNMENT_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{MASK}", value)
            return _BEARER_RE.sub(f"Bearer {MASK}", masked)
        if isinstance(value, list):
            return [self(item) for item in value]
        if isinstance(value, dict):
            return {name: self(item, name) for name, item in value.items()}
        return value


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Enum):
        return _to_json(value.value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_to_json(item) for item in value]
        if isinstance(value, (set, frozenset)):
            items.sort(key=lambda item: json.dumps(item, sort_keys=True))
        return items
    return repr(value)


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redactor: _Redactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        line: dict[str, JSONValue] = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": str(self._redact(record.getMessage())),
            "session_id": self._session_id,
        }

        bound = getattr(record, "correlation", None) or {}
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None) or bound.get(key)
            if isinstance(value, str) and value.strip():
                line[key] = value.strip()

        extras = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CORRELATION_KEYS and not key.startswith("_")
        }
        if extras:
            line["fields"] = self._redact(extras)
        if record.exc_info:
            line["exception"] = str(self._redact(self.formatException(record.exc_info)))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Snapshots the correlation context at emit time and drops records on a full queue."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = get_correlation_context()
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._lock:
                self.dropped += 1


# Lifecycle


class StructuredLoggingHandle:
    """An installed pipeline; ``shutdown`` drains the queue and closes the sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_id: str,
        log_path: Path | None,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.session_id = session_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self.is_shutdown = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def shutdown(self) -> None:
        with self._lock:
            if self.is_shutdown:
                return
            # stop() enqueues a sentinel and joins the listener thread, draining the queue.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self.is_shutdown = True


_active: StructuredLoggingHandle | None = None
_active_lock = threading.Lock()
_atexit_registered = False


def _level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


def _build_sinks(config: LoggingConfig) -> tuple[list[logging.Handler], Path | None]:
    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_to_file:
        filename = config.log_filename.strip()
        if not filename or Path(filename).name != filename:
            raise ValueError(f"log_filename must be a bare file name, got {config.log_filename!r}")
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / filename
        sinks.append(
            logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=max(1, config.max_bytes),
                backupCount=max(1, config.backup_count),
                encoding="utf-8",
            )
        )
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler())
    return sinks or [logging.NullHandler()], log_path


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install the JSON-lines pipeline on ``config.logger_name``, replacing any previous one."""

    global _active, _atexit_registered

    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    session_id = (config.session_id or "").strip() or uuid.uuid4().hex[:12]
    level = _level(config.level)

    shutdown_logging()

    sinks, log_path = _build_sinks(config)
    formatter = _JsonLineFormatter(
        session_id=session_id, redactor=_Redactor(config.redact_keys)
    )
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        session_id=session_id,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
    if not _atexit_registered:
        atexit.register(shutdown_logging)
        _atexit_registered = True
    return handle


def setup_logging(
    observability: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
    session_id: str | None = None,
) -> logging.Logger:
    """Install logging from a validated ``[observability]`` table; returns the ``wark`` logger."""

    table = dict(observability or {})
    redact_keys = table.get("redact_keys") or ()
    handle = setup_structured_logging(
        LoggingConfig(
            log_dir=log_dir if log_dir is not None else str(table.get("log_dir", ".wark/logs")),
            session_id=session_id,
            level=str(table.get("log_level", "INFO")),
            log_to_file=bool(table.get("log_to_file", True)),
            log_to_stderr=bool(table.get("log_to_stderr", False)),
            redact_keys=tuple(str(item) for item in redact_keys),  # type: ignore[union-attr]
        )
    )
    return handle.logger


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    global _active

    with _active_lock:
        target = handle if handle is not None else _active
        if target is None:
            return
        if _active is target:
            _active = None
    target.shutdown()


__all__ = [
    "CORRELATION_KEYS",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
