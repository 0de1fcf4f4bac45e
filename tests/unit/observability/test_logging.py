"""
wark — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-18

Purpose
- Validate structured JSON logging with redaction, correlation metadata, and queue-backed reliability.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation from ``correlation_scope`` and structlog keywords.
- Multi-threaded logging stability.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from wark.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"wark.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            log_dir=tmp_path,
            session_id="session-redaction",
            logger_name=logger_name,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(ticket_key="WEB-12", worker_id="agent-3"):
        logger.info(
            "payload token=tok-FAKE and api_key=sk-FAKE123456789012345",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )

    shutdown_logging(handle)

    assert handle.log_path is not None
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["session_id"] == "session-redaction"
    assert first["ticket_key"] == "WEB-12"
    assert first["worker_id"] == "agent-3"
    assert first["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "sk-FAKE" not in line
    assert "hunter2" not in line


def test_correlation_scope_restores_previous_fields() -> None:
    with correlation_scope(ticket_key="WEB-1"):
        with correlation_scope(worker_id="agent-1", ticket_key=None):
            assert get_correlation_context() == {"worker_id": "agent-1"}
        assert get_correlation_context() == {"ticket_key": "WEB-1"}
    assert get_correlation_context() == {}


def test_setup_logging_wrapper_uses_observability_config(tmp_path: Path) -> None:
    logger = setup_logging(
        {
            "log_level": "INFO",
            "log_dir": str(tmp_path),
            "log_to_file": True,
            "redact_keys": ["worker_note"],
        },
        session_id="session-wrapper",
    )

    logger.info("hello", extra={"token": "t-123", "worker_note": "private"})
    logger.debug("filtered out")
    shutdown_logging()

    files = list(tmp_path.glob("*.jsonl"))
    assert files
    content = files[0].read_text(encoding="utf-8")
    assert "t-123" not in content
    assert "private" not in content
    assert "filtered out" not in content


def test_structlog_events_reach_the_json_sink(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(log_dir=tmp_path, session_id="session-structlog")
    )

    structlog.get_logger("wark.tests").info(
        "ticket_claimed", ticket_key="WEB-7", duration_minutes=30
    )
    shutdown_logging(handle)

    assert handle.log_path is not None
    [event] = _read_json_lines(handle.log_path)
    assert event["message"] == "ticket_claimed"
    assert event["logger"] == "wark.tests"
    assert event["ticket_key"] == "WEB-7"
    assert event["fields"] == {"duration_minutes": 30}


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info(
                f"thread={thread_idx} index={i} token=tok-secret-{thread_idx}-{i}",
                extra={"api_key": f"sk-FAKE-{thread_idx}-{i}"},
            )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    assert handle.log_path is not None
    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert isinstance(parsed, dict)
        assert "message" in parsed
        assert "tok-secret" not in line
        assert "sk-FAKE" not in line


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    assert handle.log_path is not None
    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected
    assert handle.is_shutdown
