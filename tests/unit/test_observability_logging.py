"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from dreamcard.observability import (
    close_file_logging,
    configure_logging,
    get_log_file,
    get_logger,
    job_log_context,
)

if TYPE_CHECKING:
    from pathlib import Path


def _entries(path: Path) -> list[dict[str, object]]:
    with path.open() as f:
        return [json.loads(line) for line in f if line.strip()]


def test_default_verbosity_is_warning() -> None:
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_verbose_opens_root_logger() -> None:
    """Root is DEBUG once verbose; the console handler does the filtering."""
    configure_logging(verbosity=1)

    assert logging.getLogger().level == logging.DEBUG


def test_get_logger_auto_configures() -> None:
    import dreamcard.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert hasattr(logger, "info")


def test_noisy_loggers_suppressed() -> None:
    configure_logging(verbosity=2)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING


def test_file_logging_creates_parent_dirs(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "worker.jsonl"

    configure_logging(verbosity=0, log_file=log_file)

    assert log_file.parent.exists()
    assert get_log_file() == log_file
    assert logging.getLogger().level == logging.DEBUG
    close_file_logging()


def test_reconfiguration_closes_previous_handler(tmp_path: Path) -> None:
    import dreamcard.observability.logging as log_module

    configure_logging(verbosity=0, log_file=tmp_path / "a.jsonl")
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0)

    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is None
    assert get_log_file() is None


def test_jsonl_handler_writes_structlog_context(tmp_path: Path) -> None:
    log_file = tmp_path / "debug.jsonl"
    configure_logging(verbosity=2, log_file=log_file)

    get_logger("test.context").info("panel_rendered", panel=2, size_bytes=42)
    close_file_logging()

    entry = next(e for e in _entries(log_file) if e.get("message") == "panel_rendered")
    assert entry["panel"] == 2
    assert entry["size_bytes"] == 42
    assert entry["level"] == "INFO"
    assert entry["logger"] == "test.context"


def test_job_context_binds_ids(tmp_path: Path) -> None:
    log_file = tmp_path / "debug.jsonl"
    configure_logging(verbosity=2, log_file=log_file)
    logger = get_logger("test.job")

    with job_log_context("job-1", "proj-1"):
        logger.info("inside_job")
    logger.info("outside_job")
    close_file_logging()

    entries = {e["message"]: e for e in _entries(log_file)}
    assert entries["inside_job"]["job_id"] == "job-1"
    assert entries["inside_job"]["project_id"] == "proj-1"
    assert "job_id" not in entries["outside_job"]
