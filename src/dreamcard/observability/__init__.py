"""Observability for DreamCard: structured logging."""

from dreamcard.observability.logging import (
    close_file_logging,
    configure_logging,
    get_log_file,
    get_logger,
    job_log_context,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_log_file",
    "get_logger",
    "job_log_context",
]
