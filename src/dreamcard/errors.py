"""Job-level error taxonomy.

Provider adapters raise their own ``ProviderError`` / ``ImageProviderError``
families; the interpreter, renderer and artifact store translate those into
the errors below, which are what the orchestrator records on a failed job.
"""

from __future__ import annotations

from typing import Any


class DreamCardError(Exception):
    """Base exception for all DreamCard errors."""


class PlanParseError(DreamCardError):
    """Raised when a model response cannot be turned into a plan.

    Recoverable: the interpreter treats it like a failed quality check and
    spends another attempt on it.
    """

    def __init__(
        self,
        message: str,
        raw_preview: str = "",
        *,
        issues: list[str] | None = None,
        provided_fields: set[str] | None = None,
    ) -> None:
        self.raw_preview = raw_preview
        self.issues = issues or [message]
        self.provided_fields = provided_fields or set()
        super().__init__(message)


class InterpretationError(DreamCardError):
    """Raised when no acceptable plan could be produced within the retry budget."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_failures: list[str] | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_failures = last_failures or []
        super().__init__(f"{message} (after {attempts} attempt(s))")


class RenderError(DreamCardError):
    """Raised when a panel image could not be generated."""

    def __init__(self, panel_index: int, message: str) -> None:
        self.panel_index = panel_index
        super().__init__(f"Panel {panel_index + 1} render failed: {message}")


class StorageError(DreamCardError):
    """Raised when an artifact cannot be written to or read from storage."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"Storage error for '{key}': {message}")


class SubmissionError(DreamCardError):
    """Raised when a generation request is rejected before anything is persisted."""

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        self.details = details or []
        super().__init__(message)


class NotFoundError(DreamCardError):
    """Raised when a project or job lookup finds nothing."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class TransientInfraError(DreamCardError):
    """Raised for queue or store hiccups that whole-job redelivery can recover from."""
