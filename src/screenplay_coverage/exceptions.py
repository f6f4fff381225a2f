"""Exceptions for screenplay coverage analysis"""  # noqa: D415

from __future__ import annotations

from typing import Any


class CoverageError(Exception):
    """Base exception for screenplay coverage errors"""  # noqa: D415


class ConfigurationError(CoverageError):
    """Raised when settings or the model tier table are invalid"""  # noqa: D415


class ProviderCallError(CoverageError):
    """Raised when a model provider call fails after all retries"""  # noqa: D415


class SchemaViolationError(CoverageError):
    """Raised when model output parses as JSON but does not match its schema."""

    def __init__(
        self, schema_name: str, message: str, errors: list[Any] | None = None
    ) -> None:
        self.schema_name = schema_name
        self.errors = errors or []
        super().__init__(f"{schema_name}: {message}")


class ScriptNotFoundError(CoverageError):
    """Raised when the requested script does not exist"""  # noqa: D415


class ScriptNotReadyError(CoverageError):
    """Raised when the script has not finished parsing"""  # noqa: D415


class MissingParseOutputError(CoverageError):
    """Raised when a script has no parsed elements"""  # noqa: D415


class MissingStageOutputError(CoverageError):
    """Raised when a stage runs before the stage it depends on"""  # noqa: D415


class PersistenceError(CoverageError):
    """Raised when the analysis transaction cannot be committed"""  # noqa: D415


class NotificationError(CoverageError):
    """Raised by notifiers; never fails a run"""  # noqa: D415


class PipelineError(CoverageError):
    """A pipeline stage failed.

    Carries the stage name and the underlying error so callers can tell a
    missing script from a provider outage from malformed model output.
    """

    def __init__(
        self, message: str, stage_name: str, cause: BaseException | None = None
    ) -> None:
        self.stage_name = stage_name
        self.cause = cause
        super().__init__(f"[{stage_name}] {message}")


class PipelineCancelledError(CoverageError):
    """Raised when a run is cancelled at a stage boundary"""  # noqa: D415
