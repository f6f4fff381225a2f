"""Analysis pipeline, heuristic detectors, persistence and notifications."""

from .notify import Notifier, WebhookNotifier
from .pipeline import (
    DEFAULT_STAGES,
    AnalysisConfig,
    AnalysisPipeline,
    PipelineContext,
    PipelineResults,
    RunTelemetry,
    StageError,
    determine_recommendation,
    run_analysis,
)
from .store import (
    InMemoryScriptStore,
    InMemoryUnitOfWork,
    ScriptRepository,
    UnitOfWork,
    load_script,
)

__all__ = [  # noqa: RUF022
    # Pipeline
    "AnalysisConfig",
    "AnalysisPipeline",
    "PipelineContext",
    "PipelineResults",
    "RunTelemetry",
    "StageError",
    "DEFAULT_STAGES",
    "determine_recommendation",
    "run_analysis",
    # Persistence
    "ScriptRepository",
    "UnitOfWork",
    "InMemoryScriptStore",
    "InMemoryUnitOfWork",
    "load_script",
    # Notifications
    "Notifier",
    "WebhookNotifier",
]
