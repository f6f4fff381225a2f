"""Screenplay coverage: tiered LLM analysis of parsed scripts."""

import importlib.metadata
import logging

from screenplay_coverage.analysis import (
    AnalysisConfig,
    AnalysisPipeline,
    InMemoryScriptStore,
    PipelineContext,
    PipelineResults,
    ScriptRepository,
    WebhookNotifier,
    determine_recommendation,
    load_script,
    run_analysis,
)
from screenplay_coverage.config import (
    FrozenConfig,
    ResolvedConfig,
    create_router,
    resolve_config,
)
from screenplay_coverage.core.types import (
    AnalysisPolicy,
    AnalysisStage,
    AnalysisType,
    Failure,
    Recommendation,
    Result,
    Script,
    ScriptStatus,
    Success,
    Tier,
)
from screenplay_coverage.exceptions import (
    ConfigurationError,
    CoverageError,
    PipelineCancelledError,
    PipelineError,
    ProviderCallError,
    SchemaViolationError,
)
from screenplay_coverage.llm import (
    EscalationRouter,
    MockProvider,
    ModelTierTable,
    StructuredCallClient,
)
from screenplay_coverage.telemetry import (
    LLMCallRecord,
    TelemetryCollector,
    TelemetryContext,
    TelemetryReporter,
    TelemetryStats,
)

try:
    __version__ = importlib.metadata.version("screenplay-coverage")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Library logging stays silent unless the application configures handlers
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Pipeline
    "AnalysisConfig",
    "AnalysisPipeline",
    "PipelineContext",
    "PipelineResults",
    "run_analysis",
    "determine_recommendation",
    # Persistence
    "ScriptRepository",
    "InMemoryScriptStore",
    "load_script",
    "WebhookNotifier",
    # Model access
    "EscalationRouter",
    "StructuredCallClient",
    "ModelTierTable",
    "MockProvider",
    # Configuration
    "resolve_config",
    "create_router",
    "ResolvedConfig",
    "FrozenConfig",
    # Types
    "AnalysisPolicy",
    "AnalysisStage",
    "AnalysisType",
    "Recommendation",
    "Script",
    "ScriptStatus",
    "Tier",
    "Result",
    "Success",
    "Failure",
    # Telemetry
    "TelemetryCollector",
    "TelemetryStats",
    "LLMCallRecord",
    "TelemetryContext",
    "TelemetryReporter",
    # Exceptions
    "CoverageError",
    "ConfigurationError",
    "ProviderCallError",
    "SchemaViolationError",
    "PipelineError",
    "PipelineCancelledError",
]
