"""Public API for the configuration system.

``resolve_config()`` is the entry point for resolution; the ``create_*``
helpers turn a frozen configuration into the collaborators the pipeline needs.
"""

from pathlib import Path
from typing import Any

from screenplay_coverage.exceptions import ConfigurationError
from screenplay_coverage.llm.client import StructuredCallClient
from screenplay_coverage.llm.providers import (
    CompletionProvider,
    GoogleGenAIProvider,
    MockProvider,
)
from screenplay_coverage.llm.router import EscalationRouter
from screenplay_coverage.llm.tiers import ModelTierTable
from screenplay_coverage.telemetry import (
    TelemetryCollector,
    TelemetryContext,
    TelemetryContextProtocol,
    TelemetryReporter,
)

from .resolver import ConfigResolver
from .types import FrozenConfig, ResolvedConfig

_resolver = ConfigResolver()

type AnyConfig = FrozenConfig | ResolvedConfig


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    use_env_file: str | Path | None = None,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration from all sources with proper precedence.

    Programmatic > Environment > Project file > Defaults

    Args:
        programmatic: Overrides with the highest precedence. Unknown fields
            are ignored.
        profile: Profile name from ``[tool.screenplay_coverage.profiles]``.
            Defaults to ``COVERAGE_PROFILE``.
        use_env_file: Optional .env file loaded before reading the environment.
        project_root: Directory to search for pyproject.toml.

    Raises:
        ConfigurationError: If validation fails or a config file is malformed.

    Example:
        config = resolve_config({"use_real_api": True, "api_key": key})
        print(config.audit())
    """
    return _resolver.resolve(
        programmatic=programmatic,
        profile=profile,
        use_env_file=use_env_file,
        project_root=project_root,
    )


def list_available_profiles(project_root: Path | None = None) -> list[str]:
    return _resolver.file_loader.list_available_profiles(project_root)


def check_environment() -> dict[str, str]:
    """Currently set ``COVERAGE_*`` variables, with secrets redacted."""
    return _resolver.env_loader.get_env_summary()


# --- Collaborator factories ---


def build_tier_table(config: AnyConfig) -> ModelTierTable:
    return ModelTierTable.default(config.model_ids())


def create_provider(config: AnyConfig) -> CompletionProvider:
    """The real Gemini provider when ``use_real_api`` is set, else the mock."""
    if config.use_real_api:
        if not config.api_key:
            raise ConfigurationError("use_real_api requires an api_key")
        return GoogleGenAIProvider(config.api_key)
    return MockProvider()


def create_telemetry_context(
    config: AnyConfig, *reporters: TelemetryReporter
) -> TelemetryContextProtocol:
    """Scoped timing context, active only when telemetry is enabled and
    reporters are given."""
    return TelemetryContext(*reporters, enabled=config.enable_telemetry)


def create_router(
    config: AnyConfig,
    telemetry: TelemetryCollector | None = None,
    *,
    provider: CompletionProvider | None = None,
    ctx: TelemetryContextProtocol | None = None,
) -> EscalationRouter:
    """Wire provider, tier table, call client and router from configuration.

    A new ``TelemetryCollector`` priced from the tier table is created when
    none is given.
    """
    tiers = build_tier_table(config)
    client = StructuredCallClient(
        provider if provider is not None else create_provider(config),
        tiers,
        telemetry if telemetry is not None else TelemetryCollector(tiers.cost_table()),
        timeout_s=config.timeout_s,
        base_delay=config.base_delay_s,
        ctx=ctx,
    )
    return EscalationRouter(client)
