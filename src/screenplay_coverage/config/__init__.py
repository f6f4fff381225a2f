"""Configuration for the coverage engine.

Resolve once, freeze, then flow:
- ResolvedConfig: post-resolution configuration with audit metadata
- FrozenConfig: immutable configuration handed to collaborators
- SourceMap: where each configuration value came from
"""

from .api import (
    build_tier_table,
    check_environment,
    create_provider,
    create_router,
    create_telemetry_context,
    list_available_profiles,
    resolve_config,
)
from .env_loader import EnvironmentConfigLoader
from .file_loader import ConfigFileError, FileConfigLoader
from .resolver import ConfigResolver, SourceTracker
from .schema import CoverageSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap

__all__ = [  # noqa: RUF022
    # Resolution
    "resolve_config",
    "list_available_profiles",
    "check_environment",
    "ConfigResolver",
    "SourceTracker",
    "EnvironmentConfigLoader",
    "FileConfigLoader",
    "ConfigFileError",
    # Types
    "CoverageSettings",
    "ResolvedConfig",
    "FrozenConfig",
    "ConfigOrigin",
    "SourceMap",
    # Factories
    "build_tier_table",
    "create_provider",
    "create_router",
    "create_telemetry_context",
]
