"""Configuration resolution with precedence handling.

Precedence, highest first: Programmatic > Environment > Project file > Defaults
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from screenplay_coverage.exceptions import ConfigurationError

from .env_loader import EnvironmentConfigLoader
from .file_loader import FileConfigLoader
from .schema import CoverageSettings
from .types import ConfigOrigin, ResolvedConfig, SourceMap

log = logging.getLogger(__name__)

PROFILE_ENV_VAR = "COVERAGE_PROFILE"


class SourceTracker:
    """Records the origin of each field as sources are merged."""

    def __init__(self) -> None:
        self._origins: dict[str, ConfigOrigin] = {}

    def set_origin(self, field: str, origin: ConfigOrigin) -> None:
        self._origins[field] = origin

    def get_source_map(self) -> SourceMap:
        return dict(self._origins)


class ConfigResolver:
    """Merges configuration from all sources according to precedence."""

    def __init__(self) -> None:
        self.file_loader = FileConfigLoader()
        self.env_loader = EnvironmentConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        use_env_file: str | Path | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources with proper precedence.

        Args:
            programmatic: Programmatic overrides (highest precedence).
            profile: Profile name to load from pyproject.toml. Defaults to
                ``COVERAGE_PROFILE``.
            use_env_file: Optional .env file to load.
            project_root: Directory to search for pyproject.toml.

        Returns:
            ResolvedConfig with merged values and source tracking.

        Raises:
            ConfigurationError: If validation fails, required values are
                missing or the config file is malformed.
        """
        tracker = SourceTracker()
        if profile is None:
            profile = os.getenv(PROFILE_ENV_VAR)

        # Defaults without reading the environment; env is its own layer below
        merged: dict[str, Any] = CoverageSettings.model_construct().to_dict()
        for field in merged:
            tracker.set_origin(field, "default")

        layers: list[tuple[ConfigOrigin, dict[str, Any]]] = [
            (
                "file",
                self.file_loader.load_project_config(
                    project_root=project_root, profile=profile
                ),
            ),
        ]
        try:
            layers.append(("env", self.env_loader.load_env_config(env_file=use_env_file)))
        except (ValueError, FileNotFoundError) as e:
            raise ConfigurationError(f"Environment configuration error: {e}") from e
        layers.append(("programmatic", dict(programmatic or {})))

        for origin, values in layers:
            for field, value in values.items():
                if field not in merged:
                    log.debug("Ignoring unknown config field %r from %s", field, origin)
                    continue
                merged[field] = value
                tracker.set_origin(field, origin)

        try:
            validated = CoverageSettings.model_validate(merged)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        return ResolvedConfig(**validated.to_dict(), origin=tracker.get_source_map())
