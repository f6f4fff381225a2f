"""Environment variable configuration loading.

Reads ``COVERAGE_*`` variables, optionally after loading a ``.env`` file, and
coerces them through the settings schema.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from .schema import CONFIG_FIELDS, CoverageSettings

ENV_PREFIX = "COVERAGE_"

_BOOL = TypeAdapter(bool)


def env_var_name(field: str) -> str:
    return f"{ENV_PREFIX}{field.upper()}"


class EnvironmentConfigLoader:
    """Loads configuration from ``COVERAGE_*`` environment variables."""

    def load_env_config(self, env_file: str | Path | None = None) -> dict[str, Any]:
        """Load configuration from environment variables.

        Args:
            env_file: Optional path to a .env file loaded into the environment
                first. Variables already set are not overridden.

        Returns:
            Only the fields actually set in the environment, already coerced.

        Raises:
            ValueError: If environment variables contain invalid values.
        """
        if env_file:
            self._load_env_file(env_file)

        env_values = {
            field: os.environ[env_var_name(field)]
            for field in CONFIG_FIELDS
            if env_var_name(field) in os.environ
        }
        if not env_values:
            return {}

        try:
            # The api_key rule is enforced on the merged result by the resolver,
            # so only types are checked here
            settings = CoverageSettings.model_validate(
                {**env_values, "use_real_api": False}
            )
            result = {field: getattr(settings, field) for field in env_values}
            if "use_real_api" in env_values:
                result["use_real_api"] = _BOOL.validate_python(
                    env_values["use_real_api"]
                )
        except Exception as e:
            env_var_list = [f"{env_var_name(f)}={env_values[f]}" for f in env_values]
            raise ValueError(
                f"Invalid environment variable values: {', '.join(env_var_list)}. "
                f"Error: {e}"
            ) from e
        return result

    def _load_env_file(self, env_file: str | Path) -> None:
        env_path = Path(env_file)
        if not env_path.exists():
            raise FileNotFoundError(f"Environment file not found: {env_path}")

        try:
            with env_path.open(encoding="utf-8") as f:
                for line_num, raw in enumerate(f, 1):
                    line = raw.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" not in line:
                        raise ValueError(
                            f"Invalid format at line {line_num}: {line}. "
                            "Expected KEY=VALUE format."
                        )
                    key, value = (part.strip() for part in line.split("=", 1))
                    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                        value = value[1:-1]
                    os.environ.setdefault(key, value)
        except OSError as e:
            raise ValueError(f"Failed to read environment file {env_path}: {e}") from e

    def get_env_summary(self) -> dict[str, str]:
        """Currently set ``COVERAGE_*`` variables, with the API key redacted."""
        summary = {}
        for field in CONFIG_FIELDS:
            name = env_var_name(field)
            if name in os.environ:
                summary[name] = "<redacted>" if field == "api_key" else os.environ[name]
        return summary

