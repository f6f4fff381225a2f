"""File-based configuration loading with profile support.

Settings live in the project's ``pyproject.toml`` under
``[tool.screenplay_coverage]``, with named profiles under
``[tool.screenplay_coverage.profiles.<name>]``.
"""

from pathlib import Path
import tomllib
from typing import Any

from screenplay_coverage.exceptions import ConfigurationError

TOOL_SECTION = "screenplay_coverage"


class ConfigFileError(ConfigurationError):
    """Raised when configuration file loading fails."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


class FileConfigLoader:
    """Loads the ``[tool.screenplay_coverage]`` table from pyproject.toml."""

    def load_project_config(
        self, project_root: Path | None = None, profile: str | None = None
    ) -> dict[str, Any]:
        """Load configuration from pyproject.toml in the project root.

        Args:
            project_root: Directory to search for pyproject.toml. If None,
                searches the current directory and its parents.
            profile: Optional profile name. If None, the base table is
                returned without its ``profiles`` section.

        Returns:
            Configuration values from the file; empty if there is no file or
            no section.

        Raises:
            ConfigFileError: If the file cannot be parsed or the profile does
                not exist.
        """
        pyproject_path = self._find_pyproject_toml(project_root)
        if not pyproject_path:
            return {}

        section = self._read_section(pyproject_path)
        if not section:
            return {}

        if profile:
            profiles = section.get("profiles", {})
            if profile not in profiles:
                raise ConfigFileError(
                    pyproject_path,
                    f"Profile '{profile}' not found. "
                    f"Available profiles: {list(profiles)}",
                )
            return dict(profiles[profile])
        config = dict(section)
        config.pop("profiles", None)
        return config

    def list_available_profiles(self, project_root: Path | None = None) -> list[str]:
        pyproject_path = self._find_pyproject_toml(project_root)
        if not pyproject_path:
            return []
        try:
            section = self._read_section(pyproject_path)
        except ConfigFileError:
            return []
        return list(section.get("profiles", {}))

    def _read_section(self, path: Path) -> dict[str, Any]:
        try:
            with path.open(mode="rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e
        return data.get("tool", {}).get(TOOL_SECTION, {})

    def _find_pyproject_toml(self, start_dir: Path | None = None) -> Path | None:
        current = Path(start_dir or Path.cwd()).resolve()
        while current != current.parent:
            candidate = current / "pyproject.toml"
            if candidate.exists():
                return candidate
            current = current.parent
        return None
