"""Core configuration data types.

Configuration is resolved once from all sources, then frozen and handed to the
components that need it.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal, NamedTuple

from screenplay_coverage.core.types import Tier

# --- Source Tracking Types ---

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

_SENSITIVE_FIELDS = frozenset({"api_key"})

# --- Core Configuration Data ---


class ResolvedConfig(NamedTuple):
    """Configuration after resolution from all sources, before freezing.

    Carries the audit metadata recording where each value came from.
    """

    api_key: str | None
    use_real_api: bool
    max_retries: int
    timeout_s: float
    base_delay_s: float
    model_nano: str
    model_mini: str
    model_base: str
    model_thinking: str
    enable_telemetry: bool
    batch_size: int
    webhook_timeout_s: float

    origin: SourceMap

    def __str__(self) -> str:
        """String representation with redacted API key for safe logging."""
        values = self._asdict()
        values["api_key"] = "[REDACTED]" if self.api_key else None
        values["origin"] = dict(self.origin)
        body = ", ".join(f"{k}={v!r}" for k, v in values.items())
        return f"ResolvedConfig({body})"

    def __repr__(self) -> str:
        return self.__str__()

    def to_frozen(self) -> "FrozenConfig":
        """Convert to the immutable configuration, dropping audit metadata."""
        values = self._asdict()
        values.pop("origin")
        return FrozenConfig(**values)

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Create a new ResolvedConfig with programmatic overrides applied.

        Unknown fields are ignored.
        """
        new_values = self._asdict()
        new_origin = dict(self.origin)
        for field, value in overrides.items():
            if field in new_values and field != "origin":
                new_values[field] = value
                new_origin[field] = "programmatic"
        new_values["origin"] = new_origin
        return ResolvedConfig(**new_values)

    def audit(self) -> str:
        """Redacted report of where each field's value came from.

        Example line: ``model_base: env:COVERAGE_MODEL_BASE=gemini-2.5-flash``
        """
        lines = []
        for field in self._fields:
            if field == "origin" or field not in self.origin:
                continue
            origin = self.origin[field]
            value = getattr(self, field)
            if field in _SENSITIVE_FIELDS:
                if value is None:
                    display = f"{origin}:None"
                elif origin == "env":
                    display = "env:[REDACTED]"
                else:
                    display = f"{origin}:<redacted>"
            elif origin == "env":
                display = f"env:COVERAGE_{field.upper()}={value}"
            else:
                display = f"{origin}:{value}"
            lines.append(f"{field}: {display}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration handed to the pipeline's collaborators."""

    api_key: str | None
    use_real_api: bool
    max_retries: int
    timeout_s: float
    base_delay_s: float
    model_nano: str
    model_mini: str
    model_base: str
    model_thinking: str
    enable_telemetry: bool
    batch_size: int
    webhook_timeout_s: float

    def model_ids(self) -> dict[Tier, str]:
        return {
            Tier.NANO: self.model_nano,
            Tier.MINI: self.model_mini,
            Tier.BASE: self.model_base,
            Tier.THINKING: self.model_thinking,
        }

    def __str__(self) -> str:
        """String representation with redacted API key for safe logging."""
        api_key_display = "[REDACTED]" if self.api_key else None
        return (
            f"FrozenConfig(api_key={api_key_display!r}, "
            f"use_real_api={self.use_real_api!r}, max_retries={self.max_retries!r}, "
            f"timeout_s={self.timeout_s!r}, models={self.model_ids()!r})"
        )

    def __repr__(self) -> str:
        return self.__str__()
