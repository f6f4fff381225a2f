"""Telemetry: model-call records and scoped stage timing.

Two pieces live here:

- ``TelemetryCollector`` is the append-only log of every model call (tier,
  tokens, latency, escalation reason). It is injected into the router and the
  pipeline rather than held as a module global, and it is safe to share across
  concurrent runs.
- ``TelemetryContext`` provides nested timing scopes with an ultra-low overhead
  no-op when disabled, reporting to pluggable ``TelemetryReporter`` objects.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
import os
import threading
import time
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

from screenplay_coverage.core.types import Tier

log = logging.getLogger(__name__)

# --- Model call records ---


@dataclass(frozen=True, slots=True)
class LLMCallRecord:
    """One successful model call. Immutable once created."""

    tier: Tier
    tokens: int
    latency_ms: float
    model_id: str | None = None
    task: str | None = None
    escalation_reason: str | None = None
    confidence: float | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class TelemetryStats:
    total_calls: int
    total_tokens: int
    avg_latency: float
    model_stats: dict[Tier, int]
    escalations: int
    escalation_rate: float
    estimated_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "total_tokens": self.total_tokens,
            "avg_latency": self.avg_latency,
            "model_stats": {str(k): v for k, v in self.model_stats.items()},
            "escalations": self.escalations,
            "escalation_rate": self.escalation_rate,
            "estimated_cost": self.estimated_cost,
        }


class TelemetryCollector:
    """Process-wide, thread-safe log of model calls.

    Appends and the aggregation read both take the same lock, so concurrent
    pipeline runs (threads or tasks) never observe a torn log.
    """

    def __init__(self, cost_per_1k_tokens: Mapping[Tier, float] | None = None):
        self._calls: list[LLMCallRecord] = []
        self._lock = threading.Lock()
        self._cost_per_1k = dict(cost_per_1k_tokens or {})

    def record_call(self, record: LLMCallRecord) -> None:
        with self._lock:
            self._calls.append(record)
        log.debug(
            "LLM call: tier=%s tokens=%d latency=%.0fms escalation=%s",
            record.tier,
            record.tokens,
            record.latency_ms,
            record.escalation_reason,
        )

    @property
    def calls(self) -> tuple[LLMCallRecord, ...]:
        """Snapshot of all records in append order."""
        with self._lock:
            return tuple(self._calls)

    def calls_for(self, task: str) -> tuple[LLMCallRecord, ...]:
        return tuple(c for c in self.calls if c.task == task)

    def get_stats(self) -> TelemetryStats:
        calls = self.calls
        total_calls = len(calls)
        total_tokens = sum(c.tokens for c in calls)
        avg_latency = (
            sum(c.latency_ms for c in calls) / total_calls if total_calls else 0.0
        )
        model_stats: dict[Tier, int] = {}
        for c in calls:
            model_stats[c.tier] = model_stats.get(c.tier, 0) + 1
        escalations = sum(1 for c in calls if c.escalation_reason)
        estimated_cost = sum(
            c.tokens / 1000 * self._cost_per_1k.get(c.tier, 0.0) for c in calls
        )
        return TelemetryStats(
            total_calls=total_calls,
            total_tokens=total_tokens,
            avg_latency=avg_latency,
            model_stats=model_stats,
            escalations=escalations,
            escalation_rate=escalations / total_calls if total_calls else 0.0,
            estimated_cost=estimated_cost,
        )

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()


# --- Scoped timing context ---

# Context-aware state for thread/async safety
_scope_stack_var: ContextVar[tuple[str, ...]] = ContextVar(
    "scope_stack",
    default=(),
)

# Evaluated once at import time
_TELEMETRY_ENABLED = (
    os.getenv("COVERAGE_TELEMETRY") == "1" or os.getenv("DEBUG") == "1"
)


@runtime_checkable
class TelemetryReporter(Protocol):
    """Duck-typed protocol for telemetry reporters."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


@dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    """An immutable and stateless no-op context, optimized for negligible overhead."""

    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return None

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass


class _EnabledTelemetryContext:
    """Full-featured telemetry context when enabled."""

    __slots__ = ("reporters",)

    def __init__(self, *reporters: TelemetryReporter):
        self.reporters = reporters

    def __call__(
        self, name: str, **metadata: Any
    ) -> AbstractContextManager[_EnabledTelemetryContext]:
        return self._create_scope(name, **metadata)

    @contextmanager
    def _create_scope(
        self, name: str, **metadata: Any
    ) -> Iterator[_EnabledTelemetryContext]:
        if not name or not isinstance(name, str):
            raise ValueError("Scope name must be a non-empty string")

        scope_stack = _scope_stack_var.get()
        scope_path = ".".join((*scope_stack, name))
        start_time = time.perf_counter()
        scope_token = _scope_stack_var.set((*scope_stack, name))

        try:
            yield self
        finally:
            duration = time.perf_counter() - start_time
            _scope_stack_var.reset(scope_token)
            final_stack = _scope_stack_var.get()
            enhanced_metadata = {
                "depth": len(final_stack),
                "parent_scope": ".".join(final_stack) if final_stack else None,
                **metadata,
            }
            for reporter in self.reporters:
                try:
                    reporter.record_timing(scope_path, duration, **enhanced_metadata)
                except Exception as e:
                    log.error(
                        "Telemetry reporter '%s' failed: %s",
                        type(reporter).__name__,
                        e,
                        exc_info=True,
                    )

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        """Record a metric within current scope context."""
        scope_stack = _scope_stack_var.get()
        scope_path = ".".join((*scope_stack, name))
        enhanced_metadata = {
            "depth": len(scope_stack),
            "parent_scope": ".".join(scope_stack) if scope_stack else None,
            **metadata,
        }
        for reporter in self.reporters:
            try:
                reporter.record_metric(scope_path, value, **enhanced_metadata)
            except Exception as e:
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        """Record a counter metric."""
        self.metric(name, increment, metric_type="counter", **metadata)


_NO_OP_SINGLETON = _NoOpTelemetryContext()

type TelemetryContextProtocol = _EnabledTelemetryContext | _NoOpTelemetryContext


def TelemetryContext(  # noqa: N802
    *reporters: TelemetryReporter, enabled: bool | None = None
) -> TelemetryContextProtocol:
    """Return a telemetry context.

    Returns the shared no-op instance unless telemetry is enabled (explicitly,
    or via ``COVERAGE_TELEMETRY=1``) and at least one reporter is given.
    """
    is_enabled = _TELEMETRY_ENABLED if enabled is None else enabled
    if is_enabled and reporters:
        return _EnabledTelemetryContext(*reporters)
    return _NO_OP_SINGLETON


class SimpleReporter:
    """In-memory reporter for development use and tests."""

    def __init__(self, max_entries_per_scope: int = 1000):
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        if scope not in self.timings:
            self.timings[scope] = deque(maxlen=self.max_entries)
        self.timings[scope].append((duration, metadata))

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        if scope not in self.metrics:
            self.metrics[scope] = deque(maxlen=self.max_entries)
        self.metrics[scope].append((value, metadata))

    def get_report(self) -> str:
        lines = ["=== Telemetry Report ===", "", "--- Timings ---"]
        for scope, values in sorted(self.timings.items()):
            durations = [v[0] for v in values]
            lines.append(
                f"{scope:<40} | Calls: {len(durations):<4} | "
                f"Avg: {sum(durations) / len(durations):.4f}s | "
                f"Total: {sum(durations):.4f}s"
            )
        if self.metrics:
            lines.append("")
            lines.append("--- Metrics ---")
            for scope, metric_values in sorted(self.metrics.items()):
                total = sum(
                    v[0] for v in metric_values if isinstance(v[0], int | float)
                )
                lines.append(
                    f"{scope:<40} | Count: {len(metric_values):<4} | Total: {total:,.0f}"
                )
        return "\n".join(lines)
