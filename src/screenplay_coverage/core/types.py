"""Core data types that flow through the analysis pipeline.

This module defines the immutable data structures shared by the router and the
orchestrator: model tiers, the per-run analysis policy, the script snapshot
handed over by the parser, and the Result type returned by pipeline stages.
"""

from __future__ import annotations

import dataclasses
from enum import StrEnum
import typing

# --- Result Monad for Stage Handling ---
# Stages return Success|Failure; the pipeline converts a Failure into a
# PipelineError carrying the true stage identity.

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful stage result."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed stage, containing the error."""

    error: TFailure


type Result[TSuccess, TFailure] = Success[TSuccess] | Failure[TFailure]


# --- Model Tiers ---


class Tier(StrEnum):
    """Abstract model capability/cost level."""

    NANO = "nano"
    MINI = "mini"
    BASE = "base"
    THINKING = "thinking"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @property
    def is_cheap(self) -> bool:
        return self in (Tier.NANO, Tier.MINI)


_TIER_RANK = {Tier.NANO: 0, Tier.MINI: 1, Tier.BASE: 2, Tier.THINKING: 3}
TIER_ORDER: tuple[Tier, ...] = (Tier.NANO, Tier.MINI, Tier.BASE, Tier.THINKING)


# --- Policy & run configuration ---


@dataclasses.dataclass(frozen=True, slots=True)
class AnalysisPolicy:
    """Read-only routing policy passed by value into every routing call."""

    sensitivity_enabled: bool = False
    always_thinking_for_legal: bool = False
    enable_batch_processing: bool = False
    max_retries: int = 2

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


class AnalysisType(StrEnum):
    QUICK = "quick"
    COMPREHENSIVE = "comprehensive"
    CUSTOM = "custom"


class AnalysisStage(StrEnum):
    SANITIZE = "sanitize"
    PARSE = "parse"
    NORMALIZE = "normalize"
    DETECTORS = "detectors"
    SCORING = "scoring"
    ASSETS = "assets"
    PERSIST = "persist"
    NOTIFY = "notify"


class Recommendation(StrEnum):
    PASS = "pass"
    CONSIDER = "consider"
    RECOMMEND = "recommend"


# --- Script snapshot (produced by the external parser) ---


class ScriptStatus(StrEnum):
    UPLOADED = "UPLOADED"
    PARSING = "PARSING"
    PARSED = "PARSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


READY_STATUSES = frozenset({ScriptStatus.PARSED, ScriptStatus.COMPLETED})


class ElementType(StrEnum):
    SCENE_HEADING = "SCENE_HEADING"
    ACTION = "ACTION"
    CHARACTER = "CHARACTER"
    DIALOGUE = "DIALOGUE"
    PARENTHETICAL = "PARENTHETICAL"
    TRANSITION = "TRANSITION"
    LYRIC = "LYRIC"


@dataclasses.dataclass(frozen=True, slots=True)
class SceneElement:
    type: ElementType
    text: str
    line: int | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class Scene:
    id: int
    number: int
    page_number: int
    content: str = ""
    int_ext: str | None = None
    location: str | None = None
    tod: str | None = None
    elements: tuple[SceneElement, ...] = ()

    @property
    def heading(self) -> str | None:
        for element in self.elements:
            if element.type is ElementType.SCENE_HEADING:
                return element.text
        return None


@dataclasses.dataclass(frozen=True, slots=True)
class Character:
    name: str
    dialogue_count: int = 0
    screen_time_minutes: float = 0.0


@dataclasses.dataclass(frozen=True, slots=True)
class Script:
    id: str
    title: str
    status: ScriptStatus
    page_count: int | None = None
    genre: str | None = None
    synopsis: str | None = None
    scenes: tuple[Scene, ...] = ()
    characters: tuple[Character, ...] = ()

    @property
    def elements(self) -> tuple[SceneElement, ...]:
        return tuple(e for scene in self.scenes for e in scene.elements)


# --- Router inputs (built from the snapshot, no model calls) ---


@dataclasses.dataclass(frozen=True, slots=True)
class SceneSummary:
    """Compact per-scene text used as model input."""

    scene_id: int
    page: int
    summary: str


@dataclasses.dataclass(frozen=True, slots=True)
class FlaggedSpan:
    """A passage a heuristic thinks deserves a craft note."""

    scene_id: int
    page: int
    line_ref: int
    excerpt: str
    area: str
    heuristic_confidence: float


@dataclasses.dataclass(frozen=True, slots=True)
class RiskCandidate:
    """A passage that may carry legal-adjacent risk."""

    scene_id: int
    page: int
    snippet: str
    context: str | None = None
    kind_hint: str | None = None
