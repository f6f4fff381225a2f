"""Escalation router: try cheap, check the signal, escalate on demand.

Every routing function is built on one combinator, ``EscalationRouter.escalate``:
call a tier, inspect the result with a trigger predicate and, only if the
trigger fires, call the next available tier up the ladder and merge. The next
call always starts after the previous result has been inspected; nothing is
run speculatively.

Routing functions never catch client errors. A ``SchemaViolationError`` on a
step that can still escalate counts as an escalation trigger; on the final
step it propagates like any other error.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
import logging
from typing import Any

from screenplay_coverage.constants import (
    BEAT_DISAGREEMENT_PAGES,
    DEFAULT_MAX_OUTPUT_TOKENS,
    ESCALATE_TO_BASE,
    ESCALATE_TO_THINKING,
    MAX_RETRIES,
    MIN_EVIDENCE_NOTES,
    PROSE_TEMPERATURE,
)
from screenplay_coverage.core.types import (
    AnalysisPolicy,
    FlaggedSpan,
    Recommendation,
    RiskCandidate,
    SceneSummary,
    Tier,
)
from screenplay_coverage.exceptions import SchemaViolationError
from screenplay_coverage.llm import prompts
from screenplay_coverage.llm.client import StructuredCallClient
from screenplay_coverage.schemas import (
    RUBRIC_CATEGORIES,
    Beat,
    BeatKind,
    Note,
    NoteArea,
    RiskFlag,
    Score,
    ScoreCategory,
)
from screenplay_coverage.telemetry import TelemetryCollector

log = logging.getLogger(__name__)

# Task names, as recorded on LLMCallRecord.task
TASK_BEATS = "beats"
TASK_NOTES = "notes"
TASK_RISK_FLAGS = "risk_flags"
TASK_RUBRIC = "rubric_scores"
TASK_COVERAGE = "coverage_prose"

# Rubric categories backed by a note area of a different name
_CATEGORY_AREAS: Mapping[ScoreCategory, NoteArea] = {
    ScoreCategory.GENRE_FIT: NoteArea.GENRE,
}
_MAX_EVIDENCE_SCENES = 8


@dataclass(frozen=True, slots=True)
class EscalationThresholds:
    to_base: float = ESCALATE_TO_BASE
    to_thinking: float = ESCALATE_TO_THINKING
    beat_disagreement_pages: int = BEAT_DISAGREEMENT_PAGES
    min_evidence_notes: int = MIN_EVIDENCE_NOTES


@dataclass(frozen=True, slots=True)
class Escalation:
    """Why a step escalated. ``detail`` carries task-specific context."""

    reason: str
    confidence: float | None = None
    detail: Any = None


@dataclass(frozen=True, slots=True)
class ScoringInput:
    beats: Sequence[Beat]
    notes: Sequence[Note]
    page_count: int
    genre: str | None = None
    synopsis: str | None = None
    scene_summaries: Sequence[SceneSummary] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "beats": list(self.beats),
            "notes": list(self.notes),
            "page_count": self.page_count,
            "genre": self.genre,
            "synopsis": self.synopsis,
        }


@dataclass(frozen=True, slots=True)
class ScoringOutcome:
    scores: list[Score]
    low_evidence_categories: tuple[ScoreCategory, ...] = ()
    rescored_categories: tuple[ScoreCategory, ...] = ()


type Invoke[T] = Callable[[Tier, Escalation | None], Awaitable[T]]
type Trigger[T] = Callable[[T], Escalation | None]
type Merge[T] = Callable[[T, T, Escalation], T]


def _replace[T](previous: T, current: T, escalation: Escalation) -> T:  # noqa: ARG001
    return current


def mean_confidence(items: Sequence[Beat] | Sequence[RiskFlag]) -> float:
    return sum(item.confidence for item in items) / max(len(items), 1)


def dedupe_beats(beats: Sequence[Beat]) -> list[Beat]:
    """Keep one beat per kind: highest confidence, then earliest page.

    Beats of different kinds on the same page are all kept. Order follows the
    first appearance of each kind.
    """
    best: dict[BeatKind, Beat] = {}
    for beat in beats:
        current = best.get(beat.kind)
        if current is None or (-beat.confidence, beat.page) < (
            -current.confidence,
            current.page,
        ):
            best[beat.kind] = beat
    return list(best.values())


class EscalationRouter:
    """Routes each analysis task across model tiers."""

    def __init__(
        self,
        client: StructuredCallClient,
        *,
        thresholds: EscalationThresholds | None = None,
    ) -> None:
        self._client = client
        self._tiers = client.tiers
        self.thresholds = thresholds or EscalationThresholds()

    @property
    def telemetry(self) -> TelemetryCollector:
        return self._client.telemetry

    # --- Combinator ---

    async def escalate[T](
        self,
        task: str,
        start_tier: Tier,
        invoke: Invoke[T],
        trigger: Trigger[T],
        merge: Merge[T] = _replace,
        max_steps: int = 1,
    ) -> T:
        """Run `invoke` at `start_tier`, escalating while `trigger` fires.

        Bounded by `max_steps` and by the tier ladder; a tier whose fallback
        lands on an already-used model is never re-run.
        """
        ladder = self._tiers.ladder(start_tier)
        step = 0
        previous: T | None = None
        escalation: Escalation | None = None

        while True:
            tier = ladder[step]
            is_final = step >= max_steps or step + 1 >= len(ladder)
            try:
                result = await invoke(tier, escalation)
            except SchemaViolationError as e:
                if is_final:
                    raise
                escalation = Escalation("schema_violation")
                log.info(
                    "Escalating %s from %s to %s: schema_violation (%s)",
                    task,
                    tier,
                    ladder[step + 1],
                    e,
                )
                step += 1
                continue

            if previous is not None and escalation is not None:
                result = merge(previous, result, escalation)
            if is_final:
                return result

            next_escalation = trigger(result)
            if next_escalation is None:
                return result

            log.info(
                "Escalating %s from %s to %s: %s",
                task,
                tier,
                ladder[step + 1],
                next_escalation.reason,
            )
            previous, escalation = result, next_escalation
            step += 1

    # --- Beats ---

    async def route_beats(
        self,
        scene_summaries: Sequence[SceneSummary],
        page_count: int,
        genre: str | None,
        policy: AnalysisPolicy,
    ) -> list[Beat]:
        """Detect the seven canonical beats; escalate on weak or confused structure."""
        system_prompt = prompts.beats_prompt(genre)
        payload = {
            "page_count": page_count,
            "genre": genre,
            "scene_summaries": list(scene_summaries),
        }
        previous_beats: list[Beat] = []

        async def invoke(tier: Tier, esc: Escalation | None) -> list[Beat]:
            content: dict[str, Any] = dict(payload)
            prompt = system_prompt
            if esc is not None:
                prompt += prompts.beats_escalation_addendum(esc.reason)
                if previous_beats:
                    content["previous_beats"] = previous_beats
            beats = await self._client.call_structured(
                tier,
                prompt,
                content,
                "BeatList",
                retries=policy.max_retries,
                task=TASK_BEATS,
                escalation_reason=esc.reason if esc else None,
                confidence=esc.confidence if esc else None,
            )
            previous_beats[:] = beats
            return beats

        def trigger(beats: list[Beat]) -> Escalation | None:
            mean = mean_confidence(beats)
            if mean < self.thresholds.to_thinking:
                return Escalation("low_confidence", mean)
            inciting = next(
                (b.page for b in beats if b.kind is BeatKind.INCITING), 0
            )
            midpoint = next(
                (b.page for b in beats if b.kind is BeatKind.MIDPOINT),
                page_count / 2,
            )
            if abs(inciting - midpoint) < self.thresholds.beat_disagreement_pages:
                return Escalation("ambiguous_structure", mean)
            return None

        beats = await self.escalate(TASK_BEATS, Tier.BASE, invoke, trigger)
        return dedupe_beats(beats)

    # --- Notes ---

    async def route_notes(
        self, flagged_spans: Sequence[FlaggedSpan], policy: AnalysisPolicy
    ) -> list[Note]:
        """Cost routing: trusted spans go to mini, borderline spans to base.

        This is a single split, not a quality loop; neither call escalates.
        """
        cutoff = self.thresholds.to_base
        trusted = [s for s in flagged_spans if s.heuristic_confidence >= cutoff]
        borderline = [s for s in flagged_spans if s.heuristic_confidence < cutoff]

        mini_notes: list[Note] = []
        if trusted:
            mini_notes = await self._client.call_structured(
                Tier.MINI,
                prompts.NOTES_PROMPT,
                trusted,
                "NoteList",
                max_output_tokens=1200,
                retries=policy.max_retries,
                task=TASK_NOTES,
            )
        base_notes: list[Note] = []
        if borderline:
            base_notes = await self._client.call_structured(
                Tier.BASE,
                prompts.NOTES_PROMPT + prompts.NOTES_BORDERLINE_ADDENDUM,
                borderline,
                "NoteList",
                max_output_tokens=1500,
                retries=policy.max_retries,
                task=TASK_NOTES,
            )
        return [*mini_notes, *base_notes]

    # --- Risk flags ---

    async def route_risk_flags(
        self, candidates: Sequence[RiskCandidate], policy: AnalysisPolicy
    ) -> list[RiskFlag]:
        """Flag legal-adjacent risks; re-check low-confidence flags at thinking.

        Revised flags replace the low-confidence ones position by position; a
        flag without a revision keeps its original value.
        """
        if not candidates:
            return []
        start = Tier.THINKING if policy.always_thinking_for_legal else Tier.BASE
        cutoff = self.thresholds.to_thinking

        async def invoke(tier: Tier, esc: Escalation | None) -> list[RiskFlag]:
            prompt = prompts.RISK_PROMPT
            subset: Sequence[RiskCandidate] = candidates
            if esc is not None and esc.detail:
                prompt += prompts.RISK_REEVALUATE_ADDENDUM
                subset = [candidates[i] for i in esc.detail]
            return await self._client.call_structured(
                tier,
                prompt,
                subset,
                "RiskFlagList",
                max_output_tokens=1200,
                retries=policy.max_retries,
                task=TASK_RISK_FLAGS,
                escalation_reason=esc.reason if esc else None,
                confidence=esc.confidence if esc else None,
            )

        def trigger(flags: list[RiskFlag]) -> Escalation | None:
            low = [
                i
                for i, flag in enumerate(flags)
                if flag.confidence < cutoff and i < len(candidates)
            ]
            if not low:
                return None
            return Escalation(
                "low_confidence_risk",
                mean_confidence([flags[i] for i in low]),
                detail=tuple(low),
            )

        def merge(
            previous: list[RiskFlag], revised: list[RiskFlag], esc: Escalation
        ) -> list[RiskFlag]:
            if not esc.detail:
                return revised
            merged = list(previous)
            for position, index in enumerate(esc.detail):
                if position < len(revised):
                    merged[index] = revised[position]
            return merged

        return await self.escalate(TASK_RISK_FLAGS, start, invoke, trigger, merge)

    # --- Rubric scoring ---

    def low_evidence_categories(
        self, scores: Sequence[Score], notes: Sequence[Note]
    ) -> tuple[ScoreCategory, ...]:
        """Categories with fewer supporting notes than the evidence threshold."""
        notes_by_area = Counter(note.area for note in notes)
        return tuple(
            score.category
            for score in scores
            if notes_by_area.get(_area_for(score.category), 0)
            < self.thresholds.min_evidence_notes
        )

    async def route_rubric_scoring(
        self, analysis_data: ScoringInput, policy: AnalysisPolicy
    ) -> ScoringOutcome:
        """Score the 8 rubric categories, then re-score thin-evidence ones at thinking."""
        rescored: tuple[ScoreCategory, ...] = ()

        async def invoke(tier: Tier, esc: Escalation | None) -> list[Score]:
            nonlocal rescored
            if esc is None or not esc.detail:
                return await self._client.call_structured(
                    tier,
                    prompts.RUBRIC_PROMPT,
                    analysis_data.to_payload(),
                    "ScoreList",
                    max_output_tokens=2000,
                    retries=policy.max_retries,
                    task=TASK_RUBRIC,
                    escalation_reason=esc.reason if esc else None,
                    check=_require_categories(RUBRIC_CATEGORIES),
                )
            categories = [str(c) for c in esc.detail]
            scores = await self._client.call_structured(
                tier,
                prompts.RUBRIC_PROMPT + prompts.rubric_rescore_addendum(categories),
                {
                    "categories": categories,
                    "evidence": [
                        _targeted_evidence(c, analysis_data) for c in esc.detail
                    ],
                    "page_count": analysis_data.page_count,
                    "genre": analysis_data.genre,
                },
                "ScoreList",
                max_output_tokens=2000,
                retries=policy.max_retries,
                task=TASK_RUBRIC,
                escalation_reason=esc.reason,
                check=_require_categories(esc.detail),
            )
            returned = {s.category for s in scores}
            rescored = tuple(c for c in esc.detail if c in returned)
            return scores

        def trigger(scores: list[Score]) -> Escalation | None:
            low = self.low_evidence_categories(scores, analysis_data.notes)
            if not low:
                return None
            log.warning("Low evidence for categories: %s", ", ".join(low))
            return Escalation("low_evidence", detail=low)

        def merge(
            previous: list[Score], revised: list[Score], esc: Escalation
        ) -> list[Score]:
            if not esc.detail:
                return revised
            wanted = set(esc.detail)
            by_category = {s.category: s for s in revised if s.category in wanted}
            return [by_category.get(s.category, s) for s in previous]

        scores = await self.escalate(TASK_RUBRIC, Tier.BASE, invoke, trigger, merge)
        return ScoringOutcome(
            scores=scores,
            low_evidence_categories=self.low_evidence_categories(
                scores, analysis_data.notes
            ),
            rescored_categories=rescored,
        )

    # --- Coverage prose ---

    async def route_coverage_prose(
        self,
        analytics_data: Mapping[str, Any],
        script_title: str,
        recommendation: Recommendation,
        retries: int = MAX_RETRIES,
    ) -> str:
        """Write the five-section coverage document. Single call, no schema."""
        return await self._client.call_text(
            Tier.BASE,
            prompts.coverage_prompt(str(recommendation)),
            {
                "script_title": script_title,
                "recommendation": str(recommendation),
                **analytics_data,
            },
            max_output_tokens=DEFAULT_MAX_OUTPUT_TOKENS,
            temperature=PROSE_TEMPERATURE,
            retries=retries,
            task=TASK_COVERAGE,
        )


def _require_categories(
    expected: Sequence[ScoreCategory],
) -> Callable[[list[Score]], None]:
    """Reject a score list that misses, repeats or adds a rubric category."""

    def check(scores: list[Score]) -> None:
        counts = Counter(s.category for s in scores)
        missing = [str(c) for c in expected if counts[c] == 0]
        repeated = sorted(str(c) for c, n in counts.items() if n > 1)
        unexpected = sorted(str(c) for c in counts if c not in expected)
        if missing or repeated or unexpected:
            raise SchemaViolationError(
                "ScoreList",
                f"expected one score per category; missing={missing}, "
                f"repeated={repeated}, unexpected={unexpected}",
            )

    return check


def _area_for(category: ScoreCategory) -> str:
    return str(_CATEGORY_AREAS.get(category, category))


def _targeted_evidence(
    category: ScoreCategory, data: ScoringInput
) -> dict[str, Any]:
    """Notes in the category's area plus the scenes they, or the beats, point at."""
    area = _area_for(category)
    notes = [n for n in data.notes if n.area == area]
    scene_ids = {n.scene_id for n in notes if n.scene_id is not None}
    scenes = [s for s in data.scene_summaries if s.scene_id in scene_ids]
    if not scenes and data.scene_summaries:
        for beat in data.beats:
            nearest = min(
                data.scene_summaries, key=lambda s: abs(s.page - beat.page)
            )
            if nearest not in scenes:
                scenes.append(nearest)
    return {
        "category": str(category),
        "notes": notes,
        "scenes": scenes[:_MAX_EVIDENCE_SCENES],
    }
