"""Heuristic detectors: deterministic passes over the parsed script.

Nothing here calls a model. These functions turn the snapshot into compact
model input (scene summaries, flagged spans, risk candidates) and produce the
analytical outputs that need no model at all (page metrics, feasibility tags).
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
import re

from screenplay_coverage.constants import DEFAULT_BATCH_SIZE, SUMMARY_ACTION_CHARS
from screenplay_coverage.core.types import (
    ElementType,
    FlaggedSpan,
    RiskCandidate,
    Scene,
    SceneElement,
    SceneSummary,
    Script,
)
from screenplay_coverage.schemas import FeasibilityMetric, IntExt, PageMetric

# --- Scene summaries ---


def generate_scene_summary(scene: Scene) -> str:
    """Heading, the first action text, and a dialogue block count."""
    heading = scene.heading or "Scene"
    actions = " ".join(
        e.text for e in scene.elements if e.type is ElementType.ACTION
    )
    dialogues = sum(1 for e in scene.elements if e.type is ElementType.DIALOGUE)
    ellipsis = "..." if len(actions) > SUMMARY_ACTION_CHARS else ""
    return (
        f"{heading}. {actions[:SUMMARY_ACTION_CHARS]}{ellipsis} "
        f"({dialogues} dialogue blocks)"
    )


def build_scene_summaries(script: Script) -> list[SceneSummary]:
    return [
        SceneSummary(
            scene_id=scene.id,
            page=scene.page_number or 1,
            summary=generate_scene_summary(scene),
        )
        for scene in script.scenes
    ]


# --- Page metrics ---

_SPEAKING_TYPES = (ElementType.DIALOGUE, ElementType.LYRIC)


def _line_count(element: SceneElement) -> int:
    return max(1, len(element.text.splitlines()))


def page_metrics(script: Script) -> list[PageMetric]:
    """Per-page line counts with rough tension and complexity scores.

    Tension rises with the share of action lines and with exclamations;
    complexity with the number of scenes and speakers on the page.
    """
    by_page: dict[int, list[Scene]] = defaultdict(list)
    for scene in script.scenes:
        by_page[scene.page_number or 1].append(scene)

    metrics: list[PageMetric] = []
    for page in sorted(by_page):
        scenes = by_page[page]
        elements = [e for scene in scenes for e in scene.elements]
        total = sum(_line_count(e) for e in elements)
        dialogue = sum(_line_count(e) for e in elements if e.type in _SPEAKING_TYPES)
        action = sum(
            _line_count(e) for e in elements if e.type is ElementType.ACTION
        )
        exclamations = sum(e.text.count("!") for e in elements)
        speakers = {
            e.text.strip().upper()
            for e in elements
            if e.type is ElementType.CHARACTER
        }
        tension = round(10 * action / total) if total else 0
        metrics.append(
            PageMetric(
                page=page,
                scene_length_lines=total,
                dialogue_lines=dialogue,
                action_lines=action,
                tension_score=min(10, tension + min(exclamations, 3)),
                complexity_score=min(10, len(scenes) + len(speakers)),
            )
        )
    return metrics


# --- Flagged spans for craft notes ---

_MONOLOGUE_WORDS = 60
_DENSE_ACTION_WORDS = 80
_LONG_PARENTHETICAL_WORDS = 10
_LONG_SCENE_PAGES = 5


def _words(text: str) -> int:
    return len(text.split())


def _scene_spans(scene: Scene, next_page: int | None) -> Iterable[FlaggedSpan]:
    page = scene.page_number or 1

    def span(index: int, element: SceneElement, area: str, confidence: float):
        return FlaggedSpan(
            scene_id=scene.id,
            page=page,
            line_ref=element.line or index + 1,
            excerpt=element.text[:SUMMARY_ACTION_CHARS],
            area=area,
            heuristic_confidence=round(min(confidence, 0.95), 2),
        )

    if scene.heading is None and scene.elements:
        yield span(0, scene.elements[0], "FORMATTING", 0.85)

    for index, element in enumerate(scene.elements):
        words = _words(element.text)
        if element.type is ElementType.DIALOGUE and words > _MONOLOGUE_WORDS:
            # Longer speeches are more clearly a problem
            yield span(index, element, "DIALOGUE", 0.6 + (words - _MONOLOGUE_WORDS) / 200)
        elif element.type is ElementType.ACTION and words > _DENSE_ACTION_WORDS:
            yield span(index, element, "PACING", 0.5 + (words - _DENSE_ACTION_WORDS) / 300)
        elif (
            element.type is ElementType.PARENTHETICAL
            and words > _LONG_PARENTHETICAL_WORDS
        ):
            yield span(index, element, "FORMATTING", 0.8)

    if next_page is not None and next_page - page > _LONG_SCENE_PAGES and scene.elements:
        yield span(0, scene.elements[0], "STRUCTURE", 0.55)


def flagged_spans(script: Script, limit: int = DEFAULT_BATCH_SIZE) -> list[FlaggedSpan]:
    """Passages worth a craft note, each with a heuristic confidence.

    At most `limit` spans are returned, highest confidence first.
    """
    spans: list[FlaggedSpan] = []
    scenes = script.scenes
    for position, scene in enumerate(scenes):
        next_page = (
            scenes[position + 1].page_number if position + 1 < len(scenes) else None
        )
        spans.extend(_scene_spans(scene, next_page))
    spans.sort(key=lambda s: (-s.heuristic_confidence, s.page, s.line_ref))
    return spans[:limit]


# --- Risk candidates ---

_RISK_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("TRADEMARK", re.compile(r"[®™]|\b[A-Z][\w&]+ (?:Inc|Corp|LLC|Ltd)\b\.?")),
    (
        "REAL_PERSON",
        re.compile(r"\b(?:President|Senator|Governor|Mayor|Pope) [A-Z][a-z]+\b"),
    ),
    (
        "LIFE_RIGHTS",
        re.compile(
            r"\b(?:based on (?:a )?true (?:story|events)|inspired by real events|real[- ]life)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "DEFAMATION_RISK",
        re.compile(
            r"\b(?:embezzl\w*|fraud\w*|bribe\w*|molest\w*|rapist)\b", re.IGNORECASE
        ),
    ),
    ("LYRICS", re.compile(r"♪")),
)


def risk_candidates(script: Script, limit: int = DEFAULT_BATCH_SIZE) -> list[RiskCandidate]:
    """Passages that may need rights or legal review, in script order."""
    candidates: list[RiskCandidate] = []
    for scene in script.scenes:
        page = scene.page_number or 1
        for element in scene.elements:
            kind = "LYRICS" if element.type is ElementType.LYRIC else None
            if kind is None:
                kind = next(
                    (k for k, pattern in _RISK_PATTERNS if pattern.search(element.text)),
                    None,
                )
            if kind is None:
                continue
            candidates.append(
                RiskCandidate(
                    scene_id=scene.id,
                    page=page,
                    snippet=element.text[:SUMMARY_ACTION_CHARS],
                    context=scene.heading,
                    kind_hint=kind,
                )
            )
            if len(candidates) >= limit:
                return candidates
    return candidates


# --- Feasibility tagging ---

_FEASIBILITY_KEYWORDS: dict[str, re.Pattern[str]] = {
    name: re.compile(rf"\b(?:{words})\b", re.IGNORECASE)
    for name, words in {
        "has_stunts": r"fights?|punch\w*|falls?|leaps?|jumps?|crash\w*|tumbles?|stunt\w*",
        "has_vfx": r"explod\w*|explosions?|transforms?|hologram\w*|portal|spaceship|morphs?|dragon",
        "has_sfx": r"rain\w*|fire|flames?|smoke|gunfire|sparks?|fog",
        "has_crowd": r"crowds?|hundreds|thousands|stadium|army|protesters|audience",
        "has_minors": r"child|children|kids?|boy|girl|baby|infant|teens?|teenager",
        "has_animals": r"dogs?|horses?|cats?|birds?|animals?|wolf|wolves",
        "has_weapons": r"guns?|pistol|rifle|shotgun|knife|knives|sword|revolver",
        "has_vehicles": r"cars?|trucks?|helicopter|motorcycle|chase|van|boat|plane",
        "has_special_props": r"prop|artifact|device|briefcase|machine|relic",
    }.items()
}

_INT_EXT = {
    "INT": IntExt.INT,
    "EXT": IntExt.EXT,
    "INT/EXT": IntExt.INT_EXT,
    "EXT/INT": IntExt.INT_EXT,
    "I/E": IntExt.INT_EXT,
}


def _normalize_int_ext(value: str | None) -> IntExt | None:
    if not value:
        return None
    return _INT_EXT.get(value.strip().rstrip(".").upper())


def feasibility_metrics(script: Script) -> list[FeasibilityMetric]:
    """Tag production requirements per scene and score their complexity."""
    metrics: list[FeasibilityMetric] = []
    for scene in script.scenes:
        text = " ".join([scene.content, *(e.text for e in scene.elements)])
        flags = {name: bool(p.search(text)) for name, p in _FEASIBILITY_KEYWORDS.items()}
        int_ext = _normalize_int_ext(scene.int_ext)
        is_night = bool(scene.tod and "NIGHT" in scene.tod.upper())
        complexity = sum(flags.values()) + (int_ext is IntExt.EXT) + is_night
        metrics.append(
            FeasibilityMetric(
                scene_id=scene.id,
                int_ext=int_ext,
                location=scene.location,
                tod=scene.tod,
                complexity_score=min(10, complexity),
                **flags,
            )
        )
    return metrics
