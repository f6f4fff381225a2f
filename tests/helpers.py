"""Shared test doubles and builders."""

from collections import deque
from collections.abc import Callable, Iterable
import json
from typing import Any

from screenplay_coverage.core.types import (
    ElementType,
    Scene,
    SceneElement,
    Script,
    ScriptStatus,
)
from screenplay_coverage.llm.client import StructuredCallClient
from screenplay_coverage.llm.providers import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
)
from screenplay_coverage.llm.router import EscalationRouter
from screenplay_coverage.llm.tiers import ModelTierTable
from screenplay_coverage.schemas import CANONICAL_BEATS, RUBRIC_CATEGORIES
from screenplay_coverage.telemetry import TelemetryCollector

type Scripted = str | dict[str, Any] | list[Any] | BaseException | Callable[
    [CompletionRequest], Any
]

TOKENS_PER_CALL = 100


class FakeProvider:
    """Provider returning queued responses in order.

    A queued exception is raised instead of returned; a queued callable is
    called with the request. Once the queue is empty the fallback provider, if
    any, answers.
    """

    def __init__(
        self, *responses: Scripted, fallback: CompletionProvider | None = None
    ) -> None:
        self.responses: deque[Scripted] = deque(responses)
        self.fallback = fallback
        self.requests: list[CompletionRequest] = []

    def queue(self, *responses: Scripted) -> None:
        self.responses.extend(responses)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if not self.responses:
            if self.fallback is None:
                raise AssertionError("FakeProvider has no scripted response left")
            return await self.fallback.complete(request)
        item = self.responses.popleft()
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(request)
        text = item if isinstance(item, str) else json.dumps(item)
        return CompletionResponse(
            text=text, total_tokens=TOKENS_PER_CALL, model_id=request.model_id
        )

    @property
    def models_called(self) -> list[str]:
        return [r.model_id for r in self.requests]


class SleepRecorder:
    """Instant stand-in for ``asyncio.sleep``."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.error = error

    async def notify(self, url: str, payload: dict[str, Any]) -> None:
        self.sent.append((url, payload))
        if self.error is not None:
            raise self.error


def make_client(
    provider: CompletionProvider,
    *,
    telemetry: TelemetryCollector | None = None,
    tiers: ModelTierTable | None = None,
    sleep: SleepRecorder | None = None,
    **kwargs: Any,
) -> StructuredCallClient:
    return StructuredCallClient(
        provider,
        tiers or ModelTierTable.default(),
        telemetry if telemetry is not None else TelemetryCollector(),
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


def make_router(provider: CompletionProvider, **kwargs: Any) -> EscalationRouter:
    return EscalationRouter(make_client(provider, **kwargs))


# --- Canned model payloads ---


def beats_payload(
    confidence: float = 0.8,
    *,
    inciting: int = 11,
    midpoint: int = 55,
) -> dict[str, Any]:
    pages = {
        "INCITING": inciting,
        "ACT1_BREAK": 25,
        "MIDPOINT": midpoint,
        "LOW_POINT": 75,
        "ACT2_BREAK": 90,
        "CLIMAX": 101,
        "RESOLUTION": 108,
    }
    return {
        "beats": [
            {"kind": str(kind), "page": pages[kind], "confidence": confidence}
            for kind in CANONICAL_BEATS
        ]
    }


def scores_payload(
    value: float = 7.0, categories: Iterable[str] | None = None
) -> dict[str, Any]:
    names = list(categories) if categories is not None else list(RUBRIC_CATEGORIES)
    return {"scores": [{"category": str(c), "value": value} for c in names]}


def notes_payload(*areas: str) -> dict[str, Any]:
    return {
        "notes": [
            {"severity": "MEDIUM", "area": area, "scene_id": i + 1}
            for i, area in enumerate(areas)
        ]
    }


def risk_payload(*confidences: float, kind: str = "TRADEMARK") -> dict[str, Any]:
    return {
        "flags": [
            {"kind": kind, "confidence": c, "snippet": f"candidate {i}"}
            for i, c in enumerate(confidences)
        ]
    }


# --- Script builders ---

MONOLOGUE = " ".join(["word"] * 90)
DENSE_ACTION = " ".join(["movement"] * 100)


def build_scene(
    number: int,
    page: int,
    *,
    int_ext: str = "INT",
    tod: str = "DAY",
    extra: Iterable[SceneElement] = (),
) -> Scene:
    location = f"LOCATION {number}"
    elements = (
        SceneElement(ElementType.SCENE_HEADING, f"{int_ext}. {location} - {tod}", 1),
        SceneElement(
            ElementType.ACTION, f"Scene {number} unfolds as Maya studies the files.", 2
        ),
        SceneElement(ElementType.CHARACTER, "MAYA", 3),
        SceneElement(ElementType.DIALOGUE, "We don't have much time!", 4),
        *extra,
    )
    return Scene(
        id=number,
        number=number,
        page_number=page,
        int_ext=int_ext,
        location=location,
        tod=tod,
        elements=elements,
    )


def build_script(
    script_id: str = "script-1",
    *,
    page_count: int = 110,
    scene_count: int = 22,
    status: ScriptStatus = ScriptStatus.PARSED,
    genre: str | None = "Thriller",
) -> Script:
    """A script with one long speech, one dense action block and one brand name."""
    pages_per_scene = max(1, page_count // scene_count)
    scenes = []
    for index in range(scene_count):
        number = index + 1
        extra: list[SceneElement] = []
        if number == 3:
            extra.append(SceneElement(ElementType.DIALOGUE, MONOLOGUE, 5))
        if number == 5:
            extra.append(SceneElement(ElementType.ACTION, DENSE_ACTION, 5))
        if number == 7:
            extra.append(
                SceneElement(ElementType.ACTION, "She signs the Acme Corp contract.", 5)
            )
        scenes.append(
            build_scene(
                number,
                1 + index * pages_per_scene,
                int_ext="EXT" if index % 3 == 0 else "INT",
                tod="NIGHT" if index % 2 else "DAY",
                extra=extra,
            )
        )
    return Script(
        id=script_id,
        title="The Long Night",
        status=status,
        page_count=page_count,
        genre=genre,
        synopsis="A detective races to clear her name.",
        scenes=tuple(scenes),
    )
