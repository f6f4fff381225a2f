"""Model provider capability and adapters.

The structured call client talks to a ``CompletionProvider``; it never builds
an SDK client itself. Two adapters ship here:

- ``MockProvider``: deterministic, no network. The default unless the real API
  is enabled in configuration. Produces schema-valid payloads so the whole
  pipeline can run offline.
- ``GoogleGenAIProvider``: Gemini via the ``google-genai`` SDK, using JSON
  response mode with the registry's JSON Schema.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from screenplay_coverage.exceptions import ProviderCallError
from screenplay_coverage.schemas import CANONICAL_BEATS, RUBRIC_CATEGORIES

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """A single provider request, already resolved to a concrete model."""

    model_id: str
    system_prompt: str
    user_content: str
    max_output_tokens: int
    temperature: float
    schema_name: str | None = None
    response_schema: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class CompletionResponse:
    text: str | None
    total_tokens: int
    model_id: str


@runtime_checkable
class CompletionProvider(Protocol):
    """Capability: turn one request into one response."""

    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...  # noqa: D102


class GoogleGenAIProvider:
    """Gemini adapter over ``google.genai``'s async client."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ProviderCallError("GoogleGenAIProvider requires an api_key")
        self._client = genai.Client(api_key=api_key)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            temperature=request.temperature,
            max_output_tokens=request.max_output_tokens,
        )
        if request.response_schema is not None:
            config.response_mime_type = "application/json"
            config.response_json_schema = dict(request.response_schema)
        else:
            config.response_mime_type = "text/plain"

        try:
            response = await self._client.aio.models.generate_content(
                model=request.model_id,
                contents=request.user_content,
                config=config,
            )
        except genai_errors.APIError as e:
            raise ProviderCallError(
                f"Gemini request to {request.model_id} failed: {e}"
            ) from e

        usage = response.usage_metadata
        total_tokens = (usage.total_token_count or 0) if usage is not None else 0
        return CompletionResponse(
            text=response.text,
            total_tokens=total_tokens,
            model_id=request.model_id,
        )


class MockProvider:
    """Deterministic provider used by default, in examples and in tests."""

    def __init__(self, confidence: float = 0.8, score: float = 7.0):
        self._confidence = confidence
        self._score = score

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        if request.schema_name is None:
            text = self._prose(request)
        else:
            payload = self._structured(request.schema_name, request.user_content)
            text = json.dumps(payload)
        tokens = (len(request.system_prompt) + len(request.user_content)) // 4
        tokens += len(text) // 4 + 10
        return CompletionResponse(
            text=text, total_tokens=tokens, model_id=request.model_id
        )

    def _structured(self, schema_name: str, user_content: str) -> Any:
        try:
            data = json.loads(user_content)
        except json.JSONDecodeError:
            data = None

        match schema_name:
            case "BeatList":
                page_count = 110
                if isinstance(data, dict):
                    page_count = int(data.get("page_count") or page_count)
                return {"beats": self._beats(page_count)}
            case "NoteList":
                spans = data if isinstance(data, list) else []
                return {"notes": [self._note(span) for span in spans]}
            case "RiskFlagList":
                candidates = data if isinstance(data, list) else []
                return {"flags": [self._risk(c) for c in candidates]}
            case "ScoreList":
                categories = list(RUBRIC_CATEGORIES)
                if isinstance(data, dict) and data.get("categories"):
                    categories = data["categories"]
                return {
                    "scores": [
                        {
                            "category": str(category),
                            "value": self._score,
                            "rationale": f"Mock assessment of {str(category).lower()}.",
                        }
                        for category in categories
                    ]
                }
            case _:
                raise ProviderCallError(f"MockProvider has no fixture for {schema_name}")

    def _beats(self, page_count: int) -> list[dict[str, Any]]:
        # Conventional beat positions as a fraction of running time
        positions = (0.1, 0.23, 0.5, 0.68, 0.82, 0.92, 0.98)
        return [
            {
                "kind": str(kind),
                "page": max(1, round(page_count * position)),
                "confidence": self._confidence,
                "timing_flag": "ON_TIME",
                "rationale": f"Mock placement of {kind.lower()}.",
            }
            for kind, position in zip(CANONICAL_BEATS, positions, strict=True)
        ]

    def _note(self, span: Mapping[str, Any]) -> dict[str, Any]:
        note: dict[str, Any] = {
            "severity": "MEDIUM",
            "area": span.get("area", "STRUCTURE"),
            "suggestion": "Tighten this passage.",
        }
        for key in ("scene_id", "page", "line_ref", "excerpt"):
            if span.get(key) is not None:
                note[key] = span[key]
        return note

    def _risk(self, candidate: Mapping[str, Any]) -> dict[str, Any]:
        flag: dict[str, Any] = {
            "kind": candidate.get("kind_hint", "TRADEMARK"),
            "confidence": self._confidence,
            "notes": "Mock review.",
        }
        for key in ("scene_id", "page", "snippet"):
            if candidate.get(key) is not None:
                flag[key] = candidate[key]
        return flag

    def _prose(self, request: CompletionRequest) -> str:
        try:
            data = json.loads(request.user_content)
        except json.JSONDecodeError:
            data = {}
        title = data.get("script_title", "Untitled") if isinstance(data, dict) else "Untitled"
        verdict = data.get("recommendation", "consider") if isinstance(data, dict) else "consider"
        return "\n\n".join(
            (
                f"LOGLINE: {title} follows a protagonist pushed into an unfamiliar world.",
                "SYNOPSIS: The setup establishes the world. The conflict escalates. "
                "The resolution pays off the central question.",
                "STRENGTHS: Clear structure. Distinct voices.",
                "CONCERNS: The second act sags. Secondary characters need goals.",
                f"RECOMMENDATION: {str(verdict).upper()}",
            )
        )
