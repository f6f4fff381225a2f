"""Structured-output schemas for model responses.

Each result type is a closed pydantic model; the JSON Schema sent to the
provider is generated from the same model that validates the response, so the
two can never drift. Validation is a hard gate: enumerations are closed and
bounded numbers (confidence, score value) are rejected when out of range,
never clamped.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
import json
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from screenplay_coverage.exceptions import SchemaViolationError


class BeatKind(StrEnum):
    INCITING = "INCITING"
    ACT1_BREAK = "ACT1_BREAK"
    MIDPOINT = "MIDPOINT"
    LOW_POINT = "LOW_POINT"
    ACT2_BREAK = "ACT2_BREAK"
    CLIMAX = "CLIMAX"
    RESOLUTION = "RESOLUTION"


CANONICAL_BEATS: tuple[BeatKind, ...] = tuple(BeatKind)


class TimingFlag(StrEnum):
    EARLY = "EARLY"
    ON_TIME = "ON_TIME"
    LATE = "LATE"
    UNKNOWN = "UNKNOWN"


class Severity(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class NoteArea(StrEnum):
    STRUCTURE = "STRUCTURE"
    CHARACTER = "CHARACTER"
    DIALOGUE = "DIALOGUE"
    PACING = "PACING"
    THEME = "THEME"
    GENRE = "GENRE"
    FORMATTING = "FORMATTING"
    LOGIC = "LOGIC"
    REPRESENTATION = "REPRESENTATION"
    LEGAL = "LEGAL"


class EditOp(StrEnum):
    REWRITE = "rewrite"
    TRIM = "trim"
    MOVE = "move"
    REPLACE = "replace"
    INSERT = "insert"


class RiskKind(StrEnum):
    REAL_PERSON = "REAL_PERSON"
    TRADEMARK = "TRADEMARK"
    LYRICS = "LYRICS"
    DEFAMATION_RISK = "DEFAMATION_RISK"
    LIFE_RIGHTS = "LIFE_RIGHTS"


class ScoreCategory(StrEnum):
    STRUCTURE = "STRUCTURE"
    CHARACTER = "CHARACTER"
    DIALOGUE = "DIALOGUE"
    PACING = "PACING"
    THEME = "THEME"
    GENRE_FIT = "GENRE_FIT"
    ORIGINALITY = "ORIGINALITY"
    FEASIBILITY = "FEASIBILITY"


RUBRIC_CATEGORIES: tuple[ScoreCategory, ...] = tuple(ScoreCategory)


class _Item(BaseModel):
    """Base for all structured result items: closed shape, immutable."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


Confidence = Annotated[float, Field(ge=0.0, le=1.0)]


class Beat(_Item):
    kind: BeatKind
    page: int = Field(ge=1)
    confidence: Confidence
    timing_flag: TimingFlag | None = None
    rationale: str | None = None


class EditRange(_Item):
    sceneId: int = Field(ge=1)  # noqa: N815 - wire name
    from_: int | None = Field(default=None, ge=0, alias="from")
    to: int | None = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class ApplyHook(_Item):
    """A mechanical edit operation a client can apply to the script."""

    op: EditOp
    range: EditRange | None = None


class Note(_Item):
    severity: Severity
    area: NoteArea
    scene_id: int | None = Field(default=None, ge=1)
    page: int | None = Field(default=None, ge=1)
    line_ref: int | None = Field(default=None, ge=1)
    excerpt: str | None = None
    suggestion: str | None = None
    apply_hook: ApplyHook | None = None
    rule_code: str | None = None


class RiskFlag(_Item):
    kind: RiskKind
    scene_id: int | None = Field(default=None, ge=1)
    page: int | None = Field(default=None, ge=1)
    start_line: int | None = Field(default=None, ge=1)
    end_line: int | None = Field(default=None, ge=1)
    snippet: str | None = None
    confidence: Confidence
    notes: str | None = None


class Score(_Item):
    category: ScoreCategory
    value: float = Field(ge=0.0, le=10.0)
    rationale: str | None = None


class IntExt(StrEnum):
    INT = "INT"
    EXT = "EXT"
    INT_EXT = "INT/EXT"


class FeasibilityMetric(_Item):
    scene_id: int = Field(ge=1)
    int_ext: IntExt | None = None
    location: str | None = None
    tod: str | None = None
    has_stunts: bool | None = None
    has_vfx: bool | None = None
    has_sfx: bool | None = None
    has_crowd: bool | None = None
    has_minors: bool | None = None
    has_animals: bool | None = None
    has_weapons: bool | None = None
    has_vehicles: bool | None = None
    has_special_props: bool | None = None
    complexity_score: int | None = Field(default=None, ge=0, le=10)


class ThemeStatement(_Item):
    statement: str
    confidence: Confidence


class Subplot(_Item):
    label: str
    description: str | None = None


class PageMetric(_Item):
    page: int = Field(ge=1)
    scene_length_lines: int | None = Field(default=None, ge=0)
    dialogue_lines: int | None = Field(default=None, ge=0)
    action_lines: int | None = Field(default=None, ge=0)
    tension_score: int | None = Field(default=None, ge=0, le=10)
    complexity_score: int | None = Field(default=None, ge=0, le=10)


# --- Registry ---

_ITEM_MODELS: dict[str, type[_Item]] = {
    "Beat": Beat,
    "Note": Note,
    "RiskFlag": RiskFlag,
    "Score": Score,
    "FeasibilityMetric": FeasibilityMetric,
    "ThemeStatement": ThemeStatement,
    "Subplot": Subplot,
    "PageMetric": PageMetric,
}

SCHEMA_REGISTRY: Mapping[str, type[_Item]] = MappingProxyType(
    {
        **_ITEM_MODELS,
        "BeatList": Beat,
        "NoteList": Note,
        "RiskFlagList": RiskFlag,
        "ScoreList": Score,
        "FeasibilityMetricList": FeasibilityMetric,
        "ThemeStatementList": ThemeStatement,
        "SubplotList": Subplot,
        "PageMetricList": PageMetric,
    }
)


def item_model(schema_name: str) -> type[_Item]:
    """Return the item model registered under `schema_name`."""
    try:
        return SCHEMA_REGISTRY[schema_name]
    except KeyError:
        raise KeyError(f"Unknown schema: {schema_name!r}") from None


def json_schema(schema_name: str) -> dict[str, Any]:
    """Return the JSON Schema for a registered name.

    Names ending in ``List`` describe an array of items; every other name
    describes a single item.
    """
    model = item_model(schema_name)
    if schema_name.endswith("List"):
        return TypeAdapter(list[model]).json_schema(by_alias=True)  # type: ignore[valid-type]
    return model.model_json_schema(by_alias=True)


def _unwrap_items(schema_name: str, payload: Any) -> list[Any]:
    """Normalize a parsed payload to a list of candidate items.

    Providers wrap arrays differently: a bare array, a single object, or an
    object holding the array under one key (``{"beats": [...]}``).
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        list_values = [v for v in payload.values() if isinstance(v, list)]
        if len(payload) == 1 and len(list_values) == 1:
            return list_values[0]
        return [payload]
    raise SchemaViolationError(
        schema_name, f"expected an object or array, got {type(payload).__name__}"
    )


def validate_items(schema_name: str, payload: Any) -> list[Any]:
    """Validate parsed JSON against the registered schema.

    Returns:
        A list of validated model instances.

    Raises:
        SchemaViolationError: If any item fails validation. Invalid items are
            never returned.
    """
    model = item_model(schema_name)
    items = _unwrap_items(schema_name, payload)
    # Strict JSON mode: enum members still match by string, scalars do not coerce
    validated: list[Any] = []
    for index, raw in enumerate(items):
        try:
            validated.append(model.model_validate_json(json.dumps(raw), strict=True))
        except PydanticValidationError as e:
            raise SchemaViolationError(
                schema_name,
                f"item {index} failed validation: {e.error_count()} error(s)",
                errors=e.errors(include_url=False),
            ) from e
    return validated


def dump_items(items: list[Any]) -> list[dict[str, Any]]:
    """Serialize validated items to plain JSON-compatible dicts."""
    return [item.to_json_dict() for item in items]
