"""Persistence boundary for analysis runs.

The pipeline reads scripts and writes results only through the
``ScriptRepository`` protocol. All writes of one run happen inside a single
``transaction()``: either every write becomes visible, or none does.

``InMemoryScriptStore`` is the process-local implementation used by the CLI and
tests. It uses copy-on-begin: a transaction works on a private copy of the
tables and swaps it in on commit, so an exception leaves the committed state
untouched.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
import logging
from typing import Any, Protocol

from screenplay_coverage.core.types import (
    Character,
    ElementType,
    Scene,
    SceneElement,
    Script,
    ScriptStatus,
)
from screenplay_coverage.exceptions import ScriptNotFoundError
from screenplay_coverage.schemas import Beat, Note, RiskFlag, Score, ScoreCategory

log = logging.getLogger(__name__)


class UnitOfWork(Protocol):
    """Writes available inside one transaction."""

    async def create_beats(self, script_id: str, beats: Sequence[Beat]) -> int: ...  # noqa: D102
    async def create_notes(self, script_id: str, notes: Sequence[Note]) -> int: ...  # noqa: D102
    async def upsert_score_by_category(self, script_id: str, score: Score) -> None: ...  # noqa: D102
    async def create_risk_flags(  # noqa: D102
        self, script_id: str, flags: Sequence[RiskFlag]
    ) -> int: ...
    async def update_script_status(  # noqa: D102
        self, script_id: str, status: ScriptStatus
    ) -> None: ...


class ScriptRepository(Protocol):
    async def find_script_by_id(self, script_id: str) -> Script | None: ...  # noqa: D102
    def transaction(self) -> AbstractAsyncContextManager[UnitOfWork]: ...  # noqa: D102


@dataclass
class _Tables:
    scripts: dict[str, Script] = field(default_factory=dict)
    beats: dict[str, list[Beat]] = field(default_factory=dict)
    notes: dict[str, list[Note]] = field(default_factory=dict)
    scores: dict[str, dict[ScoreCategory, Score]] = field(default_factory=dict)
    risk_flags: dict[str, list[RiskFlag]] = field(default_factory=dict)
    processed_at: dict[str, datetime] = field(default_factory=dict)

    def copy(self) -> _Tables:
        # Rows are immutable, so copying the containers is enough
        return _Tables(
            scripts=dict(self.scripts),
            beats={k: list(v) for k, v in self.beats.items()},
            notes={k: list(v) for k, v in self.notes.items()},
            scores={k: dict(v) for k, v in self.scores.items()},
            risk_flags={k: list(v) for k, v in self.risk_flags.items()},
            processed_at=dict(self.processed_at),
        )


def _append_new[T](rows: list[T], items: Sequence[T]) -> int:
    """Append items not already present; returns the number written."""
    written = 0
    for item in items:
        if item not in rows:
            rows.append(item)
            written += 1
    return written


class InMemoryUnitOfWork:
    """Writes against a transaction's private copy of the tables."""

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    async def create_beats(self, script_id: str, beats: Sequence[Beat]) -> int:
        return _append_new(self._tables.beats.setdefault(script_id, []), beats)

    async def create_notes(self, script_id: str, notes: Sequence[Note]) -> int:
        return _append_new(self._tables.notes.setdefault(script_id, []), notes)

    async def upsert_score_by_category(self, script_id: str, score: Score) -> None:
        self._tables.scores.setdefault(script_id, {})[score.category] = score

    async def create_risk_flags(
        self, script_id: str, flags: Sequence[RiskFlag]
    ) -> int:
        return _append_new(self._tables.risk_flags.setdefault(script_id, []), flags)

    async def update_script_status(self, script_id: str, status: ScriptStatus) -> None:
        script = self._tables.scripts.get(script_id)
        if script is None:
            raise ScriptNotFoundError(f"Script not found: {script_id}")
        self._tables.scripts[script_id] = replace(script, status=status)
        self._tables.processed_at[script_id] = datetime.now(UTC)


class InMemoryScriptStore:
    """Process-local ``ScriptRepository`` with all-or-nothing transactions.

    Transactions are serialized with an ``asyncio.Lock``; reads see only
    committed state.
    """

    def __init__(self, scripts: Iterable[Script] = ()) -> None:
        self._tables = _Tables(scripts={s.id: s for s in scripts})
        self._lock = asyncio.Lock()

    def add_script(self, script: Script) -> None:
        self._tables.scripts[script.id] = script

    async def find_script_by_id(self, script_id: str) -> Script | None:
        return self._tables.scripts.get(script_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryUnitOfWork]:
        async with self._lock:
            working = self._tables.copy()
            try:
                yield InMemoryUnitOfWork(working)
            except BaseException:
                log.warning("Transaction rolled back")
                raise
            self._tables = working

    # --- Committed-state reads ---

    def beats_for(self, script_id: str) -> tuple[Beat, ...]:
        return tuple(self._tables.beats.get(script_id, ()))

    def notes_for(self, script_id: str) -> tuple[Note, ...]:
        return tuple(self._tables.notes.get(script_id, ()))

    def scores_for(self, script_id: str) -> dict[ScoreCategory, Score]:
        return dict(self._tables.scores.get(script_id, {}))

    def risk_flags_for(self, script_id: str) -> tuple[RiskFlag, ...]:
        return tuple(self._tables.risk_flags.get(script_id, ()))

    def status_of(self, script_id: str) -> ScriptStatus | None:
        script = self._tables.scripts.get(script_id)
        return script.status if script is not None else None

    def processed_at(self, script_id: str) -> datetime | None:
        return self._tables.processed_at.get(script_id)


# --- Snapshot loading ---


def load_script(data: Mapping[str, Any]) -> Script:
    """Build a script snapshot from parser output in JSON form.

    Accepts snake_case keys and the parser's camelCase spellings
    (``pageCount``, ``pageNumber``, ``intExt``, ``dialogueCount``,
    ``screenTimeMinutes``).
    """

    def pick(obj: Mapping[str, Any], *names: str, default: Any = None) -> Any:
        for name in names:
            if obj.get(name) is not None:
                return obj[name]
        return default

    scenes = tuple(
        Scene(
            id=int(pick(s, "id", default=index + 1)),
            number=int(pick(s, "number", default=index + 1)),
            page_number=int(pick(s, "page_number", "pageNumber", "pageStart", default=1)),
            content=pick(s, "content", default=""),
            int_ext=pick(s, "int_ext", "intExt"),
            location=pick(s, "location"),
            tod=pick(s, "tod"),
            elements=tuple(
                SceneElement(
                    type=ElementType(e["type"]),
                    text=e.get("text", ""),
                    line=e.get("line"),
                )
                for e in s.get("elements", ())
            ),
        )
        for index, s in enumerate(data.get("scenes", ()))
    )
    characters = tuple(
        Character(
            name=c["name"],
            dialogue_count=int(pick(c, "dialogue_count", "dialogueCount", default=0)),
            screen_time_minutes=float(
                pick(c, "screen_time_minutes", "screenTimeMinutes", default=0.0)
            ),
        )
        for c in data.get("characters", ())
    )
    return Script(
        id=str(data["id"]),
        title=pick(data, "title", default="Untitled"),
        status=ScriptStatus(pick(data, "status", default=ScriptStatus.PARSED)),
        page_count=pick(data, "page_count", "pageCount"),
        genre=pick(data, "genre", "genreOverride"),
        synopsis=pick(data, "synopsis", "synopsisShort"),
        scenes=scenes,
        characters=characters,
    )
