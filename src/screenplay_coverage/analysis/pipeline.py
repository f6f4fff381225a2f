"""Analysis pipeline: the staged run for one script.

Stages execute strictly in order. Each stage is timed and reported through a
``TelemetryContext`` scope; a failing stage is recorded on the run telemetry
and raised as ``PipelineError`` carrying the stage name and the underlying
error. There is no partial credit and no resume: PERSIST is the only stage
with external effects and it is a single all-or-nothing transaction, so a
failed run leaves the script exactly as it was.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from time import perf_counter
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from screenplay_coverage.analysis import detectors
from screenplay_coverage.analysis.notify import Notifier, WebhookNotifier
from screenplay_coverage.constants import (
    CONSIDER_THRESHOLD,
    DEFAULT_BATCH_SIZE,
    DEFAULT_PAGE_COUNT,
    RECOMMEND_THRESHOLD,
)
from screenplay_coverage.core.types import (
    READY_STATUSES,
    AnalysisPolicy,
    AnalysisStage,
    AnalysisType,
    Failure,
    Recommendation,
    Result,
    SceneSummary,
    Script,
    ScriptStatus,
    Success,
)
from screenplay_coverage.exceptions import (
    CoverageError,
    MissingParseOutputError,
    MissingStageOutputError,
    PersistenceError,
    PipelineCancelledError,
    PipelineError,
    ScriptNotFoundError,
    ScriptNotReadyError,
)
from screenplay_coverage.llm.router import EscalationRouter, ScoringInput
from screenplay_coverage.schemas import (
    Beat,
    FeasibilityMetric,
    Note,
    PageMetric,
    RiskFlag,
    Score,
    ScoreCategory,
    dump_items,
)
from screenplay_coverage.telemetry import (
    TelemetryCollector,
    TelemetryContext,
    TelemetryContextProtocol,
)

if TYPE_CHECKING:
    from screenplay_coverage.analysis.store import ScriptRepository
    from screenplay_coverage.config import FrozenConfig

log = logging.getLogger(__name__)

_LIGHT_STAGES = (
    AnalysisStage.SANITIZE,
    AnalysisStage.NORMALIZE,
    AnalysisStage.DETECTORS,
    AnalysisStage.PERSIST,
)

DEFAULT_STAGES: Mapping[AnalysisType, tuple[AnalysisStage, ...]] = MappingProxyType(
    {
        AnalysisType.QUICK: _LIGHT_STAGES,
        AnalysisType.CUSTOM: _LIGHT_STAGES,
        AnalysisType.COMPREHENSIVE: tuple(AnalysisStage),
    }
)


@dataclass(frozen=True, slots=True)
class AnalysisConfig:
    """What to analyze and how. ``stages`` overrides the type's defaults."""

    script_id: str
    analysis_type: AnalysisType = AnalysisType.QUICK
    policy: AnalysisPolicy = field(default_factory=AnalysisPolicy)
    stages: tuple[AnalysisStage, ...] | None = None
    webhook_url: str | None = None

    def resolved_stages(self) -> tuple[AnalysisStage, ...]:
        if self.stages is not None:
            return tuple(AnalysisStage(s) for s in self.stages)
        return DEFAULT_STAGES[AnalysisType(self.analysis_type)]


@dataclass
class PipelineResults:
    """Results bag. A field stays ``None`` until the stage that owns it runs."""

    beats: list[Beat] | None = None
    notes: list[Note] | None = None
    risk_flags: list[RiskFlag] | None = None
    scores: list[Score] | None = None
    page_metrics: list[PageMetric] | None = None
    feasibility_metrics: list[FeasibilityMetric] | None = None
    coverage: str | None = None
    recommendation: Recommendation | None = None
    scene_summaries: list[SceneSummary] | None = None
    low_evidence_categories: tuple[ScoreCategory, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible view; fields that were never produced are omitted."""
        out: dict[str, Any] = {}
        for key in ("beats", "notes", "risk_flags", "scores", "page_metrics", "feasibility_metrics"):
            items = getattr(self, key)
            if items is not None:
                out[key] = dump_items(items)
        if self.scene_summaries is not None:
            out["scene_summaries"] = [
                {"scene_id": s.scene_id, "page": s.page, "summary": s.summary}
                for s in self.scene_summaries
            ]
        if self.low_evidence_categories is not None:
            out["low_evidence_categories"] = [str(c) for c in self.low_evidence_categories]
        if self.recommendation is not None:
            out["recommendation"] = str(self.recommendation)
        if self.coverage is not None:
            out["coverage"] = self.coverage
        return out


@dataclass(frozen=True, slots=True)
class StageError:
    stage: str
    error: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class RunTelemetry:
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    stage_durations: dict[str, float] = field(default_factory=dict)
    errors: list[StageError] = field(default_factory=list)
    executed_stages: list[AnalysisStage] = field(default_factory=list)


@dataclass
class PipelineContext:
    """State of one run. Created per run and never shared."""

    config: AnalysisConfig
    script: Script | None = None
    results: PipelineResults = field(default_factory=PipelineResults)
    telemetry: RunTelemetry = field(default_factory=RunTelemetry)

    @property
    def script_id(self) -> str:
        return self.config.script_id


def determine_recommendation(scores: Sequence[Score]) -> Recommendation:
    """Verdict from the mean rubric score. No scores means ``consider``."""
    if not scores:
        return Recommendation.CONSIDER
    mean = sum(s.value for s in scores) / len(scores)
    if mean >= RECOMMEND_THRESHOLD:
        return Recommendation.RECOMMEND
    if mean >= CONSIDER_THRESHOLD:
        return Recommendation.CONSIDER
    return Recommendation.PASS


type StageHandler = Callable[[PipelineContext], Awaitable[None]]


class AnalysisPipeline:
    """Runs the analysis stages for one script against injected collaborators."""

    def __init__(
        self,
        config: AnalysisConfig,
        *,
        store: ScriptRepository,
        router: EscalationRouter,
        notifier: Notifier | None = None,
        telemetry: TelemetryCollector | None = None,
        ctx: TelemetryContextProtocol | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel_event: asyncio.Event | None = None,
    ):
        self.config = config
        self._store = store
        self._router = router
        self._notifier: Notifier = notifier or WebhookNotifier()
        self._telemetry = telemetry or router.telemetry
        self._ctx: TelemetryContextProtocol = ctx or TelemetryContext()
        self._batch_size = batch_size
        self._cancel_event = cancel_event
        self.context: PipelineContext | None = None
        self._handlers: Mapping[AnalysisStage, StageHandler] = {
            AnalysisStage.SANITIZE: self._stage_sanitize,
            AnalysisStage.PARSE: self._stage_parse,
            AnalysisStage.NORMALIZE: self._stage_normalize,
            AnalysisStage.DETECTORS: self._stage_detectors,
            AnalysisStage.SCORING: self._stage_scoring,
            AnalysisStage.ASSETS: self._stage_assets,
            AnalysisStage.PERSIST: self._stage_persist,
            AnalysisStage.NOTIFY: self._stage_notify,
        }

    async def execute(self) -> PipelineContext:
        """Run every configured stage in order.

        The run state, including recorded stage errors, stays available on
        ``self.context`` after either outcome.

        Raises:
            PipelineError: If any stage fails; ``.stage_name`` and ``.cause``
                identify where and why.
            PipelineCancelledError: If the cancel event is set at a stage
                boundary.
        """
        context = PipelineContext(config=self.config)
        self.context = context
        policy = self.config.policy

        for stage in self.config.resolved_stages():
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise PipelineCancelledError(
                    f"Analysis of {self.config.script_id} cancelled before {stage}"
                )
            with self._ctx("pipeline.stage", stage=str(stage)):
                start = perf_counter()
                result = await self._run_stage(stage, context)
                duration = perf_counter() - start
            context.telemetry.stage_durations[str(stage)] = duration

            if isinstance(result, Failure):
                self._ctx.count("pipeline.error", stage=str(stage))
                context.telemetry.errors.append(
                    StageError(stage=str(stage), error=str(result.error))
                )
                log.error("Stage %s failed: %s", stage, result.error)
                raise PipelineError(
                    str(result.error), str(stage), result.error
                ) from result.error
            context.telemetry.executed_stages.append(stage)
            log.info("Stage %s completed in %.3fs", stage, duration)

        log.debug("Run policy: %s", policy)
        self._log_summary(context)
        return context

    async def _run_stage(
        self, stage: AnalysisStage, context: PipelineContext
    ) -> Result[None, Exception]:
        try:
            await self._handlers[stage](context)
            return Success(None)
        except Exception as e:
            return Failure(e)

    # --- Stages ---

    def _require_script(self, context: PipelineContext) -> Script:
        if context.script is None:
            raise MissingStageOutputError("Script not loaded; SANITIZE must run first")
        return context.script

    async def _stage_sanitize(self, context: PipelineContext) -> None:
        script = await self._store.find_script_by_id(context.script_id)
        if script is None:
            raise ScriptNotFoundError(f"Script not found: {context.script_id}")
        if script.status not in READY_STATUSES:
            raise ScriptNotReadyError(
                f"Script not ready for analysis: {script.status}"
            )
        context.script = script

    async def _stage_parse(self, context: PipelineContext) -> None:
        script = self._require_script(context)
        elements = script.elements
        if not elements:
            raise MissingParseOutputError("No parsed elements found for script")
        log.info(
            "Parsed %d elements from %d scenes", len(elements), len(script.scenes)
        )

    async def _stage_normalize(self, context: PipelineContext) -> None:
        script = self._require_script(context)
        context.results.scene_summaries = detectors.build_scene_summaries(script)
        context.results.page_metrics = detectors.page_metrics(script)
        log.info("Normalized %d scenes for analysis", len(script.scenes))

    async def _stage_detectors(self, context: PipelineContext) -> None:
        script = self._require_script(context)
        results = context.results
        policy = self.config.policy
        summaries = results.scene_summaries
        if summaries is None:
            summaries = detectors.build_scene_summaries(script)
        page_count = script.page_count or DEFAULT_PAGE_COUNT

        async def detect_beats() -> None:
            results.beats = await self._router.route_beats(
                summaries, page_count, script.genre, policy
            )

        async def detect_notes() -> None:
            spans = detectors.flagged_spans(script, limit=self._batch_size)
            results.notes = await self._router.route_notes(spans, policy)

        async def detect_risks() -> None:
            candidates = detectors.risk_candidates(script, limit=self._batch_size)
            results.risk_flags = await self._router.route_risk_flags(
                candidates, policy
            )

        async def tag_feasibility() -> None:
            results.feasibility_metrics = detectors.feasibility_metrics(script)

        tasks: list[Callable[[], Awaitable[None]]] = [detect_beats, detect_notes]
        if policy.sensitivity_enabled:
            tasks.append(detect_risks)
        tasks.append(tag_feasibility)

        if not policy.enable_batch_processing:
            for task in tasks:
                await task()
            return

        # Sub-tasks write disjoint result fields, so they can run concurrently
        try:
            async with asyncio.TaskGroup() as tg:
                for task in tasks:
                    tg.create_task(task())
        except ExceptionGroup as eg:
            for extra in eg.exceptions[1:]:
                log.warning("Detector task also failed: %s", extra)
            raise eg.exceptions[0] from None

    async def _stage_scoring(self, context: PipelineContext) -> None:
        script = self._require_script(context)
        results = context.results
        if results.beats is None or results.notes is None:
            raise MissingStageOutputError("Missing analysis data for scoring")
        outcome = await self._router.route_rubric_scoring(
            ScoringInput(
                beats=results.beats,
                notes=results.notes,
                page_count=script.page_count or DEFAULT_PAGE_COUNT,
                genre=script.genre,
                synopsis=script.synopsis,
                scene_summaries=results.scene_summaries or (),
            ),
            self.config.policy,
        )
        results.scores = outcome.scores
        results.low_evidence_categories = outcome.low_evidence_categories

    async def _stage_assets(self, context: PipelineContext) -> None:
        if self.config.analysis_type is not AnalysisType.COMPREHENSIVE:
            log.debug("Skipping coverage prose for %s analysis", self.config.analysis_type)
            return
        script = self._require_script(context)
        results = context.results
        recommendation = determine_recommendation(results.scores or [])
        results.recommendation = recommendation
        results.coverage = await self._router.route_coverage_prose(
            {
                "beats": results.beats or [],
                "notes": results.notes or [],
                "scores": results.scores or [],
                "risk_flags": results.risk_flags or [],
            },
            script.title or "Untitled",
            recommendation,
            retries=self.config.policy.max_retries,
        )

    async def _stage_persist(self, context: PipelineContext) -> None:
        script_id = context.script_id
        results = context.results
        try:
            async with self._store.transaction() as uow:
                if results.beats:
                    await uow.create_beats(script_id, results.beats)
                if results.notes:
                    await uow.create_notes(script_id, results.notes)
                for score in results.scores or ():
                    await uow.upsert_score_by_category(script_id, score)
                if results.risk_flags:
                    await uow.create_risk_flags(script_id, results.risk_flags)
                await uow.update_script_status(script_id, ScriptStatus.COMPLETED)
        except CoverageError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to persist analysis for {script_id}: {e}"
            ) from e
        log.info("Results persisted for script %s", script_id)

    async def _stage_notify(self, context: PipelineContext) -> None:
        url = self.config.webhook_url
        if not url:
            log.debug("No webhook configured; skipping notification")
            return
        results = context.results
        payload = {
            "script_id": context.script_id,
            "analysis_type": str(self.config.analysis_type),
            "status": str(ScriptStatus.COMPLETED),
            "recommendation": str(results.recommendation)
            if results.recommendation
            else None,
            "counts": _result_counts(results),
            "stage_durations": dict(context.telemetry.stage_durations),
        }
        try:
            await self._notifier.notify(url, payload)
        except Exception as e:
            # Best-effort: the analysis is already committed
            log.warning("Notification to %s failed: %s", url, e)

    # --- Summary ---

    def _log_summary(self, context: PipelineContext) -> None:
        stats = self._telemetry.get_stats()
        elapsed = (datetime.now(UTC) - context.telemetry.start_time).total_seconds()
        counts = _result_counts(context.results)
        log.info(
            "Analysis pipeline complete for %s: total_time=%.3fs llm_calls=%d "
            "total_tokens=%d escalations=%d beats=%d notes=%d risk_flags=%d scores=%d",
            context.script_id,
            elapsed,
            stats.total_calls,
            stats.total_tokens,
            stats.escalations,
            counts["beats"],
            counts["notes"],
            counts["risk_flags"],
            counts["scores"],
        )


def _result_counts(results: PipelineResults) -> dict[str, int]:
    return {
        "beats": len(results.beats or ()),
        "notes": len(results.notes or ()),
        "risk_flags": len(results.risk_flags or ()),
        "scores": len(results.scores or ()),
    }


async def run_analysis(
    config: AnalysisConfig,
    *,
    store: ScriptRepository,
    router: EscalationRouter | None = None,
    notifier: Notifier | None = None,
    settings: FrozenConfig | None = None,
    telemetry: TelemetryCollector | None = None,
    ctx: TelemetryContextProtocol | None = None,
    cancel_event: asyncio.Event | None = None,
) -> PipelineContext:
    """Create a pipeline for `config` and run it.

    When no router is given one is built from `settings` (resolved from the
    environment if omitted), using the configured provider.
    """
    if router is None or notifier is None:
        from screenplay_coverage.config import create_router, resolve_config

        frozen = settings if settings is not None else resolve_config().to_frozen()
        if router is None:
            router = create_router(frozen, telemetry, ctx=ctx)
        if notifier is None:
            notifier = WebhookNotifier(timeout=frozen.webhook_timeout_s)
        batch_size = frozen.batch_size
    else:
        batch_size = settings.batch_size if settings is not None else DEFAULT_BATCH_SIZE

    pipeline = AnalysisPipeline(
        config,
        store=store,
        router=router,
        notifier=notifier,
        telemetry=telemetry,
        ctx=ctx,
        batch_size=batch_size,
        cancel_event=cancel_event,
    )
    return await pipeline.execute()
