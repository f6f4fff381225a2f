"""End-to-end analysis runs against the in-memory store.

These use the deterministic ``MockProvider`` (or a scripted fake where a run
needs to fail in a specific way), so every stage runs for real except the
network call.
"""

import asyncio
from dataclasses import replace

import pytest

from screenplay_coverage.analysis import (
    AnalysisConfig,
    AnalysisPipeline,
    InMemoryScriptStore,
    run_analysis,
)
from screenplay_coverage.analysis.store import InMemoryUnitOfWork
from screenplay_coverage.core.types import (
    AnalysisPolicy,
    AnalysisStage,
    AnalysisType,
    Recommendation,
    ScriptStatus,
    Tier,
)
from screenplay_coverage.exceptions import (
    MissingParseOutputError,
    MissingStageOutputError,
    NotificationError,
    PersistenceError,
    PipelineCancelledError,
    PipelineError,
    ProviderCallError,
    ScriptNotFoundError,
    ScriptNotReadyError,
)
from screenplay_coverage.llm.providers import MockProvider
from screenplay_coverage.llm.prompts import COVERAGE_SECTIONS
from screenplay_coverage.llm.router import TASK_BEATS, TASK_RUBRIC
from screenplay_coverage.schemas import RUBRIC_CATEGORIES
from screenplay_coverage.telemetry import SimpleReporter, TelemetryContext
from tests.helpers import (
    FakeProvider,
    RecordingNotifier,
    SleepRecorder,
    beats_payload,
    build_script,
    make_router,
)

pytestmark = pytest.mark.integration

WEBHOOK = "https://hooks.example.test/done"


@pytest.fixture
def store(script):
    return InMemoryScriptStore([script])


@pytest.fixture
def router(telemetry):
    return make_router(MockProvider(), telemetry=telemetry)


def _pipeline(config, store, router, notifier=None, **kwargs):
    return AnalysisPipeline(
        config,
        store=store,
        router=router,
        notifier=notifier or RecordingNotifier(),
        **kwargs,
    )


class TestQuickAnalysis:
    @pytest.mark.asyncio
    async def test_quick_run_detects_and_persists(self, store, router, script, telemetry):
        context = await _pipeline(AnalysisConfig(script.id), store, router).execute()

        assert context.telemetry.executed_stages == [
            AnalysisStage.SANITIZE,
            AnalysisStage.NORMALIZE,
            AnalysisStage.DETECTORS,
            AnalysisStage.PERSIST,
        ]
        results = context.results
        assert len(results.beats) == 7
        assert [n.area for n in results.notes] == ["DIALOGUE", "PACING"]
        assert results.risk_flags is None
        assert results.scores is None
        assert results.coverage is None
        assert len(results.feasibility_metrics) == 22
        assert len(results.scene_summaries) == 22

        assert store.status_of(script.id) is ScriptStatus.COMPLETED
        assert len(store.beats_for(script.id)) == 7
        assert len(store.notes_for(script.id)) == 2
        assert store.risk_flags_for(script.id) == ()
        assert store.processed_at(script.id) is not None

        # One beat call plus the mini/base note split, no escalation
        stats = telemetry.get_stats()
        assert stats.total_calls == 3
        assert stats.escalations == 0
        assert stats.model_stats == {Tier.BASE: 2, Tier.MINI: 1}

    @pytest.mark.asyncio
    async def test_stage_durations_are_recorded(self, store, router, script):
        context = await _pipeline(AnalysisConfig(script.id), store, router).execute()

        assert set(context.telemetry.stage_durations) == {
            "sanitize",
            "normalize",
            "detectors",
            "persist",
        }
        assert all(d >= 0 for d in context.telemetry.stage_durations.values())
        assert context.telemetry.errors == []

    @pytest.mark.asyncio
    async def test_sensitivity_adds_risk_flags(self, store, router, script):
        config = AnalysisConfig(
            script.id, policy=AnalysisPolicy(sensitivity_enabled=True)
        )

        context = await _pipeline(config, store, router).execute()

        (flag,) = context.results.risk_flags
        assert flag.kind == "TRADEMARK"
        assert flag.scene_id == 7
        assert store.risk_flags_for(script.id) == (flag,)

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate_rows(self, store, router, script):
        config = AnalysisConfig(script.id)

        await _pipeline(config, store, router).execute()
        await _pipeline(config, store, router).execute()

        assert len(store.beats_for(script.id)) == 7
        assert len(store.notes_for(script.id)) == 2
        assert store.status_of(script.id) is ScriptStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_detectors_match_sequential(self, script):
        sequential = await _pipeline(
            AnalysisConfig(script.id, policy=AnalysisPolicy(sensitivity_enabled=True)),
            InMemoryScriptStore([script]),
            make_router(MockProvider()),
        ).execute()
        concurrent = await _pipeline(
            AnalysisConfig(
                script.id,
                policy=AnalysisPolicy(
                    sensitivity_enabled=True, enable_batch_processing=True
                ),
            ),
            InMemoryScriptStore([script]),
            make_router(MockProvider()),
        ).execute()

        assert concurrent.results.beats == sequential.results.beats
        assert concurrent.results.notes == sequential.results.notes
        assert concurrent.results.risk_flags == sequential.results.risk_flags


class TestComprehensiveAnalysis:
    @pytest.mark.asyncio
    async def test_comprehensive_run_produces_coverage(
        self, store, router, script, telemetry, notifier
    ):
        config = AnalysisConfig(
            script.id,
            analysis_type=AnalysisType.COMPREHENSIVE,
            policy=AnalysisPolicy(sensitivity_enabled=True),
            webhook_url=WEBHOOK,
        )

        context = await _pipeline(config, store, router, notifier).execute()

        assert context.telemetry.executed_stages == list(AnalysisStage)
        results = context.results
        assert len(results.scores) == len(RUBRIC_CATEGORIES)
        assert results.recommendation is Recommendation.CONSIDER
        for section in COVERAGE_SECTIONS:
            assert f"{section}:" in results.coverage
        assert "The Long Night" in results.coverage
        assert "RECOMMENDATION: CONSIDER" in results.coverage
        assert len(store.scores_for(script.id)) == 8

        # Two notes cannot back any category, so every score is re-checked
        rubric_calls = telemetry.calls_for(TASK_RUBRIC)
        assert [c.tier for c in rubric_calls] == [Tier.BASE, Tier.THINKING]
        assert rubric_calls[1].escalation_reason == "low_evidence"
        assert set(results.low_evidence_categories) == set(RUBRIC_CATEGORIES)

    @pytest.mark.asyncio
    async def test_webhook_receives_run_summary(self, store, router, script, notifier):
        config = AnalysisConfig(
            script.id,
            analysis_type=AnalysisType.COMPREHENSIVE,
            webhook_url=WEBHOOK,
        )

        await _pipeline(config, store, router, notifier).execute()

        ((url, payload),) = notifier.sent
        assert url == WEBHOOK
        assert payload["script_id"] == script.id
        assert payload["analysis_type"] == "comprehensive"
        assert payload["status"] == "COMPLETED"
        assert payload["recommendation"] == "consider"
        assert payload["counts"] == {
            "beats": 7,
            "notes": 2,
            "risk_flags": 0,
            "scores": 8,
        }
        assert "persist" in payload["stage_durations"]

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_the_run(self, store, router, script):
        notifier = RecordingNotifier(error=NotificationError("hook down"))
        config = AnalysisConfig(
            script.id,
            analysis_type=AnalysisType.COMPREHENSIVE,
            webhook_url=WEBHOOK,
        )

        context = await _pipeline(config, store, router, notifier).execute()

        assert AnalysisStage.NOTIFY in context.telemetry.executed_stages
        assert len(notifier.sent) == 1
        assert store.status_of(script.id) is ScriptStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_no_webhook_means_no_notification(self, store, router, script, notifier):
        config = AnalysisConfig(script.id, analysis_type=AnalysisType.COMPREHENSIVE)

        await _pipeline(config, store, router, notifier).execute()

        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_custom_stages_skip_model_calls(self, store, router, script, telemetry):
        config = AnalysisConfig(
            script.id,
            analysis_type=AnalysisType.CUSTOM,
            stages=(AnalysisStage.SANITIZE, AnalysisStage.PARSE, AnalysisStage.NORMALIZE),
        )

        context = await _pipeline(config, store, router).execute()

        assert len(context.telemetry.executed_stages) == 3
        assert len(context.results.page_metrics) == 22
        assert telemetry.calls == ()
        assert store.status_of(script.id) is ScriptStatus.PARSED


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_script_fails_at_sanitize(self, router, telemetry):
        pipeline = _pipeline(AnalysisConfig("ghost"), InMemoryScriptStore(), router)

        with pytest.raises(PipelineError) as ei:
            await pipeline.execute()

        assert ei.value.stage_name == "sanitize"
        assert isinstance(ei.value.cause, ScriptNotFoundError)
        assert telemetry.calls == ()
        (error,) = pipeline.context.telemetry.errors
        assert error.stage == "sanitize"

    @pytest.mark.asyncio
    async def test_unparsed_script_is_not_ready(self, router):
        script = build_script("raw", status=ScriptStatus.UPLOADED)
        pipeline = _pipeline(AnalysisConfig("raw"), InMemoryScriptStore([script]), router)

        with pytest.raises(PipelineError) as ei:
            await pipeline.execute()

        assert isinstance(ei.value.cause, ScriptNotReadyError)

    @pytest.mark.asyncio
    async def test_script_without_elements_fails_at_parse(self, router):
        script = replace(build_script("empty"), scenes=())
        config = AnalysisConfig("empty", analysis_type=AnalysisType.COMPREHENSIVE)

        with pytest.raises(PipelineError) as ei:
            await _pipeline(config, InMemoryScriptStore([script]), router).execute()

        assert ei.value.stage_name == "parse"
        assert isinstance(ei.value.cause, MissingParseOutputError)

    @pytest.mark.asyncio
    async def test_scoring_without_detectors_is_missing_input(self, store, router, script):
        config = AnalysisConfig(
            script.id, stages=(AnalysisStage.SANITIZE, AnalysisStage.SCORING)
        )

        with pytest.raises(PipelineError) as ei:
            await _pipeline(config, store, router).execute()

        assert ei.value.stage_name == "scoring"
        assert isinstance(ei.value.cause, MissingStageOutputError)

    @pytest.mark.asyncio
    async def test_provider_outage_fails_detectors_and_leaves_script_untouched(
        self, store, script, telemetry
    ):
        class SlowProvider:
            def __init__(self):
                self.calls = 0

            async def complete(self, request):
                self.calls += 1
                await asyncio.sleep(5)

        provider = SlowProvider()
        sleeper = SleepRecorder()
        router = make_router(
            provider, telemetry=telemetry, sleep=sleeper, timeout_s=0.01
        )

        with pytest.raises(PipelineError) as ei:
            await _pipeline(AnalysisConfig(script.id), store, router).execute()

        assert ei.value.stage_name == "detectors"
        assert isinstance(ei.value.cause, ProviderCallError)
        # First attempt plus the default two retries
        assert provider.calls == 3
        assert len(sleeper.delays) == 2
        assert telemetry.calls == ()
        assert store.status_of(script.id) is ScriptStatus.PARSED
        assert store.beats_for(script.id) == ()

    @pytest.mark.asyncio
    async def test_concurrent_detector_failure_surfaces_first_error(self, store, script):
        provider = FakeProvider(ProviderCallError("down"), fallback=MockProvider())
        router = make_router(provider)
        config = AnalysisConfig(
            script.id,
            policy=AnalysisPolicy(enable_batch_processing=True, max_retries=0),
        )

        with pytest.raises(PipelineError) as ei:
            await _pipeline(config, store, router).execute()

        assert ei.value.stage_name == "detectors"
        assert isinstance(ei.value.cause, ProviderCallError)

    @pytest.mark.asyncio
    async def test_persist_failure_rolls_back_everything(
        self, store, router, script, monkeypatch
    ):
        async def broken(self, script_id, flags):
            raise RuntimeError("constraint violated")

        monkeypatch.setattr(InMemoryUnitOfWork, "create_risk_flags", broken)
        config = AnalysisConfig(
            script.id, policy=AnalysisPolicy(sensitivity_enabled=True)
        )

        with pytest.raises(PipelineError) as ei:
            await _pipeline(config, store, router).execute()

        assert ei.value.stage_name == "persist"
        assert isinstance(ei.value.cause, PersistenceError)
        assert store.beats_for(script.id) == ()
        assert store.notes_for(script.id) == ()
        assert store.status_of(script.id) is ScriptStatus.PARSED

    @pytest.mark.asyncio
    async def test_failed_stage_is_counted_in_telemetry_scope(self, router):
        reporter = SimpleReporter()
        ctx = TelemetryContext(reporter, enabled=True)
        pipeline = _pipeline(
            AnalysisConfig("ghost"), InMemoryScriptStore(), router, ctx=ctx
        )

        with pytest.raises(PipelineError):
            await pipeline.execute()

        assert "pipeline.error" in reporter.metrics
        assert "pipeline.stage" in reporter.timings


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self, store, router, script, telemetry):
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(PipelineCancelledError):
            await _pipeline(
                AnalysisConfig(script.id), store, router, cancel_event=cancel
            ).execute()

        assert telemetry.calls == ()

    @pytest.mark.asyncio
    async def test_cancel_mid_run_stops_before_persist(self, store, script):
        cancel = asyncio.Event()

        def cancel_then_answer(request):
            cancel.set()
            return beats_payload()

        provider = FakeProvider(cancel_then_answer, fallback=MockProvider())
        config = AnalysisConfig(script.id)

        with pytest.raises(PipelineCancelledError, match="before persist"):
            await _pipeline(
                config, store, make_router(provider), cancel_event=cancel
            ).execute()

        assert store.status_of(script.id) is ScriptStatus.PARSED
        assert store.beats_for(script.id) == ()


class TestRunAnalysis:
    @pytest.mark.asyncio
    async def test_builds_collaborators_from_configuration(self, store, script, notifier):
        context = await run_analysis(
            AnalysisConfig(script.id), store=store, notifier=notifier
        )

        assert len(context.results.beats) == 7
        assert store.status_of(script.id) is ScriptStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_uses_given_router(self, store, script, router, notifier, telemetry):
        await run_analysis(
            AnalysisConfig(script.id), store=store, router=router, notifier=notifier
        )

        assert len(telemetry.calls_for(TASK_BEATS)) == 1
