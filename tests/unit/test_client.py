"""Structured call client: tier resolution, retries, validation and telemetry."""

import asyncio
import json

import pytest

from screenplay_coverage.core.types import SceneSummary, Tier
from screenplay_coverage.exceptions import ProviderCallError, SchemaViolationError
from screenplay_coverage.llm.client import serialize_content
from screenplay_coverage.schemas import Beat
from tests.helpers import (
    TOKENS_PER_CALL,
    FakeProvider,
    SleepRecorder,
    beats_payload,
    make_client,
)

pytestmark = pytest.mark.unit

BAD_BEAT = {"beats": [{"kind": "MIDPOINT", "page": 55, "confidence": 1.5}]}


@pytest.mark.asyncio
async def test_successful_call_returns_models_and_one_record(telemetry):
    provider = FakeProvider(beats_payload(0.8))
    client = make_client(provider, telemetry=telemetry)

    beats = await client.call_structured(Tier.BASE, "system", "scenes", "BeatList")

    assert len(beats) == 7
    assert all(isinstance(b, Beat) for b in beats)
    (record,) = telemetry.calls
    assert record.tier is Tier.BASE
    assert record.tokens == TOKENS_PER_CALL
    assert record.task == "BeatList"
    assert record.escalation_reason is None
    assert record.latency_ms >= 0


@pytest.mark.asyncio
async def test_requested_tier_resolves_through_fallback(telemetry):
    provider = FakeProvider(beats_payload())
    client = make_client(provider, telemetry=telemetry)

    await client.call_structured(Tier.NANO, "system", "scenes", "BeatList")

    assert provider.requests[0].model_id == client.tiers.model_id(Tier.MINI)
    assert telemetry.calls[0].tier is Tier.MINI


@pytest.mark.asyncio
async def test_temperature_defaults_by_tier():
    provider = FakeProvider(beats_payload(), beats_payload(), beats_payload())
    client = make_client(provider)

    await client.call_structured(Tier.MINI, "s", "u", "BeatList")
    await client.call_structured(Tier.BASE, "s", "u", "BeatList")
    await client.call_structured(Tier.BASE, "s", "u", "BeatList", temperature=0.9)

    assert [r.temperature for r in provider.requests] == [0.2, 0.3, 0.9]


@pytest.mark.asyncio
async def test_request_carries_schema_and_serialized_content():
    provider = FakeProvider(beats_payload())
    client = make_client(provider)
    summaries = [SceneSummary(scene_id=1, page=1, summary="INT. HOUSE - DAY.")]

    await client.call_structured(
        Tier.BASE, "system", {"scene_summaries": summaries}, "BeatList"
    )

    request = provider.requests[0]
    assert request.schema_name == "BeatList"
    assert request.response_schema["type"] == "array"
    assert json.loads(request.user_content) == {
        "scene_summaries": [{"scene_id": 1, "page": 1, "summary": "INT. HOUSE - DAY."}]
    }


@pytest.mark.asyncio
async def test_transient_failures_retry_with_exponential_backoff(telemetry):
    provider = FakeProvider(
        ProviderCallError("503"),
        RuntimeError("connection reset"),
        beats_payload(),
    )
    sleeper = SleepRecorder()
    client = make_client(provider, telemetry=telemetry, sleep=sleeper, base_delay=1.0)

    beats = await client.call_structured(Tier.BASE, "s", "u", "BeatList", retries=2)

    assert len(beats) == 7
    assert len(provider.requests) == 3
    assert sleeper.delays == [1.0, 2.0]
    assert len(telemetry.calls) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_last_error_without_telemetry(telemetry):
    provider = FakeProvider("", "not json", "{also not json")
    sleeper = SleepRecorder()
    client = make_client(provider, telemetry=telemetry, sleep=sleeper)

    with pytest.raises(ProviderCallError, match="not valid JSON"):
        await client.call_structured(Tier.BASE, "s", "u", "BeatList", retries=2)

    assert len(provider.requests) == 3
    assert len(sleeper.delays) == 2
    assert telemetry.calls == ()


@pytest.mark.asyncio
async def test_schema_violation_is_retried_then_raised(telemetry):
    provider = FakeProvider(BAD_BEAT, BAD_BEAT)
    client = make_client(provider, telemetry=telemetry)

    with pytest.raises(SchemaViolationError) as ei:
        await client.call_structured(Tier.BASE, "s", "u", "BeatList", retries=1)

    assert ei.value.schema_name == "BeatList"
    assert len(provider.requests) == 2
    assert telemetry.calls == ()


@pytest.mark.asyncio
async def test_schema_violation_recovers_on_retry():
    provider = FakeProvider(BAD_BEAT, beats_payload())
    client = make_client(provider)

    beats = await client.call_structured(Tier.BASE, "s", "u", "BeatList")

    assert len(beats) == 7


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt():
    provider = FakeProvider(ProviderCallError("down"))
    sleeper = SleepRecorder()
    client = make_client(provider, sleep=sleeper)

    with pytest.raises(ProviderCallError):
        await client.call_structured(Tier.BASE, "s", "u", "BeatList", retries=0)

    assert len(provider.requests) == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_negative_retries_are_rejected():
    client = make_client(FakeProvider())

    with pytest.raises(ValueError, match="retries"):
        await client.call_structured(Tier.BASE, "s", "u", "BeatList", retries=-1)


@pytest.mark.asyncio
async def test_slow_provider_times_out_as_transient_failure():
    class SlowProvider:
        calls = 0

        async def complete(self, request):
            SlowProvider.calls += 1
            await asyncio.sleep(5)

    client = make_client(SlowProvider(), timeout_s=0.01)

    with pytest.raises(ProviderCallError, match="timed out"):
        await client.call_structured(Tier.BASE, "s", "u", "BeatList", retries=1)

    assert SlowProvider.calls == 2


@pytest.mark.asyncio
async def test_escalation_metadata_is_recorded(telemetry):
    client = make_client(FakeProvider(beats_payload()), telemetry=telemetry)

    await client.call_structured(
        Tier.THINKING,
        "s",
        "u",
        "BeatList",
        task="beats",
        escalation_reason="low_confidence",
        confidence=0.3,
    )

    record = telemetry.calls[0]
    assert record.task == "beats"
    assert record.escalation_reason == "low_confidence"
    assert record.confidence == 0.3


@pytest.mark.asyncio
async def test_call_text_returns_stripped_prose(telemetry):
    provider = FakeProvider("  LOGLINE: A heist.\n")
    client = make_client(provider, telemetry=telemetry)

    text = await client.call_text(Tier.BASE, "s", {"title": "x"}, temperature=0.6)

    assert text == "LOGLINE: A heist."
    assert provider.requests[0].schema_name is None
    assert provider.requests[0].response_schema is None
    assert telemetry.calls[0].task == "text"


def test_serialize_content_passes_strings_through():
    assert serialize_content("raw text") == "raw text"
    assert json.loads(serialize_content({"a": [1, 2]})) == {"a": [1, 2]}
