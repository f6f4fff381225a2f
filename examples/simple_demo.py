#!/usr/bin/env python3  # noqa: EXE001
"""
Minimal demonstration of the screenplay coverage engine

Loads the bundled sample script into the in-memory store and runs a
comprehensive analysis. With no configuration this uses the deterministic mock
provider; set COVERAGE_USE_REAL_API=true and COVERAGE_API_KEY to call Gemini.
"""  # noqa: D212, D415

import asyncio
import json
from pathlib import Path

from screenplay_coverage import (
    AnalysisConfig,
    AnalysisPolicy,
    AnalysisType,
    InMemoryScriptStore,
    load_script,
    resolve_config,
    run_analysis,
)

SAMPLE = Path(__file__).with_name("sample_script.json")


async def main():  # noqa: ANN201, D103
    print("🎬 Screenplay Coverage - Demo\n")

    script = load_script(json.loads(SAMPLE.read_text(encoding="utf-8")))
    store = InMemoryScriptStore([script])

    context = await run_analysis(
        AnalysisConfig(
            script_id=script.id,
            analysis_type=AnalysisType.COMPREHENSIVE,
            policy=AnalysisPolicy(sensitivity_enabled=True),
        ),
        store=store,
        settings=resolve_config().to_frozen(),
    )

    results = context.results
    print("📐 Beats:")
    for beat in results.beats or []:
        print(f"   {beat.kind:<12} p.{beat.page:<4} ({beat.confidence:.2f})")
    print(f"\n📝 Notes: {len(results.notes or [])}")
    print(f"⚖️  Risk flags: {len(results.risk_flags or [])}")
    print(f"⭐ Recommendation: {results.recommendation}\n")
    print(results.coverage)
    print(f"\n⏱️  Stage durations: {context.telemetry.stage_durations}")


if __name__ == "__main__":
    asyncio.run(main())
