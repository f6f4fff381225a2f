#!/usr/bin/env python3
"""Minimal custom telemetry reporter example for screenplay-coverage.
Shows how to print stage and model-call timings as they happen.
"""

import asyncio
import json
from pathlib import Path
from typing import Any

from screenplay_coverage import (
    AnalysisConfig,
    InMemoryScriptStore,
    TelemetryContext,
    TelemetryReporter,
    create_router,
    load_script,
    resolve_config,
    run_analysis,
)

SAMPLE = Path(__file__).with_name("sample_script.json")


class PrintReporter(TelemetryReporter):
    """A minimal telemetry reporter that prints events to the console."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        """Prints timing events with indentation based on scope depth."""
        depth = metadata.get("depth", 0)
        indent = "  " * depth
        print(
            f"[TIMING] {indent}{scope}: duration={duration:.4f}s (metadata: {metadata})",
        )

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        """Prints a generic metric event."""
        print(f"[METRIC] {scope}: {value} (metadata: {metadata})")


async def main():
    config = resolve_config().to_frozen()
    tele = TelemetryContext(PrintReporter(), enabled=True)
    router = create_router(config, ctx=tele)

    script = load_script(json.loads(SAMPLE.read_text(encoding="utf-8")))
    await run_analysis(
        AnalysisConfig(script_id=script.id),
        store=InMemoryScriptStore([script]),
        router=router,
        settings=config,
        ctx=tele,
    )

    stats = router.telemetry.get_stats()
    print(f"\nLLM calls: {stats.total_calls}, escalations: {stats.escalations}")
    print(f"Estimated cost: ${stats.estimated_cost:.5f}")


if __name__ == "__main__":
    asyncio.run(main())
