"""Command-line entry point: analyze a parsed script snapshot.

Usage:
    python -m screenplay_coverage SCRIPT.json
    python -m screenplay_coverage SCRIPT.json --type comprehensive --sensitivity
    python -m screenplay_coverage --check-config
"""

import asyncio
import json
import logging
from pathlib import Path
import sys
from typing import Any

from screenplay_coverage.analysis.pipeline import AnalysisConfig, run_analysis
from screenplay_coverage.analysis.store import InMemoryScriptStore, load_script
from screenplay_coverage.config import (
    create_router,
    create_telemetry_context,
    resolve_config,
)
from screenplay_coverage.core.types import AnalysisPolicy, AnalysisType
from screenplay_coverage.exceptions import CoverageError
from screenplay_coverage.telemetry import SimpleReporter

# ruff: noqa: T201


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        description="Generate screenplay coverage for a parsed script",
        prog="python -m screenplay_coverage",
    )
    parser.add_argument("script", nargs="?", type=Path, help="Parsed script JSON file")
    parser.add_argument(
        "--type",
        dest="analysis_type",
        choices=[t.value for t in AnalysisType],
        default=AnalysisType.QUICK.value,
        help="Analysis type (default: quick)",
    )
    parser.add_argument(
        "--sensitivity", action="store_true", help="Run the legal risk pass"
    )
    parser.add_argument(
        "--thinking-legal",
        action="store_true",
        help="Start the legal risk pass at the thinking tier",
    )
    parser.add_argument(
        "--concurrent",
        action="store_true",
        help="Run detectors concurrently",
    )
    parser.add_argument("--webhook", help="Completion webhook URL")
    parser.add_argument("--profile", help="Configuration profile to use")
    parser.add_argument(
        "--json", action="store_true", help="Print results as JSON"
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Print the redacted configuration audit and exit",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _print_human(output: dict[str, Any]) -> None:
    results = output["results"]
    print(f"=== Coverage: {output['script_id']} ===")
    for beat in results.get("beats", []):
        print(f"  {beat['kind']:<12} p.{beat['page']:<4} ({beat['confidence']:.2f})")
    for score in results.get("scores", []):
        print(f"  {score['category']:<14} {score['value']:.1f}")
    print(f"Notes: {len(results.get('notes', []))}")
    if "risk_flags" in results:
        print(f"Risk flags: {len(results['risk_flags'])}")
    if "recommendation" in results:
        print(f"Recommendation: {results['recommendation']}")
    if "coverage" in results:
        print()
        print(results["coverage"])
    print()
    print("=== Telemetry ===")
    for key, value in output["telemetry"].items():
        print(f"{key}: {value}")


async def _run(args: Any) -> dict[str, Any]:
    resolved = resolve_config(profile=args.profile)
    config = resolved.to_frozen()

    data = json.loads(args.script.read_text(encoding="utf-8"))
    script = load_script(data)
    store = InMemoryScriptStore([script])

    reporter = SimpleReporter()
    ctx = create_telemetry_context(config, reporter)
    router = create_router(config, ctx=ctx)
    policy = AnalysisPolicy(
        sensitivity_enabled=args.sensitivity,
        always_thinking_for_legal=args.thinking_legal,
        enable_batch_processing=args.concurrent,
        max_retries=config.max_retries,
    )
    context = await run_analysis(
        AnalysisConfig(
            script_id=script.id,
            analysis_type=AnalysisType(args.analysis_type),
            policy=policy,
            webhook_url=args.webhook,
        ),
        store=store,
        router=router,
        settings=config,
        ctx=ctx,
    )
    if args.verbose:
        print(reporter.get_report(), file=sys.stderr)
    return {
        "script_id": script.id,
        "status": str(store.status_of(script.id)),
        "results": context.results.to_dict(),
        "stage_durations": context.telemetry.stage_durations,
        "telemetry": router.telemetry.get_stats().to_dict(),
    }


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.check_config:
        try:
            print(resolve_config(profile=args.profile).audit())
        except CoverageError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 1
        return 0

    if args.script is None:
        parser.error("a script JSON file is required")

    try:
        output = asyncio.run(_run(args))
    except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
        print(f"Could not load script: {e}", file=sys.stderr)
        return 2
    except CoverageError as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(output, indent=2, default=str))
    else:
        _print_human(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
