"""Command-line interface for shelfwatch."""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from shelfwatch.config import EngineThresholds, RetryConfig, settings
from shelfwatch.constants import KNOWN_PLATFORMS
from shelfwatch.exceptions import CatalogValidationError
from shelfwatch.infrastructure.http_fetcher import HttpFetcher
from shelfwatch.infrastructure.retry_controller import RetryController, effective_retry_config
from shelfwatch.intelligence.catalog import load_catalog
from shelfwatch.intelligence.config_store import JsonConfigPersistence
from shelfwatch.intelligence.suggestion_engine import SolutionEngine
from shelfwatch.logging_config import setup_logging
from shelfwatch.models import DetectionResult, GroupedSuggestions
from shelfwatch.utils.challenge_detector import classify_response


def _emit(data, args) -> None:
    output = json.dumps(data, indent=2, default=str)
    if getattr(args, "output_file", None):
        with open(args.output_file, "w") as f:
            f.write(output)
        print(f"Results written to {args.output_file}")
    else:
        print(output)


def _build_engine() -> SolutionEngine:
    thresholds = EngineThresholds.from_env()
    persistence = JsonConfigPersistence.in_directory(settings.STATE_DIR)
    return SolutionEngine(thresholds=thresholds, persistence=persistence)


def print_detection(detection: DetectionResult) -> None:
    """Print a detection verdict in a formatted way."""
    print(f"\n{'=' * 60}")
    if detection.is_blocked:
        print(f"BLOCKED on {detection.platform}: {detection.detection_type.value}")
    else:
        print(f"Clean response from {detection.platform}")
    print(f"{'=' * 60}")
    print(f"  Confidence: {detection.confidence * 100:.1f}%")
    print(f"  Status: {detection.response_code}")
    print(f"  Suggested action: {detection.suggested_action}")
    signals = detection.details.get("signals", [])
    if signals:
        print("  Signals:")
        for signal in signals:
            print(f"    • {signal}")


def print_suggestions(grouped: GroupedSuggestions) -> None:
    """Print grouped suggestions, highest score first within each group."""
    if len(grouped) == 0:
        print("\nNo suggestions for this detection.")
        return

    for name in GroupedSuggestions.GROUP_NAMES:
        suggestions = getattr(grouped, name)
        if not suggestions:
            continue
        print(f"\n{name.upper()} ({len(suggestions)})")
        for s in suggestions:
            status = "ready" if s.can_apply_now else s.reason_if_disabled
            print(f"  [{s.relevance_score:3d}] {s.solution.name} ({s.urgency.value}) - {status}")
            print(f"        {s.estimated_impact}")


def _read_body(path: str) -> str:
    return Path(path).read_text(encoding="utf-8", errors="replace")


def _classify_from_args(args) -> DetectionResult:
    return classify_response(
        _read_body(args.body_file),
        args.status,
        elapsed_ms=args.elapsed_ms,
        platform=args.platform,
        redirect_count=args.redirects,
        thresholds=EngineThresholds.from_env(),
    )


def catalog_command(args):
    """List catalog entries."""
    catalog = load_catalog(settings.CATALOG_PATH)
    solutions = catalog.by_category(args.category) if args.category else list(catalog)

    if args.output == "json":
        _emit([s.model_dump(mode="json") for s in solutions], args)
        return

    for category in catalog.categories():
        entries = [s for s in solutions if s.category == category]
        if not entries:
            continue
        print(f"\n{category}")
        for s in entries:
            print(
                f"  {s.id:<30} {s.priority:<9} eff={s.estimated_effectiveness:>3.0f} "
                f"risk={s.risk_level:<7} {s.implementation_complexity}"
            )


def classify_command(args):
    """Classify a saved response body."""
    detection = _classify_from_args(args)
    if args.output == "json":
        _emit(detection.to_dict(), args)
    else:
        print_detection(detection)


def suggest_command(args):
    """Classify a saved response and print grouped suggestions."""
    detection = _classify_from_args(args)
    engine = _build_engine()
    grouped = engine.generate_suggestions(detection, is_desktop=args.desktop)

    if args.output == "json":
        _emit({"detection": detection.to_dict(), "suggestions": grouped.to_dict()}, args)
    else:
        print_detection(detection)
        print_suggestions(grouped)


async def _async_check(args):
    engine = _build_engine()
    config = effective_retry_config(engine, RetryConfig.from_env())
    if args.max_attempts:
        config.max_attempts = args.max_attempts

    async with HttpFetcher(timeout=config.attempt_timeout) as fetcher:
        controller = RetryController(
            args.platform,
            fetcher,
            config=config,
            thresholds=engine.thresholds,
            engine=engine,
            is_desktop=args.desktop,
        )
        outcome = await controller.run(args.url)
    return controller, outcome


def check_command(args):
    """Fetch a live URL with retries and report the outcome."""
    controller, outcome = asyncio.run(_async_check(args))

    if args.output == "json":
        data = outcome.to_dict()
        data["request_stats"] = controller.event_logger.get_request_stats()
        _emit(data, args)
        return

    print(f"\n{outcome.url}: {outcome.state.value} after {outcome.attempts} attempt(s)")
    if outcome.detection is not None:
        print_detection(outcome.detection)
    if outcome.last_error is not None and not outcome.succeeded:
        print(f"  Last error: {outcome.last_error.message}")
    if outcome.suggestions is not None:
        print_suggestions(outcome.suggestions)
    print()
    print(controller.event_logger.report())

    if not outcome.succeeded:
        sys.exit(1)


def _add_response_arguments(parser) -> None:
    parser.add_argument("body_file", help="File containing the response body")
    parser.add_argument("--status", type=int, default=200, help="HTTP status code (default: 200)")
    parser.add_argument("--platform", choices=KNOWN_PLATFORMS, required=True, help="Target site")
    parser.add_argument("--elapsed-ms", type=float, default=0.0, help="Fetch duration in milliseconds")
    parser.add_argument("--redirects", type=int, default=0, help="Redirects followed")


def _add_output_arguments(parser) -> None:
    parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "--output-file",
        "-f",
        help="Write output to file (only for json format)",
    )


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="shelfwatch - detect anti-bot blocks on product pages and suggest remediations"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=settings.LOG_FILE,
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    catalog_parser = subparsers.add_parser("catalog", help="List available remediations.")
    catalog_parser.add_argument("--category", help="Only list one category")
    _add_output_arguments(catalog_parser)
    catalog_parser.set_defaults(func=catalog_command)

    classify_parser = subparsers.add_parser("classify", help="Classify a saved response.")
    _add_response_arguments(classify_parser)
    _add_output_arguments(classify_parser)
    classify_parser.set_defaults(func=classify_command)

    suggest_parser = subparsers.add_parser(
        "suggest", help="Classify a saved response and suggest remediations."
    )
    _add_response_arguments(suggest_parser)
    suggest_parser.add_argument("--desktop", action="store_true", help="Include desktop-only remediations")
    _add_output_arguments(suggest_parser)
    suggest_parser.set_defaults(func=suggest_command)

    check_parser = subparsers.add_parser("check", help="Fetch a live product page with retries.")
    check_parser.add_argument("url", help="Product page URL")
    check_parser.add_argument("--platform", choices=KNOWN_PLATFORMS, required=True, help="Target site")
    check_parser.add_argument("--max-attempts", type=int, help="Override the attempt budget")
    check_parser.add_argument("--desktop", action="store_true", help="Include desktop-only remediations")
    _add_output_arguments(check_parser)
    check_parser.set_defaults(func=check_command)

    args = parser.parse_args(argv)

    # Configure logging based on flags
    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        args.func(args)
    except CatalogValidationError as e:
        print(f"Error: {e}")
        sys.exit(2)
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
