#!/usr/bin/env python3
"""
transcript-agent CLI - enhance a raw transcript with the agentic loop.

USAGE:
------
  transcript-agent notes.txt                      - Enhance and file by routing
  transcript-agent notes.txt -o fixed.md          - Enhance to a specific file
  transcript-agent notes.txt --interactive        - Ask about unknown names
  transcript-agent notes.txt --date 2026-03-15T14:30

The CLI is a thin wrapper: it builds a ToolContext from config, runs
`AgenticExecutor.process()` and writes the result. All enhancement logic
lives in execution.py.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import __version__, ui
from .config import Config, load_config
from .context import YamlContextStore
from .execution import create, describe_result
from .interactive import ConsoleInteractiveHandler
from .providers import get_provider
from .routing import PhraseRouter
from .schemas import RoutingContext
from .session import ProcessResult, ToolContext

logger = logging.getLogger(__name__)


# =============================================================================
# CLI ARGUMENT PARSING
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="transcript-agent",
        description="Enhance speech-to-text transcripts with context-aware name correction and routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  transcript-agent notes.txt
  transcript-agent notes.txt --interactive
  transcript-agent notes.txt -o fixed.md --date 2026-03-15T14:30
        """
    )

    parser.add_argument(
        "transcript",
        type=Path,
        help="Plain-text transcript to enhance"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Config file (default: ~/.transcript-agent/config.yaml)"
    )

    parser.add_argument(
        "--context-dir",
        type=Path,
        help="Context directory (overrides config)"
    )

    parser.add_argument(
        "-i", "--interactive",
        action="store_true",
        help="Ask about unknown people, projects and terms"
    )

    parser.add_argument(
        "--date",
        type=datetime.fromisoformat,
        help="Recording date/time in ISO format (default: transcript file mtime)"
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Write the enhanced transcript here instead of the routed path"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging to stderr"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"transcript-agent {__version__}"
    )

    return parser


def configure_logging(config: Config, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# =============================================================================
# RUN
# =============================================================================

def resolve_output_path(
    result: ProcessResult,
    router: PhraseRouter,
    routing_context: RoutingContext,
    explicit: Optional[Path],
) -> Path:
    """--output wins, then the decision captured during the run, then the router."""
    if explicit:
        return explicit
    decision = result.state.route_decision or router.route(routing_context)
    return Path(router.build_output_path(decision, routing_context))


async def run(args: argparse.Namespace, config: Config) -> int:
    transcript_path: Path = args.transcript
    if not transcript_path.exists():
        ui.show_error(f"File not found: {transcript_path}")
        return 1

    text = transcript_path.read_text().strip()
    if not text:
        ui.show_error(f"Transcript is empty: {transcript_path}")
        return 1

    audio_date = args.date or datetime.fromtimestamp(transcript_path.stat().st_mtime)

    try:
        reasoning = get_provider(config.reasoning)
    except ValueError as e:
        ui.show_error(str(e))
        return 1

    store = YamlContextStore(args.context_dir or config.context_path)
    router = PhraseRouter(config.routing, store)
    interactive = args.interactive or config.interactive.enabled

    ctx = ToolContext(
        transcript_text=text,
        audio_date=audio_date,
        source_file=str(transcript_path),
        context_store=store,
        routing_engine=router,
        interactive_mode=interactive,
        interactive_handler=ConsoleInteractiveHandler() if interactive else None,
    )

    executor = create(reasoning, ctx)

    if interactive:
        result = await executor.process(text)
    else:
        with ui.show_thinking():
            result = await executor.process(text)

    route = describe_result(result)
    if route:
        logger.info(f"Route: {route}")

    routing_context = RoutingContext(
        transcript_text=text,
        audio_date=audio_date,
        source_file=str(transcript_path),
    )
    output_path = resolve_output_path(result, router, routing_context, args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(result.enhanced_text + "\n")

    ui.show_process_result(result, str(output_path))
    if result.state.confidence < 0.8:
        ui.show_warning("Enhancement failed; the original transcript was written unchanged")
    else:
        ui.show_success(f"Wrote {output_path}")

    return 0


def main() -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        ui.show_error(str(e))
        sys.exit(1)

    configure_logging(config, args.verbose)

    try:
        exit_code = asyncio.run(run(args, config))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        ui.console.print("\n")
        sys.exit(130)


if __name__ == "__main__":
    main()
