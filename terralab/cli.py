#!/usr/bin/env python3
"""
terralab CLI

Usage:
    terralab run [--exercise ID | --resume] [--show-stats] [--reset-progress]
    python -m terralab run
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from terralab import __version__
from terralab.config import LabConfig
from terralab.curriculum.catalog import ExerciseCatalog
from terralab.curriculum.executor import ToolRunner
from terralab.exceptions import (
    ConfigError,
    ExerciseNotFoundError,
    PersistenceWriteError,
    SubprocessFailureError,
    ToolMissingError,
)
from terralab.progress.achievements import export_summary, format_summary, summarize
from terralab.progress.tracker import ProgressTracker
from terralab.session import CONFIRM_WORD, InputFn, PrintFn, SessionContext, resume_target, run_session

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_BAD_EXERCISE = 2

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="terralab", description="Guided infrastructure-as-code lab")
    parser.add_argument("command", nargs="?", default="run", choices=["run"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    start = parser.add_mutually_exclusive_group()
    start.add_argument("--exercise", metavar="ID", help="Jump straight into one exercise")
    start.add_argument("--resume", action="store_true", help="Re-enter the last exercise in progress")

    parser.add_argument("--show-stats", action="store_true", help="Print a progress summary and exit")
    parser.add_argument("--reset-progress", action="store_true", help="Clear all progress (asks first)")
    parser.add_argument("--export-summary", metavar="PATH", help="Write a progress summary to PATH and exit")

    parser.add_argument("--tool", metavar="PATH", help="External tool binary (env: TERRALAB_TOOL_PATH)")
    parser.add_argument("--progress-file", metavar="PATH", help="Progress file (env: TERRALAB_PROGRESS_FILE)")
    parser.add_argument("--workspace", metavar="DIR", help="Exercise workspace (env: TERRALAB_WORKSPACE)")
    parser.add_argument("--catalog", metavar="PATH", help="Exercise catalog YAML (env: TERRALAB_CATALOG)")
    parser.add_argument("--timeout", type=float, metavar="SECONDS", help="Command timeout (env: TERRALAB_COMMAND_TIMEOUT)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    return parser


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def build_config(args: argparse.Namespace) -> LabConfig:
    """Environment (and .env) first, then command-line overrides."""
    config = LabConfig.from_env(env_file=Path(".env"))
    if args.tool:
        config.tool_path = args.tool
    if args.progress_file:
        config.progress_file = Path(args.progress_file).expanduser()
    if args.workspace:
        config.workspace_dir = Path(args.workspace).expanduser()
    if args.catalog:
        config.catalog_file = Path(args.catalog).expanduser()
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ConfigError(f"Invalid command timeout: {args.timeout} (must be positive)", config_key="--timeout")
        config.command_timeout = args.timeout
    return config


def run(
    argv: Optional[list[str]] = None,
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
) -> int:
    """Run the CLI application and return its exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = build_config(args)
        catalog = ExerciseCatalog.load(config.catalog_file)
    except ConfigError as e:
        logger.error(f"Configuration error: {e.message}")
        print_fn(f"Configuration error: {e.message}")
        return EXIT_FATAL
    logger.debug(f"Configuration: {config.to_dict()}")

    if args.exercise is not None and args.exercise not in catalog:
        print_fn(f"Unknown exercise: {args.exercise}")
        print_fn(f"Available: {', '.join(catalog.ids())}")
        return EXIT_BAD_EXERCISE

    tracker = ProgressTracker(config.progress_file)
    outcome = tracker.load()
    if outcome.warning:
        print_fn(f"Warning: {outcome.warning}")
    store = outcome.store

    try:
        if args.reset_progress:
            if not _reset_flow(tracker, store, input_fn, print_fn):
                return EXIT_OK
            if not (args.show_stats or args.export_summary):
                return EXIT_OK

        if args.show_stats or args.export_summary:
            summary = summarize(catalog, store)
            if args.show_stats:
                for line in format_summary(summary):
                    print_fn(line)
            if args.export_summary:
                path = export_summary(summary, Path(args.export_summary).expanduser())
                print_fn(f"Summary exported to {path}")
            return EXIT_OK
    except PersistenceWriteError as e:
        print_fn(f"Error: {e.message}")
        return EXIT_FATAL
    except (EOFError, KeyboardInterrupt):
        print_fn("")
        return EXIT_OK

    runner = ToolRunner(config.tool_path, timeout=config.command_timeout)
    try:
        runner.require_available()
    except (ToolMissingError, SubprocessFailureError) as e:
        logger.error(e.message)
        print_fn(f"Error: {e.message}")
        return EXIT_FATAL

    ctx = SessionContext(
        catalog=catalog,
        tracker=tracker,
        store=store,
        runner=runner,
        workspace_dir=config.workspace_dir,
        input_fn=input_fn,
        print_fn=print_fn,
    )

    start_id = args.exercise
    if args.resume:
        start_id = resume_target(ctx)
        if start_id is None:
            print_fn("Nothing to resume: no exercise is in progress.")

    try:
        return run_session(ctx, start_id)
    except ExerciseNotFoundError as e:
        print_fn(f"Unknown exercise: {e.exercise_id}")
        return EXIT_BAD_EXERCISE
    except (EOFError, KeyboardInterrupt):
        print_fn("")
        return EXIT_OK


def _reset_flow(tracker: ProgressTracker, store, input_fn: InputFn, print_fn: PrintFn) -> bool:
    """Clear progress after explicit confirmation."""
    completed = len(store.completed_ids())
    print_fn(
        f"WARNING: This clears all progress ({completed} completed exercise(s), "
        f"score {store.total_score}). Your name is kept."
    )
    confirm = input_fn(f"Type {CONFIRM_WORD} to confirm reset: ").strip()
    if confirm != CONFIRM_WORD:
        print_fn("Reset cancelled.")
        return False
    tracker.reset(store)
    print_fn("Progress cleared.")
    return True


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
