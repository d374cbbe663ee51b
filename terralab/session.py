"""
terralab Session

The interactive loop that drives one learner through the lab:
1. Main menu - pick an exercise
2. Prerequisite check - blocked, or enter the exercise
3. Exercise session - instructions, tool commands, hints
4. Validation - every check runs; all must pass to complete
5. Completion - persist, report badge changes, back to the menu
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Optional

from terralab.curriculum.catalog import ExerciseCatalog
from terralab.curriculum.executor import ExecutionResult, ToolCommand, ToolRunner
from terralab.exceptions import PersistenceWriteError, ValidationFailureError
from terralab.models import Exercise, ExerciseStatus, ProgressRecord, ProgressStore
from terralab.progress.achievements import export_summary, format_summary, summarize
from terralab.progress.tracker import ProgressTracker
from terralab.validation.validators import ValidationContext, ValidationReport, run_validation

logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]

CONFIRM_WORD = "YES"


class SessionState(Enum):
    """States of the session state machine."""

    MAIN_MENU = "main_menu"
    PREREQUISITE_CHECK = "prerequisite_check"
    BLOCKED = "blocked"
    EXERCISE_SESSION = "exercise_session"
    VALIDATING = "validating"
    COMPLETED = "completed"
    QUIT = "quit"


class Action(Enum):
    """Everything a learner can do inside an exercise."""

    INSTRUCTIONS = "i"
    INIT = "1"
    PLAN = "2"
    APPLY = "3"
    INSPECT = "4"
    HINT = "h"
    VALIDATE = "v"
    EXIT = "b"

    @property
    def label(self) -> str:
        labels = {
            Action.INSTRUCTIONS: "Show instructions",
            Action.INIT: "Run init",
            Action.PLAN: "Run plan",
            Action.APPLY: "Run apply",
            Action.INSPECT: "Inspect state",
            Action.HINT: "Get a hint",
            Action.VALIDATE: "Validate completion",
            Action.EXIT: "Back to main menu",
        }
        return labels[self]

    @classmethod
    def from_input(cls, text: str) -> Optional[Action]:
        try:
            return cls(text.strip().lower())
        except ValueError:
            return None


@dataclass
class SessionContext:
    """Everything one run of the session owns.

    The store is mutated only through ``commit_record`` so a failed save
    can roll the change back.
    """

    catalog: ExerciseCatalog
    tracker: ProgressTracker
    store: ProgressStore
    runner: ToolRunner
    workspace_dir: Path
    input_fn: InputFn = input
    print_fn: PrintFn = print

    selected_id: Optional[str] = None
    current_id: Optional[str] = None
    blocked_by: list[str] = field(default_factory=list)
    hint_index: dict[str, int] = field(default_factory=dict)

    @property
    def current_exercise(self) -> Exercise:
        if self.current_id is None:
            raise RuntimeError("No exercise is active")
        return self.catalog.get(self.current_id)

    def working_dir(self, exercise: Exercise) -> Path:
        return self.workspace_dir / exercise.working_subdir

    def ask(self, prompt: str) -> str:
        return self.input_fn(prompt).strip()


def commit_record(ctx: SessionContext, record: ProgressRecord) -> bool:
    """
    Apply a record transition and save it immediately.

    Returns:
        False when saving failed; the in-memory store is then rolled back.
    """
    previous = ctx.store.records.get(record.exercise_id)
    if previous == record:
        return True
    ctx.store.set_record(record)
    try:
        ctx.tracker.save(ctx.store)
    except PersistenceWriteError as e:
        ctx.store.restore_record(record.exercise_id, previous)
        ctx.print_fn(f"Could not save progress: {e.message}")
        ctx.print_fn("Nothing was changed. Fix the problem and try again.")
        return False
    logger.info(f"{record.exercise_id} -> {record.status.value}")
    return True


def ensure_user_name(ctx: SessionContext) -> None:
    """Ask for the learner's name on first run."""
    while not ctx.store.user_name:
        name = ctx.ask("Welcome to terralab! What's your name? ")
        if not name:
            ctx.print_fn("A name is required.")
            continue
        ctx.store.user_name = name
        try:
            ctx.tracker.save(ctx.store)
        except PersistenceWriteError as e:
            ctx.print_fn(f"Warning: could not save your name: {e.message}")


def resume_target(ctx: SessionContext) -> Optional[str]:
    """The most recently started InProgress exercise still in the catalog."""
    for record in ctx.store.in_progress():
        if record.exercise_id in ctx.catalog:
            return record.exercise_id
    return None


# ═══════════════════════════════════════════════════════════════════
# MAIN MENU
# ═══════════════════════════════════════════════════════════════════


def _print_exercise_table(ctx: SessionContext) -> list[Exercise]:
    """Print exercises grouped by category; return them in menu order."""
    ordered: list[Exercise] = []
    grouped = ctx.catalog.by_category()
    id_width = max([len(exercise.id) for exercise in ctx.catalog.list()] + [len("Exercise")])
    for category, exercises in grouped.items():
        ctx.print_fn(f"\n[{category}]")
        for exercise in exercises:
            ordered.append(exercise)
            status = ctx.store.status_of(exercise.id)
            missing = ctx.catalog.unmet_prerequisites(exercise.id, ctx.store)
            lock = f"locked: needs {', '.join(missing)}" if missing else status.label
            ctx.print_fn(
                f"{len(ordered):>2}) {exercise.id:<{id_width}} "
                f"{'*' * exercise.difficulty:<5} {exercise.name} ({lock})"
            )
    return ordered


def main_menu(ctx: SessionContext) -> SessionState:
    """Show the exercise list and wait for a selection."""
    summary = summarize(ctx.catalog, ctx.store)
    ctx.print_fn("\n=== terralab ===")
    ctx.print_fn(
        f"{summary.user_name}: {summary.completed}/{summary.total} completed, "
        f"score {summary.score}, {summary.badge.display}"
    )
    ordered = _print_exercise_table(ctx)
    ctx.print_fn("\ns) Stats")
    ctx.print_fn("e) Export summary")
    ctx.print_fn("q) Quit")
    choice = ctx.ask("Choose exercise: ")
    lowered = choice.lower()

    if lowered == "q":
        return SessionState.QUIT
    if lowered == "s":
        for line in format_summary(summary):
            ctx.print_fn(line)
        return SessionState.MAIN_MENU
    if lowered == "e":
        _export_flow(ctx)
        return SessionState.MAIN_MENU

    if choice.isdigit():
        index = int(choice) - 1
        if 0 <= index < len(ordered):
            ctx.selected_id = ordered[index].id
            return SessionState.PREREQUISITE_CHECK
    elif choice in ctx.catalog:
        ctx.selected_id = choice
        return SessionState.PREREQUISITE_CHECK

    ctx.print_fn("Invalid choice.")
    return SessionState.MAIN_MENU


def _export_flow(ctx: SessionContext) -> None:
    path_text = ctx.ask("Export file path: ")
    if not path_text:
        ctx.print_fn("File path is required.")
        return
    try:
        path = export_summary(summarize(ctx.catalog, ctx.store), Path(path_text).expanduser())
    except PersistenceWriteError as e:
        ctx.print_fn(f"Export failed: {e.message}")
        return
    ctx.print_fn(f"Summary exported to {path}")


# ═══════════════════════════════════════════════════════════════════
# PREREQUISITES
# ═══════════════════════════════════════════════════════════════════


def check_prerequisites(ctx: SessionContext) -> SessionState:
    """Enter the selected exercise if every prerequisite is Completed."""
    exercise_id = ctx.selected_id
    ctx.selected_id = None
    if exercise_id is None:
        return SessionState.MAIN_MENU
    exercise = ctx.catalog.get(exercise_id)

    unmet = ctx.catalog.unmet_prerequisites(exercise.id, ctx.store)
    if unmet:
        ctx.blocked_by = unmet
        ctx.current_id = exercise.id
        return SessionState.BLOCKED

    working_dir = ctx.working_dir(exercise)
    try:
        working_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        ctx.print_fn(f"Cannot create working directory {working_dir}: {e}")
        return SessionState.MAIN_MENU

    record = ctx.store.record_for(exercise.id)
    if not commit_record(ctx, record.start()):
        return SessionState.MAIN_MENU

    ctx.current_id = exercise.id
    ctx.print_fn(f"\nStarting exercise: {exercise.name}")
    ctx.print_fn(exercise.description)
    ctx.print_fn(f"Working directory: {working_dir}")
    return SessionState.EXERCISE_SESSION


def blocked(ctx: SessionContext) -> SessionState:
    """Tell the learner which prerequisites are missing."""
    ctx.print_fn(f"\n'{ctx.current_id}' is locked. Complete these exercises first:")
    for exercise_id in ctx.blocked_by:
        ctx.print_fn(f"- {exercise_id} ({ctx.catalog.get(exercise_id).name})")
    ctx.blocked_by = []
    ctx.current_id = None
    return SessionState.MAIN_MENU


# ═══════════════════════════════════════════════════════════════════
# EXERCISE ACTIONS
# ═══════════════════════════════════════════════════════════════════


def show_instructions(ctx: SessionContext) -> SessionState:
    exercise = ctx.current_exercise
    ctx.print_fn(f"\n=== {exercise.name} ===")
    ctx.print_fn(exercise.description)
    ctx.print_fn(f"Working directory: {ctx.working_dir(exercise)}")
    if exercise.instructions:
        ctx.print_fn("")
        ctx.print_fn(exercise.instructions)
    if exercise.requires_confirmation:
        ctx.print_fn("\nThis exercise has no automatic checks; you confirm completion yourself.")
    else:
        ctx.print_fn("\nChecks:")
        for step in exercise.validation_steps:
            ctx.print_fn(f"- {step.describe()}")
    return SessionState.EXERCISE_SESSION


def _print_result(ctx: SessionContext, result: ExecutionResult) -> None:
    if result.stdout:
        ctx.print_fn(result.stdout)
    if result.stderr:
        ctx.print_fn(result.stderr)
    if result.success:
        ctx.print_fn(f"Command succeeded ({result.duration:.1f}s).")
        return
    if result.error_type == "tool_missing":
        ctx.print_fn("The tool could not be found. Check that it is installed and on PATH.")
    elif result.error_type == "start_failed":
        ctx.print_fn("The tool could not be started. Check that the tool path points at the right program.")
    elif result.error_type == "working_dir_missing":
        ctx.print_fn("The exercise directory is missing. Leave the exercise and enter it again to recreate it.")
    elif result.error_type == "timeout":
        ctx.print_fn("The command took too long and was stopped.")
    else:
        ctx.print_fn(f"Command failed with exit code {result.exit_code} ({result.error_type}).")
    ctx.print_fn("Your progress is unchanged; only validation completes an exercise.")


def run_tool(command: ToolCommand, ctx: SessionContext) -> SessionState:
    """Run one tool operation in the exercise directory and show the output."""
    exercise = ctx.current_exercise
    ctx.print_fn(f"\n$ {ctx.runner.tool_path} {command.value}")
    try:
        result = ctx.runner.run(command, ctx.working_dir(exercise))
    except KeyboardInterrupt:
        logger.info(f"{command.value} aborted by user")
        ctx.print_fn("\nCommand aborted.")
        return SessionState.EXERCISE_SESSION
    _print_result(ctx, result)
    return SessionState.EXERCISE_SESSION


def show_hint(ctx: SessionContext) -> SessionState:
    """Show the next hint, cycling through the list."""
    exercise = ctx.current_exercise
    if not exercise.hints:
        ctx.print_fn("No hints for this exercise.")
        return SessionState.EXERCISE_SESSION
    index = ctx.hint_index.get(exercise.id, 0)
    position = index % len(exercise.hints)
    ctx.print_fn(f"Hint {position + 1}/{len(exercise.hints)}: {exercise.hints[position]}")
    ctx.hint_index[exercise.id] = index + 1
    return SessionState.EXERCISE_SESSION


def request_validation(ctx: SessionContext) -> SessionState:
    return SessionState.VALIDATING


def leave_exercise(ctx: SessionContext) -> SessionState:
    ctx.current_id = None
    return SessionState.MAIN_MENU


ACTION_HANDLERS: dict[Action, Callable[[SessionContext], SessionState]] = {
    Action.INSTRUCTIONS: show_instructions,
    Action.INIT: partial(run_tool, ToolCommand.INIT),
    Action.PLAN: partial(run_tool, ToolCommand.PLAN),
    Action.APPLY: partial(run_tool, ToolCommand.APPLY),
    Action.INSPECT: partial(run_tool, ToolCommand.SHOW),
    Action.HINT: show_hint,
    Action.VALIDATE: request_validation,
    Action.EXIT: leave_exercise,
}

# Every Action needs exactly one handler.
_unhandled = set(Action) - set(ACTION_HANDLERS)
if _unhandled:
    raise RuntimeError(f"Actions without handlers: {sorted(a.name for a in _unhandled)}")


def exercise_session(ctx: SessionContext) -> SessionState:
    """Offer the exercise actions and dispatch one of them."""
    exercise = ctx.current_exercise
    status = ctx.store.status_of(exercise.id)
    ctx.print_fn(f"\n=== {exercise.name} [{status.label}] ===")
    for action in Action:
        ctx.print_fn(f"{action.value}) {action.label}")
    action = Action.from_input(ctx.ask("Choose action: "))
    if action is None:
        ctx.print_fn("Invalid choice.")
        return SessionState.EXERCISE_SESSION
    return ACTION_HANDLERS[action](ctx)


# ═══════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════


def validate_exercise(ctx: SessionContext, exercise: Exercise) -> ValidationReport:
    """Run every check of an exercise against its working directory."""
    context = ValidationContext(working_dir=ctx.working_dir(exercise), inspector=ctx.runner)
    return run_validation(exercise, context)


def _print_report(ctx: SessionContext, report: ValidationReport) -> None:
    for result in report.results:
        marker = "PASS" if result.passed else "FAIL"
        ctx.print_fn(f"[{marker}] {result.step}: {result.message}")


def validating(ctx: SessionContext) -> SessionState:
    """Validate the active exercise and complete it if every check passes."""
    exercise = ctx.current_exercise
    ctx.print_fn(f"\nValidating {exercise.name}...")
    report = validate_exercise(ctx, exercise)
    _print_report(ctx, report)
    record = ctx.store.record_for(exercise.id)

    try:
        report.raise_for_failure()
    except ValidationFailureError as e:
        if record.is_completed:
            ctx.print_fn(f"{e.message}. The exercise stays completed.")
            return SessionState.EXERCISE_SESSION
        if not report.requires_confirmation:
            ctx.print_fn(f"Not complete yet: {e.message}. Fix the failing checks and validate again.")
            return SessionState.EXERCISE_SESSION
        ctx.print_fn(e.message)
        confirm = ctx.ask(f"Type {CONFIRM_WORD} to mark this exercise complete: ")
        if confirm != CONFIRM_WORD:
            ctx.print_fn("Not confirmed. The exercise stays in progress.")
            return SessionState.EXERCISE_SESSION

    if record.is_completed:
        ctx.print_fn("All checks pass. This exercise was already completed.")
        return SessionState.EXERCISE_SESSION

    before = summarize(ctx.catalog, ctx.store).badge
    if not commit_record(ctx, record.complete()):
        return SessionState.EXERCISE_SESSION
    after = summarize(ctx.catalog, ctx.store).badge
    if after != before:
        ctx.print_fn(f"New badge earned: {after.display}")
    return SessionState.COMPLETED


def completed(ctx: SessionContext) -> SessionState:
    exercise = ctx.current_exercise
    ctx.print_fn(f"Exercise '{exercise.name}' completed! Score: {ctx.store.total_score}")
    unlocked = [
        candidate.name
        for candidate in ctx.catalog.list()
        if exercise.id in candidate.prerequisites
        and ctx.store.status_of(candidate.id) is ExerciseStatus.NOT_STARTED
        and ctx.catalog.is_unlocked(candidate.id, ctx.store)
    ]
    if unlocked:
        ctx.print_fn(f"Now available: {', '.join(unlocked)}")
    ctx.current_id = None
    return SessionState.MAIN_MENU


STATE_HANDLERS: dict[SessionState, Callable[[SessionContext], SessionState]] = {
    SessionState.MAIN_MENU: main_menu,
    SessionState.PREREQUISITE_CHECK: check_prerequisites,
    SessionState.BLOCKED: blocked,
    SessionState.EXERCISE_SESSION: exercise_session,
    SessionState.VALIDATING: validating,
    SessionState.COMPLETED: completed,
}


def run_session(ctx: SessionContext, start_exercise_id: Optional[str] = None) -> int:
    """
    Drive the state machine until the learner quits.

    Args:
        ctx: The session context.
        start_exercise_id: Skip the menu and try to enter this exercise.

    Returns:
        Process exit code (0).
    """
    ensure_user_name(ctx)

    state = SessionState.MAIN_MENU
    if start_exercise_id is not None:
        ctx.catalog.get(start_exercise_id)
        ctx.selected_id = start_exercise_id
        state = SessionState.PREREQUISITE_CHECK

    while state is not SessionState.QUIT:
        try:
            state = STATE_HANDLERS[state](ctx)
        except KeyboardInterrupt:
            ctx.print_fn("")
            if state is SessionState.MAIN_MENU:
                state = SessionState.QUIT
            else:
                ctx.current_id = None
                state = SessionState.MAIN_MENU
        except EOFError:
            state = SessionState.QUIT

    ctx.print_fn("Goodbye. Progress saved.")
    return 0
