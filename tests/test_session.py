"""Tests for the interactive session state machine."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from terralab.curriculum.executor import ExecutionResult, ToolCommand
from terralab.exceptions import ExerciseNotFoundError, PersistenceWriteError
from terralab.models import ExerciseStatus, ProgressRecord, ProgressStore
from terralab.session import (
    ACTION_HANDLERS,
    Action,
    SessionState,
    check_prerequisites,
    resume_target,
    run_session,
)

EARLY = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
LATE = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def store_with_completed(*ids: str) -> ProgressStore:
    store = ProgressStore(user_name="Ada")
    for exercise_id in ids:
        store.set_record(ProgressRecord(exercise_id=exercise_id).start(EARLY).complete(LATE))
    return store


def create_welcome(workspace):
    target = workspace / "hello-world" / "output"
    target.mkdir(parents=True)
    (target / "welcome.txt").write_text("Welcome!\n", encoding="utf-8")


class TestFirstExercise:
    """A new learner completes the first exercise."""

    def test_complete_hello_world(self, make_context, workspace, tracker, output):
        """Passing validation completes the exercise and persists it."""
        create_welcome(workspace)
        ctx = make_context(["hello-world", "v", "q"])

        assert run_session(ctx) == 0

        assert ctx.store.status_of("hello-world") is ExerciseStatus.COMPLETED
        assert ctx.store.total_score == 100
        assert "Exercise 'Hello World' completed! Score: 100" in output.text
        assert "New badge earned" in output.text
        assert "Now available: Variables, Infrastructure, Reflection" in output.text

        reloaded = tracker.load().store
        assert reloaded.status_of("hello-world") is ExerciseStatus.COMPLETED
        assert reloaded.record_for("hello-world").completed_at is not None

    def test_fails_until_file_created(self, make_context, workspace, output):
        """Validation fails citing the file, then completes once it exists."""
        ctx = make_context(["hello-world", "v", "v", "q"])
        scripted = ctx.input_fn

        def input_fn(prompt):
            answer = scripted(prompt)
            if scripted.prompts.count("Choose action: ") == 2 and not (workspace / "hello-world" / "output").exists():
                create_welcome(workspace)
            return answer

        ctx.input_fn = input_fn
        run_session(ctx)

        assert "Missing file: output/welcome.txt" in output.text
        assert "[PASS] File output/welcome.txt exists: Found file: output/welcome.txt" in output.text
        assert ctx.store.status_of("hello-world") is ExerciseStatus.COMPLETED
        assert ctx.store.total_score == 100

    def test_select_by_menu_number(self, make_context, workspace):
        """Menu numbers select exercises in the displayed order."""
        create_welcome(workspace)
        ctx = make_context(["1", "v", "q"])
        run_session(ctx)
        assert ctx.store.status_of("hello-world") is ExerciseStatus.COMPLETED

    def test_entering_marks_in_progress(self, make_context, workspace, tracker):
        """Entering an exercise starts it and creates its working directory."""
        ctx = make_context(["hello-world", "b", "q"])
        run_session(ctx)

        assert ctx.store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS
        assert (workspace / "hello-world").is_dir()
        assert tracker.load().store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS

    def test_failed_validation_stays_in_progress(self, make_context, output):
        """Failing checks are all reported and nothing is completed."""
        ctx = make_context(["hello-world", "v", "b", "q"])
        run_session(ctx)

        assert ctx.store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS
        assert "[FAIL] File output/welcome.txt exists: Missing file: output/welcome.txt" in output.text
        assert "Not complete yet" in output.text

    def test_asks_for_name_once(self, make_context, tracker, output):
        """A missing name is requested before the menu and saved."""
        ctx = make_context(["", "Grace", "q"], store=ProgressStore())
        run_session(ctx)

        assert "A name is required." in output.text
        assert tracker.load().store.user_name == "Grace"


class TestPrerequisites:
    """Locked exercises cannot be entered."""

    def test_locked_exercise_is_blocked(self, make_context, workspace, output):
        """Selecting a locked exercise lists what is missing."""
        ctx = make_context(["variables", "q"])
        run_session(ctx)

        assert "'variables' is locked. Complete these exercises first:" in output.text
        assert "- hello-world (Hello World)" in output.text
        assert ctx.store.status_of("variables") is ExerciseStatus.NOT_STARTED
        assert not (workspace / "variables").exists()

    def test_start_exercise_respects_prerequisites(self, make_context, output):
        """Jumping straight to a locked exercise goes through the same check."""
        ctx = make_context(["q"])
        run_session(ctx, start_exercise_id="variables")
        assert "'variables' is locked" in output.text

    def test_unknown_start_exercise_raises(self, make_context):
        """An unknown start id is an error for the caller."""
        with pytest.raises(ExerciseNotFoundError):
            run_session(make_context([]), start_exercise_id="nope")

    def test_unlocked_after_completion(self, make_context):
        """Completing a prerequisite lets the dependent start."""
        ctx = make_context([], store=store_with_completed("hello-world"))
        ctx.selected_id = "variables"
        assert check_prerequisites(ctx) is SessionState.EXERCISE_SESSION
        assert ctx.store.status_of("variables") is ExerciseStatus.IN_PROGRESS


class TestCompletionRules:
    """Completion is monotonic and only validation completes."""

    def test_completed_never_regresses(self, make_context, output):
        """A later failing validation keeps the exercise completed."""
        store = store_with_completed("hello-world")
        ctx = make_context(["hello-world", "v", "b", "q"], store=store)
        run_session(ctx)

        record = ctx.store.record_for("hello-world")
        assert record.status is ExerciseStatus.COMPLETED
        assert record.completed_at == LATE
        assert "stays completed" in output.text

    def test_revalidating_keeps_first_completion(self, make_context, workspace, output):
        """Passing again does not move the completion timestamp."""
        create_welcome(workspace)
        ctx = make_context(["hello-world", "v", "b", "q"], store=store_with_completed("hello-world"))
        run_session(ctx)

        assert ctx.store.record_for("hello-world").completed_at == LATE
        assert "already completed" in output.text

    def test_apply_does_not_complete(self, make_context, workspace, runner):
        """Running tool commands never changes status by itself."""
        create_welcome(workspace)
        ctx = make_context(["hello-world", "1", "2", "3", "4", "b", "q"])
        run_session(ctx)

        assert [command for command, _ in runner.run_calls] == [
            ToolCommand.INIT,
            ToolCommand.PLAN,
            ToolCommand.APPLY,
            ToolCommand.SHOW,
        ]
        assert all(path == workspace / "hello-world" for _, path in runner.run_calls)
        assert ctx.store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS

    def test_failed_command_reported(self, make_context, runner, output):
        """A non-zero exit is shown and the learner stays in the exercise."""
        runner.results[ToolCommand.APPLY] = ExecutionResult(
            success=False,
            exit_code=1,
            stdout="",
            stderr="Error: Unsupported argument",
            duration=0.2,
            command="fake-tool apply",
            error_type="syntax_error",
        )
        ctx = make_context(["hello-world", "3", "b", "q"])
        run_session(ctx)

        assert "Error: Unsupported argument" in output.text
        assert "Command failed with exit code 1 (syntax_error)." in output.text
        assert "Your progress is unchanged" in output.text

    def test_tool_that_cannot_start_reported(self, make_context, runner, output):
        """A tool that stops being runnable mid-session is reported like any failure."""
        runner.results[ToolCommand.INIT] = ExecutionResult(
            success=False,
            exit_code=-1,
            stdout="",
            stderr="Could not start fake-tool: [Errno 8] Exec format error",
            duration=0.0,
            command="fake-tool init",
            error_type="start_failed",
        )
        ctx = make_context(["hello-world", "1", "b", "q"])

        assert run_session(ctx) == 0
        assert "The tool could not be started" in output.text
        assert ctx.store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS

    def test_interrupted_command_returns_to_exercise(self, make_context, runner, output):
        """Ctrl-C during a command aborts only that command."""

        def interrupted(command, working_dir, timeout=None):
            raise KeyboardInterrupt

        runner.run = interrupted
        ctx = make_context(["hello-world", "3", "b", "q"])
        run_session(ctx)

        assert "Command aborted." in output.text
        assert ctx.store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS


class TestManualConfirmation:
    """Exercises without checks complete only when confirmed."""

    def test_requires_typed_confirmation(self, make_context, output):
        """Anything but YES leaves the exercise in progress."""
        ctx = make_context(["reflection", "v", "yes please", "b", "q"], store=store_with_completed("hello-world"))
        run_session(ctx)

        assert ctx.store.status_of("reflection") is ExerciseStatus.IN_PROGRESS
        assert "Not confirmed" in output.text

    def test_confirmed_completes(self, make_context):
        """Typing YES completes the exercise."""
        ctx = make_context(["reflection", "v", "YES", "q"], store=store_with_completed("hello-world"))
        run_session(ctx)
        assert ctx.store.status_of("reflection") is ExerciseStatus.COMPLETED


class TestSaveFailures:
    """Failed saves never leave memory and disk disagreeing."""

    def test_failed_start_rolls_back(self, make_context, tracker, monkeypatch, output):
        """If starting cannot be saved the exercise is not entered."""

        def broken_save(store):
            raise PersistenceWriteError("disk full")

        monkeypatch.setattr(tracker, "save", broken_save)
        ctx = make_context(["hello-world", "q"])
        run_session(ctx)

        assert "hello-world" not in ctx.store.records
        assert "Could not save progress: disk full" in output.text

    def test_unusable_working_directory_not_started(self, make_context, workspace, tracker, output):
        """If the exercise directory cannot be created nothing is recorded."""
        (workspace / "hello-world").write_text("in the way\n", encoding="utf-8")
        ctx = make_context(["hello-world", "q"])
        run_session(ctx)

        assert "Cannot create working directory" in output.text
        assert "hello-world" not in ctx.store.records
        assert "hello-world" not in tracker.load().store.records

    def test_failed_completion_rolls_back(self, make_context, workspace, tracker, monkeypatch, output):
        """If completion cannot be saved the exercise stays in progress."""
        create_welcome(workspace)
        real_save = tracker.save
        calls = []

        def flaky_save(store):
            calls.append(store)
            if len(calls) > 1:
                raise PersistenceWriteError("disk full")
            real_save(store)

        monkeypatch.setattr(tracker, "save", flaky_save)
        ctx = make_context(["hello-world", "v", "b", "q"])
        run_session(ctx)

        assert ctx.store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS
        assert "Could not save progress" in output.text
        monkeypatch.undo()
        assert tracker.load().store.status_of("hello-world") is ExerciseStatus.IN_PROGRESS


class TestExerciseActions:
    """Hints, instructions and menu handling."""

    def test_every_action_has_a_handler(self):
        """The dispatch table covers the whole Action enum."""
        assert set(ACTION_HANDLERS) == set(Action)

    def test_hints_cycle(self, make_context, output):
        """Hints are shown in order and wrap around."""
        ctx = make_context(["hello-world", "h", "h", "h", "b", "q"])
        run_session(ctx)

        hints = [line for line in output.lines if line.startswith("Hint ")]
        assert hints == [
            "Hint 1/2: Use a local_file resource.",
            "Hint 2/2: The file goes under output/.",
            "Hint 1/2: Use a local_file resource.",
        ]

    def test_no_hints(self, make_context, output):
        """Exercises without hints say so."""
        ctx = make_context(["variables", "h", "b", "q"], store=store_with_completed("hello-world"))
        run_session(ctx)
        assert "No hints for this exercise." in output.text

    def test_instructions_list_checks(self, make_context, output):
        """Instructions include the completion checks."""
        ctx = make_context(["variables", "i", "b", "q"], store=store_with_completed("hello-world"))
        run_session(ctx)
        assert "- File variables.tf exists" in output.text
        assert "- Output greeting equals hello" in output.text

    def test_invalid_menu_choice(self, make_context, output):
        """Unknown selections are rejected without side effects."""
        ctx = make_context(["99", "x", "q"])
        run_session(ctx)
        assert output.lines.count("Invalid choice.") == 2
        assert ctx.store.records == {}

    def test_end_of_input_quits(self, make_context, output):
        """Running out of input ends the session cleanly."""
        assert run_session(make_context([])) == 0
        assert output.lines[-1] == "Goodbye. Progress saved."

    def test_export_from_menu(self, make_context, tmp_path, output):
        """The menu can export the summary to a file."""
        target = tmp_path / "summary.txt"
        ctx = make_context(["e", str(target), "q"])
        run_session(ctx)
        assert target.exists()
        assert f"Summary exported to {target}" in output.text


class TestResume:
    """Resuming picks the most recent unfinished exercise."""

    def test_latest_in_progress(self, make_context):
        """The most recently started InProgress exercise wins."""
        store = store_with_completed("hello-world")
        store.set_record(ProgressRecord(exercise_id="variables").start(EARLY))
        store.set_record(ProgressRecord(exercise_id="infra").start(LATE))
        assert resume_target(make_context([], store=store)) == "infra"

    def test_skips_unknown_exercises(self, make_context):
        """Records outside the catalog are not resumable."""
        store = ProgressStore(user_name="Ada")
        store.set_record(ProgressRecord(exercise_id="retired").start(LATE))
        store.set_record(ProgressRecord(exercise_id="hello-world").start(EARLY))
        assert resume_target(make_context([], store=store)) == "hello-world"

    def test_nothing_to_resume(self, make_context):
        assert resume_target(make_context([], store=store_with_completed("hello-world"))) is None
