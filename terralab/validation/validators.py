"""Validators - the closed set of completion checks an exercise can declare."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Protocol, Union

from terralab.exceptions import (
    ConfigError,
    LabError,
    SubprocessFailureError,
    ValidationFailureError,
)

if TYPE_CHECKING:
    from terralab.curriculum.executor import ExecutionResult
    from terralab.models import Exercise

logger = logging.getLogger(__name__)


class StateInspector(Protocol):
    """Anything that can run the read-only state inspection command."""

    def inspect_state(self, working_dir: Path) -> ExecutionResult:
        """Run the inspection command in a working directory."""
        ...


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation step."""

    passed: bool
    message: str
    step: str = ""


@dataclass
class ValidationContext:
    """Read-only view of an exercise's working directory and tool state.

    The inspection command runs at most once per context; both its parsed
    output and its failure are cached so every state-based step sees the
    same answer.
    """

    working_dir: Path
    inspector: Optional[StateInspector] = None
    _state: Optional[dict] = field(default=None, init=False, repr=False)
    _state_error: Optional[LabError] = field(default=None, init=False, repr=False)

    def resolve(self, relative: str) -> Path:
        """Absolute path of a file inside the working directory."""
        return self.working_dir / relative

    def stat(self, relative: str) -> Optional[os.stat_result]:
        """Stat a path inside the working directory, None if it is absent."""
        try:
            return self.resolve(relative).stat()
        except (FileNotFoundError, NotADirectoryError):
            return None

    def read_state(self) -> dict:
        """Return the parsed inspection output.

        Raises:
            LabError: If the tool is missing, fails, times out, or prints
                something that is not a JSON object.
        """
        if self._state is not None:
            return self._state
        if self._state_error is not None:
            raise self._state_error

        try:
            self._state = self._load_state()
        except LabError as e:
            self._state_error = e
            raise
        return self._state

    def _load_state(self) -> dict:
        if self.inspector is None:
            raise SubprocessFailureError("No state inspector is configured for this validation.")
        result = self.inspector.inspect_state(self.working_dir)
        result.check()
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise SubprocessFailureError(
                f"State inspection did not return JSON: {e}",
                command=result.command,
                exit_code=result.exit_code,
            )
        if not isinstance(data, dict):
            raise SubprocessFailureError(
                "State inspection returned an unexpected document.",
                command=result.command,
                exit_code=result.exit_code,
            )
        return data


def _check_relative_path(path: Any, kind: str) -> str:
    """Validator paths must stay inside the working directory."""
    if not isinstance(path, str) or not path.strip():
        raise ConfigError(f"Validator '{kind}' needs a non-empty 'path'")
    posix = PurePosixPath(path)
    if posix.is_absolute() or PureWindowsPath(path).is_absolute() or ".." in posix.parts:
        raise ConfigError(f"Validator '{kind}' path must be relative to the working directory: {path}")
    return path


def _count_resources(module: dict) -> int:
    """Count managed resources in a module and its child modules."""
    count = sum(
        1
        for resource in module.get("resources", []) or []
        if isinstance(resource, dict) and resource.get("mode", "managed") != "data"
    )
    for child in module.get("child_modules", []) or []:
        if isinstance(child, dict):
            count += _count_resources(child)
    return count


def _as_text(value: Any) -> str:
    """Render an output value for comparison and display."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


@dataclass(frozen=True)
class FileExists:
    """Pass when a regular file exists at ``path``."""

    path: str
    kind: ClassVar[str] = "file_exists"

    def describe(self) -> str:
        return f"File {self.path} exists"

    def check(self, context: ValidationContext) -> ValidationResult:
        try:
            info = context.stat(self.path)
        except OSError as e:
            return ValidationResult(False, f"Cannot read {self.path}: {e}", self.describe())
        if info is None:
            return ValidationResult(False, f"Missing file: {self.path}", self.describe())
        if not context.resolve(self.path).is_file():
            return ValidationResult(False, f"{self.path} exists but is not a file", self.describe())
        return ValidationResult(True, f"Found file: {self.path}", self.describe())

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path}


@dataclass(frozen=True)
class DirectoryExists:
    """Pass when a directory exists at ``path``."""

    path: str
    kind: ClassVar[str] = "directory_exists"

    def describe(self) -> str:
        return f"Directory {self.path} exists"

    def check(self, context: ValidationContext) -> ValidationResult:
        try:
            info = context.stat(self.path)
        except OSError as e:
            return ValidationResult(False, f"Cannot read {self.path}: {e}", self.describe())
        if info is None:
            return ValidationResult(False, f"Missing directory: {self.path}", self.describe())
        if not context.resolve(self.path).is_dir():
            return ValidationResult(False, f"{self.path} exists but is not a directory", self.describe())
        return ValidationResult(True, f"Found directory: {self.path}", self.describe())

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path}


@dataclass(frozen=True)
class StateResourceCount:
    """Pass when the persisted state holds at least ``minimum`` managed resources."""

    minimum: int
    kind: ClassVar[str] = "state_resource_count"

    def describe(self) -> str:
        return f"State contains at least {self.minimum} resource(s)"

    def check(self, context: ValidationContext) -> ValidationResult:
        try:
            state = context.read_state()
        except LabError as e:
            return ValidationResult(False, f"Could not inspect state: {e.message}", self.describe())

        root = (state.get("values") or {}).get("root_module") or {}
        found = _count_resources(root)
        if found >= self.minimum:
            return ValidationResult(True, f"State contains {found} resource(s)", self.describe())
        return ValidationResult(
            False,
            f"State contains {found} resource(s), expected at least {self.minimum}",
            self.describe(),
        )

    def to_dict(self) -> dict:
        return {"type": self.kind, "min": self.minimum}


@dataclass(frozen=True)
class OutputEquals:
    """Pass when output ``key`` in the persisted state equals ``value``."""

    key: str
    value: Any
    kind: ClassVar[str] = "output_equals"

    def describe(self) -> str:
        return f"Output {self.key} equals {_as_text(self.value)}"

    def check(self, context: ValidationContext) -> ValidationResult:
        try:
            state = context.read_state()
        except LabError as e:
            return ValidationResult(False, f"Could not inspect state: {e.message}", self.describe())

        outputs = (state.get("values") or {}).get("outputs") or {}
        if self.key not in outputs:
            return ValidationResult(False, f"Output '{self.key}' is not defined in state", self.describe())

        entry = outputs[self.key]
        actual = entry.get("value") if isinstance(entry, dict) else entry
        if actual == self.value or _as_text(actual) == _as_text(self.value):
            return ValidationResult(True, f"Output '{self.key}' = {_as_text(actual)}", self.describe())
        return ValidationResult(
            False,
            f"Output '{self.key}' is {_as_text(actual)}, expected {_as_text(self.value)}",
            self.describe(),
        )

    def to_dict(self) -> dict:
        return {"type": self.kind, "key": self.key, "value": self.value}


Validator = Union[FileExists, DirectoryExists, StateResourceCount, OutputEquals]

VALIDATOR_KINDS: tuple[str, ...] = (
    FileExists.kind,
    DirectoryExists.kind,
    StateResourceCount.kind,
    OutputEquals.kind,
)


def validator_from_dict(data: Any) -> Validator:
    """
    Parse one validation step definition.

    Args:
        data: Mapping with a ``type`` key and the type's parameters.

    Returns:
        The typed validator.

    Raises:
        ConfigError: If the type is unknown or its parameters are invalid.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Validation step must be a mapping, got: {data!r}")

    kind = str(data.get("type", "")).strip().lower()

    if kind == FileExists.kind:
        return FileExists(path=_check_relative_path(data.get("path"), kind))

    if kind == DirectoryExists.kind:
        return DirectoryExists(path=_check_relative_path(data.get("path"), kind))

    if kind == StateResourceCount.kind:
        raw_min = data.get("min", 1)
        if isinstance(raw_min, bool) or not isinstance(raw_min, int) or raw_min < 0:
            raise ConfigError(f"Validator '{kind}' needs a non-negative integer 'min', got: {raw_min!r}")
        return StateResourceCount(minimum=raw_min)

    if kind == OutputEquals.kind:
        key = data.get("key")
        if not isinstance(key, str) or not key.strip():
            raise ConfigError(f"Validator '{kind}' needs a non-empty 'key'")
        if "value" not in data:
            raise ConfigError(f"Validator '{kind}' needs a 'value'")
        return OutputEquals(key=key.strip(), value=data["value"])

    raise ConfigError(
        f"Unknown validator type: {kind or '<missing>'}. Valid types: {', '.join(VALIDATOR_KINDS)}"
    )


@dataclass(frozen=True)
class ValidationReport:
    """All step results of one validation attempt."""

    exercise_id: str
    results: tuple[ValidationResult, ...]
    requires_confirmation: bool = False

    @property
    def passed(self) -> bool:
        """True only when every declared step passed."""
        if self.requires_confirmation or not self.results:
            return False
        return all(result.passed for result in self.results)

    @property
    def issues(self) -> list[str]:
        return [result.message for result in self.results if not result.passed]

    def raise_for_failure(self) -> None:
        """
        Raise when the attempt did not pass.

        Raises:
            ValidationFailureError: With the failing step messages as issues.
        """
        if self.passed:
            return
        if self.requires_confirmation:
            raise ValidationFailureError(
                f"Exercise '{self.exercise_id}' has no automatic checks; confirm completion manually.",
            )
        failed = len(self.issues)
        raise ValidationFailureError(
            f"{failed} of {len(self.results)} check(s) failed for '{self.exercise_id}'",
            issues=self.issues,
        )


def run_validation(exercise: Exercise, context: ValidationContext) -> ValidationReport:
    """
    Run every validation step of an exercise, in declaration order.

    No step is skipped after a failure so the user sees the full list.

    Args:
        exercise: The exercise being validated.
        context: Working directory and state access for this attempt.

    Returns:
        ValidationReport with one result per step.
    """
    if exercise.requires_confirmation:
        logger.info(f"Exercise {exercise.id} has no validation steps; manual confirmation required")
        return ValidationReport(exercise_id=exercise.id, results=(), requires_confirmation=True)

    results = tuple(step.check(context) for step in exercise.validation_steps)
    passed = sum(1 for result in results if result.passed)
    logger.info(f"Validated {exercise.id}: {passed}/{len(results)} step(s) passed")
    return ValidationReport(exercise_id=exercise.id, results=results)
