"""Exercise loader - loads exercise definitions from YAML files."""

from __future__ import annotations

import re
from importlib import resources
from pathlib import Path
from typing import Any, Optional

import yaml  # type: ignore

from terralab.exceptions import ConfigError
from terralab.models import Exercise
from terralab.validation.validators import validator_from_dict

CATALOG_PACKAGE = "terralab.curriculum"
CATALOG_RESOURCE = "exercises.yaml"

# Exercise ids double as directory names
EXERCISE_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class ExerciseLoader:
    """Load exercise definitions from a YAML catalog."""

    def __init__(self, catalog_file: Optional[Path] = None):
        """
        Initialize the exercise loader.

        Args:
            catalog_file: Path to a catalog YAML file. If None, uses the
                exercises bundled with the package.
        """
        self.catalog_file = Path(catalog_file) if catalog_file is not None else None

    @property
    def source(self) -> str:
        """Human-readable origin of the catalog, for error messages."""
        if self.catalog_file is not None:
            return str(self.catalog_file)
        return f"{CATALOG_PACKAGE}/{CATALOG_RESOURCE}"

    def _read_text(self) -> str:
        if self.catalog_file is None:
            return resources.files(CATALOG_PACKAGE).joinpath(CATALOG_RESOURCE).read_text(encoding="utf-8")
        try:
            return self.catalog_file.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise ConfigError(
                f"Cannot read exercise catalog: {e}",
                file_path=self.source,
                cause=e,
            )

    def _parse_exercise(self, data: Any) -> Exercise:
        """Parse an exercise dictionary into an Exercise object."""
        if not isinstance(data, dict):
            raise ConfigError(f"Exercise entry must be a mapping, got: {data!r}", file_path=self.source)

        try:
            exercise_id = str(data["id"]).strip()
            name = str(data["name"])
        except KeyError as e:
            raise ConfigError(
                f"Missing required field in exercise: {e}",
                file_path=self.source,
            )

        if not EXERCISE_ID_PATTERN.match(exercise_id):
            raise ConfigError(
                f"Invalid exercise id '{exercise_id}': use lowercase letters, digits, '-' and '_'",
                file_path=self.source,
                config_key=exercise_id,
            )

        directory = data.get("directory")
        if directory is not None:
            directory = str(directory).strip()
            if not directory or Path(directory).is_absolute() or ".." in Path(directory).parts:
                raise ConfigError(
                    f"Exercise '{exercise_id}' directory must be relative to the workspace: {directory}",
                    file_path=self.source,
                    config_key=exercise_id,
                )

        try:
            difficulty = int(data.get("difficulty", 1))
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"Exercise '{exercise_id}' has a non-numeric difficulty",
                file_path=self.source,
                config_key=exercise_id,
                cause=e,
            )

        steps = []
        for step_data in data.get("validation") or []:
            try:
                steps.append(validator_from_dict(step_data))
            except ConfigError as e:
                raise ConfigError(
                    f"Exercise '{exercise_id}': {e.message}",
                    file_path=self.source,
                    config_key=exercise_id,
                )

        return Exercise(
            id=exercise_id,
            name=name,
            description=str(data.get("description", "")).strip(),
            category=str(data.get("category", "general")),
            difficulty=difficulty,
            prerequisites=frozenset(str(item) for item in data.get("prerequisites") or []),
            validation_steps=tuple(steps),
            hints=tuple(str(hint) for hint in data.get("hints") or []),
            instructions=str(data.get("instructions", "") or "").strip(),
            directory=directory,
        )

    def load(self) -> list[Exercise]:
        """
        Load all exercises in declaration order.

        Returns:
            List of Exercise objects.

        Raises:
            ConfigError: If the catalog cannot be read or is invalid.
        """
        try:
            data = yaml.safe_load(self._read_text())
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in exercise catalog: {e}",
                file_path=self.source,
                cause=e,
            )

        if not data or "exercises" not in data:
            return []
        if not isinstance(data["exercises"], list):
            raise ConfigError("'exercises' must be a list", file_path=self.source)

        exercises = [self._parse_exercise(item) for item in data["exercises"]]
        self._validate(exercises)
        return exercises

    def _validate(self, exercises: list[Exercise]) -> None:
        """Validate ids are unique, prerequisites exist and there are no cycles."""
        by_id: dict[str, Exercise] = {}
        for exercise in exercises:
            if exercise.id in by_id:
                raise ConfigError(f"Duplicate exercise id: {exercise.id}", file_path=self.source)
            by_id[exercise.id] = exercise

        for exercise in exercises:
            for prerequisite in sorted(exercise.prerequisites):
                if prerequisite not in by_id:
                    raise ConfigError(
                        f"Exercise '{exercise.id}' has unknown prerequisite '{prerequisite}'.",
                        file_path=self.source,
                        config_key=exercise.id,
                    )

        visiting: set[str] = set()
        visited: set[str] = set()

        def visit(exercise_id: str, path: list[str]) -> None:
            if exercise_id in visited:
                return
            if exercise_id in visiting:
                cycle_start = path.index(exercise_id)
                cycle_path = path[cycle_start:] + [exercise_id]
                raise ConfigError(
                    f"Circular exercise dependency detected: {' -> '.join(cycle_path)}",
                    file_path=self.source,
                )

            visiting.add(exercise_id)
            path.append(exercise_id)
            for prerequisite in sorted(by_id[exercise_id].prerequisites):
                visit(prerequisite, path)
            path.pop()
            visiting.remove(exercise_id)
            visited.add(exercise_id)

        for exercise in exercises:
            visit(exercise.id, [])
