"""Exercise catalog - the read-only registry the session works from."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Optional

from terralab.curriculum.loader import ExerciseLoader
from terralab.exceptions import ConfigError, ExerciseNotFoundError
from terralab.models import Exercise, ExerciseStatus, ProgressStore


class ExerciseCatalog:
    """Immutable registry of exercises, kept in declaration order."""

    def __init__(self, exercises: Iterable[Exercise]):
        self._exercises: tuple[Exercise, ...] = tuple(exercises)
        self._by_id: dict[str, Exercise] = {}
        for exercise in self._exercises:
            if exercise.id in self._by_id:
                raise ConfigError(f"Duplicate exercise id: {exercise.id}")
            self._by_id[exercise.id] = exercise
        for exercise in self._exercises:
            for prerequisite in exercise.prerequisites:
                if prerequisite not in self._by_id:
                    raise ConfigError(
                        f"Exercise '{exercise.id}' has unknown prerequisite '{prerequisite}'.",
                        config_key=exercise.id,
                    )

    @classmethod
    def load(cls, catalog_file: Optional[Path] = None) -> ExerciseCatalog:
        """Load the bundled catalog, or the one at ``catalog_file``."""
        return cls(ExerciseLoader(catalog_file).load())

    def __len__(self) -> int:
        return len(self._exercises)

    def __contains__(self, exercise_id: object) -> bool:
        return exercise_id in self._by_id

    def get(self, exercise_id: str) -> Exercise:
        """
        Look up an exercise.

        Raises:
            ExerciseNotFoundError: If the id is not in the catalog.
        """
        try:
            return self._by_id[exercise_id]
        except KeyError:
            raise ExerciseNotFoundError(exercise_id)

    def list(self) -> list[Exercise]:
        """All exercises in declaration order."""
        return list(self._exercises)

    def ids(self) -> list[str]:
        return [exercise.id for exercise in self._exercises]

    def prerequisites_of(self, exercise_id: str) -> frozenset[str]:
        return self.get(exercise_id).prerequisites

    def unmet_prerequisites(self, exercise_id: str, store: ProgressStore) -> list[str]:
        """Prerequisites not yet Completed, in catalog order."""
        prerequisites = self.prerequisites_of(exercise_id)
        return [
            candidate.id
            for candidate in self._exercises
            if candidate.id in prerequisites
            and store.status_of(candidate.id) is not ExerciseStatus.COMPLETED
        ]

    def is_unlocked(self, exercise_id: str, store: ProgressStore) -> bool:
        """True iff every prerequisite is Completed (vacuously for none)."""
        return not self.unmet_prerequisites(exercise_id, store)

    def categories(self) -> list[str]:
        """Distinct categories in first-seen order."""
        seen: list[str] = []
        for exercise in self._exercises:
            if exercise.category not in seen:
                seen.append(exercise.category)
        return seen

    def by_category(self) -> dict[str, list[Exercise]]:
        """Exercises grouped by category, sorted by difficulty within a group."""
        grouped: dict[str, list[Exercise]] = {category: [] for category in self.categories()}
        for exercise in self._exercises:
            grouped[exercise.category].append(exercise)
        for items in grouped.values():
            items.sort(key=lambda item: item.difficulty)
        return grouped
