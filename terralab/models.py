"""Core data models for the terralab engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from terralab.validation.validators import Validator

POINTS_PER_EXERCISE = 100


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class ExerciseStatus(Enum):
    """Lifecycle of one exercise for one user."""

    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"

    @property
    def label(self) -> str:
        """Short lowercase label for tables."""
        labels = {
            "NotStarted": "new",
            "InProgress": "started",
            "Completed": "completed",
        }
        return labels[self.value]

    @classmethod
    def from_string(cls, value: str) -> ExerciseStatus:
        """Create ExerciseStatus from its serialized value."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid exercise status: {value}")


class Badge(Enum):
    """Achievement tiers derived from overall completion."""

    NONE = "none"
    WHITE = "white"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    BROWN = "brown"
    BLACK = "black"

    @property
    def display(self) -> str:
        """Badge with color emoji."""
        icons = {
            "none": "  ",
            "white": "⬜",
            "yellow": "🟨",
            "green": "🟩",
            "blue": "🟦",
            "brown": "🟫",
            "black": "⬛",
        }
        if self is Badge.NONE:
            return "No badge yet"
        return f"{icons[self.value]} {self.value.title()} Badge"

    @property
    def order(self) -> int:
        """Numeric order for comparison."""
        return list(Badge).index(self)

    def __lt__(self, other: Badge) -> bool:
        if not isinstance(other, Badge):
            return NotImplemented
        return self.order < other.order

    def __ge__(self, other: Badge) -> bool:
        if not isinstance(other, Badge):
            return NotImplemented
        return self.order >= other.order

    def next_badge(self) -> Optional[Badge]:
        """Get the next badge in progression."""
        badges = list(Badge)
        current_index = badges.index(self)
        if current_index < len(badges) - 1:
            return badges[current_index + 1]
        return None


@dataclass(frozen=True)
class Exercise:
    """A unit of guided work in the lab."""

    id: str
    name: str
    description: str
    category: str = "general"
    difficulty: int = 1  # 1-5
    prerequisites: frozenset[str] = frozenset()
    validation_steps: tuple[Validator, ...] = ()
    hints: tuple[str, ...] = ()
    instructions: str = ""
    directory: Optional[str] = None  # relative to the workspace, defaults to id

    @property
    def requires_confirmation(self) -> bool:
        """Exercises without validation steps are completed by explicit confirmation only."""
        return not self.validation_steps

    @property
    def working_subdir(self) -> str:
        """Path segment of this exercise's working directory."""
        return self.directory or self.id


@dataclass(frozen=True)
class ProgressRecord:
    """Status of one exercise. Transitions return new records."""

    exercise_id: str
    status: ExerciseStatus = ExerciseStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status is ExerciseStatus.COMPLETED

    def start(self, now: Optional[datetime] = None) -> ProgressRecord:
        """Move into InProgress. Completed records are returned unchanged."""
        if self.status is not ExerciseStatus.NOT_STARTED:
            return self
        return replace(
            self,
            status=ExerciseStatus.IN_PROGRESS,
            started_at=self.started_at or now or utc_now(),
        )

    def complete(self, now: Optional[datetime] = None) -> ProgressRecord:
        """Move into Completed, keeping the first completion timestamp."""
        if self.is_completed:
            return self
        stamp = now or utc_now()
        return replace(
            self,
            status=ExerciseStatus.COMPLETED,
            started_at=self.started_at or stamp,
            completed_at=stamp,
        )

    def to_dict(self) -> dict:
        """Convert to the on-disk representation (without the id key)."""
        data: dict = {"status": self.status.value}
        if self.started_at:
            data["startedAt"] = self.started_at.isoformat()
        if self.completed_at:
            data["completedAt"] = self.completed_at.isoformat()
        return data


@dataclass
class ProgressStore:
    """Everything persisted for one user.

    Only the session orchestrator mutates a store, and only through
    ``set_record`` / ``clear``; records themselves are immutable.
    """

    user_name: str = ""
    records: dict[str, ProgressRecord] = field(default_factory=dict)

    @property
    def total_score(self) -> int:
        """Score derived from the records, never stored on its own."""
        return POINTS_PER_EXERCISE * len(self.completed_ids())

    def record_for(self, exercise_id: str) -> ProgressRecord:
        """Return the record for an exercise, defaulting to NotStarted."""
        return self.records.get(exercise_id) or ProgressRecord(exercise_id=exercise_id)

    def status_of(self, exercise_id: str) -> ExerciseStatus:
        return self.record_for(exercise_id).status

    def set_record(self, record: ProgressRecord) -> None:
        self.records[record.exercise_id] = record

    def restore_record(self, exercise_id: str, previous: Optional[ProgressRecord]) -> None:
        """Undo a ``set_record`` after a failed save."""
        if previous is None:
            self.records.pop(exercise_id, None)
        else:
            self.records[exercise_id] = previous

    def completed_ids(self) -> set[str]:
        return {
            exercise_id
            for exercise_id, record in self.records.items()
            if record.status is ExerciseStatus.COMPLETED
        }

    def in_progress(self) -> list[ProgressRecord]:
        """InProgress records, most recently started first."""
        records = [r for r in self.records.values() if r.status is ExerciseStatus.IN_PROGRESS]
        records.sort(
            key=lambda r: r.started_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return records

    def clear(self) -> None:
        """Drop every record, keeping the user name."""
        self.records = {}

    def to_dict(self) -> dict:
        """Convert to the progress file JSON object."""
        return {
            "userName": self.user_name,
            "totalScore": self.total_score,
            "records": {
                exercise_id: record.to_dict()
                for exercise_id, record in sorted(self.records.items())
            },
        }
