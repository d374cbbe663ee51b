"""Achievements - badges and summaries derived from progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from terralab.exceptions import PersistenceWriteError
from terralab.models import POINTS_PER_EXERCISE, Badge, ExerciseStatus, ProgressStore, utc_now

if TYPE_CHECKING:
    from terralab.curriculum.catalog import ExerciseCatalog

logger = logging.getLogger(__name__)

# Lower bound (inclusive, in percent) of each tier above NONE; BLACK needs 100%.
BADGE_THRESHOLDS: tuple[tuple[float, Badge], ...] = (
    (90.0, Badge.BROWN),
    (75.0, Badge.BLUE),
    (50.0, Badge.GREEN),
    (25.0, Badge.YELLOW),
)


def badge_for(completed: int, total: int) -> Badge:
    """
    Map completion counts to a badge tier.

    0% is NONE, 100% is BLACK; everything in between falls into the
    first threshold it reaches, with WHITE for anything under 25%.
    """
    if total <= 0 or completed <= 0:
        return Badge.NONE
    if completed >= total:
        return Badge.BLACK
    percent = 100.0 * completed / total
    for lower_bound, badge in BADGE_THRESHOLDS:
        if percent >= lower_bound:
            return badge
    return Badge.WHITE


@dataclass(frozen=True)
class ExerciseLine:
    """One row of the progress summary."""

    exercise_id: str
    name: str
    category: str
    status: ExerciseStatus
    unlocked: bool
    missing: tuple[str, ...]
    completed_at: Optional[datetime]


@dataclass(frozen=True)
class ProgressSummary:
    """Aggregate progress over the catalog."""

    user_name: str
    completed: int
    in_progress: int
    total: int
    score: int
    badge: Badge
    lines: tuple[ExerciseLine, ...]

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 0.0
        return 100.0 * self.completed / self.total

    @property
    def max_score(self) -> int:
        return POINTS_PER_EXERCISE * self.total


def summarize(catalog: ExerciseCatalog, store: ProgressStore) -> ProgressSummary:
    """Build the summary. Records for ids outside the catalog are ignored."""
    lines = []
    for exercise in catalog.list():
        record = store.record_for(exercise.id)
        missing = tuple(catalog.unmet_prerequisites(exercise.id, store))
        lines.append(
            ExerciseLine(
                exercise_id=exercise.id,
                name=exercise.name,
                category=exercise.category,
                status=record.status,
                unlocked=not missing,
                missing=missing,
                completed_at=record.completed_at,
            )
        )

    completed = sum(1 for line in lines if line.status is ExerciseStatus.COMPLETED)
    in_progress = sum(1 for line in lines if line.status is ExerciseStatus.IN_PROGRESS)
    return ProgressSummary(
        user_name=store.user_name,
        completed=completed,
        in_progress=in_progress,
        total=len(lines),
        score=POINTS_PER_EXERCISE * completed,
        badge=badge_for(completed, len(lines)),
        lines=tuple(lines),
    )


def format_summary(summary: ProgressSummary) -> list[str]:
    """Render the summary as text lines for the console or a file."""
    out = []
    if summary.user_name:
        out.append(f"Learner: {summary.user_name}")
    out.append(f"Completed: {summary.completed}/{summary.total} ({summary.percent:.1f}%)")
    out.append(f"Score: {summary.score}/{summary.max_score}")
    out.append(f"Badge: {summary.badge.display}")
    next_badge = summary.badge.next_badge()
    if next_badge is not None:
        out.append(f"Next badge: {next_badge.value.title()}")

    if not summary.lines:
        return out

    id_width = max(len("Exercise"), max(len(line.exercise_id) for line in summary.lines))
    category_width = max(len("Category"), max(len(line.category) for line in summary.lines))
    status_width = max(len("Status"), max(len(line.status.label) for line in summary.lines))
    unlock_width = len("locked  ")
    header = (
        f"{'Exercise':<{id_width}} "
        f"{'Category':<{category_width}} "
        f"{'Status':<{status_width}} "
        f"{'Unlock':<{unlock_width}} "
        "Missing prerequisites"
    )
    out.append("")
    out.append(header)
    out.append("-" * len(header))
    for line in summary.lines:
        unlocked = "unlocked" if line.unlocked else "locked"
        missing = ", ".join(line.missing) if line.missing else "-"
        out.append(
            f"{line.exercise_id:<{id_width}} "
            f"{line.category:<{category_width}} "
            f"{line.status.label:<{status_width}} "
            f"{unlocked:<{unlock_width}} "
            f"{missing}"
        )
    return out


def export_summary(summary: ProgressSummary, path: Path) -> Path:
    """
    Write the formatted summary to a text file.

    Only the target file is written; the progress store is not touched.

    Raises:
        PersistenceWriteError: If the file cannot be written.
    """
    path = Path(path)
    lines = [
        "terralab progress summary",
        f"Generated: {utc_now().isoformat(timespec='seconds')}",
        "",
        *format_summary(summary),
    ]
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as e:
        raise PersistenceWriteError(
            f"Could not export summary to {path}: {e}",
            file_path=str(path),
            cause=e,
        )
    logger.info(f"Exported summary to {path}")
    return path
