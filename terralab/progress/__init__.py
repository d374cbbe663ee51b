"""
terralab Progress Module

Persistence of learner progress and the achievements derived from it.
"""

from terralab.progress.achievements import (
    BADGE_THRESHOLDS,
    ExerciseLine,
    ProgressSummary,
    badge_for,
    export_summary,
    format_summary,
    summarize,
)
from terralab.progress.tracker import LoadOutcome, ProgressTracker, parse_store

__all__ = [
    # Tracker
    "ProgressTracker",
    "LoadOutcome",
    "parse_store",
    # Achievements
    "BADGE_THRESHOLDS",
    "ExerciseLine",
    "ProgressSummary",
    "badge_for",
    "summarize",
    "format_summary",
    "export_summary",
]
