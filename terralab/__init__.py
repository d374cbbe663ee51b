"""
terralab

A guided, menu-driven lab for learning an infrastructure-declaration tool:
exercises with prerequisites, automatic completion checks, persistent
progress and achievement badges.
"""

from terralab.config import LabConfig
from terralab.curriculum import (
    ExecutionResult,
    ExerciseCatalog,
    ExerciseLoader,
    ToolCommand,
    ToolRunner,
)
from terralab.exceptions import (
    CommandTimeoutError,
    ConfigError,
    ExerciseNotFoundError,
    LabError,
    PersistenceCorruptionError,
    PersistenceWriteError,
    SubprocessFailureError,
    ToolMissingError,
    ValidationFailureError,
)
from terralab.models import (
    Badge,
    Exercise,
    ExerciseStatus,
    ProgressRecord,
    ProgressStore,
)
from terralab.progress import (
    LoadOutcome,
    ProgressSummary,
    ProgressTracker,
    badge_for,
    summarize,
)
from terralab.validation import (
    DirectoryExists,
    FileExists,
    OutputEquals,
    StateResourceCount,
    ValidationContext,
    ValidationReport,
    ValidationResult,
    run_validation,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "LabConfig",
    # Models
    "Badge",
    "Exercise",
    "ExerciseStatus",
    "ProgressRecord",
    "ProgressStore",
    # Curriculum
    "ExerciseCatalog",
    "ExerciseLoader",
    "ToolRunner",
    "ToolCommand",
    "ExecutionResult",
    # Validation
    "FileExists",
    "DirectoryExists",
    "StateResourceCount",
    "OutputEquals",
    "ValidationContext",
    "ValidationResult",
    "ValidationReport",
    "run_validation",
    # Progress
    "ProgressTracker",
    "LoadOutcome",
    "ProgressSummary",
    "badge_for",
    "summarize",
    # Exceptions
    "LabError",
    "ConfigError",
    "ExerciseNotFoundError",
    "ToolMissingError",
    "SubprocessFailureError",
    "CommandTimeoutError",
    "ValidationFailureError",
    "PersistenceCorruptionError",
    "PersistenceWriteError",
]
