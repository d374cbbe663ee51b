"""
terralab Curriculum Module

Handles exercise loading, the exercise catalog and external tool execution.
"""

from terralab.curriculum.catalog import ExerciseCatalog
from terralab.curriculum.executor import ExecutionResult, ToolCommand, ToolRunner
from terralab.curriculum.loader import ExerciseLoader

__all__ = [
    # Loader
    "ExerciseLoader",
    "ExerciseCatalog",
    # Executor
    "ToolRunner",
    "ToolCommand",
    "ExecutionResult",
]
