"""Custom exceptions for the terralab engine."""

from __future__ import annotations

from typing import Optional


class LabError(Exception):
    """Base exception for all terralab errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(LabError):
    """Raised when the exercise catalog or the configuration is broken."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        config_key: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        self.file_path = file_path
        self.config_key = config_key
        self.cause = cause
        details = {"file_path": file_path, "config_key": config_key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)


class ExerciseNotFoundError(ConfigError):
    """Raised when an exercise ID doesn't exist in the catalog."""

    def __init__(self, exercise_id: str):
        self.exercise_id = exercise_id
        super().__init__(f"Exercise not found: {exercise_id}", config_key=exercise_id)


class ToolMissingError(LabError):
    """Raised when the external tool binary cannot be found."""

    def __init__(self, tool_path: str):
        self.tool_path = tool_path
        super().__init__(
            f"External tool not found: {tool_path}. Install it or set TERRALAB_TOOL_PATH.",
            {"tool_path": tool_path},
        )


class SubprocessFailureError(LabError):
    """Raised when the external tool cannot be started or exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            message,
            {
                "command": command,
                "exit_code": exit_code,
                "stderr": stderr,
            },
        )


class CommandTimeoutError(SubprocessFailureError):
    """Raised when the external tool was killed after its timeout expired."""

    def __init__(self, command: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Command timed out after {timeout:g} seconds: {command}",
            command=command,
        )
        self.details["timeout"] = timeout


class ValidationFailureError(LabError):
    """Raised when one or more validation steps failed."""

    def __init__(self, message: str, issues: Optional[list[str]] = None):
        self.issues = issues or []
        super().__init__(message, {"issues": self.issues})


class PersistenceCorruptionError(LabError):
    """Raised when the progress file exists but cannot be understood."""

    def __init__(self, message: str, file_path: Optional[str] = None, cause: Optional[Exception] = None):
        self.file_path = file_path
        self.cause = cause
        details = {"file_path": file_path}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)


class PersistenceWriteError(LabError):
    """Raised when the progress file cannot be written."""

    def __init__(self, message: str, file_path: Optional[str] = None, cause: Optional[Exception] = None):
        self.file_path = file_path
        self.cause = cause
        details = {"file_path": file_path}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
