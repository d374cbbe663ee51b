"""Executor - runs the external provisioning tool inside an exercise directory."""

from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from terralab.exceptions import CommandTimeoutError, SubprocessFailureError, ToolMissingError

logger = logging.getLogger(__name__)


class ToolCommand(Enum):
    """The four tool operations the lab drives."""

    INIT = "init"
    PLAN = "plan"
    APPLY = "apply"
    SHOW = "show"

    @property
    def arguments(self) -> list[str]:
        """Non-interactive arguments for this operation."""
        args = {
            ToolCommand.INIT: ["init", "-input=false", "-no-color"],
            ToolCommand.PLAN: ["plan", "-input=false", "-no-color"],
            ToolCommand.APPLY: ["apply", "-auto-approve", "-input=false", "-no-color"],
            ToolCommand.SHOW: ["show", "-no-color"],
        }
        return args[self]


# Machine-readable form of SHOW, used by validators
INSPECT_STATE_ARGUMENTS = ["show", "-json", "-no-color"]

# Error types meaning no tool process ever ran
NOT_STARTED_ERRORS = ("tool_missing", "start_failed")


@dataclass
class ExecutionResult:
    """Result of running the external tool once."""

    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration: float
    command: str
    error_type: Optional[str] = None  # classified error type
    timeout: Optional[float] = None
    tool_path: Optional[str] = None

    def check(self) -> ExecutionResult:
        """
        Return self when the command succeeded.

        Raises:
            ToolMissingError: If the binary could not be started.
            CommandTimeoutError: If the command was killed after its timeout.
            SubprocessFailureError: For any other unsuccessful run.
        """
        if self.success:
            return self
        if self.error_type == "tool_missing":
            raise ToolMissingError(self.tool_path or self.command)
        if self.error_type == "timeout":
            raise CommandTimeoutError(self.command, self.timeout or 0)
        # exit_code -1 means no process ran; stderr then holds the reason
        message = f"Command failed with exit code {self.exit_code}: {self.command}"
        if self.exit_code == -1 and self.stderr:
            message = f"{self.stderr}: {self.command}"
        raise SubprocessFailureError(
            message,
            command=self.command,
            exit_code=self.exit_code,
            stderr=self.stderr,
        )


class ToolRunner:
    """Execute the external tool as a blocking subprocess."""

    # Well-known failure signals, checked in order
    ERROR_PATTERNS = {
        "not_initialized": [
            r"terraform init",
            r"Could not load plugin",
            r"Inconsistent dependency lock file",
            r"Backend initialization required",
        ],
        "state_locked": [
            r"Error acquiring the state lock",
        ],
        "syntax_error": [
            r"Invalid block definition",
            r"Argument or block definition required",
            r"Unsupported argument",
            r"Missing required argument",
            r"Unclosed configuration block",
        ],
        "reference_error": [
            r"Reference to undeclared",
            r"Unsupported attribute",
        ],
        "no_configuration": [
            r"No configuration files",
        ],
        "permission_denied": [
            r"Permission denied",
            r"access denied",
        ],
    }

    def __init__(
        self,
        tool_path: str = "terraform",
        timeout: Optional[float] = None,
    ):
        """
        Initialize the runner.

        Args:
            tool_path: Path to the tool executable, or a name found on PATH.
            timeout: Default command timeout in seconds. None waits forever.
        """
        self.tool_path = tool_path
        self.timeout = timeout

    def _classify_error(self, stderr: str, stdout: str) -> Optional[str]:
        """
        Classify the error type from output of a failed command.

        Returns:
            Error type string, or "command_failed" when nothing matched.
        """
        combined = f"{stderr}\n{stdout}"

        for error_type, patterns in self.ERROR_PATTERNS.items():
            for pattern in patterns:
                if re.search(pattern, combined, re.IGNORECASE):
                    return error_type

        return "command_failed"

    def run(
        self,
        command: ToolCommand,
        working_dir: Path,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Run one tool operation with ``working_dir`` as the current directory.

        A non-zero exit is reported in the result, never raised.

        Args:
            command: The operation to run.
            working_dir: The exercise working directory.
            timeout: Overrides the default timeout for this call.

        Returns:
            ExecutionResult with captured output and status.
        """
        timeout = timeout if timeout is not None else self.timeout
        return self._run_args(command.arguments, working_dir, timeout)

    def _run_args(
        self,
        args: list[str],
        working_dir: Optional[Path],
        timeout: Optional[float],
    ) -> ExecutionResult:
        cmd_parts = [self.tool_path, *args]
        cmd_string = " ".join(cmd_parts)
        logger.info(f"Running {cmd_string} in {working_dir or '.'}")

        start_time = time.time()

        # subprocess reports a missing cwd as FileNotFoundError, same as a missing binary
        if working_dir is not None and not Path(working_dir).is_dir():
            logger.warning(f"Working directory not found: {working_dir}")
            return ExecutionResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"Working directory not found: {working_dir}",
                duration=0.0,
                command=cmd_string,
                error_type="working_dir_missing",
                tool_path=self.tool_path,
            )

        try:
            result = subprocess.run(
                cmd_parts,
                cwd=str(working_dir) if working_dir else None,
                capture_output=True,
                text=True,
                timeout=timeout,
                encoding="utf-8",
                errors="replace",
            )

        except subprocess.TimeoutExpired as e:
            duration = time.time() - start_time
            logger.warning(f"{cmd_string} timed out after {timeout} seconds")
            return ExecutionResult(
                success=False,
                exit_code=-1,
                stdout=_decode(e.stdout),
                stderr=f"Command timed out after {timeout:g} seconds",
                duration=duration,
                command=cmd_string,
                error_type="timeout",
                timeout=timeout,
                tool_path=self.tool_path,
            )

        except FileNotFoundError:
            duration = time.time() - start_time
            logger.error(f"Tool executable not found: {self.tool_path}")
            return ExecutionResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"Tool executable not found: {self.tool_path}",
                duration=duration,
                command=cmd_string,
                error_type="tool_missing",
                tool_path=self.tool_path,
            )

        except OSError as e:
            # Exec format errors, permission problems and the like
            duration = time.time() - start_time
            logger.error(f"Could not start {self.tool_path}: {e}")
            return ExecutionResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"Could not start {self.tool_path}: {e}",
                duration=duration,
                command=cmd_string,
                error_type="start_failed",
                tool_path=self.tool_path,
            )

        duration = time.time() - start_time
        success = result.returncode == 0
        error_type = None if success else self._classify_error(result.stderr, result.stdout)
        logger.info(f"{cmd_string} exited with {result.returncode} in {duration:.2f}s")

        return ExecutionResult(
            success=success,
            exit_code=result.returncode,
            stdout=result.stdout.strip(),
            stderr=result.stderr.strip(),
            duration=duration,
            command=cmd_string,
            error_type=error_type,
            tool_path=self.tool_path,
        )

    def inspect_state(self, working_dir: Path) -> ExecutionResult:
        """Run the read-only state inspection used by validators."""
        return self._run_args(INSPECT_STATE_ARGUMENTS, working_dir, self.timeout)

    def _run_version(self) -> ExecutionResult:
        return self._run_args(["version"], None, self.timeout or 30)

    def check_available(self) -> bool:
        """
        Check that the tool binary exists and starts.

        Returns:
            True if ``<tool> version`` ran, whatever its exit code.
        """
        return self._run_version().error_type not in NOT_STARTED_ERRORS

    def require_available(self) -> None:
        """
        Raises:
            ToolMissingError: If the tool binary does not exist.
            SubprocessFailureError: If it exists but cannot be started.
        """
        result = self._run_version()
        if result.error_type in NOT_STARTED_ERRORS:
            result.check()


def _decode(output: Optional[bytes | str]) -> str:
    """Partial output captured before a timeout may be bytes."""
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace").strip()
    return output.strip()
