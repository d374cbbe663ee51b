"""Lab configuration management."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from terralab.exceptions import ConfigError

APP_NAME = "terralab"
PROGRESS_FILENAME = "progress.json"


def default_data_dir() -> Path:
    """Per-user application data directory."""
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA")
        if appdata:
            return Path(appdata) / APP_NAME
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".local" / "share" / APP_NAME


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    """Parse a timeout setting; empty means no timeout."""
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(
            f"Invalid command timeout: {raw!r} (expected seconds)",
            config_key="TERRALAB_COMMAND_TIMEOUT",
            cause=e,
        )
    if value <= 0:
        raise ConfigError(
            f"Invalid command timeout: {raw!r} (must be positive)",
            config_key="TERRALAB_COMMAND_TIMEOUT",
        )
    return value


@dataclass
class LabConfig:
    """Configuration for a lab run."""

    # External tool
    tool_path: str = "terraform"
    command_timeout: Optional[float] = None  # seconds, None waits forever

    # Paths
    progress_file: Path = field(default_factory=lambda: default_data_dir() / PROGRESS_FILENAME)
    workspace_dir: Path = field(default_factory=lambda: Path("labs"))
    catalog_file: Optional[Path] = None  # None uses the bundled exercises

    def __post_init__(self) -> None:
        """Normalize path fields."""
        self.progress_file = Path(self.progress_file).expanduser()
        self.workspace_dir = Path(self.workspace_dir).expanduser()
        if self.catalog_file is not None:
            self.catalog_file = Path(self.catalog_file).expanduser()
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ConfigError(
                f"Invalid command timeout: {self.command_timeout} (must be positive)",
                config_key="command_timeout",
            )

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> LabConfig:
        """Load configuration from environment variables.

        Args:
            env_file: Optional dotenv file loaded first. Variables already set
                in the environment take precedence over the file.
        """
        if env_file is not None and env_file.exists():
            load_dotenv(env_file, override=False)

        config = cls(
            tool_path=os.getenv("TERRALAB_TOOL_PATH", "terraform"),
            command_timeout=_parse_timeout(os.getenv("TERRALAB_COMMAND_TIMEOUT")),
        )

        if env_progress := os.getenv("TERRALAB_PROGRESS_FILE"):
            config.progress_file = Path(env_progress).expanduser()

        if env_workspace := os.getenv("TERRALAB_WORKSPACE"):
            config.workspace_dir = Path(env_workspace).expanduser()

        if env_catalog := os.getenv("TERRALAB_CATALOG"):
            config.catalog_file = Path(env_catalog).expanduser()

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "tool": {
                "path": self.tool_path,
                "timeout": self.command_timeout,
            },
            "paths": {
                "progress_file": str(self.progress_file),
                "workspace_dir": str(self.workspace_dir),
                "catalog_file": str(self.catalog_file) if self.catalog_file else None,
            },
        }
