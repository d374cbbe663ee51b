"""Pytest fixtures for terralab tests."""

from __future__ import annotations

import json
import stat
import sys
from pathlib import Path
from typing import Optional

import pytest

from terralab.curriculum.catalog import ExerciseCatalog
from terralab.curriculum.executor import ExecutionResult, ToolCommand
from terralab.models import ProgressStore
from terralab.progress.tracker import ProgressTracker
from terralab.session import SessionContext

CATALOG_YAML = """
exercises:
  - id: hello-world
    name: Hello World
    description: Write a welcome file.
    category: basics
    difficulty: 1
    hints:
      - Use a local_file resource.
      - The file goes under output/.
    validation:
      - type: file_exists
        path: output/welcome.txt

  - id: variables
    name: Variables
    description: Parameterize the greeting.
    category: basics
    difficulty: 2
    prerequisites: [hello-world]
    validation:
      - type: file_exists
        path: variables.tf
      - type: output_equals
        key: greeting
        value: hello

  - id: infra
    name: Infrastructure
    description: Create a few resources.
    category: state
    difficulty: 2
    prerequisites: [hello-world]
    validation:
      - type: state_resource_count
        min: 2

  - id: reflection
    name: Reflection
    description: Think about what you built.
    category: state
    difficulty: 1
    prerequisites: [hello-world]
    validation: []
"""


def make_state(resources: int = 0, outputs: Optional[dict] = None) -> dict:
    """Build a minimal ``show -json`` document."""
    return {
        "format_version": "1.0",
        "values": {
            "outputs": {key: {"value": value, "sensitive": False} for key, value in (outputs or {}).items()},
            "root_module": {
                "resources": [
                    {"address": f"null_resource.r{i}", "mode": "managed", "type": "null_resource"}
                    for i in range(resources)
                ],
            },
        },
    }


class ScriptedInput:
    """Feeds canned answers to prompts; raises EOFError when exhausted."""

    def __init__(self, answers: list[str]):
        self.answers = list(answers)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)


class OutputCollector:
    """Collects printed lines."""

    def __init__(self):
        self.lines: list[str] = []

    def __call__(self, text: str = "") -> None:
        self.lines.append(str(text))

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class FakeRunner:
    """Stands in for ToolRunner without starting processes."""

    def __init__(self, state: Optional[dict] = None):
        self.tool_path = "fake-tool"
        self.state = state if state is not None else make_state()
        self.results: dict[ToolCommand, ExecutionResult] = {}
        self.run_calls: list[tuple[ToolCommand, Path]] = []
        self.inspect_calls = 0

    def run(self, command: ToolCommand, working_dir: Path, timeout=None) -> ExecutionResult:
        self.run_calls.append((command, working_dir))
        if command in self.results:
            return self.results[command]
        return ExecutionResult(
            success=True,
            exit_code=0,
            stdout=f"{command.value} ok",
            stderr="",
            duration=0.01,
            command=f"fake-tool {command.value}",
        )

    def inspect_state(self, working_dir: Path) -> ExecutionResult:
        self.inspect_calls += 1
        return ExecutionResult(
            success=True,
            exit_code=0,
            stdout=json.dumps(self.state),
            stderr="",
            duration=0.01,
            command="fake-tool show -json -no-color",
        )


@pytest.fixture
def catalog_file(tmp_path: Path) -> Path:
    """A small catalog on disk."""
    path = tmp_path / "exercises.yaml"
    path.write_text(CATALOG_YAML, encoding="utf-8")
    return path


@pytest.fixture
def catalog(catalog_file: Path) -> ExerciseCatalog:
    return ExerciseCatalog.load(catalog_file)


@pytest.fixture
def progress_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "progress.json"


@pytest.fixture
def tracker(progress_file: Path) -> ProgressTracker:
    return ProgressTracker(progress_file)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "labs"
    path.mkdir()
    return path


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def output() -> OutputCollector:
    return OutputCollector()


@pytest.fixture
def make_context(catalog, tracker, workspace, runner, output):
    """Factory for a SessionContext driven by scripted answers."""

    def _make(answers: list[str], store: Optional[ProgressStore] = None) -> SessionContext:
        return SessionContext(
            catalog=catalog,
            tracker=tracker,
            store=store if store is not None else ProgressStore(user_name="Ada"),
            runner=runner,
            workspace_dir=workspace,
            input_fn=ScriptedInput(answers),
            print_fn=output,
        )

    return _make


@pytest.fixture
def fake_tool(tmp_path: Path):
    """Factory for an executable shell script standing in for the tool."""
    if sys.platform == "win32":
        pytest.skip("shell script tool requires a POSIX shell")

    def _make(body: str) -> Path:
        script = tmp_path / "bin" / "fake-tool"
        script.parent.mkdir(exist_ok=True)
        script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make
