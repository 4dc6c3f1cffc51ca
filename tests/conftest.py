# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the dockerizer test suite.

This module provides foundational fixtures used across all test modules:
- Sandbox roots with a small sample project
- A fake process runner that records argv instead of running docker
- Stub AI generators and detection pipelines
- Pre-wired registries and dispatchers

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.dispatcher import ToolDispatcher
from dockerizer.core.events import EventStream
from dockerizer.core.inspectors import build_default_pipeline
from dockerizer.core.models import Detection, FileSet
from dockerizer.core.tools import ToolRegistry, build_default_registry
from dockerizer.sandbox.executor import ExecutionResult

VALID_DOCKERFILE = """\
FROM python:3.12-slim
WORKDIR /app
COPY requirements.txt .
RUN pip install --no-cache-dir -r requirements.txt
COPY . .
EXPOSE 8000
CMD ["python", "app.py"]
"""

DOCKERFILE_WITHOUT_FROM = """\
WORKDIR /app
COPY . .
CMD ["python", "app.py"]
"""


# =============================================================================
# Sandbox Fixtures
# =============================================================================


@pytest.fixture
def sandbox_root(tmp_path: Path) -> Path:
    """Create a canonical sandbox root holding a tiny Python project.

    Creates:
        - app.py
        - requirements.txt
        - src/ directory

    Returns:
        Resolved path to the project root (tmp_path itself stays outside it).
    """
    root = tmp_path / "project"
    root.mkdir()
    (root / "app.py").write_text("print('hello')\n")
    (root / "requirements.txt").write_text("flask==3.0.0\n")
    (root / "src").mkdir()
    return root.resolve()


@pytest.fixture
def outside_dir(tmp_path: Path) -> Path:
    """A directory next to the sandbox root, holding a secret file."""
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("top secret\n")
    return outside.resolve()


@pytest.fixture
def token() -> CancellationToken:
    """An unbounded, uncancelled token."""
    return CancellationToken()


# =============================================================================
# Fake Process Runner
# =============================================================================


class FakeRunner:
    """ProcessRunner double that records calls and returns scripted results.

    Results are scripted per docker subcommand (first argument). A scripted
    list is consumed in order and its last entry repeats. Unscripted calls
    succeed; `inspect` reports a running container by default.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self._scripts: dict[str, list[ExecutionResult]] = {}

    def script(self, subcommand: str, *results: ExecutionResult) -> None:
        self._scripts[subcommand] = list(results)

    def run(
        self,
        program: str,
        args: list[str],
        cwd: Path,
        token: CancellationToken,
        timeout: float | None = None,
    ) -> ExecutionResult:
        token.raise_if_cancelled()
        self.calls.append({"program": program, "args": list(args), "cwd": cwd, "timeout": timeout})
        subcommand = args[0] if args else ""
        scripted = self._scripts.get(subcommand)
        if scripted:
            return scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if subcommand == "inspect":
            return ExecutionResult(returncode=0, stdout="running\n")
        return ExecutionResult(returncode=0, stdout=f"{subcommand} ok\n")

    def subcommands(self) -> list[str]:
        return [call["args"][0] for call in self.calls if call["args"]]


def ok(stdout: str = "", stderr: str = "") -> ExecutionResult:
    return ExecutionResult(returncode=0, stdout=stdout, stderr=stderr)


def failed(stderr: str, returncode: int = 1) -> ExecutionResult:
    return ExecutionResult(returncode=returncode, stderr=stderr)


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Fresh FakeRunner per test."""
    return FakeRunner()


# =============================================================================
# Collaborator Stubs
# =============================================================================


class StubGenerator:
    """FileSetGenerator double.

    Each call pops the next scripted outcome (a FileSet is returned, an
    exception is raised); the last outcome repeats. Received instructions
    are recorded.
    """

    def __init__(self, *outcomes: FileSet | Exception, on_call: Callable[[], None] | None = None):
        self.outcomes = list(outcomes) or [FileSet(dockerfile=VALID_DOCKERFILE)]
        self.instructions: list[str] = []
        self.on_call = on_call

    def generate(self, token: CancellationToken, scan_result: Any, instructions: str) -> FileSet:
        self.instructions.append(instructions)
        if self.on_call is not None:
            self.on_call()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StubDetectionPipeline:
    """DetectionPipeline double that always detects a Flask project."""

    def __init__(self, detected: bool = True):
        self.detected = detected
        self.scanned: list[Path] = []

    def scan(self, path: Path, token: CancellationToken) -> dict[str, Any]:
        self.scanned.append(path)
        return {"root": str(path)}

    def detect(self, scan_result: Any, token: CancellationToken) -> Detection:
        if not self.detected:
            return Detection()
        return Detection(
            detected=True,
            language="python",
            framework="flask",
            version="3.12",
            confidence=90,
            provider="python-flask",
        )

    def generate(self, detection: Detection, path: Path) -> Mapping[str, str]:
        return {"Dockerfile": VALID_DOCKERFILE, ".dockerignore": "__pycache__\n"}


@pytest.fixture
def valid_file_set() -> FileSet:
    return FileSet(dockerfile=VALID_DOCKERFILE, dockerignore="__pycache__\n.git\n")


# =============================================================================
# Wiring Fixtures
# =============================================================================


@pytest.fixture
def registry(sandbox_root: Path, fake_runner: FakeRunner) -> ToolRegistry:
    """Default registry against the sandbox root, backed by the fake runner."""
    return build_default_registry(
        sandbox_root, runner=fake_runner, pipeline=StubDetectionPipeline()
    )


@pytest.fixture
def dispatcher(registry: ToolRegistry) -> ToolDispatcher:
    """Dispatcher with the default (security + syntax) inspector pipeline."""
    return ToolDispatcher(registry, build_default_pipeline())


@pytest.fixture
def events() -> EventStream:
    return EventStream()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "docker: marks tests requiring Docker")
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
