"""Tool registry and the built-in agent tools.

Each tool performs exactly one externally observable side effect and returns
the captured output, or raises a ToolError carrying partial output. Tools
never retry and never know inspectors exist; retry policy belongs to the
agent loop and inspection to the dispatcher.

TOOL TYPES:
- docker_build / docker_run / docker_logs / docker_stop: container runtime
- file_read / file_write: sandboxed filesystem access
- shell: validated docker/docker-compose command line
- dockerizer_analyze / dockerizer_generate: detection pipeline
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.collaborators import DetectionPipeline
from dockerizer.core.config import SandboxSettings
from dockerizer.core.errors import (
    InvalidArgumentError,
    RunCancelledError,
    ToolError,
    ToolExecutionError,
    UnknownToolError,
)
from dockerizer.sandbox.commands import CommandValidator
from dockerizer.sandbox.executor import ExecutionResult, ProcessRunner, SubprocessRunner
from dockerizer.sandbox.paths import PathSandbox, reject_symlink_leaf

logger = logging.getLogger(__name__)

# Image references and container names must start alphanumeric so they can
# never be parsed as a flag.
IMAGE_REF_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._\-/:@]{0,254}$"
CONTAINER_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$"

# How much of a failing command's output goes into the error message
ERROR_TAIL_CHARS = 4000

# Cleanup must still run after the run token is cancelled
CLEANUP_TIMEOUT = 30


def _tail(output: str, max_chars: int = ERROR_TAIL_CHARS) -> str:
    output = output.strip()
    if len(output) <= max_chars:
        return output
    return f"...[{len(output) - max_chars} chars truncated]...\n{output[-max_chars:]}"


def _failure(summary: str, result: ExecutionResult) -> ToolExecutionError:
    """Build an execution error whose message ends with the output tail."""
    if result.timed_out:
        summary += " (timed out)"
    tail = _tail(result.output)
    message = f"{summary}\n{tail}" if tail else summary
    return ToolExecutionError(message, output=result.output)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "arguments"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


# =============================================================================
# Argument models
# =============================================================================


class _ToolArgs(BaseModel):
    """Strict argument shape: no unknown keys, no type coercion."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)


class DockerBuildArgs(_ToolArgs):
    dockerfile: str = "Dockerfile"
    tag: str = Field(default="dockerize-build:latest", pattern=IMAGE_REF_PATTERN)


class DockerRunArgs(_ToolArgs):
    image: str = Field(pattern=IMAGE_REF_PATTERN)
    wait_seconds: int = Field(default=30, ge=0, le=600)
    privileged: bool = False


class DockerLogsArgs(_ToolArgs):
    container: str = Field(pattern=CONTAINER_NAME_PATTERN)
    tail: int = Field(default=100, ge=1, le=10_000)


class DockerStopArgs(_ToolArgs):
    container: str = Field(pattern=CONTAINER_NAME_PATTERN)


class FileReadArgs(_ToolArgs):
    path: str = Field(min_length=1)


class FileWriteArgs(_ToolArgs):
    path: str = Field(min_length=1)
    content: str


class ShellArgs(_ToolArgs):
    command: str = Field(min_length=1)


class RepositoryArgs(_ToolArgs):
    path: str = "."


# =============================================================================
# Tool base classes
# =============================================================================


class Tool(ABC):
    """Base class for agent tools.

    Lifecycle: registered once at dispatcher construction and reused for the
    process lifetime. No per-call state survives an execute() call.
    """

    name: str
    description: str
    args_model: type[BaseModel]

    def parse_args(self, arguments: Mapping[str, Any]) -> Any:
        """Validate raw arguments against this tool's declared shape."""
        try:
            return self.args_model.model_validate(dict(arguments))
        except ValidationError as e:
            raise InvalidArgumentError(
                f"invalid arguments for {self.name}: {_format_validation_error(e)}"
            ) from e

    def execute(self, arguments: Mapping[str, Any], token: CancellationToken) -> str:
        """Validate arguments, then perform the tool's single side effect."""
        args = self.parse_args(arguments)
        token.raise_if_cancelled()
        return self.run(args, token)

    @abstractmethod
    def run(self, args: Any, token: CancellationToken) -> str:
        pass


class SandboxedTool(Tool):
    """Tool bound to a sandbox root."""

    def __init__(self, sandbox: PathSandbox):
        self.sandbox = sandbox

    @property
    def root(self) -> Path:
        return self.sandbox.root


class DockerTool(SandboxedTool):
    """Tool that talks to the container runtime through a ProcessRunner.

    Programmatically built argv still passes through the command validator
    before it reaches the runner.
    """

    def __init__(
        self,
        sandbox: PathSandbox,
        runner: ProcessRunner,
        validator: CommandValidator,
    ):
        super().__init__(sandbox)
        self.runner = runner
        self.validator = validator

    def docker(
        self,
        args: list[str],
        token: CancellationToken,
        timeout: float | None = None,
    ) -> ExecutionResult:
        self.validator.validate_argv(["docker", *args])
        return self.runner.run("docker", args, self.root, token, timeout=timeout)


# =============================================================================
# Container tools
# =============================================================================


class DockerBuildTool(DockerTool):
    name = "docker_build"
    description = "Build a Docker image from Dockerfile"
    args_model = DockerBuildArgs

    def run(self, args: DockerBuildArgs, token: CancellationToken) -> str:
        dockerfile = self.sandbox.resolve(args.dockerfile)
        reject_symlink_leaf(dockerfile, args.dockerfile)
        relative = self.sandbox.relative(dockerfile)

        result = self.docker(["build", "-f", relative, "-t", args.tag, "."], token)
        if not result.ok:
            raise _failure(f"docker build failed (exit {result.returncode})", result)
        return result.output


class DockerRunTool(DockerTool):
    """Start a container detached, let it settle, and check it is still running.

    The container is always removed afterwards, whether it passed or failed.
    """

    name = "docker_run"
    description = "Run a Docker container for testing"
    args_model = DockerRunArgs

    CONTAINER_PREFIX = "dockerize-test"

    def run(self, args: DockerRunArgs, token: CancellationToken) -> str:
        if args.privileged:
            raise InvalidArgumentError("privileged containers are not allowed")

        container = f"{self.CONTAINER_PREFIX}-{uuid.uuid4().hex[:12]}"
        started = self.docker(["run", "-d", "--name", container, args.image], token)
        try:
            if not started.ok:
                raise _failure(f"docker run failed (exit {started.returncode})", started)

            if token.wait(args.wait_seconds):
                raise RunCancelledError(token.reason)

            inspected = self.docker(
                ["inspect", "--format", "{{.State.Status}}", container], token
            )
            if not inspected.ok:
                raise _failure("failed to inspect test container", inspected)

            status = inspected.stdout.strip()
            if status != "running":
                logs = self.docker(["logs", container], token)
                raise ToolExecutionError(
                    f"container exited with status: {status}\n{_tail(logs.output)}".rstrip(),
                    output=logs.output,
                )
        finally:
            self._cleanup(container)

        return "Container started and ran successfully"

    def _cleanup(self, container: str) -> None:
        cleanup_token = CancellationToken.with_timeout(CLEANUP_TIMEOUT)
        result = self.docker(["rm", "-f", container], cleanup_token)
        if not result.ok:
            logger.warning(f"Failed to remove test container {container}: {result.output.strip()}")


class DockerLogsTool(DockerTool):
    name = "docker_logs"
    description = "Get logs from a Docker container"
    args_model = DockerLogsArgs

    def run(self, args: DockerLogsArgs, token: CancellationToken) -> str:
        result = self.docker(["logs", "--tail", str(args.tail), args.container], token)
        if not result.ok:
            raise _failure(f"docker logs failed (exit {result.returncode})", result)
        return result.output


class DockerStopTool(DockerTool):
    name = "docker_stop"
    description = "Stop a Docker container"
    args_model = DockerStopArgs

    def run(self, args: DockerStopArgs, token: CancellationToken) -> str:
        result = self.docker(["stop", args.container], token)
        if not result.ok:
            raise _failure(f"docker stop failed (exit {result.returncode})", result)
        return result.output


# =============================================================================
# Filesystem tools
# =============================================================================


class FileReadTool(SandboxedTool):
    name = "file_read"
    description = "Read content from a file"
    args_model = FileReadArgs

    def run(self, args: FileReadArgs, token: CancellationToken) -> str:
        path = self.sandbox.resolve(args.path)
        reject_symlink_leaf(path, args.path)
        if not path.is_file():
            raise ToolExecutionError(f"not a regular file: {args.path}")
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ToolExecutionError(f"failed to read file: {e}") from e


class FileWriteTool(SandboxedTool):
    name = "file_write"
    description = "Write content to a file"
    args_model = FileWriteArgs

    def run(self, args: FileWriteArgs, token: CancellationToken) -> str:
        path = self.sandbox.resolve(args.path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(args.content, encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(f"failed to write file: {e}") from e
        size = len(args.content.encode("utf-8"))
        return f"Written {size} bytes to {args.path}"


# =============================================================================
# Shell
# =============================================================================


class ShellTool(DockerTool):
    """Run one validated docker/docker-compose command line.

    The validated tokens are executed directly (no shell), so the argv that
    was checked is exactly the argv that runs.
    """

    name = "shell"
    description = "Execute a shell command (docker/docker-compose only)"
    args_model = ShellArgs

    def run(self, args: ShellArgs, token: CancellationToken) -> str:
        argv = self.validator.validate(args.command)
        result = self.runner.run(argv[0], argv[1:], self.root, token)
        if not result.ok:
            raise _failure(f"command failed (exit {result.returncode})", result)
        return result.output


# =============================================================================
# Detection pipeline tools
# =============================================================================


class _RepositoryTool(SandboxedTool):
    def __init__(self, sandbox: PathSandbox, pipeline: DetectionPipeline | None):
        super().__init__(sandbox)
        self.pipeline = pipeline

    def _detect(self, args: RepositoryArgs, token: CancellationToken) -> tuple[Path, Any]:
        if self.pipeline is None:
            raise ToolExecutionError("no detection pipeline configured")
        path = self.sandbox.resolve(args.path)
        if not path.is_dir():
            raise ToolExecutionError(f"not a directory: {args.path}")

        try:
            scan = self.pipeline.scan(path, token)
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"scan failed: {e}") from e
        token.raise_if_cancelled()
        try:
            detection = self.pipeline.detect(scan, token)
        except Exception as e:
            raise ToolExecutionError(f"detection failed: {e}") from e
        return path, detection


class AnalyzeTool(_RepositoryTool):
    name = "dockerizer_analyze"
    description = "Analyze a repository to detect its technology stack"
    args_model = RepositoryArgs

    def run(self, args: RepositoryArgs, token: CancellationToken) -> str:
        _, detection = self._detect(args, token)
        return json.dumps(detection.model_dump(), indent=2)


class GenerateTool(_RepositoryTool):
    """Render Docker configuration from templates.

    Returns the file contents; writing them is left to file_write so the
    working directory is only ever mutated through the dispatcher.
    """

    name = "dockerizer_generate"
    description = "Generate Docker configuration files for a repository"
    args_model = RepositoryArgs

    def run(self, args: RepositoryArgs, token: CancellationToken) -> str:
        path, detection = self._detect(args, token)
        if not detection.detected:
            raise ToolExecutionError("could not detect project stack")
        try:
            files = dict(self.pipeline.generate(detection, path))
        except Exception as e:
            raise ToolExecutionError(f"generation failed: {e}") from e

        return json.dumps(
            {
                "success": True,
                "language": detection.language,
                "framework": detection.framework,
                "files": files,
            },
            indent=2,
        )


# =============================================================================
# Registry
# =============================================================================


class ToolRegistry:
    """Name -> tool map. Lookup is exact-match; unknown names are a hard error."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name!r}")
        self._tools[tool.name] = tool

    def lookup(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def names(self) -> list[str]:
        return sorted(self._tools)

    def all_tools(self) -> list[Tool]:
        return [self._tools[name] for name in self.names()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_default_registry(
    root: Path | str,
    runner: ProcessRunner | None = None,
    validator: CommandValidator | None = None,
    pipeline: DetectionPipeline | None = None,
    settings: SandboxSettings | None = None,
) -> ToolRegistry:
    """Register the nine built-in tools against one sandbox root."""
    settings = settings or SandboxSettings()
    sandbox = PathSandbox(root)
    validator = validator or CommandValidator(sandbox.root)
    runner = runner or SubprocessRunner(
        max_output_bytes=settings.max_output_bytes,
        default_timeout=settings.command_timeout,
    )

    registry = ToolRegistry()
    for tool in (
        DockerBuildTool(sandbox, runner, validator),
        DockerRunTool(sandbox, runner, validator),
        DockerLogsTool(sandbox, runner, validator),
        DockerStopTool(sandbox, runner, validator),
        FileWriteTool(sandbox),
        FileReadTool(sandbox),
        ShellTool(sandbox, runner, validator),
        AnalyzeTool(sandbox, pipeline),
        GenerateTool(sandbox, pipeline),
    ):
        registry.register(tool)
    return registry
