"""Process execution behind a narrow runner interface.

Tools never call subprocess directly. They hand a validated argv to a
ProcessRunner, so tool and validator logic can be unit-tested against a fake
runner without invoking real external programs.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.errors import DockerNotAvailableError

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024  # 1MB max combined output


class ExecutionResult(BaseModel):
    """Result of one external program invocation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Combined stdout + stderr, the form tools report back."""
        return self.stdout + self.stderr


def _truncate_output(output: str, max_bytes: int) -> str:
    """Truncate output to max_bytes, keeping head and tail.

    Build failures usually report the actual error at the END of the log, so
    the tail is kept in preference to the head.
    """
    encoded = output.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return output

    head_bytes = max_bytes // 4
    tail_bytes = max_bytes - head_bytes
    # errors="ignore" drops any UTF-8 sequence cut at the boundary
    head = encoded[:head_bytes].decode("utf-8", errors="ignore")
    tail = encoded[-tail_bytes:].decode("utf-8", errors="ignore")
    omitted = len(encoded) - head_bytes - tail_bytes
    return f"{head}\n\n[OUTPUT TRUNCATED - {omitted} bytes omitted]\n\n{tail}"


class ProcessRunner(Protocol):
    """Run one external program and capture its output."""

    def run(
        self,
        program: str,
        args: list[str],
        cwd: Path,
        token: CancellationToken,
        timeout: float | None = None,
    ) -> ExecutionResult:
        ...


class SubprocessRunner:
    """ProcessRunner backed by subprocess.run (no shell).

    The subprocess timeout is the smaller of the explicit timeout and the
    token's remaining time. subprocess.run kills the child when that expires.
    """

    def __init__(
        self,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        default_timeout: float | None = 600,
    ):
        self.max_output_bytes = max_output_bytes
        self.default_timeout = default_timeout

    def run(
        self,
        program: str,
        args: list[str],
        cwd: Path,
        token: CancellationToken,
        timeout: float | None = None,
    ) -> ExecutionResult:
        token.raise_if_cancelled()
        effective_timeout = _min_timeout(
            timeout if timeout is not None else self.default_timeout,
            token.remaining(),
        )
        cmd = [program, *args]
        logger.debug(f"Running {cmd} in {cwd} (timeout={effective_timeout})")

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired as e:
            stdout = _decode(e.stdout)
            stderr = _decode(e.stderr)
            return ExecutionResult(
                returncode=-1,
                stdout=_truncate_output(stdout, self.max_output_bytes),
                stderr=_truncate_output(
                    stderr + f"\nCommand timed out after {effective_timeout}s",
                    self.max_output_bytes,
                ),
                timed_out=True,
            )
        except FileNotFoundError:
            return ExecutionResult(
                returncode=127,
                stderr=f"{program}: command not found",
            )

        return ExecutionResult(
            returncode=result.returncode,
            stdout=_truncate_output(result.stdout or "", self.max_output_bytes),
            stderr=_truncate_output(result.stderr or "", self.max_output_bytes),
        )


def _min_timeout(*values: float | None) -> float | None:
    bounded = [v for v in values if v is not None]
    return min(bounded) if bounded else None


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def require_docker() -> None:
    """Validate Docker is available. Call at startup."""
    if not shutil.which("docker"):
        raise DockerNotAvailableError("Docker binary not found in PATH")

    try:
        result = subprocess.run(
            ["docker", "version"],
            capture_output=True,
            timeout=10,
        )
    except subprocess.TimeoutExpired as e:
        raise DockerNotAvailableError("Docker did not respond within 10s") from e
    if result.returncode != 0:
        raise DockerNotAvailableError(
            f"Docker is not running or not accessible: {result.stderr.decode(errors='replace')}"
        )
