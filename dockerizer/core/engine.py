"""Agent loop for the dockerizer.

Drives bounded attempts of generate -> write -> build -> test. A failing step
ends its attempt immediately; the attempt's error is appended verbatim to the
instructions for the next one. Only the loop decides to try again, always
with a fresh attempt number.

Steps run strictly in order and never overlap. The cancellation token is
checked at the top of every attempt and every step; once it fires no further
step is scheduled and the run is reported as cancelled.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.collaborators import FileSetGenerator
from dockerizer.core.config import DEFAULT_IMAGE_TAG
from dockerizer.core.dispatcher import ToolDispatcher
from dockerizer.core.errors import GenerationError, RunCancelledError, ToolError
from dockerizer.core.events import EventStream
from dockerizer.core.feedback import append_failure
from dockerizer.core.models import Attempt, EventType, FileSet, RunResult

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _AttemptFailed(Exception):
    """Internal: ends the current attempt with `error`."""

    def __init__(self, error: str):
        self.error = error
        super().__init__(error)


class _AttemptRecorder:
    """Mutable scratch state for the attempt in flight, frozen by finish()."""

    def __init__(self, number: int, instructions: str):
        self.number = number
        self.instructions = instructions
        self.start_time = _now()
        self.output: FileSet | None = None
        self.build_log = ""
        self.test_log = ""

    def finish(self, success: bool = False, error: str = "") -> Attempt:
        return Attempt(
            number=self.number,
            start_time=self.start_time,
            end_time=_now(),
            success=success,
            error=error,
            instructions=self.instructions,
            output=self.output,
            build_log=self.build_log,
            test_log=self.test_log,
        )


class DockerizeAgent:
    """Retry/feedback controller over an AI generator and the tool dispatcher."""

    def __init__(
        self,
        generator: FileSetGenerator,
        dispatcher: ToolDispatcher,
        events: EventStream | None = None,
        max_attempts: int = 5,
        image_tag: str = DEFAULT_IMAGE_TAG,
        test_wait_seconds: int = 30,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.dispatcher = dispatcher
        self.events = events if events is not None else EventStream()
        self.max_attempts = max_attempts
        self.image_tag = image_tag
        self.test_wait_seconds = test_wait_seconds

    def _emit(self, event_type: EventType, message: str, data: Any = None) -> None:
        self.events.emit(event_type, message, data)

    def run(
        self,
        token: CancellationToken,
        scan_result: Any,
        instructions: str = "",
    ) -> RunResult:
        """Run attempts until one succeeds, the bound is hit, or the token fires.

        Always returns a RunResult carrying the full attempt history.
        """
        self._emit(EventType.START, "Starting agent")
        result = RunResult(start_time=_now())

        for number in range(1, self.max_attempts + 1):
            if token.cancelled:
                result.cancelled = True
                self._emit(EventType.ERROR, f"Run {token.reason} before attempt {number}")
                break

            self._emit(
                EventType.ANALYZING,
                f"Attempt {number}/{self.max_attempts}: Analyzing project",
            )
            attempt = self._run_attempt(token, scan_result, instructions, number)
            result.attempts.append(attempt)

            if attempt.success:
                logger.info(f"Attempt {number} succeeded")
                self._emit(EventType.SUCCESS, "Docker configuration generated successfully")
                result.success = True
                result.final_output = attempt.output
                break

            if attempt.error == CANCELLED:
                logger.info(f"Run cancelled during attempt {number}: {token.reason}")
                result.cancelled = True
                self._emit(EventType.ERROR, f"Attempt {number} cancelled", token.reason)
                break

            logger.info(f"Attempt {number}/{self.max_attempts} failed: {attempt.error}")
            self._emit(EventType.ERROR, f"Attempt {number} failed", attempt.error)

            if number < self.max_attempts:
                self._emit(
                    EventType.FIXING,
                    f"Build failed, analyzing error for fix (attempt {number})",
                    attempt.error,
                )
                instructions = append_failure(instructions, attempt.error)

        result.end_time = _now()
        self._emit(EventType.COMPLETE, "Agent completed", result)
        return result

    def _run_attempt(
        self,
        token: CancellationToken,
        scan_result: Any,
        instructions: str,
        number: int,
    ) -> Attempt:
        recorder = _AttemptRecorder(number, instructions)
        try:
            file_set = self._generate(recorder, token, scan_result)
            self._write(file_set, token)
            self._build(recorder, token)
            self._test(recorder, token)
        except RunCancelledError:
            return recorder.finish(error=CANCELLED)
        except _AttemptFailed as e:
            # A step that failed because the deadline hit mid-call is a cancellation
            if token.cancelled:
                return recorder.finish(error=CANCELLED)
            return recorder.finish(error=e.error)
        return recorder.finish(success=True)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _generate(
        self, recorder: _AttemptRecorder, token: CancellationToken, scan_result: Any
    ) -> FileSet:
        token.raise_if_cancelled()
        self._emit(EventType.GENERATING, "Generating Docker configuration")
        try:
            output = self.generator.generate(token, scan_result, recorder.instructions)
        except (RunCancelledError, _AttemptFailed):
            raise
        except GenerationError as e:
            raise _AttemptFailed(f"generation failed: {e}") from e
        except Exception as e:
            # Generator is external code; any crash ends the attempt, not the run
            logger.exception(f"Generator raised unexpectedly on attempt {recorder.number}")
            raise _AttemptFailed(f"generation failed: {e}") from e

        if not isinstance(output, FileSet):
            raise _AttemptFailed(
                f"generation failed: generator returned {type(output).__name__}, expected FileSet"
            )
        recorder.output = output
        return output

    def _write(self, file_set: FileSet, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        try:
            self.dispatcher.write_files(file_set, token)
        except ToolError as e:
            raise _AttemptFailed(f"failed to write files: {e}") from e

    def _build(self, recorder: _AttemptRecorder, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        self._emit(EventType.BUILDING, "Building Docker image")
        try:
            recorder.build_log = self.dispatcher.execute(
                "docker_build",
                {"dockerfile": "Dockerfile", "tag": self.image_tag},
                token,
            )
        except ToolError as e:
            recorder.build_log = e.output
            raise _AttemptFailed(f"build failed: {e}") from e

    def _test(self, recorder: _AttemptRecorder, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        self._emit(EventType.TESTING, "Testing container")
        try:
            recorder.test_log = self.dispatcher.execute(
                "docker_run",
                {"image": self.image_tag, "wait_seconds": self.test_wait_seconds},
                token,
            )
        except ToolError as e:
            recorder.test_log = e.output
            raise _AttemptFailed(f"test failed: {e}") from e
