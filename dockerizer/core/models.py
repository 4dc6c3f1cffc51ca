"""Data models for the dockerizer agent.

Uses Pydantic for the run audit trail, the generated file set and the
notification records.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Tool call ---


class ToolCall(BaseModel):
    """A single proposed tool invocation. Built fresh per call, never stored."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


# --- Generated files ---


class FileSet(BaseModel):
    """Docker configuration produced by a generator, keyed by canonical filename."""

    model_config = ConfigDict(frozen=True)

    # Field name -> filename written to the sandbox root
    FILENAMES: ClassVar[tuple[tuple[str, str], ...]] = (
        ("dockerfile", "Dockerfile"),
        ("docker_compose", "docker-compose.yml"),
        ("dockerignore", ".dockerignore"),
        ("env_example", ".env.example"),
    )

    dockerfile: str = ""
    docker_compose: str = ""
    dockerignore: str = ""
    env_example: str = ""

    @classmethod
    def from_mapping(cls, files: Mapping[str, str]) -> FileSet:
        """Build from either canonical filenames or field names.

        Unknown keys are ignored.
        """
        by_filename = {filename: field for field, filename in cls.FILENAMES}
        values: dict[str, str] = {}
        for key, content in files.items():
            field = by_filename.get(key, key)
            if field in cls.model_fields:
                values[field] = content
        return cls(**values)

    def files(self) -> Iterator[tuple[str, str]]:
        """Yield (filename, content) for every non-empty entry, in canonical order."""
        for field, filename in self.FILENAMES:
            content = getattr(self, field)
            if content:
                yield filename, content

    def as_dict(self) -> dict[str, str]:
        return dict(self.files())


# --- Run audit trail ---


class Attempt(BaseModel):
    """One generate -> write -> build -> test cycle. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    number: int
    start_time: datetime
    end_time: datetime
    success: bool = False
    error: str = ""
    instructions: str = ""
    output: FileSet | None = None
    build_log: str = ""
    test_log: str = ""

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


class RunResult(BaseModel):
    """Outcome of one agent run with the full attempt history."""

    success: bool = False
    cancelled: bool = False
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: datetime | None = None
    attempts: list[Attempt] = Field(default_factory=list)
    final_output: FileSet | None = None

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def last_error(self) -> str:
        for attempt in reversed(self.attempts):
            if attempt.error:
                return attempt.error
        return ""


# --- Notifications ---


class EventType(str, Enum):
    """Lifecycle notifications emitted by the agent loop."""

    START = "start"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    BUILDING = "building"
    TESTING = "testing"
    FIXING = "fixing"
    SUCCESS = "success"
    ERROR = "error"
    COMPLETE = "complete"


class AgentEvent(BaseModel):
    """A single notification record. Observability only, never control."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: EventType
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    data: Any = None


# --- Detection collaborator ---


class Detection(BaseModel):
    """Stack detection result returned by a detection pipeline."""

    detected: bool = False
    language: str = ""
    framework: str = ""
    version: str = ""
    confidence: int = 0
    provider: str = ""
