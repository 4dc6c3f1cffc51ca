"""Pre-execution inspectors for proposed tool calls.

Inspectors look at (tool_name, arguments) and either approve (return None)
or return a rejection reason. They never perform the side effect they
inspect. The pipeline runs them in a fixed order and the first rejection
aborts the call before the tool is reached.

INSPECTOR TYPES:
- security: catastrophic shell substrings, privileged containers
- syntax: Dockerfile instruction grammar on file_write
- repetition: identical-call loop guard (opt-in)
- content: placeholder text and keyword typos on file_write (opt-in)
"""

from __future__ import annotations

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from dockerizer.core.config import InspectorSettings
from dockerizer.core.errors import InspectorRejectedError

logger = logging.getLogger(__name__)


class Inspector(ABC):
    """Base class for tool call inspectors."""

    name: str

    @abstractmethod
    def inspect(self, tool_name: str, arguments: Mapping[str, Any]) -> str | None:
        """Return a rejection reason, or None to approve the call."""
        pass


def is_dockerfile_path(path: str) -> bool:
    """Dockerfile, Dockerfile.<suffix> or <name>.Dockerfile, in any directory."""
    name = PurePosixPath(path.replace("\\", "/")).name
    return name == "Dockerfile" or name.startswith("Dockerfile.") or name.endswith(".Dockerfile")


# =============================================================================
# Security
# =============================================================================


class SecurityInspector(Inspector):
    name = "security"

    DANGEROUS_SUBSTRINGS = (
        "rm -rf /",
        "rm -rf /*",
        "rm -rf ~",
        "dd if=",
        "mkfs",
        ":(){ :|:& };:",
        "> /dev/sd",
        "chmod -R 777 /",
        "--privileged",
    )

    def inspect(self, tool_name: str, arguments: Mapping[str, Any]) -> str | None:
        if tool_name == "shell":
            command = arguments.get("command")
            if isinstance(command, str):
                for pattern in self.DANGEROUS_SUBSTRINGS:
                    if pattern in command:
                        return f"blocked dangerous command: {pattern}"

        if tool_name == "docker_run" and arguments.get("privileged"):
            return "privileged containers are not allowed"

        return None


# =============================================================================
# Syntax
# =============================================================================

VALID_INSTRUCTIONS = frozenset(
    {
        "FROM",
        "RUN",
        "CMD",
        "LABEL",
        "MAINTAINER",
        "EXPOSE",
        "ENV",
        "ADD",
        "COPY",
        "ENTRYPOINT",
        "VOLUME",
        "USER",
        "WORKDIR",
        "ARG",
        "ONBUILD",
        "STOPSIGNAL",
        "HEALTHCHECK",
        "SHELL",
    }
)

# <<EOF, <<-EOF, <<"EOF", <<'EOF' at the start of a word. Arithmetic $(( )) is
# stripped before matching so shifts like $((a<<b)) never open a heredoc.
_HEREDOC_RE = re.compile(r"(?:^|(?<=\s))<<(-?)([\"']?)([A-Za-z_][A-Za-z0-9_]*)\2")
_ARITHMETIC_RE = re.compile(r"\$\(\(.*?\)\)")


@dataclass(frozen=True)
class DockerfileIssue:
    """One grammar problem. `line` is 1-based, None for whole-file issues."""

    message: str
    line: int | None = None

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"


def validate_dockerfile(content: str) -> list[DockerfileIssue]:
    """Check Dockerfile content against the instruction grammar.

    Comments and blank lines are skipped, backslash continuations are joined
    onto their instruction line, and heredoc bodies are skipped. Every
    instruction keyword must be known, the first must be FROM or ARG, and
    at least one FROM must be present.
    """
    issues: list[DockerfileIssue] = []
    lines = content.splitlines()
    first_instruction: str | None = None
    has_from = False

    index = 0
    while index < len(lines):
        line_no = index + 1
        line = lines[index].strip()
        index += 1
        if not line or line.startswith("#"):
            continue

        while line.endswith("\\") and index < len(lines):
            following = lines[index].strip()
            index += 1
            if following.startswith("#"):
                # Comment lines inside a continuation are dropped by the builder
                continue
            line = line[:-1] + " " + following

        for strip_tabs, _, terminator in _HEREDOC_RE.findall(_ARITHMETIC_RE.sub("", line)):
            while index < len(lines):
                body_line = lines[index]
                index += 1
                if strip_tabs:
                    body_line = body_line.lstrip("\t")
                if body_line.strip() == terminator:
                    break
            else:
                issues.append(
                    DockerfileIssue(f"unterminated heredoc (missing {terminator})", line_no)
                )

        parts = line.split()
        if not parts:
            # A lone continuation joined onto blank lines
            continue
        instruction = parts[0].upper()
        if instruction not in VALID_INSTRUCTIONS:
            issues.append(DockerfileIssue(f"invalid instruction: {instruction}", line_no))

        if first_instruction is None:
            first_instruction = instruction
            if instruction not in ("FROM", "ARG"):
                issues.append(
                    DockerfileIssue(
                        f"first instruction must be FROM or ARG, got {instruction}", line_no
                    )
                )

        if instruction == "FROM":
            has_from = True

    if not has_from:
        issues.append(DockerfileIssue("Dockerfile must have a FROM instruction"))
    return issues


class SyntaxInspector(Inspector):
    name = "syntax"

    def inspect(self, tool_name: str, arguments: Mapping[str, Any]) -> str | None:
        if tool_name != "file_write":
            return None
        path = arguments.get("path")
        content = arguments.get("content")
        if not isinstance(path, str) or not isinstance(content, str):
            # Shape errors are reported by the tool's own argument validation
            return None
        if not is_dockerfile_path(path):
            return None

        issues = validate_dockerfile(content)
        if issues:
            return "; ".join(str(issue) for issue in issues)
        return None


# =============================================================================
# Repetition
# =============================================================================


class RepetitionInspector(Inspector):
    """Loop guard for a malfunctioning generation step.

    History is a bounded ring buffer owned by this instance. A call is
    rejected once its exact (tool, arguments) signature has already been
    approved `max_repeats` times; rejected calls are not recorded.
    """

    name = "repetition"

    def __init__(self, max_repeats: int = 3, history_size: int = 100):
        if max_repeats < 1:
            raise ValueError("max_repeats must be at least 1")
        self.max_repeats = max_repeats
        self._history: deque[str] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    @staticmethod
    def signature(tool_name: str, arguments: Mapping[str, Any]) -> str:
        return f"{tool_name}:{json.dumps(dict(arguments), sort_keys=True, default=str)}"

    def inspect(self, tool_name: str, arguments: Mapping[str, Any]) -> str | None:
        sig = self.signature(tool_name, arguments)
        with self._lock:
            count = self._history.count(sig)
            if count >= self.max_repeats:
                return f"detected repetitive pattern (same call made {count} times)"
            self._history.append(sig)
        return None

    def reset(self) -> None:
        with self._lock:
            self._history.clear()


# =============================================================================
# Content
# =============================================================================


class ContentInspector(Inspector):
    name = "content"

    PLACEHOLDERS = ("TODO:", "FIXME:", "YOUR_", "<your-", "{{", "}}")

    KEYWORD_TYPOS = {
        "FORMO": "FROM",
        "COPPY": "COPY",
        "EXPOES": "EXPOSE",
        "ENTRYPOIT": "ENTRYPOINT",
        "WORKIDR": "WORKDIR",
    }

    def __init__(self) -> None:
        self._typo_patterns = {
            typo: re.compile(rf"\b{typo}\b", re.IGNORECASE) for typo in self.KEYWORD_TYPOS
        }

    def inspect(self, tool_name: str, arguments: Mapping[str, Any]) -> str | None:
        if tool_name != "file_write":
            return None
        path = arguments.get("path")
        content = arguments.get("content")
        if not isinstance(path, str) or not isinstance(content, str):
            return None

        for placeholder in self.PLACEHOLDERS:
            if placeholder in content:
                return f"content contains placeholder text: {placeholder} in {path}"

        if is_dockerfile_path(path):
            for typo, pattern in self._typo_patterns.items():
                if pattern.search(content):
                    return f"possible typo: {typo} should be {self.KEYWORD_TYPOS[typo]}"
        return None


# =============================================================================
# Pipeline
# =============================================================================


class InspectorPipeline:
    """Ordered inspectors; the first rejection wins."""

    def __init__(self, inspectors: Iterable[Inspector] = ()):
        self._inspectors: list[Inspector] = []
        for inspector in inspectors:
            self.add(inspector)

    def add(self, inspector: Inspector) -> None:
        if inspector.name in self.names():
            raise ValueError(f"Inspector already registered: {inspector.name!r}")
        self._inspectors.append(inspector)

    def remove(self, name: str) -> Inspector:
        for i, inspector in enumerate(self._inspectors):
            if inspector.name == name:
                return self._inspectors.pop(i)
        raise KeyError(name)

    def names(self) -> list[str]:
        return [inspector.name for inspector in self._inspectors]

    def inspect_all(self, tool_name: str, arguments: Mapping[str, Any]) -> None:
        """Raise InspectorRejectedError on the first rejecting inspector.

        An inspector that crashes counts as a rejection: the call is refused,
        never waved through.
        """
        for inspector in self._inspectors:
            try:
                reason = inspector.inspect(tool_name, arguments)
            except Exception as e:
                logger.exception(f"Inspector {inspector.name} raised on {tool_name}")
                raise InspectorRejectedError(
                    inspector.name, f"inspector error: {type(e).__name__}: {e}"
                ) from e
            if reason is not None:
                raise InspectorRejectedError(inspector.name, reason)

    def __len__(self) -> int:
        return len(self._inspectors)


def build_default_pipeline(settings: InspectorSettings | None = None) -> InspectorPipeline:
    """Security and syntax always; repetition and content when enabled."""
    settings = settings or InspectorSettings()
    pipeline = InspectorPipeline([SecurityInspector(), SyntaxInspector()])
    if settings.repetition:
        pipeline.add(
            RepetitionInspector(
                max_repeats=settings.repetition_threshold,
                history_size=settings.history_size,
            )
        )
    if settings.content:
        pipeline.add(ContentInspector())
    return pipeline
