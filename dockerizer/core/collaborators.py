"""Interfaces to the external collaborators the agent drives.

- FileSetGenerator: the AI step. Returns a FileSet or raises GenerationError.
- DetectionPipeline: scan -> detect -> generate over a repository.

Neither is implemented here. Concrete collaborators are plugged in by dotted
reference ("package.module:attribute") from configuration or the CLI.
"""

from __future__ import annotations

import importlib
import inspect
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.errors import ConfigError
from dockerizer.core.models import Detection, FileSet


@runtime_checkable
class FileSetGenerator(Protocol):
    """AI collaborator producing Docker configuration for a scanned project."""

    def generate(
        self, token: CancellationToken, scan_result: Any, instructions: str
    ) -> FileSet:
        ...


@runtime_checkable
class DetectionPipeline(Protocol):
    """Stack detection and template generation over a directory."""

    def scan(self, path: Path, token: CancellationToken) -> Any:
        ...

    def detect(self, scan_result: Any, token: CancellationToken) -> Detection:
        ...

    def generate(self, detection: Detection, path: Path) -> Mapping[str, str]:
        ...


def load_object(reference: str) -> Any:
    """Import `module:attribute` and return the attribute.

    If the attribute is a class or a zero-argument factory it is called, so
    both instances and factories can be referenced.
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigError(
            f"Invalid reference {reference!r}: expected 'package.module:attribute'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import {module_name!r}: {e}") from e

    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ConfigError(f"{module_name!r} has no attribute {attribute!r}") from e

    if isinstance(target, type) or inspect.isfunction(target):
        target = target()
    return target


# Manifests whose contents are worth showing a generator
KEY_FILES = (
    "package.json",
    "requirements.txt",
    "pyproject.toml",
    "Pipfile",
    "go.mod",
    "Cargo.toml",
    "Gemfile",
    "composer.json",
    "pom.xml",
    "build.gradle",
    "mix.exs",
)
SKIP_DIRS = frozenset({".git", "node_modules", "vendor", "__pycache__", ".venv", "target"})
MAX_SCAN_FILES = 500
MAX_KEY_FILE_BYTES = 16 * 1024


def basic_scan(root: Path, max_files: int = MAX_SCAN_FILES) -> dict[str, Any]:
    """Minimal scan result used when no detection pipeline is configured.

    Lists relative file paths (bounded) and the contents of well-known
    manifest files at the top level. Symlinks are neither followed nor read.
    """
    root = Path(root).resolve()
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for name in sorted(filenames):
            full = Path(dirpath) / name
            if full.is_symlink():
                continue
            files.append(str(full.relative_to(root)))
            if len(files) >= max_files:
                break
        if len(files) >= max_files:
            break

    key_files: dict[str, str] = {}
    for name in KEY_FILES:
        candidate = root / name
        if candidate.is_file() and not candidate.is_symlink():
            with open(candidate, encoding="utf-8", errors="replace") as f:
                key_files[name] = f.read(MAX_KEY_FILE_BYTES)

    return {"root": str(root), "files": files, "key_files": key_files}
