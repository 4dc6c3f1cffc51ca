"""Configuration loading.

Settings come from the first YAML file found on the search path (or an
explicit file), then a few environment variables override individual values.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dockerizer.core.errors import ConfigError

DEFAULT_IMAGE_TAG = "dockerize-test:latest"

SEARCH_PATHS = [
    Path(".dockerizer.yml"),
    Path(".dockerizer.yaml"),
    Path.home() / ".config/dockerizer/config.yml",
    Path.home() / ".dockerizer.yml",
]

ENV_MAX_ATTEMPTS = "DOCKERIZER_MAX_ATTEMPTS"
ENV_GENERATOR = "DOCKERIZER_GENERATOR"
ENV_DETECTOR = "DOCKERIZER_DETECTOR"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AgentSettings(_Section):
    max_attempts: int = Field(default=5, ge=1)
    image_tag: str = DEFAULT_IMAGE_TAG
    test_wait_seconds: int = Field(default=30, ge=0, le=600)
    timeout_seconds: int = Field(default=1800, ge=1)
    instructions: str = ""


class SandboxSettings(_Section):
    max_output_bytes: int = Field(default=1024 * 1024, ge=1024)
    command_timeout: int = Field(default=600, ge=1)


class InspectorSettings(_Section):
    """Security and syntax inspectors always run; these two are opt-in."""

    repetition: bool = False
    repetition_threshold: int = Field(default=3, ge=1)
    history_size: int = Field(default=100, ge=1)
    content: bool = False


class DockerizerConfig(_Section):
    agent: AgentSettings = Field(default_factory=AgentSettings)
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    inspectors: InspectorSettings = Field(default_factory=InspectorSettings)
    # "package.module:attribute" references, see collaborators.load_object
    generator: str | None = None
    detector: str | None = None


def find_config_file(search_paths: list[Path] | None = None) -> Path | None:
    for path in search_paths if search_paths is not None else SEARCH_PATHS:
        if path.is_file():
            return path
    return None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config in {path}: expected a mapping at top level")
    return data


def _apply_env(data: dict[str, Any], environ: dict[str, str]) -> None:
    if ENV_MAX_ATTEMPTS in environ:
        raw = environ[ENV_MAX_ATTEMPTS]
        try:
            max_attempts = int(raw)
        except ValueError:
            raise ConfigError(f"{ENV_MAX_ATTEMPTS} must be an integer, got {raw!r}")
        agent = data.get("agent")
        if not isinstance(agent, dict):
            agent = {}
        data["agent"] = {**agent, "max_attempts": max_attempts}
    if environ.get(ENV_GENERATOR):
        data["generator"] = environ[ENV_GENERATOR]
    if environ.get(ENV_DETECTOR):
        data["detector"] = environ[ENV_DETECTOR]


def load_config(
    path: Path | str | None = None,
    search_paths: list[Path] | None = None,
    environ: dict[str, str] | None = None,
) -> DockerizerConfig:
    """Load configuration.

    Args:
        path: Explicit config file. Must exist if given.
        search_paths: Override the default search path (mainly for tests).
        environ: Override os.environ (mainly for tests).

    Raises:
        ConfigError: unreadable file, bad YAML, or values failing validation.
    """
    if path is not None:
        config_path: Path | None = Path(path)
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file(search_paths)

    data = _read_yaml(config_path) if config_path is not None else {}
    _apply_env(data, dict(os.environ) if environ is None else environ)

    try:
        return DockerizerConfig.model_validate(data)
    except ValidationError as e:
        source = config_path or "environment"
        raise ConfigError(f"Invalid config in {source}: {e}") from e
