"""Command validation for the shell tool and the docker tools.

Allowlisting by program name alone is not enough: both permitted programs
expose flags capable of full host compromise (privileged containers, host
namespaces, arbitrary bind mounts), so arguments are inspected too.

Each validated command is exactly one program invocation. The tokens returned
by validate() are executed verbatim without a shell.
"""

from __future__ import annotations

import csv
import os
from pathlib import Path

from dockerizer.core.errors import DisallowedCommandError, PathEscapeError
from dockerizer.sandbox.paths import PathSandbox, is_within

ALLOWED_PROGRAMS = frozenset({"docker", "docker-compose"})

# Banned anywhere in the line, independent of position
BLOCKED_CHARS = "\n\r><|$`;&"

CHAINING_OPERATORS = ("&&", "||")

# Prefix-matched against every docker argument
DANGEROUS_DOCKER_FLAGS = (
    "--privileged",
    "--pid=host",
    "--network=host",
    "--net=host",
    "--userns=host",
    "--uts=host",
    "--ipc=host",
    "--cgroupns=host",
    "--cap-add",
    "--security-opt",
    "--device",
)

# Namespace flags whose value may also come as the next token (--network host)
NAMESPACE_FLAGS = frozenset(
    {"--pid", "--network", "--net", "--userns", "--uts", "--ipc", "--cgroupns"}
)

SENSITIVE_ROOTS = (
    "/",
    "/etc",
    "/var",
    "/usr",
    "/root",
    "/home",
    "/proc",
    "/sys",
    "/dev",
    "/boot",
)

# Compose sub-verbs that run arbitrary commands inside a service
DENIED_COMPOSE_VERBS = frozenset({"exec", "run"})


class CommandValidator:
    """Validate command lines against the docker/docker-compose allowlist."""

    def __init__(self, root: Path | str):
        self._sandbox = PathSandbox(root)
        self.root = self._sandbox.root

    def validate(self, command_line: str) -> list[str]:
        """Validate a full command line and return its argv tokens.

        Raises:
            DisallowedCommandError: on any metacharacter, chaining, foreign
                program or dangerous argument.
        """
        command = command_line.strip()
        if not command:
            raise DisallowedCommandError("empty command")

        for operator in CHAINING_OPERATORS:
            if operator in command:
                raise DisallowedCommandError("command chaining not allowed")

        for char in BLOCKED_CHARS:
            if char in command:
                raise DisallowedCommandError(f"shell metacharacter not allowed: {char!r}")

        argv = command.split()
        self.validate_argv(argv)
        return argv

    def validate_argv(self, argv: list[str]) -> None:
        """Validate an already tokenised argv (program first)."""
        if not argv:
            raise DisallowedCommandError("empty command")

        program = os.path.basename(argv[0])
        args = argv[1:]
        if program == "docker":
            self._validate_docker_args(args)
        elif program == "docker-compose":
            self._validate_compose_args(args)
        else:
            raise DisallowedCommandError(
                f"only docker and docker-compose commands are allowed, got: {program}"
            )

    # ------------------------------------------------------------------
    # docker
    # ------------------------------------------------------------------

    def _validate_docker_args(self, args: list[str]) -> None:
        for index, arg in enumerate(args):
            for dangerous in DANGEROUS_DOCKER_FLAGS:
                if arg.startswith(dangerous):
                    raise DisallowedCommandError(
                        f"dangerous docker flag not allowed: {dangerous}"
                    )

            if arg in NAMESPACE_FLAGS and index + 1 < len(args):
                if args[index + 1] == "host":
                    raise DisallowedCommandError(
                        f"dangerous docker flag not allowed: {arg} host"
                    )

            mount = _extract_mount(arg, args, index)
            if mount is not None:
                kind, spec = mount
                self._validate_mount(kind, spec)

        # docker compose plugin form shares the compose restrictions
        if "compose" in args:
            self._validate_compose_args(args[args.index("compose") + 1 :])

    def _validate_mount(self, kind: str, spec: str) -> None:
        if kind == "volume":
            sources = [spec.split(":", 1)[0]]
        else:
            sources = _mount_sources(spec)
        for host_source in sources:
            if host_source:
                self.validate_host_source(host_source)

    def validate_host_source(self, host_source: str) -> None:
        """Check the host side of a volume or bind mount."""
        if ".." in host_source.replace("\\", "/").split("/"):
            raise DisallowedCommandError("path traversal in volume mount not allowed")

        if os.path.isabs(host_source):
            normalized = os.path.normpath(host_source)
            # Canonicalise through symlinks where the path (or an ancestor) exists
            canonical = os.path.realpath(normalized)
            inside_root = is_within(canonical, self.root)
            for sensitive in SENSITIVE_ROOTS:
                if normalized == sensitive:
                    raise DisallowedCommandError(
                        f"mounting sensitive host path not allowed: {host_source}"
                    )
                # "/" only matches exactly; everything else outside is caught below
                under = sensitive != "/" and normalized.startswith(sensitive + "/")
                if under and not inside_root:
                    raise DisallowedCommandError(
                        f"mounting sensitive host path not allowed: {host_source}"
                    )
            if not inside_root:
                raise DisallowedCommandError(
                    f"volume mount outside working directory not allowed: {host_source}"
                )
            return

        if _is_named_volume(host_source):
            return
        try:
            self._sandbox.resolve(host_source)
        except PathEscapeError as e:
            raise DisallowedCommandError(
                f"volume mount outside working directory not allowed: {host_source}"
            ) from e

    # ------------------------------------------------------------------
    # docker-compose
    # ------------------------------------------------------------------

    def _validate_compose_args(self, args: list[str]) -> None:
        for arg in args:
            if arg in DENIED_COMPOSE_VERBS:
                raise DisallowedCommandError(
                    f"docker-compose {arg} not allowed (security restriction)"
                )


def _extract_mount(arg: str, args: list[str], index: int) -> tuple[str, str] | None:
    """Return (kind, spec) if `arg` introduces a volume or mount specification."""
    following = args[index + 1] if index + 1 < len(args) else ""
    if arg in ("-v", "--volume"):
        return "volume", following
    if arg == "--mount":
        return "mount", following
    if arg.startswith("--volume="):
        return "volume", arg.split("=", 1)[1]
    if arg.startswith("--mount="):
        return "mount", arg.split("=", 1)[1]
    if arg.startswith("-") and not arg.startswith("--"):
        # Grouped short flags: -dv /etc:/x and -itv/:/host both carry a -v
        cluster = arg[1:]
        if "v" in cluster:
            spec = cluster[cluster.index("v") + 1 :]
            if spec.startswith("="):
                spec = spec[1:]
            return "volume", spec or following
    return None


def _mount_sources(spec: str) -> list[str]:
    """Host sources named by a --mount spec.

    The spec is a CSV row of key=value fields with case-insensitive keys. A
    bind mount without a readable source is rejected rather than skipped.
    """
    try:
        fields = next(csv.reader([spec]), [])
    except csv.Error as e:
        raise DisallowedCommandError(f"malformed mount specification: {spec}") from e

    mount_type = "volume"
    sources = []
    for field in fields:
        key, _, value = field.partition("=")
        key = key.strip().lower()
        value = value.strip().strip("\"'")
        if key == "type":
            mount_type = value.lower()
        elif key in ("source", "src"):
            sources.append(value)

    if mount_type == "bind" and not any(sources):
        raise DisallowedCommandError(f"bind mount without a source not allowed: {spec}")
    return sources


def _is_named_volume(source: str) -> bool:
    return "/" not in source and "\\" not in source and not source.startswith(".")
