"""Sandbox module: path confinement, command validation and process execution."""

from dockerizer.sandbox.commands import CommandValidator
from dockerizer.sandbox.executor import ExecutionResult, ProcessRunner, SubprocessRunner
from dockerizer.sandbox.paths import PathSandbox, reject_symlink_leaf, resolve_within

__all__ = [
    "CommandValidator",
    "ExecutionResult",
    "PathSandbox",
    "ProcessRunner",
    "SubprocessRunner",
    "reject_symlink_leaf",
    "resolve_within",
]
