"""Path sandbox: confine caller-supplied relative paths to a fixed root.

Resolving only the leaf is not enough. An intermediate directory symlink can
redirect a write outside the root even when the leaf name looks harmless, so
the full chain is canonicalised when it exists and the nearest existing
ancestor is canonicalised when it does not (write-before-create).
"""

from __future__ import annotations

import os
import stat
from pathlib import Path, PurePosixPath, PureWindowsPath

from dockerizer.core.errors import PathEscapeError, ToolExecutionError


def is_within(path: Path | str, root: Path | str) -> bool:
    """True if `path` equals `root` or lies beneath it.

    Both arguments must already be canonical. The root is compared with a
    trailing separator so /home/user never matches /home/username.
    """
    path_str = str(path)
    root_str = str(root)
    if path_str == root_str.rstrip(os.sep) or path_str == root_str:
        return True
    if not root_str.endswith(os.sep):
        root_str += os.sep
    return path_str.startswith(root_str)


def _is_absolute(raw: str) -> bool:
    return (
        os.path.isabs(raw)
        or PurePosixPath(raw).is_absolute()
        or PureWindowsPath(raw).is_absolute()
        or bool(PureWindowsPath(raw).drive)
    )


def _nearest_existing_ancestor(path: Path) -> Path:
    """Walk upward from `path` until an existing directory entry is found."""
    current = path
    while True:
        if os.path.lexists(current):
            return current
        parent = current.parent
        if parent == current:
            return current
        current = parent


class PathSandbox:
    """Resolve root-relative paths, failing closed on any escape."""

    def __init__(self, root: Path | str):
        try:
            self.root = Path(root).resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise PathEscapeError(f"failed to resolve sandbox root {root}: {e}") from e
        if not self.root.is_dir():
            raise PathEscapeError(f"sandbox root is not a directory: {self.root}")

    def resolve(self, relative_path: str) -> Path:
        """Return the absolute path for `relative_path` under the root.

        Raises:
            PathEscapeError: absolute input, lexical traversal, or a symlink
                anywhere in the chain that lands outside the root.
        """
        if not relative_path or "\x00" in relative_path:
            raise PathEscapeError(f"invalid path: {relative_path!r}")
        if _is_absolute(relative_path):
            raise PathEscapeError(f"absolute paths are not allowed: {relative_path}")

        full_path = Path(os.path.normpath(os.path.join(self.root, relative_path)))
        if not is_within(full_path, self.root):
            raise PathEscapeError(f"path escapes working directory: {relative_path}")

        if os.path.lexists(full_path):
            try:
                real_path = full_path.resolve(strict=True)
            except (OSError, RuntimeError):
                # Dangling or looping symlink: judge by where the link chain starts
                real_path = Path(os.path.realpath(full_path))
            if not is_within(real_path, self.root):
                raise PathEscapeError(
                    f"path escapes working directory via symlink: {relative_path}"
                )
            return full_path

        ancestor = _nearest_existing_ancestor(full_path.parent)
        try:
            real_ancestor = ancestor.resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise PathEscapeError(f"failed to resolve path {relative_path}: {e}") from e
        if not is_within(real_ancestor, self.root):
            raise PathEscapeError(
                f"path escapes working directory via symlink: {relative_path}"
            )
        return full_path

    def relative(self, path: Path) -> str:
        """Render a sandboxed absolute path back to root-relative form."""
        return str(path.relative_to(self.root))


def resolve_within(root: Path | str, relative_path: str) -> Path:
    """Convenience wrapper around PathSandbox(root).resolve()."""
    return PathSandbox(root).resolve(relative_path)


def reject_symlink_leaf(path: Path, display: str | None = None) -> None:
    """Fail if the leaf itself is a symlink (checked without following it).

    Closes the disclosure vector where a link inside the sandbox points at a
    sensitive file outside it.
    """
    try:
        info = os.lstat(path)
    except FileNotFoundError as e:
        raise ToolExecutionError(f"file not found: {display or path}") from e
    except OSError as e:
        raise ToolExecutionError(f"cannot access {display or path}: {e.strerror or e}") from e
    if stat.S_ISLNK(info.st_mode):
        raise PathEscapeError(f"symlinks are not allowed: {display or path}")
