"""Containment checks for root-relative paths."""

from __future__ import annotations

import os
from pathlib import Path

from .errors import PathTraversalError

RESERVED_NAMES = frozenset({".git"})
_ROOT_ALIASES = {"", ".", "/"}


def normalize_relative(relative_path: str | None) -> str:
    """
    Normalize a caller-supplied path to a root-relative posix string.

    Backslashes are treated as separators and leading separators are dropped,
    so "/notes.md" and "\\notes.md" both mean "notes.md". The root is "".
    """
    cleaned = (relative_path or "").replace("\\", "/").lstrip("/")
    if cleaned in _ROOT_ALIASES:
        return ""
    return cleaned


def resolve_within(root: Path, relative_path: str | None) -> Path:
    """
    Resolve ``relative_path`` under ``root``.

    Raises PathTraversalError if the resolved path is not the root or nested
    inside it. The check compares a computed relative path, never string
    prefixes, so a sibling such as ``/data-secret`` cannot pass for ``/data``.
    """
    if relative_path and "\x00" in relative_path:
        raise PathTraversalError("Path must not contain NUL bytes", detail={"path": relative_path})

    cleaned = normalize_relative(relative_path)
    if any(part in RESERVED_NAMES for part in cleaned.split("/")):
        raise PathTraversalError(
            f"Path refers to reserved storage metadata: {relative_path}",
            detail={"path": relative_path},
        )

    resolved = (root / cleaned).resolve() if cleaned else root
    relative = os.path.relpath(resolved, root)
    if relative == os.pardir or relative.startswith(os.pardir + os.sep) or os.path.isabs(relative):
        raise PathTraversalError(
            f"Path escapes storage root: {relative_path}",
            detail={"path": relative_path},
        )
    return resolved


class PathResolver:
    """Resolves paths against a fixed storage root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser().resolve()

    def resolve(self, relative_path: str | None) -> Path:
        return resolve_within(self.root, relative_path)

    def relative(self, absolute_path: Path) -> str:
        """Return the posix root-relative form of a resolved path ("" for the root)."""
        relative = absolute_path.relative_to(self.root).as_posix()
        return "" if relative == "." else relative

    def is_root(self, absolute_path: Path) -> bool:
        return absolute_path == self.root


__all__ = ["PathResolver", "resolve_within", "normalize_relative", "RESERVED_NAMES"]
