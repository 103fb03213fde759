"""Canonical path resolution and the per-pass revisit guard."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Iterator

from .errors import PermissionDeniedError, UnresolvablePathError


def is_hidden(name: str) -> bool:
    """Return True for entry names that start with a dot."""
    return name.startswith(".")


class PathResolver:
    """Map surface paths onto fully resolved physical paths."""

    def canonicalize(self, path: str | Path) -> Path:
        """Resolve symlinks and relative segments of ``path``.

        Args:
            path: Path as supplied by the caller.

        Returns:
            Path: Absolute physical path.

        Raises:
            UnresolvablePathError: If the path is missing or a symlink loop.
            PermissionDeniedError: If a component cannot be traversed.
        """
        candidate = Path(path).expanduser()
        try:
            return candidate.resolve(strict=True)
        except PermissionError as exc:
            raise PermissionDeniedError(f"Permission denied: {candidate}") from exc
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise UnresolvablePathError(f"Path does not exist: {candidate}") from exc
        except (OSError, RuntimeError) as exc:
            raise UnresolvablePathError(f"Cannot resolve {candidate}: {exc}") from exc

    def canonicalize_directory(self, path: str | Path) -> Path:
        """Canonicalize ``path`` and require a readable directory."""
        resolved = self.canonicalize(path)
        if not resolved.is_dir():
            raise UnresolvablePathError(f"Not a directory: {resolved}")
        if not os.access(resolved, os.R_OK | os.X_OK):
            raise PermissionDeniedError(f"Permission denied: {resolved}")
        return resolved


class VisitedSet:
    """Canonical directories already processed or enqueued during one traversal.

    A hit means the directory was reached through another surface path, which
    is both the symlink-cycle guard and the double-count guard.
    """

    def __init__(self, paths: Iterable[Path] = ()) -> None:
        self._seen: set[str] = {str(path) for path in paths}

    def claim(self, path: Path) -> bool:
        """Record ``path`` and return True when it had not been seen before."""
        key = str(path)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, path: object) -> bool:
        return str(path) in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._seen))


__all__ = ["PathResolver", "VisitedSet", "is_hidden"]
