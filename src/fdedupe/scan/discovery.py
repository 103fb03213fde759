"""Directory enumeration subject to hidden, symlink and glob filters."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fdedupe.config.models import ScanSettings
from fdedupe.patterns import GlobSet

from .errors import PathError
from .models import DirectoryListing, FileEntry
from .paths import PathResolver, is_hidden

LOGGER = logging.getLogger(__name__)


class DirectoryEnumerator:
    """List the entries of one directory respecting configuration filters."""

    def __init__(
        self,
        *,
        include_hidden: bool,
        follow_symlinks: bool,
        include: GlobSet | None = None,
        exclude: GlobSet | None = None,
        resolver: PathResolver | None = None,
    ) -> None:
        self.include_hidden = include_hidden
        self.follow_symlinks = follow_symlinks
        self.include = include or GlobSet()
        self.exclude = exclude or GlobSet()
        self.resolver = resolver or PathResolver()

    @classmethod
    def from_settings(
        cls, settings: ScanSettings, resolver: PathResolver | None = None
    ) -> "DirectoryEnumerator":
        return cls(
            include_hidden=settings.include_hidden,
            follow_symlinks=settings.follow_symlinks,
            include=GlobSet(settings.include),
            exclude=GlobSet(settings.exclude),
            resolver=resolver,
        )

    def file_included(self, name: str) -> bool:
        """Apply include/exclude globs to a file name."""
        if self.include and not self.include.matches(name):
            return False
        return not self.exclude.matches(name)

    def enumerate(self, directory: Path) -> DirectoryListing:
        """Return the filtered listing of the canonical ``directory``.

        Hidden entries are dropped for files and directories alike; the
        include/exclude globs apply to files only. Symbolic links are ignored
        unless symlink following is enabled, and a symlinked file is never
        listed because its target is owned by the target's own directory.

        Raises:
            OSError: If the directory itself cannot be read.
        """
        return self._scan(directory, files=True)

    def subdirectories(self, directory: Path) -> DirectoryListing:
        """Return only the filtered, canonical subdirectories of ``directory``.

        Raises:
            OSError: If the directory itself cannot be read.
        """
        return self._scan(directory, files=False)

    def _scan(self, directory: Path, *, files: bool) -> DirectoryListing:
        listing = DirectoryListing()
        with os.scandir(directory) as entries:
            for entry in sorted(entries, key=lambda item: item.name):
                self._consider(directory, entry, listing, files=files)
        return listing

    def _consider(
        self, directory: Path, entry: os.DirEntry, listing: DirectoryListing, *, files: bool
    ) -> None:
        name = entry.name
        if not self.include_hidden and is_hidden(name):
            return
        try:
            name.encode("utf-8")
        except UnicodeEncodeError:
            # The catalog stores names as UTF-8 text.
            listing.errors.append(f"{entry.path!r}: name is not valid UTF-8; skipped")
            return
        try:
            is_link = entry.is_symlink()
            if is_link and not self.follow_symlinks:
                return
            if entry.is_dir(follow_symlinks=True):
                self._add_directory(directory, entry, is_link, listing)
                return
            if not files or not entry.is_file(follow_symlinks=True):
                return
        except OSError as exc:
            listing.errors.append(f"{entry.path}: {exc}")
            return

        if not self.file_included(name):
            return
        if is_link:
            LOGGER.debug("Skipping symlinked file %s; its target is cataloged in place.", entry.path)
            return

        listing.names.add(name)
        try:
            stat = entry.stat(follow_symlinks=False)
        except OSError as exc:
            listing.errors.append(f"{entry.path}: {exc}")
            return
        listing.files.append(
            FileEntry(
                name=name,
                path=directory / name,
                size=stat.st_size,
                modified_at=stat.st_mtime_ns,
            )
        )

    def _add_directory(
        self, directory: Path, entry: os.DirEntry, is_link: bool, listing: DirectoryListing
    ) -> None:
        if not is_link:
            listing.subdirectories.append(directory / entry.name)
            return
        try:
            listing.subdirectories.append(self.resolver.canonicalize(entry.path))
        except PathError as exc:
            listing.errors.append(f"{entry.path}: {exc}")


__all__ = ["DirectoryEnumerator"]
