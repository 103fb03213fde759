"""Row models for the persistent catalog."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict


class CatalogRecord(BaseModel):
    """Shared configuration for catalog rows."""

    model_config = ConfigDict(frozen=True)


class DirectoryRecord(CatalogRecord):
    """A directory known to the catalog.

    Attributes:
        id: Row identity.
        canonical_path: Fully resolved physical path.
        last_scanned: Completion time of the last successful scan, if any.
    """

    id: int
    canonical_path: str
    last_scanned: Optional[datetime] = None

    @property
    def path(self) -> Path:
        return Path(self.canonical_path)

    @property
    def scanned(self) -> bool:
        return self.last_scanned is not None


class FileRecord(CatalogRecord):
    """A cataloged file owned by exactly one directory.

    Attributes:
        id: Row identity.
        directory_id: Owning directory row.
        name: Entry name inside the owning directory.
        canonical_path: Fully resolved physical path.
        size: Size in bytes.
        modified_at: Modification time in nanoseconds since the epoch.
        fast_hash: Digest of the bounded prefix, if computed.
        full_hash: Digest of the whole content, if computed.
    """

    id: int
    directory_id: int
    name: str
    canonical_path: str
    size: int
    modified_at: int
    fast_hash: Optional[str] = None
    full_hash: Optional[str] = None

    @property
    def path(self) -> Path:
        return Path(self.canonical_path)


class RuleRecord(CatalogRecord):
    """A priority rule used to choose the kept file of a duplicate group."""

    id: int
    pattern: str
    priority: int


__all__ = ["CatalogRecord", "DirectoryRecord", "FileRecord", "RuleRecord"]
