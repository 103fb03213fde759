"""Persistent SQLite catalog of directories, files and priority rules."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from fdedupe.patterns import validate_pattern

from .errors import CatalogError, UniquenessError
from .models import DirectoryRecord, FileRecord, RuleRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_CATALOG_NAME = "fdedupe.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS directories (
    id             INTEGER PRIMARY KEY,
    canonical_path TEXT NOT NULL UNIQUE,
    last_scanned   INTEGER
);

CREATE TABLE IF NOT EXISTS files (
    id             INTEGER PRIMARY KEY,
    directory_id   INTEGER NOT NULL REFERENCES directories(id) ON DELETE CASCADE,
    name           TEXT NOT NULL,
    canonical_path TEXT NOT NULL UNIQUE,
    size           INTEGER NOT NULL,
    modified_at    INTEGER NOT NULL,
    fast_hash      TEXT,
    full_hash      TEXT,
    UNIQUE(directory_id, name)
);

CREATE INDEX IF NOT EXISTS idx_files_size_fast ON files(size, fast_hash);
CREATE INDEX IF NOT EXISTS idx_files_full_hash ON files(full_hash);
CREATE INDEX IF NOT EXISTS idx_files_directory ON files(directory_id);

CREATE TABLE IF NOT EXISTS rules (
    id       INTEGER PRIMARY KEY,
    pattern  TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0
);
"""

_FILE_COLUMNS = (
    "id, directory_id, name, canonical_path, size, modified_at, fast_hash, full_hash"
)
_DUPLICATE_HASHES = (
    "SELECT full_hash FROM files WHERE full_hash IS NOT NULL "
    "GROUP BY full_hash HAVING COUNT(*) > 1"
)


def path_prefix(path: str | Path) -> str:
    """Return ``path`` as a string ending in exactly one separator."""
    text = str(path)
    return text if text.endswith(os.sep) else text + os.sep


class Catalog:
    """Own the catalog connection and every query against scan and duplicate state.

    All reads and writes go through one connection. Writes issued inside
    :meth:`transaction` commit or roll back together; writes issued outside
    one commit immediately.
    """

    def __init__(self, path: str | Path = DEFAULT_CATALOG_NAME) -> None:
        """Open (and create if needed) the catalog at ``path``.

        Args:
            path: Database file path, or ``":memory:"``.

        Raises:
            CatalogError: If the database cannot be opened or initialized.
        """
        self._path = str(path)
        self._depth = 0
        with self._guard("open catalog"):
            if self._path != ":memory:":
                Path(self._path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                os.path.expanduser(self._path), isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys=ON")
            if self._path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA)
        LOGGER.debug("Opened catalog at %s", self._path)

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["Catalog"]:
        """Group writes into one commit; nested calls join the outer transaction."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        with self._guard("begin transaction"):
            self._conn.execute("BEGIN")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._depth = 0
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise
        self._depth = 0
        try:
            with self._guard("commit transaction"):
                self._conn.execute("COMMIT")
        except CatalogError:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise

    # ------------------------------------------------------------------ #
    # Directories                                                        #
    # ------------------------------------------------------------------ #

    def get_directory(self, canonical_path: str | Path) -> Optional[DirectoryRecord]:
        row = self._fetchone(
            "SELECT id, canonical_path, last_scanned FROM directories WHERE canonical_path = ?",
            (str(canonical_path),),
        )
        return _directory(row) if row else None

    def upsert_directory(self, canonical_path: str | Path) -> DirectoryRecord:
        """Return the directory row for ``canonical_path``, inserting it when missing."""
        self._execute(
            "INSERT OR IGNORE INTO directories(canonical_path) VALUES(?)",
            (str(canonical_path),),
        )
        record = self.get_directory(canonical_path)
        if record is None:  # pragma: no cover - insert just succeeded
            raise CatalogError(f"Directory row vanished after insert: {canonical_path}")
        return record

    def mark_scanned(self, directory_id: int, when: datetime | None = None) -> None:
        moment = when or datetime.now(timezone.utc)
        self._execute(
            "UPDATE directories SET last_scanned = ? WHERE id = ?",
            (int(moment.timestamp()), directory_id),
        )

    def child_directories(self, parent: str | Path) -> list[DirectoryRecord]:
        """Return known directories exactly one path segment below ``parent``."""
        prefix = path_prefix(parent)
        rows = self._fetchall(
            "SELECT id, canonical_path, last_scanned FROM directories "
            "WHERE substr(canonical_path, 1, ?) = ? "
            "AND length(canonical_path) > ? "
            "AND instr(substr(canonical_path, ?), ?) = 0 "
            "ORDER BY canonical_path",
            (len(prefix), prefix, len(prefix), len(prefix) + 1, os.sep),
        )
        return [_directory(row) for row in rows]

    # ------------------------------------------------------------------ #
    # Files                                                              #
    # ------------------------------------------------------------------ #

    def files_in_directory(self, directory_id: int) -> list[FileRecord]:
        rows = self._fetchall(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE directory_id = ? ORDER BY name",
            (directory_id,),
        )
        return [_file(row) for row in rows]

    def get_file(self, canonical_path: str | Path) -> Optional[FileRecord]:
        row = self._fetchone(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE canonical_path = ?",
            (str(canonical_path),),
        )
        return _file(row) if row else None

    def files(self) -> list[FileRecord]:
        rows = self._fetchall(f"SELECT {_FILE_COLUMNS} FROM files ORDER BY canonical_path")
        return [_file(row) for row in rows]

    def count_files(self) -> int:
        row = self._fetchone("SELECT COUNT(*) FROM files")
        return int(row[0]) if row else 0

    def upsert_file(
        self,
        directory_id: int,
        name: str,
        canonical_path: str | Path,
        size: int,
        modified_at: int,
        fast_hash: Optional[str],
    ) -> None:
        """Insert or refresh a file row; the stored full hash is always cleared."""
        self._execute(
            "INSERT INTO files(directory_id, name, canonical_path, size, modified_at, "
            "fast_hash, full_hash) VALUES(?, ?, ?, ?, ?, ?, NULL) "
            "ON CONFLICT(canonical_path) DO UPDATE SET "
            "directory_id = excluded.directory_id, name = excluded.name, "
            "size = excluded.size, modified_at = excluded.modified_at, "
            "fast_hash = excluded.fast_hash, full_hash = NULL",
            (directory_id, name, str(canonical_path), size, modified_at, fast_hash),
        )

    def clear_hashes(self, file_id: int) -> None:
        self._execute(
            "UPDATE files SET fast_hash = NULL, full_hash = NULL WHERE id = ?", (file_id,)
        )

    def set_full_hash(self, file_id: int, full_hash: str) -> None:
        self._execute("UPDATE files SET full_hash = ? WHERE id = ?", (full_hash, file_id))

    def delete_file(self, file_id: int) -> None:
        self._execute("DELETE FROM files WHERE id = ?", (file_id,))

    def collision_candidates(self) -> list[FileRecord]:
        """Return non-empty files missing a full hash whose (size, fast hash) is shared."""
        rows = self._fetchall(
            f"SELECT {_FILE_COLUMNS} FROM files "
            "WHERE full_hash IS NULL AND fast_hash IS NOT NULL AND size > 0 "
            "AND (size, fast_hash) IN ("
            "  SELECT size, fast_hash FROM files WHERE fast_hash IS NOT NULL "
            "  GROUP BY size, fast_hash HAVING COUNT(*) > 1"
            ") ORDER BY canonical_path"
        )
        return [_file(row) for row in rows]

    # ------------------------------------------------------------------ #
    # Duplicate queries                                                  #
    # ------------------------------------------------------------------ #

    def duplicate_files(self) -> list[FileRecord]:
        """Return every file whose full hash is shared by at least one other file."""
        rows = self._fetchall(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE full_hash IN ({_DUPLICATE_HASHES}) "
            "ORDER BY full_hash, canonical_path"
        )
        return [_file(row) for row in rows]

    def count_duplicate_groups(self) -> int:
        row = self._fetchone(f"SELECT COUNT(*) FROM ({_DUPLICATE_HASHES})")
        return int(row[0]) if row else 0

    def duplicate_files_under(self, directory: str | Path) -> list[FileRecord]:
        """Return duplicate-group members anywhere below ``directory``."""
        prefix = path_prefix(directory)
        rows = self._fetchall(
            f"SELECT {_FILE_COLUMNS} FROM files "
            "WHERE substr(canonical_path, 1, ?) = ? "
            f"AND full_hash IN ({_DUPLICATE_HASHES}) ORDER BY canonical_path",
            (len(prefix), prefix),
        )
        return [_file(row) for row in rows]

    def duplicate_files_in_directory(self, directory_id: int) -> list[FileRecord]:
        rows = self._fetchall(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE directory_id = ? "
            f"AND full_hash IN ({_DUPLICATE_HASHES}) ORDER BY name",
            (directory_id,),
        )
        return [_file(row) for row in rows]

    # ------------------------------------------------------------------ #
    # Rules                                                              #
    # ------------------------------------------------------------------ #

    def rules(self) -> list[RuleRecord]:
        rows = self._fetchall("SELECT id, pattern, priority FROM rules ORDER BY priority DESC, id")
        return [
            RuleRecord(id=row["id"], pattern=row["pattern"], priority=row["priority"])
            for row in rows
        ]

    def insert_rule(self, pattern: str, priority: int) -> RuleRecord:
        """Persist a rule and return it.

        Raises:
            PatternError: If ``pattern`` is not a valid glob.
            CatalogError: If the row cannot be written.
        """
        validate_pattern(pattern)
        cursor = self._execute(
            "INSERT INTO rules(pattern, priority) VALUES(?, ?)", (pattern, int(priority))
        )
        return RuleRecord(id=int(cursor.lastrowid), pattern=pattern, priority=int(priority))

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as exc:
            raise UniquenessError(f"Catalog constraint violated during {action}: {exc}") from exc
        except sqlite3.Error as exc:
            raise CatalogError(f"Catalog failure during {action}: {exc}") from exc
        except UnicodeError as exc:
            raise CatalogError(f"Catalog cannot store non UTF-8 text during {action}: {exc}") from exc

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._guard("write"):
            return self._conn.execute(sql, params)

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._guard("read"):
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._guard("read"):
            return self._conn.execute(sql, params).fetchall()


def _directory(row: sqlite3.Row) -> DirectoryRecord:
    scanned = row["last_scanned"]
    return DirectoryRecord(
        id=row["id"],
        canonical_path=row["canonical_path"],
        last_scanned=datetime.fromtimestamp(scanned, tz=timezone.utc) if scanned is not None else None,
    )


def _file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(**{key: row[key] for key in row.keys()})


__all__ = [
    "Catalog",
    "CatalogError",
    "UniquenessError",
    "DEFAULT_CATALOG_NAME",
    "DirectoryRecord",
    "FileRecord",
    "RuleRecord",
    "path_prefix",
]
