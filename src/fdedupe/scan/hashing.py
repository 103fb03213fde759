"""Bounded-prefix and whole-file content hashing."""

from __future__ import annotations

from pathlib import Path

from blake3 import blake3

FAST_HASH_BYTES = 64 * 1024
CHUNK_SIZE = 64 * 1024


class Hasher:
    """Compute BLAKE3 digests used for duplicate detection."""

    def __init__(self, prefix_bytes: int = FAST_HASH_BYTES, chunk_size: int = CHUNK_SIZE) -> None:
        self.prefix_bytes = prefix_bytes
        self.chunk_size = chunk_size

    def fast_hash(self, path: Path) -> str:
        """Return the hex digest of at most the first ``prefix_bytes`` bytes.

        Raises:
            OSError: If the file cannot be read.
        """
        hasher = blake3()
        remaining = self.prefix_bytes
        with path.open("rb") as fh:
            while remaining > 0:
                chunk = fh.read(min(self.chunk_size, remaining))
                if not chunk:
                    break
                hasher.update(chunk)
                remaining -= len(chunk)
        return hasher.hexdigest()

    def full_hash(self, path: Path) -> str:
        """Return the hex digest of the whole file, streamed in chunks.

        Raises:
            OSError: If the file cannot be read.
        """
        hasher = blake3()
        with path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(self.chunk_size), b""):
                hasher.update(chunk)
        return hasher.hexdigest()


__all__ = ["Hasher", "FAST_HASH_BYTES"]
