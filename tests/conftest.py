"""Shared fixtures for fdedupe tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import pytest

from fdedupe.catalog import Catalog

WriteFile = Callable[..., Path]


@pytest.fixture
def catalog() -> Iterator[Catalog]:
    store = Catalog(":memory:")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """Return a canonical scan root inside the temporary directory."""
    root = tmp_path / "tree"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def write() -> WriteFile:
    """Return a helper that writes bytes or text, creating parent directories."""

    def _write(path: Path, data: bytes | str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            data = data.encode("utf-8")
        path.write_bytes(data)
        return path

    return _write
