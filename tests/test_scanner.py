"""Tests for the incremental scanner."""

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from fdedupe.catalog import Catalog, CatalogError
from fdedupe.config import ScanSettings
from fdedupe.duplicates import DuplicateIndex
from fdedupe.scan import (
    FAST_HASH_BYTES,
    DirectoryReport,
    DirectoryState,
    ProgressEvent,
    Scanner,
    ScanPass,
)


def _symlink(target: Path, link: Path) -> None:
    try:
        os.symlink(target, link, target_is_directory=target.is_dir())
    except (OSError, NotImplementedError):
        pytest.skip("symlinks unsupported")


def _scan(catalog: Catalog, *roots: Path, **settings: object):
    return Scanner(catalog, ScanSettings(**settings)).run(list(roots))


def test_recursive_scan_groups_identical_files(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "a" / "x.txt", "hello")
    write(tree / "b" / "y.txt", "hello")
    write(tree / "c" / "z.txt", "world")

    summary = _scan(catalog, tree, recursive=True)

    assert summary.directories_scanned == 4
    assert summary.files_processed == 3
    assert summary.files_hashed == 3
    assert summary.duplicate_groups == 1

    groups = DuplicateIndex(catalog).duplicate_groups()
    assert len(groups) == 1
    [members] = groups.values()
    assert sorted(record.canonical_path for record in members) == [
        str(tree / "a" / "x.txt"),
        str(tree / "b" / "y.txt"),
    ]
    lonely = catalog.get_file(tree / "c" / "z.txt")
    assert lonely is not None
    assert lonely.full_hash is None


def test_three_identical_files_form_one_group(catalog: Catalog, tree: Path, write) -> None:
    for name in ("A", "B", "C"):
        write(tree / name, "hello world\n")
    write(tree / "D", "goodbye all\n")

    summary = _scan(catalog, tree)

    groups = DuplicateIndex(catalog).duplicate_groups()
    assert summary.duplicate_groups == 1
    assert [sorted(record.name for record in files) for files in groups.values()] == [
        ["A", "B", "C"]
    ]
    d_row = catalog.get_file(tree / "D")
    assert d_row is not None
    assert d_row.size == 12
    assert d_row.full_hash is None


def test_second_scan_skips_scanned_directories(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "a" / "x.txt", "hello")
    write(tree / "b" / "y.txt", "hello")
    _scan(catalog, tree, recursive=True)
    before = catalog.files()

    summary = _scan(catalog, tree, recursive=True)

    assert summary.directories_scanned == 0
    assert summary.directories_skipped == 3
    assert summary.files_hashed == 0
    assert catalog.files() == before


def test_forced_rescan_uses_size_and_mtime_heuristic(catalog: Catalog, tree: Path, write) -> None:
    path = write(tree / "stable.txt", "aaaa")
    stat = path.stat()
    _scan(catalog, tree)
    original = catalog.get_file(path)
    assert original is not None

    # Same size and modification time: content is assumed unchanged.
    path.write_bytes(b"bbbb")
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))
    summary = _scan(catalog, tree, force_rescan=True)

    assert summary.files_unchanged == 1
    assert summary.files_hashed == 0
    assert catalog.get_file(path) == original

    path.write_bytes(b"changed content")
    summary = _scan(catalog, tree, force_rescan=True)

    refreshed = catalog.get_file(path)
    assert summary.files_hashed == 1
    assert refreshed is not None
    assert refreshed.id == original.id
    assert refreshed.size == len(b"changed content")
    assert refreshed.fast_hash != original.fast_hash


def test_modified_file_leaves_its_group(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "one.txt", "same")
    second = write(tree / "two.txt", "same")
    _scan(catalog, tree)
    assert catalog.count_duplicate_groups() == 1

    second.write_bytes(b"different now")
    summary = _scan(catalog, tree, force_rescan=True)

    assert summary.duplicate_groups == 0
    assert catalog.count_duplicate_groups() == 0


def test_vanished_file_is_removed(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "keep.txt", "same")
    doomed = write(tree / "gone.txt", "same")
    _scan(catalog, tree)

    doomed.unlink()
    summary = _scan(catalog, tree, force_rescan=True)

    assert summary.files_deleted == 1
    assert catalog.get_file(doomed) is None
    assert catalog.count_duplicate_groups() == 0


def test_hidden_rows_survive_scans_that_ignore_hidden_files(
    catalog: Catalog, tree: Path, write
) -> None:
    hidden = write(tree / ".secret", "data")
    write(tree / "visible.txt", "data")
    _scan(catalog, tree, include_hidden=True)
    assert catalog.get_file(hidden) is not None

    hidden.unlink()
    summary = _scan(catalog, tree, force_rescan=True)

    assert summary.files_deleted == 0
    assert catalog.get_file(hidden) is not None
    assert summary.files_processed == 1

    summary = _scan(catalog, tree, include_hidden=True, force_rescan=True)

    assert summary.files_deleted == 1
    assert catalog.get_file(hidden) is None


def test_skipped_directory_does_not_descend_into_hidden_children(
    catalog: Catalog, tree: Path, write
) -> None:
    write(tree / ".cache" / "blob.bin", "data")
    write(tree / "blob.bin", "data")
    _scan(catalog, tree, include_hidden=True)
    assert catalog.get_directory(tree / ".cache") is not None

    summary = _scan(catalog, tree, recursive=True)

    assert summary.states[str(tree)] is DirectoryState.SKIPPED
    assert str(tree / ".cache") not in summary.states
    assert catalog.get_file(tree / ".cache" / "blob.bin") is None
    assert summary.duplicate_groups == 0


def test_skipped_directory_follows_links_outside_its_prefix(
    catalog: Catalog, tree: Path, tmp_path: Path, write
) -> None:
    outside = (tmp_path / "outside").resolve()
    write(outside / "file.txt", "content")
    write(tree / "copy.txt", "content")
    _symlink(outside, tree / "alias")
    _scan(catalog, tree, follow_symlinks=True)

    summary = _scan(catalog, tree, recursive=True, follow_symlinks=True)

    assert summary.states[str(tree)] is DirectoryState.SKIPPED
    assert summary.states[str(outside)] is DirectoryState.COMPLETED
    assert catalog.get_file(outside / "file.txt") is not None
    assert summary.duplicate_groups == 1


def test_hidden_directories_are_skipped_by_default(catalog: Catalog, tree: Path, write) -> None:
    write(tree / ".cache" / "blob.bin", "data")
    write(tree / "blob.bin", "data")

    _scan(catalog, tree, recursive=True)

    assert catalog.get_directory(tree / ".cache") is None
    assert catalog.count_files() == 1


def test_full_hash_only_for_fast_hash_collisions(catalog: Catalog, tree: Path, write) -> None:
    prefix = b"p" * FAST_HASH_BYTES
    write(tree / "tail1.bin", prefix + b"1")
    write(tree / "tail2.bin", prefix + b"2")
    write(tree / "short.bin", prefix)
    write(tree / "unique.txt", "unrelated")

    summary = _scan(catalog, tree)

    by_name = {record.name: record for record in catalog.files()}
    assert by_name["tail1.bin"].fast_hash == by_name["tail2.bin"].fast_hash
    assert by_name["tail1.bin"].full_hash is not None
    assert by_name["tail1.bin"].full_hash != by_name["tail2.bin"].full_hash
    assert by_name["short.bin"].full_hash is None
    assert by_name["unique.txt"].full_hash is None
    assert summary.full_hashes == 2
    assert summary.duplicate_groups == 0


def test_empty_files_are_never_grouped(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "empty1", b"")
    write(tree / "empty2", b"")

    summary = _scan(catalog, tree)

    assert summary.full_hashes == 0
    assert summary.duplicate_groups == 0


def test_include_and_exclude_globs_filter_files(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "photo.jpg", "img")
    write(tree / "photo.tmp.jpg", "img")
    write(tree / "notes.txt", "text")

    _scan(catalog, tree, include=["*.jpg"], exclude=["*.tmp.*"])

    assert [record.name for record in catalog.files()] == ["photo.jpg"]


def test_non_recursive_scan_records_children_for_later(
    catalog: Catalog, tree: Path, write
) -> None:
    write(tree / "top.txt", "same")
    write(tree / "sub" / "nested.txt", "same")

    _scan(catalog, tree)
    assert catalog.get_directory(tree / "sub") is not None
    assert catalog.count_files() == 1

    summary = _scan(catalog, tree, recursive=True)

    assert summary.states[str(tree)] is DirectoryState.SKIPPED
    assert summary.states[str(tree / "sub")] is DirectoryState.COMPLETED
    assert catalog.count_files() == 2
    assert summary.duplicate_groups == 1


def test_symlinked_directory_is_scanned_once(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "real" / "file.txt", "content")
    write(tree / "copy.txt", "content")
    _symlink(tree / "real", tree / "alias")

    summary = _scan(catalog, tree, recursive=True, follow_symlinks=True)

    assert summary.directories_scanned == 2
    assert catalog.get_directory(tree / "alias") is None
    assert catalog.count_files() == 2
    assert summary.duplicate_groups == 1


def test_symlinks_are_ignored_without_following(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "real" / "file.txt", "content")
    _symlink(tree / "real" / "file.txt", tree / "link.txt")
    _symlink(tree / "real", tree / "alias")

    summary = _scan(catalog, tree, recursive=True)

    assert summary.directories_scanned == 2
    assert [record.name for record in catalog.files()] == ["file.txt"]


def test_symlink_cycle_terminates(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "inner" / "file.txt", "content")
    _symlink(tree, tree / "inner" / "back")

    summary = _scan(catalog, tree, recursive=True, follow_symlinks=True)

    assert summary.directories_scanned == 2
    assert catalog.count_files() == 1


def test_same_directory_through_two_roots_is_counted_once(
    catalog: Catalog, tree: Path, write
) -> None:
    write(tree / "real" / "file.txt", "content")
    _symlink(tree / "real", tree / "alias")

    summary = _scan(catalog, tree / "real", tree / "alias")

    assert summary.directories_scanned == 1
    assert summary.files_processed == 1


def test_missing_root_is_reported_and_others_continue(
    catalog: Catalog, tree: Path, tmp_path: Path, write
) -> None:
    write(tree / "file.txt", "content")

    summary = _scan(catalog, tmp_path / "missing", tree)

    assert len(summary.failed_roots) == 1
    assert "missing" in summary.failed_roots[0]
    assert summary.directories_scanned == 1
    assert catalog.count_files() == 1


def test_process_directory_walks_the_state_machine(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "file.txt", "content")
    scanner = Scanner(catalog)

    report = scanner.process_directory(tree, ScanPass())

    assert report.history == [
        DirectoryState.PENDING,
        DirectoryState.ENUMERATED,
        DirectoryState.CHANGE_DETECTED,
        DirectoryState.COLLISION_RESOLVED,
        DirectoryState.COMPLETED,
    ]
    again = scanner.process_directory(tree, ScanPass())
    assert again.history == [DirectoryState.PENDING, DirectoryState.SKIPPED]


def test_illegal_state_transition_is_rejected() -> None:
    report = DirectoryReport(path=Path("/data"))

    with pytest.raises(ValueError):
        report.advance(DirectoryState.COMPLETED)


def test_vanished_directory_fails_without_aborting(catalog: Catalog, tree: Path, write) -> None:
    sub = tree / "sub"
    write(sub / "file.txt", "content")
    scanner = Scanner(catalog)
    canonical = sub.resolve()
    for child in sub.iterdir():
        child.unlink()
    sub.rmdir()

    report = scanner.process_directory(canonical, ScanPass())

    assert report.state is DirectoryState.FAILED
    assert report.errors


def test_progress_sink_receives_events(catalog: Catalog, tree: Path, write) -> None:
    write(tree / "a.txt", "same")
    write(tree / "b.txt", "same")
    events: list[ProgressEvent] = []

    Scanner(catalog, progress=events.append).run([tree])

    kinds = [event.kind for event in events]
    assert kinds[0] == "directory"
    assert "files" in kinds
    assert kinds[-1] == "duplicates"
    assert events[-1].count == 1
    files_event = next(event for event in events if event.kind == "files")
    assert files_event.count == 2


def test_scan_timestamp_comes_from_clock(catalog: Catalog, tree: Path) -> None:
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    Scanner(catalog, clock=lambda: moment).run([tree])

    record = catalog.get_directory(tree)
    assert record is not None
    assert record.last_scanned == moment


def test_unreadable_file_is_reported_and_scan_continues(
    catalog: Catalog, tree: Path, write
) -> None:
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        pytest.skip("permission checks are bypassed for root")
    locked = write(tree / "locked.txt", "secret")
    write(tree / "open.txt", "public")
    locked.chmod(0)
    try:
        summary = _scan(catalog, tree)
    finally:
        locked.chmod(0o644)

    assert summary.files_errored == 1
    assert [record.name for record in catalog.files()] == ["open.txt"]


def test_name_that_is_not_utf8_is_reported_and_skipped(
    catalog: Catalog, tree: Path, write
) -> None:
    write(tree / "ok.txt", "content")
    try:
        with open(os.path.join(os.fsencode(tree), b"bad\xff.txt"), "wb") as handle:
            handle.write(b"content")
    except (OSError, TypeError, ValueError):
        pytest.skip("filesystem rejects names that are not UTF-8")

    summary = _scan(catalog, tree)

    assert summary.files_errored == 1
    assert "not valid UTF-8" in summary.errors[0]
    assert [record.name for record in catalog.files()] == ["ok.txt"]


class _FailingCatalog(Catalog):
    """Catalog whose second ``mark_scanned`` call fails."""

    def __init__(self) -> None:
        super().__init__(":memory:")
        self.calls = 0

    def mark_scanned(self, directory_id: int, when: datetime | None = None) -> None:
        self.calls += 1
        if self.calls == 2:
            raise CatalogError("disk full")
        super().mark_scanned(directory_id, when)


def test_catalog_error_rolls_back_only_the_failing_directory(tree: Path, write) -> None:
    write(tree / "top.txt", "top")
    write(tree / "sub" / "nested.txt", "nested")
    catalog = _FailingCatalog()
    try:
        with pytest.raises(CatalogError):
            _scan(catalog, tree, recursive=True)

        top = catalog.get_directory(tree)
        sub = catalog.get_directory(tree / "sub")
        assert top is not None and top.scanned
        assert catalog.get_file(tree / "top.txt") is not None
        assert sub is not None
        assert sub.last_scanned is None
        assert catalog.files_in_directory(sub.id) == []
    finally:
        catalog.close()
