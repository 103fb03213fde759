"""Tests for rule scoring, the remove session and deletion execution."""

from pathlib import Path

import pytest

from fdedupe.catalog import Catalog, FileRecord, RuleRecord
from fdedupe.config import PatternError, ScanSettings
from fdedupe.resolution import (
    AddRule,
    Ambiguous,
    DeleteOne,
    DeletionExecutor,
    KeepOne,
    ResolutionSession,
    Resolved,
    Skip,
    decide,
    score,
)
from fdedupe.scan import Scanner


def _record(file_id: int, path: str) -> FileRecord:
    return FileRecord(
        id=file_id,
        directory_id=1,
        name=Path(path).name,
        canonical_path=path,
        size=10,
        modified_at=0,
        fast_hash="f",
        full_hash="h",
    )


def _rule(pattern: str, priority: int) -> RuleRecord:
    return RuleRecord(id=priority, pattern=pattern, priority=priority)


def test_score_takes_highest_matching_priority() -> None:
    rules = [_rule("**/alpha/**", 10), _rule("*.txt", 3), _rule("**/beta/**", 20)]

    assert score("/data/alpha/x.txt", rules) == 10
    assert score("/data/gamma/x.txt", rules) == 3
    assert score("/data/gamma/x.bin", rules) is None


def test_decide_keeps_single_top_scorer() -> None:
    files = [_record(1, "/data/alpha/x.txt"), _record(2, "/data/beta/x.txt")]

    decision = decide("h", files, [_rule("**/alpha/**", 10)])

    assert isinstance(decision, Resolved)
    assert decision.reason == "rule"
    assert [record.id for record in decision.keep] == [1]
    assert [record.id for record in decision.delete] == [2]


def test_decide_defers_ties_and_empty_rules() -> None:
    files = [_record(1, "/data/alpha/x.txt"), _record(2, "/data/alpha/y.txt")]

    tied = decide("h", files, [_rule("**/alpha/**", 10)])
    unruled = decide("h", files, [])

    assert isinstance(tied, Ambiguous)
    assert [item.score for item in tied.scored] == [10, 10]
    assert isinstance(unruled, Ambiguous)
    assert [item.score for item in unruled.scored] == [None, None]


def test_unmatched_files_rank_below_any_priority() -> None:
    files = [_record(1, "/data/low/x"), _record(2, "/data/other/x")]

    decision = decide("h", files, [_rule("**/low/**", -5)])

    assert isinstance(decision, Resolved)
    assert [record.id for record in decision.keep] == [1]


@pytest.fixture
def duplicates(catalog: Catalog, tree: Path, write) -> Path:
    write(tree / "alpha" / "x.txt", "same")
    write(tree / "beta" / "x.txt", "same")
    write(tree / "alpha" / "pic.jpg", "image")
    write(tree / "gamma" / "pic.jpg", "image")
    Scanner(catalog, ScanSettings(recursive=True)).run([tree])
    return tree


def test_session_auto_resolves_with_stored_rules(catalog: Catalog, duplicates: Path) -> None:
    catalog.insert_rule("**/alpha/**", 10)
    session = ResolutionSession(catalog)

    resolved = session.auto_resolve()

    assert len(resolved) == 2
    assert session.pending() == []
    for resolution in resolved:
        assert all("/alpha/" in record.canonical_path for record in resolution.keep)


def test_session_without_rules_defers_everything(catalog: Catalog, duplicates: Path) -> None:
    session = ResolutionSession(catalog)

    assert session.auto_resolve() == []
    assert len(session.pending()) == 2


def test_added_rule_rescores_remaining_groups(catalog: Catalog, duplicates: Path) -> None:
    session = ResolutionSession(catalog)
    first = session.pending()[0]

    resolved = session.submit(first.full_hash, AddRule(pattern="**/alpha/**", priority=5))

    assert len(resolved) == 2
    assert session.unresolved() == []
    assert [(rule.pattern, rule.priority) for rule in catalog.rules()] == [("**/alpha/**", 5)]


def test_added_rule_with_bad_pattern_raises(catalog: Catalog, duplicates: Path) -> None:
    session = ResolutionSession(catalog)
    group = session.pending()[0]

    with pytest.raises(PatternError):
        session.submit(group.full_hash, AddRule(pattern="{open", priority=1))
    assert group.full_hash in session.unresolved()


def test_keep_and_delete_one(catalog: Catalog, duplicates: Path) -> None:
    session = ResolutionSession(catalog)
    first, second = session.pending()
    keep_path = first.scored[1].file.canonical_path
    delete_path = second.scored[0].file.canonical_path

    [kept] = session.submit(first.full_hash, KeepOne(path=keep_path))
    [dropped] = session.submit(second.full_hash, DeleteOne(path=delete_path))

    assert kept.reason == "operator"
    assert [record.canonical_path for record in kept.keep] == [keep_path]
    assert [record.canonical_path for record in dropped.delete] == [delete_path]
    assert len(dropped.keep) == 1


def test_submit_rejects_foreign_path_and_settled_groups(
    catalog: Catalog, duplicates: Path
) -> None:
    session = ResolutionSession(catalog)
    group = session.pending()[0]

    with pytest.raises(ValueError):
        session.submit(group.full_hash, KeepOne(path="/not/a/member"))

    assert session.submit(group.full_hash, Skip()) == []
    assert group.full_hash in session.skipped
    with pytest.raises(ValueError):
        session.submit(group.full_hash, Skip())
    with pytest.raises(KeyError):
        session.submit("unknown", Skip())


def test_dry_run_changes_nothing(catalog: Catalog, duplicates: Path) -> None:
    before = catalog.files()
    session = ResolutionSession(catalog, persist_rules=False)
    executor = DeletionExecutor(catalog, dry_run=True)

    resolutions = session.submit(
        session.pending()[0].full_hash, AddRule(pattern="**/alpha/**", priority=1)
    )
    reports = [executor.execute(resolution) for resolution in resolutions]

    assert len(reports) == 2
    assert all(report.dry_run and report.planned and not report.deleted for report in reports)
    assert catalog.files() == before
    assert catalog.rules() == []
    assert (duplicates / "beta" / "x.txt").exists()
    assert (duplicates / "gamma" / "pic.jpg").exists()


def test_execute_deletes_files_and_rows(catalog: Catalog, duplicates: Path) -> None:
    catalog.insert_rule("**/alpha/**", 10)
    session = ResolutionSession(catalog)
    executor = DeletionExecutor(catalog)

    for resolution in session.auto_resolve():
        report = executor.execute(resolution)
        assert report.failed == []

    assert not (duplicates / "beta" / "x.txt").exists()
    assert not (duplicates / "gamma" / "pic.jpg").exists()
    assert (duplicates / "alpha" / "x.txt").exists()
    assert catalog.count_duplicate_groups() == 0
    assert catalog.get_file(duplicates / "beta" / "x.txt") is None


def test_execute_refuses_when_kept_copy_is_missing(catalog: Catalog, duplicates: Path) -> None:
    catalog.insert_rule("**/alpha/**", 10)
    (duplicates / "alpha" / "x.txt").unlink()
    session = ResolutionSession(catalog)
    executor = DeletionExecutor(catalog)

    reports = {
        resolution.keep[0].name: executor.execute(resolution)
        for resolution in session.auto_resolve()
    }

    assert reports["x.txt"].failed
    assert reports["x.txt"].deleted == []
    assert (duplicates / "beta" / "x.txt").exists()
    assert reports["pic.jpg"].deleted == [str(duplicates / "gamma" / "pic.jpg")]


def test_execute_continues_after_per_file_failure(
    catalog: Catalog, tree: Path, write, monkeypatch: pytest.MonkeyPatch
) -> None:
    write(tree / "keep" / "a.bin", "dup")
    write(tree / "b" / "a.bin", "dup")
    write(tree / "c" / "a.bin", "dup")
    Scanner(catalog, ScanSettings(recursive=True)).run([tree])
    catalog.insert_rule("**/keep/**", 1)
    [resolution] = ResolutionSession(catalog).auto_resolve()
    blocked = str(tree / "b" / "a.bin")

    original_unlink = Path.unlink

    def flaky_unlink(self: Path, *args, **kwargs) -> None:
        if str(self) == blocked:
            raise PermissionError("read-only")
        original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)
    report = DeletionExecutor(catalog).execute(resolution)

    assert len(report.failed) == 1
    assert report.deleted == [str(tree / "c" / "a.bin")]
    assert catalog.get_file(blocked) is not None
    assert catalog.get_file(tree / "c" / "a.bin") is None


def test_execute_drops_rows_for_already_missing_files(catalog: Catalog, duplicates: Path) -> None:
    catalog.insert_rule("**/alpha/**", 10)
    (duplicates / "beta" / "x.txt").unlink()
    session = ResolutionSession(catalog)
    executor = DeletionExecutor(catalog)

    for resolution in session.auto_resolve():
        report = executor.execute(resolution)
        assert report.failed == []

    assert catalog.get_file(duplicates / "beta" / "x.txt") is None
