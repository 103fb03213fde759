"""Priority-rule scoring and the remove-session state machine."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Sequence

from fdedupe.catalog import Catalog, FileRecord, RuleRecord
from fdedupe.duplicates import DuplicateIndex
from fdedupe.patterns import GlobPattern, validate_pattern

from .models import (
    AddRule,
    Ambiguous,
    Decision,
    DeleteOne,
    KeepOne,
    OperatorDecision,
    Resolved,
    ScoredFile,
    Skip,
)

LOGGER = logging.getLogger(__name__)


def score(path: str, rules: Iterable[RuleRecord]) -> Optional[int]:
    """Return the highest priority among rules matching ``path``.

    ``None`` stands for "no rule matched" and ranks below every priority.
    """
    best: Optional[int] = None
    for rule in rules:
        if GlobPattern(rule.pattern).matches(path) and (best is None or rule.priority > best):
            best = rule.priority
    return best


def decide(full_hash: str, files: Sequence[FileRecord], rules: Sequence[RuleRecord]) -> Decision:
    """Score a duplicate group and keep its single top-scoring file if there is one.

    Args:
        full_hash: Content hash shared by ``files``.
        files: Members of the group.
        rules: Priority rules to apply.

    Returns:
        Decision: ``Resolved`` when exactly one file holds the strict maximum
        score, otherwise ``Ambiguous`` with every member's score.
    """
    scored = [
        ScoredFile(file=record, score=score(record.canonical_path, rules)) for record in files
    ]
    matched = [item.score for item in scored if item.score is not None]
    if matched:
        top = max(matched)
        winners = [item for item in scored if item.score == top]
        if len(winners) == 1:
            kept = winners[0].file
            return Resolved(
                full_hash=full_hash,
                keep=[kept],
                delete=[item.file for item in scored if item.file.id != kept.id],
                reason="rule",
            )
    return Ambiguous(full_hash=full_hash, scored=scored)


class ResolutionSession:
    """Track duplicate groups through one remove session.

    Groups move from unresolved to either resolved (by rule or operator) or
    skipped. Rules added during the session are persisted immediately (kept
    in memory only when ``persist_rules`` is off, as in dry runs) and are
    re-applied to every group that is still unresolved.
    """

    def __init__(
        self,
        catalog: Catalog,
        groups: Mapping[str, Sequence[FileRecord]] | None = None,
        *,
        persist_rules: bool = True,
    ) -> None:
        self.catalog = catalog
        self.persist_rules = persist_rules
        source = groups if groups is not None else DuplicateIndex(catalog).duplicate_groups()
        self._groups: dict[str, list[FileRecord]] = {
            digest: list(files) for digest, files in source.items() if len(files) > 1
        }
        self._rules: list[RuleRecord] = catalog.rules()
        self._resolved: dict[str, Resolved] = {}
        self._skipped: set[str] = set()

    @property
    def skipped(self) -> set[str]:
        return set(self._skipped)

    def group(self, full_hash: str) -> list[FileRecord]:
        try:
            return list(self._groups[full_hash])
        except KeyError as exc:
            raise KeyError(f"Unknown duplicate group {full_hash}") from exc

    def unresolved(self) -> list[str]:
        return [
            digest
            for digest in self._groups
            if digest not in self._resolved and digest not in self._skipped
        ]

    def auto_resolve(self) -> list[Resolved]:
        """Resolve every unresolved group that the current rules decide."""
        newly: list[Resolved] = []
        for digest in self.unresolved():
            decision = decide(digest, self._groups[digest], self._rules)
            if isinstance(decision, Resolved):
                self._resolved[digest] = decision
                newly.append(decision)
        if newly:
            LOGGER.info("Auto-resolved %d duplicate group(s) by priority rule.", len(newly))
        return newly

    def pending(self) -> list[Ambiguous]:
        """Return the still-unresolved groups with their current scores."""
        pending = []
        for digest in self.unresolved():
            decision = decide(digest, self._groups[digest], self._rules)
            if isinstance(decision, Ambiguous):
                pending.append(decision)
        return pending

    def submit(self, full_hash: str, decision: OperatorDecision) -> list[Resolved]:
        """Apply an operator decision to the group ``full_hash``.

        Returns:
            list[Resolved]: Groups resolved as a consequence, which for an
            added rule may include groups other than ``full_hash``.

        Raises:
            KeyError: If the group is unknown.
            ValueError: If the group is already settled or the path is not a member.
            ConfigError: If an added rule's pattern is malformed.
        """
        files = self.group(full_hash)
        if full_hash in self._resolved or full_hash in self._skipped:
            raise ValueError(f"Duplicate group {full_hash} is already settled.")

        if isinstance(decision, Skip):
            self._skipped.add(full_hash)
            return []
        if isinstance(decision, AddRule):
            return self.add_rule(decision.pattern, decision.priority)
        if isinstance(decision, KeepOne):
            target = self._member(files, decision.path)
            keep = [target]
            delete = [record for record in files if record.id != target.id]
        elif isinstance(decision, DeleteOne):
            target = self._member(files, decision.path)
            keep = [record for record in files if record.id != target.id]
            delete = [target]
        else:
            raise TypeError(f"Unsupported decision: {decision!r}")

        resolved = Resolved(full_hash=full_hash, keep=keep, delete=delete, reason="operator")
        self._resolved[full_hash] = resolved
        return [resolved]

    def add_rule(self, pattern: str, priority: int) -> list[Resolved]:
        """Persist a rule, then auto-resolve whatever it makes unambiguous."""
        if self.persist_rules:
            rule = self.catalog.insert_rule(pattern, priority)
        else:
            validate_pattern(pattern)
            rule = RuleRecord(id=0, pattern=pattern, priority=int(priority))
        self._rules.append(rule)
        LOGGER.info("Added rule %s (priority %d)", rule.pattern, rule.priority)
        return self.auto_resolve()

    def _member(self, files: Sequence[FileRecord], path: str) -> FileRecord:
        for record in files:
            if record.canonical_path == str(path):
                return record
        raise ValueError(f"{path} is not a member of this duplicate group.")


__all__ = ["ResolutionSession", "decide", "score"]
