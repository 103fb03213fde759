"""Resolution data models."""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from fdedupe.catalog.models import FileRecord


class ScoredFile(BaseModel):
    """A duplicate-group member with its rule score.

    Attributes:
        file: Catalog row of the member.
        score: Highest matching rule priority, or None when no rule matches.
    """

    file: FileRecord
    score: Optional[int] = None


class Resolved(BaseModel):
    """A group whose kept and deleted members are decided.

    Attributes:
        full_hash: Content hash shared by the group.
        keep: Members that stay on disk.
        delete: Members queued for deletion.
        reason: Whether a priority rule or the operator decided.
    """

    kind: Literal["resolved"] = "resolved"
    full_hash: str
    keep: List[FileRecord]
    delete: List[FileRecord]
    reason: Literal["rule", "operator"] = "rule"


class Ambiguous(BaseModel):
    """A group deferred to the operator because the top score is tied."""

    kind: Literal["ambiguous"] = "ambiguous"
    full_hash: str
    scored: List[ScoredFile]


Decision = Union[Resolved, Ambiguous]


class KeepOne(BaseModel):
    """Keep the file at ``path`` and delete the rest of its group."""

    path: str


class DeleteOne(BaseModel):
    """Delete the file at ``path`` and keep the rest of its group."""

    path: str


class AddRule(BaseModel):
    """Persist a new priority rule and re-score unresolved groups."""

    pattern: str
    priority: int


class Skip(BaseModel):
    """Leave the group untouched for the rest of the session."""


OperatorDecision = Union[KeepOne, DeleteOne, AddRule, Skip]


class ExecutionReport(BaseModel):
    """Outcome of applying one resolved group.

    Attributes:
        full_hash: Content hash of the group.
        dry_run: Whether mutations were suppressed.
        deleted: Paths removed from disk and catalog.
        planned: Paths that would be removed (dry run only).
        failed: Per-file failure messages.
    """

    full_hash: str
    dry_run: bool = False
    deleted: List[str] = Field(default_factory=list)
    planned: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


__all__ = [
    "AddRule",
    "Ambiguous",
    "Decision",
    "DeleteOne",
    "ExecutionReport",
    "KeepOne",
    "OperatorDecision",
    "Resolved",
    "ScoredFile",
    "Skip",
]
