"""Duplicate resolution: rule scoring, operator decisions and deletion."""

from .engine import ResolutionSession, decide, score
from .executor import DeletionExecutor
from .models import (
    AddRule,
    Ambiguous,
    DeleteOne,
    ExecutionReport,
    KeepOne,
    Resolved,
    ScoredFile,
    Skip,
)

__all__ = [
    "AddRule",
    "Ambiguous",
    "DeleteOne",
    "DeletionExecutor",
    "ExecutionReport",
    "KeepOne",
    "ResolutionSession",
    "Resolved",
    "ScoredFile",
    "Skip",
    "decide",
    "score",
]
