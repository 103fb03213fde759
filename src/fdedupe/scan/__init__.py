"""Incremental scanning: path canonicalization, enumeration, hashing and the scanner."""

from .discovery import DirectoryEnumerator
from .errors import PathError, PermissionDeniedError, UnresolvablePathError
from .hashing import FAST_HASH_BYTES, Hasher
from .models import DirectoryReport, DirectoryState, ProgressEvent, ScanSummary
from .paths import PathResolver, VisitedSet, is_hidden
from .pipeline import Scanner, ScanPass

__all__ = [
    "DirectoryEnumerator",
    "DirectoryReport",
    "DirectoryState",
    "FAST_HASH_BYTES",
    "Hasher",
    "PathError",
    "PathResolver",
    "PermissionDeniedError",
    "ProgressEvent",
    "ScanPass",
    "ScanSummary",
    "Scanner",
    "UnresolvablePathError",
    "VisitedSet",
    "is_hidden",
]
