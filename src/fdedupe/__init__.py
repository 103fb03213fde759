"""fdedupe: an incremental duplicate-file catalog with rule-based resolution.

The main entry points are importable from the package root and loaded on first
access, so ``import fdedupe`` stays cheap for the CLI.
"""

from importlib import import_module
from importlib import metadata as _metadata

_EXPORTS = {
    "Catalog": "fdedupe.catalog",
    "DeletionExecutor": "fdedupe.resolution",
    "DuplicateIndex": "fdedupe.duplicates",
    "ResolutionSession": "fdedupe.resolution",
    "ScanSettings": "fdedupe.config",
    "Scanner": "fdedupe.scan",
}

__all__ = ["__version__", *sorted(_EXPORTS)]


def __getattr__(name: str):
    if name == "__version__":
        return _metadata.version("fdedupe")
    if name in _EXPORTS:
        return getattr(import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(list(globals().keys()) + __all__)
