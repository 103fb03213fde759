"""Path resolution errors."""


class PathError(Exception):
    """Base exception for paths that cannot be canonicalized."""


class UnresolvablePathError(PathError):
    """Raised when a path does not exist or cannot be resolved."""


class PermissionDeniedError(PathError):
    """Raised when a path exists but cannot be read."""
