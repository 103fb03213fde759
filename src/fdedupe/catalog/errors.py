"""Catalog errors."""


class CatalogError(Exception):
    """Base exception for catalog storage operations."""


class UniquenessError(CatalogError):
    """Raised when a write violates a catalog uniqueness constraint."""
