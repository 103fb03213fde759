"""Custom exceptions for configuration management."""


class ConfigError(Exception):
    """Raised when configuration data cannot be processed."""


class PatternError(ConfigError):
    """Raised when a glob pattern is malformed."""
