"""Configuration models describing fdedupe settings."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fdedupe import patterns


class FdedupeBaseModel(BaseModel):
    """Shared configuration for fdedupe Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class ScanSettings(FdedupeBaseModel):
    """Options governing a scan pass.

    Attributes:
        recursive: Whether to descend into subdirectories.
        force_rescan: Whether to re-read directories that were already scanned.
        follow_symlinks: Whether to traverse symbolic links.
        include_hidden: Whether entries whose names start with a dot are scanned.
        include: File-name globs; when non-empty only matching files are cataloged.
        exclude: File-name globs that are never cataloged.
    """

    recursive: bool = False
    force_rescan: bool = False
    follow_symlinks: bool = False
    include_hidden: bool = False
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)

    @field_validator("include", "exclude", mode="before")
    @classmethod
    def _single_pattern(cls, value: object) -> object:
        # A lone glob from the environment arrives as a plain string.
        return [value] if isinstance(value, str) else value

    @field_validator("include", "exclude")
    @classmethod
    def _check_patterns(cls, value: List[str]) -> List[str]:
        for pattern in value:
            patterns.validate_pattern(pattern)
        return value


class RemoveSettings(FdedupeBaseModel):
    """Defaults for the remove workflow.

    Attributes:
        dry_run: Whether removals are only reported by default.
    """

    dry_run: bool = False


class LoggingSettings(FdedupeBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; rotated when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown logging level {value!r}")
        return level


class CLIOptions(FdedupeBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class FdedupeConfig(FdedupeBaseModel):
    """Top-level configuration struct for fdedupe.

    Attributes:
        database: Path of the SQLite catalog.
        scan: Scan defaults.
        remove: Remove workflow defaults.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    database: str = "fdedupe.db"
    scan: ScanSettings = Field(default_factory=ScanSettings)
    remove: RemoveSettings = Field(default_factory=RemoveSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "FdedupeBaseModel",
    "ScanSettings",
    "RemoveSettings",
    "LoggingSettings",
    "CLIOptions",
    "FdedupeConfig",
]
