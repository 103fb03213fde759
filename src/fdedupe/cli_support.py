"""Helpers shared by CLI commands: logging setup, formatting and prompt parsing."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from fdedupe.config.models import LoggingSettings
from fdedupe.resolution.models import (
    AddRule,
    Ambiguous,
    DeleteOne,
    ExecutionReport,
    KeepOne,
    OperatorDecision,
    Skip,
)
from fdedupe.scan.models import ScanSummary

_KB = 1024.0
_MB = _KB * 1024.0
_GB = _MB * 1024.0


class QuitSession(Exception):
    """Raised when the operator asks to stop the remove session."""


def configure_logging(settings: LoggingSettings, *, console: Console | None = None) -> None:
    """Install rich console logging and, when configured, a rotating log file.

    Args:
        settings: Logging configuration section.
        console: Console that receives log records; stderr by default.
    """
    root = logging.getLogger("fdedupe")
    root.setLevel(settings.level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.addHandler(
        RichHandler(console=console or Console(stderr=True), show_path=False, markup=False)
    )
    if settings.file:
        path = Path(settings.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)
    root.propagate = False


def format_size(size: int) -> str:
    """Render a byte count with a binary unit."""
    value = float(size)
    if value >= _GB:
        return f"{value / _GB:.1f} GB"
    if value >= _MB:
        return f"{value / _MB:.1f} MB"
    if value >= _KB:
        return f"{value / _KB:.1f} KB"
    return f"{size} B"


def relative_name(base: Path | str, child: Path | str) -> str:
    """Return ``child`` relative to ``base`` when it lies below it."""
    try:
        return str(Path(child).relative_to(base))
    except ValueError:
        return str(child)


def scan_metrics(summary: ScanSummary) -> dict[str, int]:
    """Return the ordered metrics printed in the scan summary line."""
    return {
        "processed": summary.files_processed,
        "hashed": summary.files_hashed,
        "skipped": summary.files_unchanged,
        "deleted": summary.files_deleted,
        "errored": summary.files_errored,
        "duplicate_groups": summary.duplicate_groups,
    }


def group_table(group: Ambiguous, position: int, total: int, *, dry_run: bool) -> Table:
    """Build the table shown for a deferred duplicate group."""
    size = group.scored[0].file.size if group.scored else 0
    title = f"Duplicate group {position} of {total} ({format_size(size)} each)"
    if dry_run:
        title += " [DRY RUN]"
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Path", overflow="fold")
    table.add_column("Score", justify="right")
    for number, item in enumerate(group.scored, start=1):
        rendered = "-" if item.score is None else str(item.score)
        table.add_row(str(number), escape(item.file.canonical_path), rendered)
    return table


def parse_decision(
    text: str,
    group: Ambiguous,
    *,
    pattern: str | None = None,
    priority: int | None = None,
) -> OperatorDecision:
    """Translate operator input into a decision for ``group``.

    Accepted commands are ``k N`` (keep file N), ``d N`` (delete file N),
    ``r`` (add rule; requires ``pattern`` and ``priority``), ``s`` (skip) and
    ``q`` (quit).

    Raises:
        QuitSession: When the operator quits.
        ValueError: When the input cannot be understood.
    """
    parts = text.strip().split()
    if not parts:
        raise ValueError("Enter a command: k N, d N, r, s or q.")
    command = parts[0].lower()
    if command == "q":
        raise QuitSession()
    if command == "s":
        return Skip()
    if command == "r":
        if pattern is None or priority is None:
            raise ValueError("Adding a rule needs a pattern and a priority.")
        return AddRule(pattern=pattern, priority=priority)
    if command in {"k", "d"}:
        path = _select(parts, group.scored)
        return KeepOne(path=path) if command == "k" else DeleteOne(path=path)
    raise ValueError(f"Unknown command {command!r}.")


def execution_lines(report: ExecutionReport) -> list[str]:
    """Return human-readable lines describing an execution report."""
    lines = [f"[yellow]would delete[/yellow] {escape(path)}" for path in report.planned]
    lines.extend(f"[red]deleted[/red] {escape(path)}" for path in report.deleted)
    lines.extend(f"[bold red]failed[/bold red] {escape(message)}" for message in report.failed)
    return lines


def _select(parts: Sequence[str], scored: Sequence) -> str:
    if len(parts) != 2 or not parts[1].isdigit():
        raise ValueError("Specify the file number, e.g. 'k 2'.")
    index = int(parts[1])
    if not 1 <= index <= len(scored):
        raise ValueError(f"File number must be between 1 and {len(scored)}.")
    return scored[index - 1].file.canonical_path


__all__ = [
    "QuitSession",
    "configure_logging",
    "execution_lines",
    "format_size",
    "group_table",
    "parse_decision",
    "relative_name",
    "scan_metrics",
]
