"""Command line interface for the fdedupe project."""

from __future__ import annotations

import contextlib
import difflib
from collections import deque
from pathlib import Path
from typing import Any, Callable, Iterable

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from fdedupe.catalog import Catalog, CatalogError
from fdedupe.cli_support import (
    QuitSession,
    configure_logging,
    execution_lines,
    format_size,
    group_table,
    parse_decision,
    relative_name,
    scan_metrics,
)
from fdedupe.config import ConfigError, ConfigManager, FdedupeConfig
from fdedupe.duplicates import DuplicateIndex
from fdedupe.resolution import DeletionExecutor, ResolutionSession, Resolved
from fdedupe.scan import PathError, PathResolver, ProgressEvent, Scanner, VisitedSet

console = Console()

_PROMPT = "[k N] keep  [d N] delete  [r] add rule  [s] skip  [q] quit"


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Conditionally print CLI output according to quiet/summary settings.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return

    if summary_only and mode not in {"summary", "warning", "error"}:
        return

    console.print(message)


def _format_summary_line(command: str, root: Path | str, metrics: dict[str, Any]) -> str:
    """Return a consistent summary line for CLI commands."""

    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {escape(str(root))}: {parts}.[/green]"


def _load_config(cli_overrides: dict[str, Any] | None = None) -> FdedupeConfig:
    """Load configuration, install logging and surface errors as click exceptions."""
    try:
        config = ConfigManager().load(cli_overrides=cli_overrides)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config.logging)
    return config


def _open_catalog(ctx: click.Context, config: FdedupeConfig) -> Catalog:
    override = (ctx.obj or {}).get("db")
    try:
        return Catalog(override or config.database)
    except CatalogError as exc:
        raise click.ClickException(str(exc)) from exc


def _output_modes(
    ctx: click.Context,
    config: FdedupeConfig,
    *,
    quiet: bool,
    summary_mode: bool,
    json_output: bool,
) -> tuple[bool, bool]:
    """Resolve quiet/summary flags against configured defaults."""
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="fdedupe")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=str),
    help="Path to the SQLite catalog (overrides the configured database).",
)
@click.pass_context
def cli(ctx: click.Context, db_path: str | None) -> None:
    """Find duplicate files, then keep one copy of each by rule or by choice."""
    ctx.ensure_object(dict)
    ctx.obj["db"] = db_path


@cli.command()
@click.argument("dirs", nargs=-1, type=click.Path(path_type=str))
@click.option("-r", "--recursive", is_flag=True, help="Scan subdirectories recursively.")
@click.option("--rescan", is_flag=True, help="Re-scan directories even if already scanned.")
@click.option("--follow-symlinks", is_flag=True, help="Follow symbolic links.")
@click.option("--hidden", is_flag=True, help="Include hidden files and directories.")
@click.option("--include", multiple=True, metavar="GLOB", help="Only catalog matching file names.")
@click.option("--exclude", multiple=True, metavar="GLOB", help="Never catalog matching file names.")
@click.option("--json", "json_output", is_flag=True, help="Emit the scan summary as JSON.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def scan(
    ctx: click.Context,
    dirs: tuple[str, ...],
    recursive: bool,
    rescan: bool,
    follow_symlinks: bool,
    hidden: bool,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Catalog DIRS (default: the current directory) and hash duplicate candidates."""

    overrides: dict[str, Any] = {}
    for key, enabled in (
        ("scan.recursive", recursive),
        ("scan.force_rescan", rescan),
        ("scan.follow_symlinks", follow_symlinks),
        ("scan.include_hidden", hidden),
    ):
        if enabled:
            overrides[key] = True
    if include:
        overrides["scan.include"] = list(include)
    if exclude:
        overrides["scan.exclude"] = list(exclude)

    config = _load_config(overrides)
    quiet_enabled, summary_only = _output_modes(
        ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
    )
    roots = [Path(item) for item in dirs] or [Path.cwd()]
    show_status = not (json_output or quiet_enabled or summary_only) and console.is_terminal

    catalog = _open_catalog(ctx, config)
    try:
        status_context = (
            console.status("Scanning...", spinner="dots")
            if show_status
            else contextlib.nullcontext()
        )
        with catalog, status_context as status:

            def show_progress(event: ProgressEvent) -> None:
                if event.kind == "directory":
                    status.update(f"Scanning {escape(str(event.path))}")

            summary = Scanner(
                catalog, config.scan, progress=show_progress if status is not None else None
            ).run(roots)
    except CatalogError as exc:
        _handle_cli_error(
            f"Catalog failure while scanning: {exc}",
            code="catalog_error",
            json_output=json_output,
            original=exc,
        )
        return

    if json_output:
        console.print_json(
            data={
                "context": {
                    "roots": [str(root) for root in roots],
                    "settings": config.scan.model_dump(mode="json"),
                },
                "summary": summary.as_dict(),
            }
        )
        return

    for failure in summary.failed_roots:
        _emit_message(
            f"[yellow]Root skipped: {escape(failure)}[/yellow]",
            mode="warning",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    if summary.errors:
        _emit_message(
            "[red]Errors encountered:[/red]",
            mode="error",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
        for entry in summary.errors:
            _emit_message(
                f"  - {escape(entry)}", mode="error", quiet=quiet_enabled, summary_only=summary_only
            )
    _emit_message(
        _format_summary_line("Scan", ", ".join(str(root) for root in roots), scan_metrics(summary)),
        mode="summary",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )


@cli.command("list")
@click.argument("directory", required=False, type=click.Path(path_type=str))
@click.option("-r", "--recursive", is_flag=True, help="Also report known subdirectories.")
@click.option("--follow-symlinks", is_flag=True, help="Count subtrees behind symlinks.")
@click.option("--json", "json_output", is_flag=True, help="Emit the report as JSON.")
@click.pass_context
def list_duplicates(
    ctx: click.Context,
    directory: str | None,
    recursive: bool,
    follow_symlinks: bool,
    json_output: bool,
) -> None:
    """Report duplicates under DIRECTORY (default: the current directory)."""

    config = _load_config()
    try:
        target = PathResolver().canonicalize_directory(directory or Path.cwd())
    except PathError as exc:
        raise click.ClickException(str(exc)) from exc

    with _open_catalog(ctx, config) as catalog:
        reports = _directory_reports(
            DuplicateIndex(catalog), catalog, target, recursive, follow_symlinks
        )

    if json_output:
        console.print_json(data={"directories": reports})
        return

    for report in reports:
        console.print()
        console.print(f"Canonical path: {escape(report['path'])}")
        if not report["known"]:
            console.print("  (not in catalog; run 'fdedupe scan' first)")
            continue
        console.print(
            f"Duplicates: {report['count']} files, {format_size(report['total_size'])}"
        )
        if report["children"]:
            table = Table(title="Subdirectories with duplicates")
            table.add_column("Directory", overflow="fold")
            table.add_column("Files", justify="right")
            table.add_column("Size", justify="right")
            for child in report["children"]:
                table.add_row(
                    escape(relative_name(report["path"], child["path"]) + "/"),
                    str(child["count"]),
                    format_size(child["total_size"]),
                )
            console.print(table)
        if report["files"]:
            table = Table(title="Duplicate files in this directory")
            table.add_column("File", overflow="fold")
            table.add_column("Size", justify="right")
            for entry in report["files"]:
                table.add_row(escape(entry["name"]), format_size(entry["size"]))
            console.print(table)


def _directory_reports(
    index: DuplicateIndex,
    catalog: Catalog,
    root: Path,
    recursive: bool,
    follow_symlinks: bool,
) -> list[dict[str, Any]]:
    reports: list[dict[str, Any]] = []
    visited = VisitedSet([root])
    queue: deque[Path] = deque([root])
    while queue:
        current = queue.popleft()
        record = catalog.get_directory(current)
        report: dict[str, Any] = {
            "path": str(current),
            "known": record is not None,
            "count": 0,
            "total_size": 0,
            "children": [],
            "files": [],
        }
        reports.append(report)
        if record is None:
            continue
        aggregate = index.subtree_aggregate(current, follow_symlinks=follow_symlinks)
        report["count"], report["total_size"] = aggregate.count, aggregate.total_size
        report["children"] = [
            {"path": child.canonical_path, "count": agg.count, "total_size": agg.total_size}
            for child, agg in index.child_aggregates(current, follow_symlinks=follow_symlinks)
        ]
        report["files"] = [
            {"name": entry.name, "size": entry.size} for entry in index.duplicate_files_in(current)
        ]
        if recursive:
            for child in catalog.child_directories(current):
                if visited.claim(child.path):
                    queue.append(child.path)
    return reports


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without deleting.")
@click.option(
    "--yes",
    "auto_only",
    is_flag=True,
    help="Apply rule-resolved groups only and never prompt.",
)
@click.pass_context
def remove(ctx: click.Context, dry_run: bool, auto_only: bool) -> None:
    """Resolve duplicate groups by priority rules, prompting for the rest."""

    config = _load_config()
    dry_run = dry_run or config.remove.dry_run
    totals = {"groups": 0, "resolved": 0, "deleted": 0, "failed": 0, "skipped": 0}

    try:
        with _open_catalog(ctx, config) as catalog:
            catalog_path = catalog.path
            session = ResolutionSession(catalog, persist_rules=not dry_run)
            totals["groups"] = len(session.unresolved())
            if not totals["groups"]:
                console.print("No duplicates found. Run 'fdedupe scan' first.")
                return
            executor = DeletionExecutor(catalog, dry_run=dry_run)

            def apply(resolutions: Iterable[Resolved]) -> None:
                for resolution in resolutions:
                    report = executor.execute(resolution)
                    totals["resolved"] += 1
                    totals["deleted"] += len(report.deleted) + len(report.planned)
                    totals["failed"] += len(report.failed)
                    for line in execution_lines(report):
                        console.print(line)

            apply(session.auto_resolve())
            if not auto_only:
                try:
                    _interactive_remove(session, apply, totals["groups"], dry_run)
                except QuitSession:
                    console.print("[yellow]Stopped; confirmed deletions are kept.[/yellow]")
            totals["skipped"] = totals["groups"] - totals["resolved"]
    except CatalogError as exc:
        raise click.ClickException(f"Catalog failure while removing: {exc}") from exc

    label = "Remove (dry run)" if dry_run else "Remove"
    console.print(_format_summary_line(label, catalog_path, totals))


def _interactive_remove(
    session: ResolutionSession,
    apply: Callable[[Iterable[Resolved]], None],
    total: int,
    dry_run: bool,
) -> None:
    while True:
        pending = session.pending()
        if not pending:
            return
        group = pending[0]
        console.print(group_table(group, total - len(pending) + 1, total, dry_run=dry_run))
        text = click.prompt(_PROMPT, prompt_suffix="\n> ")
        pattern: str | None = None
        priority: int | None = None
        if text.strip().lower() == "r":
            pattern = click.prompt("Glob pattern")
            priority = click.prompt("Priority (integer)", type=int)
        try:
            decision = parse_decision(text, group, pattern=pattern, priority=priority)
            resolutions = session.submit(group.full_hash, decision)
        except (ValueError, ConfigError) as exc:
            console.print(f"[red]{escape(str(exc))}[/red]")
            continue
        apply(resolutions)


@cli.group()
def rules() -> None:
    """Manage priority rules used to pick the kept file."""


@rules.command("list")
@click.pass_context
def rules_list(ctx: click.Context) -> None:
    """Show stored priority rules, highest priority first."""
    config = _load_config()
    with _open_catalog(ctx, config) as catalog:
        stored = catalog.rules()
    if not stored:
        console.print("No rules defined.")
        return
    table = Table(title="Priority rules")
    table.add_column("Pattern", overflow="fold")
    table.add_column("Priority", justify="right")
    for rule in stored:
        table.add_row(escape(rule.pattern), str(rule.priority))
    console.print(table)


@rules.command("add")
@click.argument("pattern")
@click.argument("priority", type=int)
@click.pass_context
def rules_add(ctx: click.Context, pattern: str, priority: int) -> None:
    """Store a rule: files whose canonical path matches PATTERN score PRIORITY."""
    config = _load_config()
    with _open_catalog(ctx, config) as catalog:
        try:
            rule = catalog.insert_rule(pattern, priority)
        except (ConfigError, CatalogError) as exc:
            raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Added rule {escape(rule.pattern)} (priority {rule.priority}).[/green]")


@cli.group()
def config() -> None:
    """Manage fdedupe configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        effective = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(effective.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY."""
    manager = ConfigManager()
    manager.ensure_exists()
    before = manager.read_text().splitlines()

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError:
        parsed_value = value

    try:
        manager.set_value(key, parsed_value)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    after = manager.read_text().splitlines()
    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config (before)",
            tofile="config (after)",
            lineterm="",
        )
        if not line.startswith(("+# Last updated", "-# Last updated"))
    ]

    if len(diff) <= 3:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {escape(key)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
