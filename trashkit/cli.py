#!/usr/bin/env python3
"""
Command-line interface for trashkit.

Provides trash browsing, restore and permanent delete, and activity log
reporting for platform operators.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import click
import pandas as pd  # type: ignore[import-untyped]
import yaml  # type: ignore[import-untyped]
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .app import TrashKit
from .audit_trail.models import ActionKind, LogQuery, LogRecord, ModuleLabel, SubjectKind
from .audit_trail.storage import sort_counts
from .config import TrashKitConfig, get_config, set_config
from .soft_delete.exceptions import TrashError
from .soft_delete.mixins import utcnow
from .soft_delete.models import Actor, LifecycleOutcome, TrashFilters, TrashPage

console = Console()

T = TypeVar("T")

# Entity attributes tried in order to label a trash row
LABEL_FIELDS = ("name", "title", "question", "text", "full_name", "email", "app_name")

LOG_EXPORT_BATCH = 200


def run_with_kit(fn: Callable[[TrashKit], Awaitable[T]]) -> T:
    """Run a coroutine against a freshly initialized TrashKit."""

    async def _run() -> T:
        async with TrashKit(get_config()) as kit:
            return await fn(kit)

    return asyncio.run(_run())


def make_actor(actor_id: Optional[str], tenant_id: Optional[str]) -> Optional[Actor]:
    if not actor_id:
        return None
    return Actor(id=actor_id, tenant_id=tenant_id)


def item_label(row: Dict[str, Any]) -> str:
    return next((str(row[f]) for f in LABEL_FIELDS if row.get(f)), "")


def format_timestamp(value: Any) -> str:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return "" if value is None else str(value)


def log_rows(records: List[LogRecord]) -> List[Dict[str, Any]]:
    """Flatten log records for tabular export."""
    rows = []
    for record in records:
        row = record.model_dump(mode="json")
        row["context"] = json.dumps(row["context"], sort_keys=True)
        rows.append(row)
    return rows


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Load configuration from a JSON or YAML file",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]) -> None:
    """trashkit - Trash and activity log tools for the event platform."""
    if config_path:
        try:
            set_config(TrashKitConfig.from_file(config_path))
        except Exception as e:
            console.print(f"[red]Error loading configuration: {e}[/red]")
            sys.exit(1)

    logging.basicConfig(
        level=get_config().log_level.value,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]trashkit[/bold blue] v{__version__}\n"
                "[dim]Trash and activity log tools[/dim]\n\n"
                "Use [bold]trashkit --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect trashkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config = get_config()
        config_dict = config.to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="trashkit Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            categories = {
                "General": ["application_name", "environment", "log_level"],
                "Storage": ["database_url", "database_echo"],
                "Trash": ["default_page_size", "max_page_size", "fanout_concurrency"],
                "Audit Trail": [
                    "audit_enabled",
                    "audit_require_actor",
                    "audit_workers",
                    "audit_queue_size",
                ],
            }

            for category, settings in categories.items():
                table.add_row(f"[bold]{category}[/bold]", "")
                for setting in settings:
                    value = config_dict.get(setting)
                    if isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {setting}", str(value))

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@config.command("validate")
def config_validate() -> None:
    """Validate current configuration."""
    try:
        config = get_config()
        issues = []
        warnings = []

        if config.environment == "production":
            if not config.audit_enabled:
                issues.append("Audit trail must be enabled in production")
            if config.database_url.startswith("sqlite"):
                warnings.append("SQLite is not recommended for production")
            if config.database_echo:
                warnings.append("SQL echo is enabled in production")

        if not config.audit_require_actor:
            warnings.append("Anonymous actions will be written to the activity log")

        if issues:
            console.print("[red]✗ Configuration validation failed:[/red]")
            for issue in issues:
                console.print(f"  [red]• {issue}[/red]")
            sys.exit(1)

        console.print("[green]✓ Configuration is valid[/green]")
        if warnings:
            console.print("\n[yellow]⚠ Warnings:[/yellow]")
            for warning in warnings:
                console.print(f"  [yellow]• {warning}[/yellow]")

    except Exception as e:
        console.print(f"[red]Error validating configuration: {e}[/red]")
        sys.exit(1)


@cli.command("init-db")
def init_db() -> None:
    """Create platform and activity log tables."""

    async def _noop(kit: TrashKit) -> int:
        return len(kit.registry)

    try:
        modules = run_with_kit(_noop)
        console.print(
            f"[green]✓ Database initialized[/green] ({modules} trash modules registered)"
        )
    except Exception as e:
        console.print(f"[red]Error initializing database: {e}[/red]")
        sys.exit(1)


@cli.group()
def trash() -> None:
    """Browse and manage trashed items."""
    pass


@trash.command("list")
@click.option("--module", "module_key", help="Module key, all modules when omitted")
@click.option("--tenant", help="Restrict to one business")
@click.option("--deleted-by", help="Filter by deleting user ID")
@click.option("--start-date", type=click.DateTime(), help="Deleted on or after")
@click.option("--end-date", type=click.DateTime(), help="Deleted on or before")
@click.option("--page", type=int, default=1, help="Page number, starting at 1")
@click.option("--page-size", type=int, help="Items per page")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
def trash_list(
    module_key: Optional[str],
    tenant: Optional[str],
    deleted_by: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    page: int,
    page_size: Optional[int],
    format: str,
) -> None:
    """List trashed items."""
    try:
        filters = TrashFilters(
            tenant_id=tenant,
            deleted_by=deleted_by,
            start_date=start_date,
            end_date=end_date,
        )
        size = page_size or get_config().default_page_size

        pages: Dict[str, TrashPage] = run_with_kit(
            lambda kit: kit.trash.list_deleted(module_key, filters, page, size)
        )

        if format == "json":
            console.print_json(
                data={key: p.model_dump(mode="json") for key, p in pages.items()},
                default=str,
            )
            return

        non_empty = {key: p for key, p in pages.items() if p.total}
        if not non_empty:
            console.print("[yellow]Trash is empty[/yellow]")
            return

        for key, trash_page in non_empty.items():
            table = Table(
                title=f"{key} (showing {len(trash_page.items)} of {trash_page.total})"
            )
            table.add_column("ID", style="cyan")
            table.add_column("Item", style="green")
            table.add_column("Deleted At", style="yellow")
            table.add_column("Deleted By", style="magenta")

            for row in trash_page.items:
                table.add_row(
                    str(row.get("id", "")),
                    item_label(row),
                    format_timestamp(row.get("deleted_at")),
                    str(row.get("deleted_by_display") or "-"),
                )
            console.print(table)

    except TrashError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error listing trash: {e}[/red]")
        sys.exit(1)


@trash.command("counts")
@click.option("--tenant", help="Restrict to one business")
def trash_counts(tenant: Optional[str]) -> None:
    """Count trashed items per module."""
    try:
        filters = TrashFilters(tenant_id=tenant)
        counts: Dict[str, int] = run_with_kit(
            lambda kit: kit.trash.count_deleted(None, filters)
        )

        table = Table(title="Trashed Items")
        table.add_column("Module", style="cyan")
        table.add_column("Count", style="green", justify="right")

        for key, count in sorted(counts.items()):
            table.add_row(key, str(count))
        table.add_row("[bold]Total[/bold]", f"[bold]{sum(counts.values())}[/bold]")

        console.print(table)

    except Exception as e:
        console.print(f"[red]Error counting trash: {e}[/red]")
        sys.exit(1)


def _run_lifecycle(
    action: Callable[[TrashKit], Awaitable[LifecycleOutcome]],
) -> None:
    """Run one lifecycle operation and report its outcome."""
    try:

        async def _run(kit: TrashKit) -> LifecycleOutcome:
            outcome = await action(kit)
            await kit.audit.drain()
            return outcome

        outcome = run_with_kit(_run)
        console.print(f"[green]✓[/green] {outcome.message}")
        if outcome.skipped:
            console.print(
                f"[yellow]⚠ Skipped {len(outcome.skipped)} conflicting items:[/yellow]"
            )
            for item_id in outcome.skipped:
                console.print(f"  [yellow]• {item_id}[/yellow]")

    except TrashError as e:
        console.print(f"[red]Error ({e.status_code}): {e.message}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


actor_option = click.option("--actor", help="ID of the acting user")
tenant_option = click.option("--tenant", help="Business the acting user belongs to")


@trash.command("restore")
@click.argument("module_key")
@click.argument("item_id")
@actor_option
@tenant_option
def trash_restore(
    module_key: str, item_id: str, actor: Optional[str], tenant: Optional[str]
) -> None:
    """Restore one trashed item."""
    who = make_actor(actor, tenant)
    _run_lifecycle(lambda kit: kit.dispatcher.restore(module_key, item_id, who))


@trash.command("purge")
@click.argument("module_key")
@click.argument("item_id")
@actor_option
@tenant_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def trash_purge(
    module_key: str,
    item_id: str,
    actor: Optional[str],
    tenant: Optional[str],
    yes: bool,
) -> None:
    """Permanently delete one trashed item."""
    if not yes:
        click.confirm(f"Permanently delete {module_key} {item_id}?", abort=True)
    who = make_actor(actor, tenant)
    _run_lifecycle(lambda kit: kit.dispatcher.permanent_delete(module_key, item_id, who))


@trash.command("restore-all")
@click.argument("module_key")
@actor_option
@tenant_option
def trash_restore_all(
    module_key: str, actor: Optional[str], tenant: Optional[str]
) -> None:
    """Restore every trashed item of a module."""
    who = make_actor(actor, tenant)
    _run_lifecycle(lambda kit: kit.dispatcher.restore_all(module_key, who))


@trash.command("purge-all")
@click.argument("module_key")
@actor_option
@tenant_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def trash_purge_all(
    module_key: str, actor: Optional[str], tenant: Optional[str], yes: bool
) -> None:
    """Permanently delete every trashed item of a module."""
    if not yes:
        click.confirm(f"Permanently delete all trashed {module_key} items?", abort=True)
    who = make_actor(actor, tenant)
    _run_lifecycle(lambda kit: kit.dispatcher.permanent_delete_all(module_key, who))


@cli.group()
def logs() -> None:
    """Activity log search and reporting."""
    pass


@logs.command("search")
@click.option("--actor", help="Filter by acting user ID")
@click.option("--tenant", help="Filter by business")
@click.option(
    "--action",
    "actions",
    multiple=True,
    type=click.Choice([a.value for a in ActionKind]),
    help="Filter by action, repeatable",
)
@click.option(
    "--module",
    "modules",
    multiple=True,
    type=click.Choice([m.value for m in ModuleLabel]),
    help="Filter by module, repeatable",
)
@click.option(
    "--subject-kind", type=click.Choice([k.value for k in SubjectKind]), help="Subject kind"
)
@click.option("--subject-id", help="Subject ID")
@click.option("--start-date", type=click.DateTime(), help="Start date for search")
@click.option("--end-date", type=click.DateTime(), help="End date for search")
@click.option("--limit", type=int, default=50, help="Maximum results to return")
@click.option("--offset", type=int, default=0, help="Results to skip")
@click.option("--format", type=click.Choice(["table", "json", "csv"]), default="table")
def logs_search(
    actor: Optional[str],
    tenant: Optional[str],
    actions: Tuple[str, ...],
    modules: Tuple[str, ...],
    subject_kind: Optional[str],
    subject_id: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    limit: int,
    offset: int,
    format: str,
) -> None:
    """Search activity log entries."""
    try:
        query = LogQuery(
            actor_id=actor,
            tenant_id=tenant,
            actions=list(actions) or None,
            modules=list(modules) or None,
            subject_kind=subject_kind,
            subject_id=subject_id,
            start_date=start_date,
            end_date=end_date,
            limit=min(limit, get_config().max_page_size),
            offset=offset,
        )
        page = run_with_kit(lambda kit: kit.audit.search(query))

        if not page.items:
            console.print("[yellow]No log entries found matching criteria[/yellow]")
            return

        if format == "json":
            console.print_json(data=[r.model_dump(mode="json") for r in page.items])
        elif format == "csv":
            df = pd.DataFrame(log_rows(page.items))
            print(df.to_csv(index=False))
        else:
            table = Table(
                title=f"Activity Log (showing {len(page.items)} of {page.total})"
            )
            table.add_column("Timestamp", style="cyan")
            table.add_column("Actor", style="green")
            table.add_column("Action", style="yellow")
            table.add_column("Module", style="blue")
            table.add_column("Subject", style="magenta")

            for record in page.items:
                subject = "-"
                if record.subject_kind:
                    subject = f"{record.subject_kind}:{record.subject_id or '*'}"
                    if record.item_name:
                        subject += f" ({record.item_name})"
                table.add_row(
                    format_timestamp(record.created_at),
                    record.actor_id or "anonymous",
                    str(record.action),
                    str(record.module),
                    subject,
                )

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error searching activity log: {e}[/red]")
        sys.exit(1)


@logs.command("stats")
@click.option("--days", type=int, default=30, help="Number of days to analyze")
@click.option("--tenant", help="Restrict to one business")
def logs_stats(days: int, tenant: Optional[str]) -> None:
    """Display activity log statistics."""
    try:
        query = LogQuery(
            start_date=utcnow() - timedelta(days=days), tenant_id=tenant
        )
        stats = run_with_kit(lambda kit: kit.audit.stats(query))

        if not stats.total:
            console.print(f"[yellow]No log entries found in the last {days} days[/yellow]")
            return

        console.print(
            Panel.fit(
                f"[bold]Activity Log Statistics[/bold]\n"
                f"Last {days} days\n\n"
                f"Total entries: [cyan]{stats.total:,}[/cyan]\n"
                f"Modules: [green]{len(stats.by_module)}[/green]\n"
                f"Deletes: [red]{stats.by_action.get('delete', 0)}[/red]  "
                f"Restores: [green]{stats.by_action.get('restore', 0)}[/green]",
                border_style="blue",
            )
        )

        for title, counts in (
            ("Actions", stats.by_action),
            ("Modules", stats.by_module),
            ("Subject Kinds", stats.by_subject_kind),
        ):
            table = Table(title=title)
            table.add_column("Name", style="cyan")
            table.add_column("Count", style="green")
            table.add_column("Percentage", style="yellow")
            for name, count in sort_counts(counts):
                table.add_row(name, str(count), f"{count / stats.total * 100:.1f}%")
            console.print(table)

    except Exception as e:
        console.print(f"[red]Error calculating statistics: {e}[/red]")
        sys.exit(1)


@logs.command("export")
@click.option("--start-date", type=click.DateTime(), help="Start date for export")
@click.option("--end-date", type=click.DateTime(), help="End date for export")
@click.option("--tenant", help="Restrict to one business")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
def logs_export(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    tenant: Optional[str],
    output: str,
    format: str,
) -> None:
    """Export the activity log."""

    async def _collect(kit: TrashKit) -> List[LogRecord]:
        records: List[LogRecord] = []
        while True:
            page = await kit.audit.search(
                LogQuery(
                    start_date=start_date,
                    end_date=end_date,
                    tenant_id=tenant,
                    limit=LOG_EXPORT_BATCH,
                    offset=len(records),
                )
            )
            records.extend(page.items)
            if not page.items or len(records) >= page.total:
                return records

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting activity log...", total=None)

        try:
            records = run_with_kit(_collect)
            progress.update(
                task, description=f"Found {len(records)} entries, exporting..."
            )

            df = pd.DataFrame(log_rows(records))
            output_path = Path(output)
            if format == "json":
                df.to_json(output_path, orient="records", date_format="iso", indent=2)
            elif format == "excel":
                df.to_excel(output_path, index=False, engine="openpyxl")
            else:
                df.to_csv(output_path, index=False)

            progress.stop()
            console.print(
                f"[green]✓ Exported {len(records)} log entries to {output_path}[/green]"
            )

        except Exception as e:
            progress.stop()
            console.print(f"[red]Error exporting activity log: {e}[/red]")
            sys.exit(1)


if __name__ == "__main__":
    cli()
