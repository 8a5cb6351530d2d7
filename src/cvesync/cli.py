"""CVESync CLI - Command Line Interface.

A modern CLI built with Typer for running vulnerability syncs into Elasticsearch.
"""

import asyncio
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated, Any

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table

if TYPE_CHECKING:
    from cvesync.config import Settings
    from cvesync.models.sync import SyncResult

from cvesync import __version__
from cvesync.config import get_settings
from cvesync.events import (
    Event,
    EventBus,
    FetchedEvent,
    KEVAdditionsEvent,
    ProgressEvent,
)
from cvesync.models.kev import KEVEntry
from cvesync.services import ElasticsearchService, KEVService
from cvesync.sync import (
    InMemoryRepository,
    InvalidSyncOptionsError,
    RecordRepository,
    ResumeStateStore,
    SyncError,
    SyncOrchestrator,
)

# Create Typer app
app = typer.Typer(
    name="cvesync",
    help="CVESync - Vulnerability ingestion pipeline",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]CVESync[/] version [green]{__version__}[/]")
        raise typer.Exit()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    logger.remove()
    level = "DEBUG" if verbose else get_settings().log_level
    log_format = (
        "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
    )
    logger.add(sys.stderr, level=level, format=log_format)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
) -> None:
    """CVESync - Sync NVD, EPSS, KEV and OSV data into Elasticsearch."""
    setup_logging(verbose)


class _ProgressReporter:
    """Mirrors orchestrator events onto a Rich progress bar."""

    def __init__(self, progress: Progress, task: TaskID):
        self.progress = progress
        self.task = task
        self.kev_additions: list[KEVEntry] = []

    def __call__(self, event: Event) -> None:
        if isinstance(event, ProgressEvent):
            verb = "Fetching" if event.phase == "fetch" else "Processing"
            self.progress.update(
                self.task,
                description=f"{verb} CVEs ({event.rate:.1f}/s)",
                total=event.total or None,
                completed=event.processed,
            )
        elif isinstance(event, FetchedEvent):
            self.progress.update(
                self.task,
                description=f"[green]✓[/] Fetched {event.total} CVEs",
                total=event.total,
                completed=0,
            )
        elif isinstance(event, KEVAdditionsEvent):
            self.kev_additions.extend(event.entries)


def _build_repository(settings: "Settings", dry_run: bool) -> RecordRepository:
    if dry_run:
        return InMemoryRepository()

    es_service = ElasticsearchService(settings)
    if not es_service.ping():
        console.print("[red]✗[/] Failed to connect to Elasticsearch")
        raise typer.Exit(1)
    es_service.ensure_index()
    return es_service


async def _run_sync(
    settings: "Settings",
    options: dict[str, Any],
    repository: RecordRepository,
) -> tuple["SyncResult", list[KEVEntry]]:
    """Execute the sync with a live progress display."""
    event_bus = EventBus()
    orchestrator = SyncOrchestrator.from_settings(settings, repository, event_bus)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Starting sync...", total=None)
        reporter = _ProgressReporter(progress, task)
        event_bus.subscribe(reporter)

        result = await orchestrator.start_run(options)
        progress.update(task, description="[green]✓[/] Sync complete")

    return result, reporter.kev_additions


def _print_result(result: "SyncResult", kev_additions: list[KEVEntry]) -> None:
    stats = result.statistics

    table = Table(title=f"Sync {result.sync_id}", border_style="blue")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Status", str(result.status))
    table.add_row("Fetched", f"{stats.fetched:,}")
    table.add_row("New", f"{stats.new:,}")
    table.add_row("Updated", f"{stats.updated:,}")
    table.add_row("Skipped", f"{stats.skipped:,}")
    table.add_row("Errors", f"{stats.errors:,}")
    table.add_row("Elapsed", result.elapsed.formatted)
    table.add_row("", "")
    table.add_row("[bold]API Calls[/]", "")
    table.add_row("  NVD", str(result.api_calls.nvd))
    table.add_row("  EPSS", str(result.api_calls.epss))
    table.add_row("  CISA KEV", str(result.api_calls.cisa_kev))
    table.add_row("  OSV", str(result.api_calls.osv))
    console.print(table)

    if result.failed_cve_ids:
        shown = ", ".join(result.failed_cve_ids[:20])
        console.print(f"[yellow]Failed CVEs ({len(result.failed_cve_ids)}):[/] {shown}")

    if kev_additions:
        console.print(_kev_table("New KEV Entries", kev_additions))


def _kev_table(title: str, entries: list[KEVEntry]) -> Table:
    table = Table(title=title, border_style="red")
    table.add_column("CVE ID", style="cyan", no_wrap=True)
    table.add_column("Vendor")
    table.add_column("Product")
    table.add_column("Added")
    table.add_column("Due", style="yellow")
    table.add_column("Ransomware", style="red")
    for entry in entries:
        table.add_row(
            entry.cve_id,
            entry.vendor_project,
            entry.product,
            entry.date_added.isoformat(),
            entry.due_date.isoformat(),
            "✓" if entry.known_ransomware_campaign_use else "",
        )
    return table


async def _query_kev(
    settings: "Settings",
    days: int,
    vendor: str | None,
    product: str | None,
    ransomware: bool,
) -> tuple[str, list[KEVEntry]]:
    """Run one KEV catalog query and return its title and entries."""
    service = KEVService(settings)
    if vendor:
        return f"KEV Entries for vendor '{vendor}'", await service.get_by_vendor(vendor)
    if product:
        return f"KEV Entries for product '{product}'", await service.get_by_product(product)
    if ransomware:
        return "KEV Entries Used in Ransomware", await service.get_ransomware_entries()
    return f"KEV Entries Added in the Last {days} Days", await service.get_recent(days)


@app.command()
def sync(
    full: Annotated[
        bool,
        typer.Option("--full", help="Sync CVEs published in the last 3 years."),
    ] = False,
    incremental: Annotated[
        bool,
        typer.Option("--incremental", help="Sync CVEs published in the last 7 days."),
    ] = False,
    start: Annotated[
        datetime | None,
        typer.Option("--start", formats=["%Y-%m-%d"], help="Publication window start."),
    ] = None,
    end: Annotated[
        datetime | None,
        typer.Option("--end", formats=["%Y-%m-%d"], help="Publication window end."),
    ] = None,
    vendors: Annotated[
        list[str] | None,
        typer.Option("--vendor", help="Only keep CVEs affecting this vendor (repeatable)."),
    ] = None,
    resume: Annotated[
        bool,
        typer.Option("--resume", help="Continue an interrupted sync."),
    ] = False,
    skip_retry: Annotated[
        bool,
        typer.Option("--skip-retry", help="Do not retry failed CVEs at the end."),
    ] = False,
    check_osv: Annotated[
        bool,
        typer.Option("--check-osv", help="Check OSV for advisories on every CVE."),
    ] = False,
    batch_size: Annotated[
        int | None,
        typer.Option("--batch-size", "-b", min=1, help="CVEs enriched per batch."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Keep records in memory instead of Elasticsearch."),
    ] = False,
) -> None:
    """Sync CVE data into Elasticsearch.

    Without a window option the last 30 days are synced.

    Examples:
        cvesync sync --incremental
        cvesync sync --start 2024-01-01 --end 2024-03-31 --vendor microsoft
        cvesync sync --resume
    """
    settings = get_settings()

    options: dict[str, Any] = {
        "full": full,
        "incremental": incremental,
        "vendors": vendors or [],
        "resume": resume,
        "skipRetry": skip_retry,
        "checkSecondaryEnrichment": check_osv,
        "batchSize": batch_size,
    }
    if start is not None or end is not None:
        options["dateRange"] = {
            "startDate": start.replace(tzinfo=UTC) if start else None,
            "endDate": end.replace(hour=23, minute=59, second=59, tzinfo=UTC) if end else None,
        }

    console.print(Panel.fit("[bold blue]CVESync[/]", border_style="blue"))
    if dry_run:
        console.print("[dim]Dry run: records are not persisted[/]")

    repository = _build_repository(settings, dry_run)

    try:
        result, kev_additions = asyncio.run(_run_sync(settings, options, repository))
    except InvalidSyncOptionsError as e:
        console.print(f"[red]✗[/] {e}")
        raise typer.Exit(2) from None
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync interrupted. Continue with --resume.[/]")
        raise typer.Exit(1) from None
    except SyncError as e:
        console.print(f"[red]✗[/] {e}")
        raise typer.Exit(1) from None
    except Exception as e:
        console.print(f"[red]✗[/] Sync failed: {e}")
        raise typer.Exit(1) from None
    finally:
        if isinstance(repository, ElasticsearchService):
            repository.close()

    _print_result(result, kev_additions)


@app.command()
def status() -> None:
    """Show the checkpoint of an interrupted sync, if any."""
    settings = get_settings()
    state = ResumeStateStore(settings.sync.state_file).load()

    if state is None:
        console.print("[dim]No interrupted sync to resume.[/]")
        raise typer.Exit(0)

    saved_at = datetime.fromtimestamp(state.timestamp / 1000, tz=UTC)
    table = Table(title="Resumable Sync", border_style="blue")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Sync ID", str(state.sync_id))
    table.add_row("Saved At", saved_at.strftime("%Y-%m-%d %H:%M:%S UTC"))
    table.add_row("Processed", f"{state.progress.processed:,}/{state.progress.total:,}")
    table.add_row("Successful", f"{state.progress.successful:,}")
    table.add_row("Failed", f"{state.progress.failed:,}")
    table.add_row("New / Updated", f"{state.stats.new:,} / {state.stats.updated:,}")

    console.print(table)


@app.command()
def stats() -> None:
    """Show statistics about indexed CVE data."""
    settings = get_settings()
    es_service = ElasticsearchService(settings)

    if not es_service.ping():
        console.print("[red]✗[/] Failed to connect to Elasticsearch")
        raise typer.Exit(1)

    stats = es_service.get_stats()

    table = Table(title="CVESync Statistics", border_style="blue")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Index Name", stats.get("index_name", "N/A"))
    table.add_row("Document Count", f"{stats.get('document_count', 0):,}")
    table.add_row("Index Size", f"{stats.get('size_bytes', 0) / 1024 / 1024:.2f} MB")

    console.print(table)
    es_service.close()


@app.command()
def kev(
    days: Annotated[
        int,
        typer.Option("--days", "-d", min=1, help="Show entries added in the last N days."),
    ] = 30,
    vendor: Annotated[
        str | None,
        typer.Option("--vendor", help="Show entries whose vendor contains this text."),
    ] = None,
    product: Annotated[
        str | None,
        typer.Option("--product", help="Show entries whose product contains this text."),
    ] = None,
    ransomware: Annotated[
        bool,
        typer.Option("--ransomware", help="Show entries used in ransomware campaigns."),
    ] = False,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", min=1, help="Maximum results"),
    ] = 20,
) -> None:
    """Query the CISA Known Exploited Vulnerabilities catalog.

    Examples:
        cvesync kev --days 7
        cvesync kev --vendor microsoft
        cvesync kev --ransomware
    """
    if sum(bool(x) for x in (vendor, product, ransomware)) > 1:
        console.print("[red]✗[/] Use only one of --vendor, --product and --ransomware")
        raise typer.Exit(2)

    settings = get_settings()

    try:
        title, entries = asyncio.run(_query_kev(settings, days, vendor, product, ransomware))
    except Exception as e:
        console.print(f"[red]✗[/] Failed to load KEV catalog: {e}")
        raise typer.Exit(1) from None

    if not entries:
        console.print("[yellow]No matching KEV entries[/]")
        raise typer.Exit(0)

    console.print(_kev_table(title, entries[:limit]))
    if len(entries) > limit:
        console.print(f"[dim]Showing {limit} of {len(entries)} entries[/]")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="CVESync Configuration", border_style="blue")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Log Level", settings.log_level)
    table.add_row("", "")
    table.add_row("[bold]Elasticsearch[/]", "")
    table.add_row("  Host", settings.elasticsearch.host)
    table.add_row("  Index", settings.elasticsearch.index_name)
    table.add_row("  Cloud", "Yes" if settings.elasticsearch.is_cloud else "No")
    table.add_row("", "")
    table.add_row("[bold]NVD[/]", "")
    table.add_row("  API Key", "Set" if settings.nvd.api_key else "Not set")
    table.add_row(
        "  Rate Limit",
        f"{settings.nvd.rate_limit} req/{settings.nvd.window_seconds:g}s",
    )
    table.add_row("", "")
    table.add_row("[bold]EPSS[/]", "")
    table.add_row(
        "  Rate Limit",
        f"{settings.epss.rate_limit} req/{settings.epss.window_seconds:g}s",
    )
    table.add_row("  Chunk Size", str(settings.epss.chunk_size))
    table.add_row("", "")
    table.add_row("[bold]CISA KEV[/]", "")
    table.add_row("  URL", settings.kev.url)
    table.add_row("", "")
    table.add_row("[bold]OSV[/]", "")
    table.add_row(
        "  Rate Limit",
        f"{settings.osv.rate_limit} req/{settings.osv.window_seconds:g}s",
    )
    table.add_row("", "")
    table.add_row("[bold]Sync[/]", "")
    table.add_row("  Batch Size", str(settings.sync.batch_size))
    table.add_row("  State File", str(settings.sync.state_file))
    table.add_row("  Max Attempts", str(settings.retry.max_attempts))

    console.print(table)


if __name__ == "__main__":
    app()
