from __future__ import annotations
from datetime import datetime, timedelta
from pathlib import Path

import typer
from rich import print
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import Config, load_config
from .context import AppContext, open_context
from .db.codes import DownloadStatus
from .db.session import get_engine, init_db
from .downloader import DownloadOptions, DownloadResult, DownloadScheduler, YtDlpRunner
from .exceptions import SeriesLoaderError, StoreUnavailable
from .exporters import FORMATS, default_export_name, export_links
from .logging_setup import setup_logging
from .paths import get_dirs
from .traversal import TraversalEngine, TraversalOptions, TraversalResult
from .validation import validate_links

console = Console()

app = typer.Typer(no_args_is_help=True, help="Harvest episode links and download them with yt-dlp.")

MAX_ERRORS_SHOWN = 10


def _config() -> Config:
    cfg = load_config()
    setup_logging(cfg.log_level)
    return cfg


def _open(cfg: Config) -> AppContext:
    try:
        return open_context(cfg)
    except (StoreUnavailable, ValueError) as e:
        console.print(f"[red]Startup failed:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _fail(msg: str) -> None:
    console.print(f"[red]{escape(msg)}[/red]")
    raise typer.Exit(1)


@app.command()
def init(db_url: str = typer.Option(None, help="SQLAlchemy URL; default local SQLite")):
    """Create the catalog tables."""
    cfg = _config()
    try:
        init_db(get_engine(db_url or cfg.db_url or None))
    except StoreUnavailable as e:
        _fail(f"Database init failed: {e}")
    print("[green]Database initialized[/green]")


@app.command()
def migrate(revision: str = typer.Option("head", help="Target alembic revision")):
    """Upgrade the catalog schema with alembic."""
    cfg = _config()
    from alembic import command
    from alembic.config import Config as AlembicConfig

    script_dir = Path(__file__).resolve().parent.parent / "migrations"
    acfg = AlembicConfig()
    acfg.set_main_option("script_location", str(script_dir))
    if cfg.db_url:
        acfg.set_main_option("sqlalchemy.url", cfg.db_url)
    command.upgrade(acfg, revision)
    print(f"[green]Schema upgraded to {revision}[/green]")


@app.command("paths")
def show_paths():
    """Show where seriesloader stores DB, logs, cache, config."""
    _config()
    t = Table(title="seriesloader paths")
    t.add_column("Kind"); t.add_column("Location")
    for k, p in get_dirs().items():
        t.add_row(k, str(p))
    console.print(t)


def _print_errors(errors: list[str]) -> None:
    for msg in errors[:MAX_ERRORS_SHOWN]:
        console.print(f"  [red]-[/red] {escape(msg)}")
    if len(errors) > MAX_ERRORS_SHOWN:
        console.print(f"  ... and {len(errors) - MAX_ERRORS_SHOWN} more")


def _print_traversal(r: TraversalResult) -> None:
    t = Table(title=f"Extraction: {r.series_name}")
    t.add_column("Metric"); t.add_column("Value", justify="right")
    t.add_row("Processed episodes", str(r.processed_episodes))
    t.add_row("Skipped episodes", str(r.skipped_episodes))
    t.add_row("Links found", str(r.total_links_found))
    t.add_row("Errors", str(r.total_errors))
    t.add_row("Success rate", f"{r.success_rate:.0%}")
    t.add_row("Stopped because", r.stop_reason.value if r.stop_reason else "-")
    t.add_row("Duration", f"{r.duration:.1f}s")
    for host, n in sorted(r.host_statistics.items()):
        t.add_row(f"Links from {host}", str(n))
    console.print(t)
    if r.error_messages:
        console.print("[yellow]Errors:[/yellow]")
        _print_errors(r.error_messages)


@app.command()
def extract(
    url: str = typer.Option(..., "--url", help="First episode page to start from"),
    series_name: str = typer.Option(None, help="Series name; derived from the URL when omitted"),
    host: str = typer.Option("auto", help="Preferred discovery capability"),
    start_season: int = typer.Option(1, help="Season number when the URL carries none"),
    start_episode: int = typer.Option(1, help="Episode number when the URL carries none"),
    max_episodes: int = typer.Option(None, help="Stop after N processed episodes"),
    max_errors: int = typer.Option(None, help="Stop after N consecutive failed episodes"),
    skip_existing: bool = typer.Option(False, "--skip-existing/--no-skip-existing",
                                       help="Do not re-scrape episodes that already have links"),
    force_rescrape: bool = typer.Option(False, "--force-rescrape",
                                        help="Drop stored links of each visited episode and scrape again"),
    stop_on_error: bool = typer.Option(False, "--stop-on-error", help="Abort on the first page failure"),
):
    """Walk a series episode by episode and store the links found."""
    cfg = _config()
    ctx = _open(cfg)
    try:
        capability = ctx.registry.find_for_url(url, host)
        if capability is None:
            _fail(f"No discovery capability can handle {url} (known: {', '.join(ctx.registry.names())})")
        opts = TraversalOptions(
            series_name=series_name,
            preferred_host=host,
            start_season=start_season,
            start_episode=start_episode,
            max_episodes=max_episodes,
            max_consecutive_errors=max_errors or cfg.max_consecutive_errors,
            delay_between_episodes=cfg.delay_between_episodes_ms / 1000,
            delay_after_error=cfg.delay_after_error_ms / 1000,
            continue_on_error=not stop_on_error,
            skip_existing_episodes=skip_existing,
            force_rescrape=force_rescrape,
        )
        console.print(f"[cyan]Extracting[/cyan] {url} with {capability.name}")
        try:
            result = TraversalEngine(ctx.store, capability).run(url, opts)
        except (SeriesLoaderError, ValueError) as e:
            _fail(f"Extraction failed: {e}")
        except KeyboardInterrupt:
            _fail("Extraction interrupted")
        _print_traversal(result)
    finally:
        ctx.close()


def _print_downloads(r: DownloadResult) -> None:
    t = Table(title="Downloads")
    t.add_column("Metric"); t.add_column("Value", justify="right")
    t.add_row("Total", str(r.total))
    t.add_row("Succeeded", f"[green]{r.succeeded}[/green]")
    t.add_row("Failed", f"[red]{r.failed}[/red]" if r.failed else "0")
    t.add_row("Skipped (exists)", str(r.skipped))
    t.add_row("Cancelled", str(r.cancelled))
    t.add_row("Success rate", f"{r.success_rate:.0%}")
    t.add_row("Duration", f"{r.duration:.1f}s")
    for q, n in sorted(r.quality_breakdown.items()):
        t.add_row(f"Quality {q}", str(n))
    console.print(t)
    if r.errors:
        console.print("[yellow]Errors:[/yellow]")
        _print_errors([f"link {e.link_id} ({e.kind}): {e.message}" for e in r.errors])


@app.command()
def download(
    series: str = typer.Option(None, help="Only this series (name or clean name)"),
    season: int = typer.Option(None, help="Only this season"),
    episode: int = typer.Option(None, help="Only this episode"),
    output_dir: str = typer.Option(None, help="Download root; default from config"),
    parallel: int = typer.Option(None, help="Concurrent downloads; default from config"),
    quality: str = typer.Option("best", help="yt-dlp format selector"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Re-download files that already exist"),
):
    """Download every valid, not yet started link."""
    cfg = _config()
    ctx = _open(cfg)
    try:
        opts = DownloadOptions(
            series_name=series,
            season=season,
            episode=episode,
            output_dir=output_dir or cfg.download_dir,
            max_parallel=parallel or cfg.max_concurrent_downloads,
            quality=quality,
            overwrite_existing=overwrite,
            timeout_minutes=cfg.download_timeout_minutes,
        )
        scheduler = DownloadScheduler(ctx.store, YtDlpRunner(cfg.yt_dlp_path or None))
        try:
            result = scheduler.start_downloads(opts)
        except (SeriesLoaderError, ValueError) as e:
            _fail(f"Download run failed: {e}")
        except KeyboardInterrupt:
            _fail("Downloads interrupted; unstarted links stay pending")
        if not result.total:
            print("[yellow]No pending links[/yellow]")
            return
        _print_downloads(result)
        if result.failed:
            raise typer.Exit(1)
    finally:
        ctx.close()


@app.command()
def status(
    series: str = typer.Option(None, help="Show one series"),
    detailed: bool = typer.Option(False, "--detailed", help="List seasons and episodes"),
):
    """Show catalog statistics or the state of one series."""
    cfg = _config()
    ctx = _open(cfg)
    try:
        if series:
            _series_status(ctx, series, detailed)
            return
        st = ctx.store.statistics()
        t = Table(title="Catalog")
        t.add_column("Metric"); t.add_column("Value", justify="right")
        t.add_row("Series", str(st.total_series))
        t.add_row("Seasons", str(st.total_seasons))
        t.add_row("Episodes", str(st.total_episodes))
        t.add_row("Links", str(st.total_links))
        t.add_row("Valid links", f"{st.valid_links} ({st.valid_links_percentage:.1f}%)")
        t.add_row("Downloaded", f"{st.completed_downloads} ({st.completion_rate:.1f}%)")
        t.add_row("Pending", str(st.pending_downloads))
        t.add_row("Failed", str(st.failed_downloads))
        console.print(t)

        rows = ctx.store.list_series()
        if rows:
            s = Table(title="Series")
            s.add_column("ID", justify="right")
            s.add_column("Name")
            s.add_column("Status")
            s.add_column("Seasons", justify="right")
            s.add_column("Episodes", justify="right")
            s.add_column("Links", justify="right")
            s.add_column("Downloaded", justify="right")
            for r in rows:
                s.add_row(str(r.id), r.name, r.status.value, str(r.total_seasons),
                          str(r.total_episodes), str(r.found_links), str(r.completed_downloads))
            console.print(s)
    finally:
        ctx.close()


def _series_status(ctx: AppContext, name: str, detailed: bool) -> None:
    row = ctx.store.get_series(name)
    if row is None:
        _fail(f"Series not found: {name}")
    console.print(
        f"[bold]{escape(row.name)}[/bold] {escape('[' + row.status.value + ']')} "
        f"seasons={row.total_seasons} episodes={row.total_episodes} links={row.found_links}"
    )
    if row.error_message:
        console.print(f"[red]Last error:[/red] {escape(row.error_message)}")
    if not detailed:
        return
    t = Table(title=row.name)
    t.add_column("Season", justify="right")
    t.add_column("Episode", justify="right")
    t.add_column("Status")
    t.add_column("Links", justify="right")
    t.add_column("Downloaded", justify="right")
    t.add_column("URL")
    for season in row.seasons:
        for ep in season.episodes:
            done = sum(1 for l in ep.links if l.download_status == DownloadStatus.COMPLETED)
            t.add_row(str(season.number), str(ep.number), ep.status.value,
                      str(len(ep.links)), str(done), ep.original_url or "")
    console.print(t)


@app.command()
def export(
    fmt: str = typer.Option("json", "--format", help=f"One of: {', '.join(FORMATS)}"),
    series: str = typer.Option(None, help="Only this series"),
    output: str = typer.Option(None, help="Target file; default is a timestamped name in export_dir"),
):
    """Write stored links to JSON, CSV or a yt-dlp shell script."""
    cfg = _config()
    if fmt.lower() not in FORMATS:
        _fail(f"Unsupported format {fmt!r}; choose from {', '.join(FORMATS)}")
    ctx = _open(cfg)
    try:
        links = ctx.store.get_links_for_export(series)
        if not links:
            print("[yellow]No links to export[/yellow]")
            return
        target = Path(output) if output else Path(cfg.export_dir) / default_export_name(series, fmt.lower())
        path = export_links(links, fmt, target, output_dir=cfg.download_dir)
        print(f"[green]Exported {len(links)} link(s) to {path}[/green]")
    finally:
        ctx.close()


@app.command()
def validate(
    series: str = typer.Option(None, help="Only this series"),
    force: bool = typer.Option(False, "--force", help="Re-check links already tested"),
    batch_size: int = typer.Option(50, help="Links per progress batch"),
    timeout: int = typer.Option(10, help="Per-request timeout in seconds"),
):
    """Check stored links against their host."""
    cfg = _config()
    cfg.network_timeout_seconds = timeout
    ctx = _open(cfg)
    try:
        try:
            report = validate_links(ctx.store, ctx.registry, series, force=force, batch_size=batch_size)
        except (SeriesLoaderError, ValueError) as e:
            _fail(f"Validation failed: {e}")
        t = Table(title="Validation")
        t.add_column("Metric"); t.add_column("Value", justify="right")
        t.add_row("Checked", str(report.checked))
        t.add_row("Valid", f"[green]{report.valid}[/green]")
        t.add_row("Invalid", f"[red]{report.invalid}[/red]" if report.invalid else "0")
        t.add_row("Skipped (no capability)", str(report.skipped))
        console.print(t)
    finally:
        ctx.close()


@app.command()
def cleanup(
    days: int = typer.Option(30, help="Only touch rows older than N days"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count only, delete nothing"),
    invalid: bool = typer.Option(True, "--invalid/--no-invalid", help="Remove invalid links"),
    failed: bool = typer.Option(True, "--failed/--no-failed", help="Remove failed series"),
    empty_series: bool = typer.Option(False, "--empty-series", help="Remove series without links"),
):
    """Remove stale rows from the catalog."""
    cfg = _config()
    if days < 0:
        _fail("--days must not be negative")
    ctx = _open(cfg)
    try:
        cutoff = datetime.utcnow() - timedelta(days=days)
        verb = "Would remove" if dry_run else "Removed"
        if invalid:
            n = ctx.store.cleanup_invalid_links(cutoff, dry_run=dry_run)
            console.print(f"{verb} {n} invalid link(s)")
        if failed:
            n = ctx.store.cleanup_failed_series(cutoff, dry_run=dry_run)
            console.print(f"{verb} {n} failed series")
        if empty_series:
            n = ctx.store.cleanup_empty_series(dry_run=dry_run)
            console.print(f"{verb} {n} empty series")
    finally:
        ctx.close()


if __name__ == "__main__":
    app()
