"""Command line interface for refreshing and inspecting the draw cache."""
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lotto_refresh.config.log_setup import configure_logging
from lotto_refresh.config.settings import Settings, settings as default_settings
from lotto_refresh.refresh.fetcher import FileFetcher
from lotto_refresh.refresh.models import DrawRecord, QualityReport, RefreshResult
from lotto_refresh.refresh.orchestrator import RefreshOrchestrator, RefreshState
from lotto_refresh.refresh.quality import (
    confirmation_prompt,
    format_report,
    generate_quality_report,
    quality_aspects,
)
from lotto_refresh.refresh.validator import DataValidator
from lotto_refresh.storage.cache_manager import CacheManager
from lotto_refresh.storage.csv_writer import CSVWriter
from lotto_refresh.storage.json_writer import JSONWriter
from lotto_refresh.storage.store import JsonFileStore

console = Console()


def _open_cache(settings: Settings) -> CacheManager:
    store = JsonFileStore(settings.cache_dir, capacity_bytes=settings.storage_quota_bytes)
    cache = CacheManager(store, settings)
    cache.load()
    return cache


def _read_payload(path: str) -> str:
    return Path(path).read_text(encoding="utf-8-sig")


def _draws_table(draws: List[DrawRecord], title: str, limit: int = 10) -> Table:
    table = Table(title=title)
    table.add_column("Draw Number", style="cyan")
    table.add_column("Date", style="magenta")
    table.add_column("Winning Numbers", style="green")
    table.add_column("Bonus", style="yellow")

    for draw in draws[:limit]:
        table.add_row(
            str(draw.draw_number),
            draw.draw_date.strftime("%Y-%m-%d"),
            ", ".join(str(n) for n in draw.numbers),
            str(draw.bonus)
        )
    return table


def _print_result(result: RefreshResult) -> None:
    if result.success and result.synthetic:
        console.print("[bold yellow]Using synthetic data; no real draws were available[/bold yellow]")
    elif result.success and result.fallback_used:
        console.print("[yellow]Refresh failed, serving cached data[/yellow]")
    elif result.success and result.from_cache:
        console.print("[green]Cached data is fresh[/green]")
    elif result.success:
        console.print("[bold green]Data refreshed successfully[/bold green]")
    else:
        console.print("[bold red]Refresh failed[/bold red]")

    if result.error:
        console.print(f"[red]{escape(result.error)}[/red]")

    console.print(f"Records: {result.record_count}")
    console.print(f"Download attempts: {result.retry_attempts}")
    if result.data:
        console.print(_draws_table(result.data, "Latest Draws"))
        if len(result.data) > 10:
            console.print(f"[dim]... and {len(result.data) - 10} more[/dim]")


def _show_state(state: RefreshState) -> None:
    console.print(f"[dim]{state.value}...[/dim]")


@click.group()
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
    default=default_settings.log_level,
    help='Logging level'
)
@click.option('--cache-dir', type=click.Path(file_okay=False), help='Override the cache directory')
@click.pass_context
def main(ctx: click.Context, log_level: str, cache_dir: Optional[str]):
    """Lottery draw data refresh tool."""
    configure_logging(log_level)
    settings = Settings()
    settings.log_level = log_level
    if cache_dir:
        settings.cache_dir = cache_dir
    ctx.obj = settings


@main.command()
@click.pass_obj
def status(settings: Settings):
    """Show what is currently cached."""
    cache = _open_cache(settings)
    stats = cache.get_stats()

    table = Table(title="Cache Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Records", str(stats.record_count))
    age = "never refreshed" if stats.cache_age_hours == float("inf") else f"{stats.cache_age_hours:.1f} h"
    table.add_row("Age", age)
    table.add_row("Fresh", "yes" if stats.is_fresh else "no")
    table.add_row("Last access", stats.last_access.isoformat() if stats.last_access else "-")
    table.add_row("Size", f"{stats.cache_size_bytes / 1024:.1f} KB")
    ratio = f"{stats.compression_ratio:.2f}" if stats.compression_ratio is not None else "-"
    table.add_row("Compression ratio", ratio)
    table.add_row("Format version", stats.version)
    table.add_row("Integrity", "ok" if cache.validate_integrity() else "unverified")
    console.print(table)


@main.command()
@click.option('--force', is_flag=True, help='Download even if the cache is fresh')
@click.option('--quality-check', is_flag=True, help='Grade the download and ask before using doubtful data')
@click.option('--yes', is_flag=True, help='Accept doubtful data without asking')
@click.option('--source', type=click.Path(exists=True, dir_okay=False), help='Read the archive from a local file')
@click.pass_obj
def refresh(settings: Settings, force: bool, quality_check: bool, yes: bool, source: Optional[str]):
    """Refresh the cached draws from the data source."""
    fetcher = FileFetcher(source) if source else None
    orchestrator = RefreshOrchestrator.from_settings(settings, fetcher=fetcher)
    orchestrator.add_listener(_show_state)

    def confirm(report: QualityReport) -> bool:
        console.print(confirmation_prompt(report), markup=False)
        if yes:
            return True
        return click.confirm("Use this data?", default=False)

    try:
        if quality_check:
            result = orchestrator.refresh_with_quality_check(confirm=confirm, force=force)
        elif force:
            result = orchestrator.force_refresh()
        else:
            result = orchestrator.refresh()
    except KeyboardInterrupt:
        console.print("\n[yellow]Refresh interrupted by user[/yellow]")
        sys.exit(1)

    _print_result(result)
    if result.quality_report is not None:
        console.print(format_report(result.quality_report), markup=False)
    if not result.success:
        sys.exit(1)


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
def validate(file: str):
    """Validate an archive file without caching it."""
    outcome = DataValidator().validate(_read_payload(file))

    style = "green" if outcome.is_valid else "red"
    console.print(f"[{style}]Valid: {outcome.is_valid}[/{style}]")
    console.print(f"Quality score: {outcome.data_quality_score}/100")
    console.print(f"Valid records: {outcome.record_count} of {outcome.metrics.total_rows}")
    for error in outcome.errors:
        console.print(f"[red]error:[/red] {escape(error)}")
    for warning in outcome.warnings:
        console.print(f"[yellow]warning:[/yellow] {escape(warning)}")

    if not outcome.is_valid:
        sys.exit(1)


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
def report(file: str):
    """Print the data quality report for an archive file."""
    quality = generate_quality_report(DataValidator().validate(_read_payload(file)))
    console.print(format_report(quality), markup=False)

    table = Table(title="Quality Aspects")
    table.add_column("Aspect", style="cyan")
    table.add_column("Result", style="green")
    for aspect, value in quality_aspects(quality).items():
        table.add_row(aspect, str(value))
    console.print(table)
    console.print(f"Can proceed: {quality.can_proceed}")
    console.print(f"Requires confirmation: {quality.requires_confirmation}")


@main.command()
@click.pass_obj
def clear(settings: Settings):
    """Delete all cached data."""
    _open_cache(settings).clear()
    console.print("[green]Cache cleared[/green]")


@main.command()
@click.pass_obj
def optimize(settings: Settings):
    """Deduplicate, re-sort and trim the cached draws."""
    cache = _open_cache(settings)
    before = cache.get_stats().record_count
    after = cache.optimize()
    console.print(f"[green]Cache optimized: {before} -> {after} records[/green]")


@main.command()
@click.option(
    '--format',
    'output_format',
    type=click.Choice(['json', 'csv', 'both']),
    default=None,
    help='Output format'
)
@click.option('--output-dir', type=click.Path(file_okay=False), help='Directory for exported files')
@click.pass_obj
def export(settings: Settings, output_format: Optional[str], output_dir: Optional[str]):
    """Export the cached draws to JSON and/or CSV."""
    output_format = output_format or settings.output_format
    output_dir = output_dir or settings.output_dir

    draws = _open_cache(settings).get_cached_data()
    if not draws:
        console.print("[yellow]No cached draws to export[/yellow]")
        sys.exit(1)

    if output_format in ['json', 'both']:
        json_path = JSONWriter(output_dir=f"{output_dir}/json").write(draws)
        console.print(f"[green]✓[/green] JSON file: {json_path}")

    if output_format in ['csv', 'both']:
        csv_path = CSVWriter(output_dir=f"{output_dir}/csv").write(draws)
        console.print(f"[green]✓[/green] CSV file: {csv_path}")


if __name__ == "__main__":
    main()
