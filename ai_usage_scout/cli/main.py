"""
CLI interface for AI Usage Scout.

Provides command-line access to dashboard fetches and page probes.
"""

import asyncio
import logging
import sys
from dataclasses import asdict
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_usage_scout.config.loader import ScoutConfig, load_scout_config
from ai_usage_scout.core.errors import AuthenticationRequired, ScoutError
from ai_usage_scout.sdk.scout import build_scout
from ai_usage_scout.storage.models import ProbeResult, UsageSnapshot

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_AUTH = 2  # Re-login required

# Credit events shown by `fetch`; the full list is in the snapshot
MAX_EVENTS_SHOWN = 10


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI Usage Scout CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Usage Scout - Use --help to see available commands")


@app.command()
def fetch(
    identity: str = typer.Argument(..., help="Account identity whose stored session is used"),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for the dashboard"
    ),
    debug_dump: bool = typer.Option(
        False,
        "--debug-dump",
        help="Write the last page HTML and text to disk on failure"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show per-poll trace messages"
    )
):
    """
    Fetch the usage dashboard for an identity.

    Prints the remaining quota, the credits purchase link, the daily
    breakdown and the most recent credit events.
    """
    _configure_logging(verbose)
    config = _load_config_or_exit(config_path)

    async def run() -> UsageSnapshot:
        scout = build_scout(config)
        try:
            return await scout.fetch_dashboard(identity, timeout=timeout, debug_dump=debug_dump)
        finally:
            await scout.close()

    snapshot = _run_or_exit(run())
    _display_snapshot(snapshot)
    sys.exit(EXIT_CODE_OK)


@app.command()
def probe(
    identity: str = typer.Argument(..., help="Account identity whose stored session is used"),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for a stable page"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show per-poll trace messages"
    )
):
    """Report what the dashboard page shows for an identity without waiting for data."""
    _configure_logging(verbose)
    config = _load_config_or_exit(config_path)

    async def run() -> ProbeResult:
        scout = build_scout(config)
        try:
            return await scout.probe(identity, timeout=timeout)
        finally:
            await scout.close()

    result = _run_or_exit(run())
    _display_probe(result)
    sys.exit(EXIT_CODE_FAIL if result.timed_out else EXIT_CODE_OK)


@app.command(name="config")
def show_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    )
):
    """Print the effective configuration."""
    config = _load_config_or_exit(config_path)
    console.print(yaml.safe_dump(asdict(config), sort_keys=False).rstrip())
    sys.exit(EXIT_CODE_OK)


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logger = logging.getLogger("ai_usage_scout")
    logger.setLevel(logging.DEBUG)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=console, show_path=False))


def _load_config_or_exit(config_path: Optional[str]) -> ScoutConfig:
    try:
        return load_scout_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _run_or_exit(coro):
    """Run a scout coroutine, mapping extraction failures to exit codes."""
    try:
        return asyncio.run(coro)
    except AuthenticationRequired as e:
        console.print(f"[yellow]Login required:[/] {str(e)}")
        sys.exit(EXIT_CODE_AUTH)
    except ScoutError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _display_snapshot(snapshot: UsageSnapshot) -> None:
    """Display a usage snapshot in a readable format."""
    console.print("\n[bold]Usage Dashboard[/]")
    console.print(f"Signed in as: {snapshot.signed_in_identity or 'unknown'}")
    if snapshot.remaining_percent is None:
        console.print("Remaining: [dim]not shown[/]")
    else:
        console.print(f"Remaining: [bold]{snapshot.remaining_percent:g}%[/]")
    if snapshot.purchase_url:
        console.print(f"Buy credits: {snapshot.purchase_url}")
    console.print(f"Updated at: {snapshot.updated_at.isoformat(timespec='seconds')}")

    if snapshot.daily_breakdown:
        table = Table(title="Daily Breakdown", show_header=True, header_style="bold magenta")
        table.add_column("Day")
        table.add_column("Services")
        table.add_column("Total", justify="right")
        for day in snapshot.daily_breakdown:
            services = ", ".join(f"{s.service} {s.credits_used:g}" for s in day.services)
            table.add_row(day.day.isoformat(), services, f"{day.total_credits_used:g}")
        console.print(table)

    if snapshot.credit_events:
        table = Table(title="Recent Credit Events", show_header=True, header_style="bold magenta")
        table.add_column("Date")
        table.add_column("Service")
        table.add_column("Credits", justify="right")
        for event in snapshot.credit_events[:MAX_EVENTS_SHOWN]:
            table.add_row(event.timestamp.isoformat(), event.service, f"{event.credits_used:g}")
        console.print(table)


def _display_probe(result: ProbeResult) -> None:
    """Display a probe result."""
    console.print("\n[bold]Dashboard Probe[/]")
    console.print(f"Location: {result.location or 'unknown'}")
    console.print(f"Signed in as: {result.signed_in_identity or 'unknown'}")
    if result.timed_out:
        console.print("[yellow]No stable page state before the deadline[/]")
    else:
        console.print("[green]✓[/] Dashboard reachable")


if __name__ == "__main__":
    app()
