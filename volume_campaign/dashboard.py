"""
Progress Dashboard
==================
Rich renderables for a CampaignRun: a statistics table and the recent trade
log. Rendering only reads the run; it never changes it.
"""

from typing import Iterable, Optional

from rich import box
from rich.console import Group
from rich.panel import Panel
from rich.table import Table

from .aggregator import visible_log
from .api_client import PoolInfo, TrendingCatalog, TrendingCostEstimate
from .models import CampaignRun, ProgressSnapshot, RunStatus, TradeDirection, TradeStatus
from .utils import (
    create_progress_bar,
    format_duration,
    format_minutes,
    format_tx_hash,
    format_volume,
)

STATUS_STYLES = {
    RunStatus.RUNNING: "bold green",
    RunStatus.PAUSED: "bold yellow",
    RunStatus.COMPLETED: "bold cyan",
    RunStatus.ERROR: "bold red",
}

TRADE_STATUS_ICONS = {
    TradeStatus.PENDING: "[yellow]⏳ pending[/yellow]",
    TradeStatus.SUCCESS: "[green]✓ success[/green]",
    TradeStatus.FAILED: "[red]✗ failed[/red]",
}


def stats_table(run: CampaignRun) -> Table:
    """Campaign statistics"""
    table = Table(title=f"Campaign {run.id}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    style = STATUS_STYLES.get(run.status, "white")
    table.add_row("Status", f"[{style}]{run.status.value.upper()}[/{style}]")
    if run.job_id:
        table.add_row("Job", run.job_id)
    table.add_row("Progress", create_progress_bar(run.completed_count, run.trade_count))
    table.add_row("Trades", f"{run.completed_count}/{run.trade_count}")
    table.add_row("Successful", str(run.success_count))
    table.add_row("Failed", str(run.failure_count))
    table.add_row("Success Rate", f"{run.success_rate:.1f}%")
    table.add_row("Volume (est.)", format_volume(run.volume_generated))
    table.add_row("Time Remaining", format_minutes(run.estimated_remaining_minutes))
    if run.error_message:
        table.add_row("Error", f"[red]{run.error_message}[/red]")
    return table


def trade_log_table(run: CampaignRun, limit: Optional[int] = None) -> Table:
    """The most recent trade legs, newest first."""
    entries = visible_log(run) if limit is None else visible_log(run, limit)

    table = Table(title="Recent Trades", box=box.ROUNDED)
    table.add_column("Time", style="dim")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Side", style="white")
    table.add_column("Amount", style="green", justify="right")
    table.add_column("Status", style="white")
    table.add_column("Tx / Error", style="dim")

    for entry in entries:
        side = "[green]BUY[/green]" if entry.direction is TradeDirection.BUY else "[red]SELL[/red]"
        if entry.status is TradeStatus.FAILED:
            detail = entry.error_detail or "-"
        else:
            detail = format_tx_hash(entry.tx_reference) if entry.tx_reference else "-"
        table.add_row(
            entry.timestamp.strftime("%H:%M:%S"),
            str(entry.pair_index),
            side,
            f"{entry.amount:g}",
            TRADE_STATUS_ICONS[entry.status],
            detail,
        )

    if not entries:
        table.add_row("-", "-", "-", "-", "[dim]no trades yet[/dim]", "-")
    return table


def render_run(run: CampaignRun) -> Group:
    """Full dashboard for a live display."""
    return Group(stats_table(run), trade_log_table(run))


def snapshot_table(snapshot: ProgressSnapshot) -> Table:
    """Remote job progress as returned by the service."""
    table = Table(title=f"Job {snapshot.job_id}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Status", snapshot.normalized_status.upper() or "-")
    table.add_row("Makers", f"{snapshot.completed_makers}/{snapshot.total_makers}")
    table.add_row("Progress", f"{snapshot.progress_percentage:.1f}%")
    table.add_row("Volume", format_volume(snapshot.generated_volume))
    table.add_row(
        "Transactions",
        f"{snapshot.total_transactions} ({snapshot.successful} ok / {snapshot.failed} failed)"
    )
    table.add_row("Active Wallets", str(snapshot.active_wallets))
    table.add_row("Buy Ratio", f"{snapshot.current_buy_ratio:.2f}")
    if snapshot.estimated_completion is not None:
        try:
            table.add_row("Time Remaining", format_minutes(float(snapshot.estimated_completion)))
        except (TypeError, ValueError):
            table.add_row("Time Remaining", str(snapshot.estimated_completion))
    if snapshot.error_message:
        table.add_row("Error", f"[red]{snapshot.error_message}[/red]")
    return table


def pool_panel(pool: PoolInfo) -> Panel:
    if not pool.exists:
        return Panel(f"[red]No pool found for {pool.token_mint}[/red]", title="Pool", box=box.ROUNDED)
    return Panel(
        f"Liquidity: [green]{format_volume(pool.liquidity_usd)}[/green]\n"
        f"24h Volume: [green]{format_volume(pool.volume_24h)}[/green]\n"
        f"Fee Tier: {pool.fee_tier:g}%",
        title=f"Pool {pool.token_mint}",
        box=box.ROUNDED,
    )


def catalog_tables(catalog: TrendingCatalog) -> Group:
    title = "Trending Platforms" + (" (built-in defaults)" if catalog.is_fallback else "")
    platforms = Table(title=title, box=box.ROUNDED)
    platforms.add_column("ID", style="cyan")
    platforms.add_column("Name", style="white")
    platforms.add_column("Min 24h Volume", style="green", justify="right")
    platforms.add_column("Difficulty", style="yellow")
    for p in catalog.platforms:
        platforms.add_row(p.id, p.name, format_volume(p.min_volume_24h), p.difficulty or "-")

    intensities = Table(title="Intensities", box=box.ROUNDED)
    intensities.add_column("ID", style="cyan")
    intensities.add_column("Name", style="white")
    intensities.add_column("Description", style="dim")
    for i in catalog.intensities:
        intensities.add_row(i.id, i.name, i.description or "-")

    return Group(platforms, intensities)


def costs_table(estimate: TrendingCostEstimate) -> Table:
    table = Table(title="Trending Cost Estimate", box=box.ROUNDED)
    table.add_column("Platform", style="cyan")
    table.add_column("Cost", style="green", justify="right")
    table.add_column("Success", style="yellow", justify="right")
    table.add_column("Time", style="white", justify="right")

    for platform, data in sorted(estimate.platforms.items()):
        table.add_row(platform, *_cost_cells(data))
    if estimate.totals:
        table.add_row("[bold]Total[/bold]", *_cost_cells(estimate.totals))
    return table


def _cost_cells(data) -> Iterable[str]:
    cost = data.get("cost_usd", data.get("total_cost_usd", data.get("cost")))
    probability = data.get("success_probability")
    hours = data.get("time_estimate_hours", data.get("estimated_hours"))
    return (
        format_volume(float(cost)) if cost is not None else "-",
        f"{float(probability) * 100:.0f}%" if probability is not None else "-",
        format_duration(float(hours) * 3600) if hours is not None else "-",
    )


def jobs_table(jobs) -> Table:
    table = Table(title="Jobs", box=box.ROUNDED)
    table.add_column("Job", style="cyan")
    table.add_column("Token", style="dim")
    table.add_column("Mode", style="white")
    table.add_column("Status", style="green")
    table.add_column("Progress", style="yellow", justify="right")

    for job in jobs:
        table.add_row(
            str(job.get("job_id", "-")),
            str(job.get("token_mint", "-")),
            str(job.get("mode", "-")),
            str(job.get("status", "-")),
            f"{float(job.get('progress_percentage') or 0):.0f}%",
        )
    return table
