#!/usr/bin/env python3
"""
Volume Campaign CLI
===================
Command line entry point: configure, run and monitor volume campaigns.

Examples:
  # Write a config and store an encrypted trading key
  volume-campaign init --import-key

  # Simulate a 100-pair bump campaign over an hour
  volume-campaign run --token 0x... --trades 100 --duration 60 --dry-run

  # Delegate a trending campaign to the remote service
  volume-campaign run --token <mint> --mode trending --platforms dexscreener,birdeye --intensity medium

  # Inspect or stop a remote job
  volume-campaign status <job_id>
  volume-campaign stop <job_id>
"""

import sys
import signal
import asyncio
import argparse
import getpass
from pathlib import Path
from typing import Optional

from rich import box
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .api_client import BackendClient
from .config import DEFAULT_CONFIG_PATH, ConfigManager, Settings
from .dashboard import (
    catalog_tables,
    costs_table,
    jobs_table,
    pool_panel,
    render_run,
    snapshot_table,
    stats_table,
    trade_log_table,
)
from .executors import DryRunExecutor, JobExecutor, SwapExecutor
from .models import Mode, RunStatus
from .pacing import PacingEngine
from .utils import (
    EVM_CHAINS,
    SUPPORTED_CHAINS,
    LookupUnavailable,
    ValidationError,
    VolumeCampaignError,
    console,
    format_address,
    sanitize_error_message,
    setup_logging,
)
from .validation import LookupResult, RawFormInput, run_lookup, validate
from .wallet import TradingWallet

NOTIFY_STYLES = {
    "success": "green",
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
}


def print_banner():
    """Print the CLI banner."""
    banner = """
    📈 Volume Campaign Runner 📈
    ════════════════════════════
    Paced buy/sell volume campaigns
    """
    console.print(Panel(banner, style="bold cyan", box=box.DOUBLE))


def get_password(prompt: str = "Enter config password: ") -> str:
    """Securely get password from user."""
    console.print(f"[yellow]{prompt}[/yellow]")
    password = getpass.getpass("> ")

    if len(password) < 8:
        console.print("[red]Password must be at least 8 characters[/red]")
        sys.exit(1)

    return password


def load_settings(args) -> Settings:
    settings = ConfigManager(Path(args.config)).load_or_default()
    if getattr(args, "log_level", None):
        settings.log_level = args.log_level
    setup_logging(settings.log_level, settings.log_file)
    return settings


def console_notify(level: str, message: str):
    style = NOTIFY_STYLES.get(level, "white")
    console.print(f"[{style}]{message}[/{style}]")


def _split_csv(value: Optional[str]):
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def print_errors(errors):
    table = Table(title="Invalid Campaign", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Problem", style="red")
    for name, message in sorted(errors.items()):
        table.add_row(name, message)
    console.print(table)


def init_command(args):
    """Handle init command - write a config file, optionally with an encrypted key."""
    print_banner()
    manager = ConfigManager(Path(args.config))

    if manager.exists() and not args.force:
        console.print(f"[yellow]Config already exists at {manager.config_path} (use --force to overwrite)[/yellow]")
        return

    data = Settings().to_dict()
    data["chain"] = args.chain
    if args.rpc:
        data["rpc_url"] = args.rpc
    if args.api_url:
        data["api_base_url"] = args.api_url
    if args.backend_url:
        data["backend_url"] = args.backend_url

    private_key = password = None
    if args.import_key:
        console.print("[yellow]Enter trading wallet private key (with 0x prefix):[/yellow]")
        private_key = getpass.getpass("> ")
        password = get_password("Create encryption password: ")
        console.print("[yellow]Confirm password:[/yellow]")
        if getpass.getpass("> ") != password:
            console.print("[red]Passwords don't match![/red]")
            return

    try:
        manager.create_config(data, private_key=private_key, password=password)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Config written to {manager.config_path}[/green]")


def _raw_input_from_args(args, settings: Settings) -> RawFormInput:
    return RawFormInput(
        token_address=args.token,
        trade_count=args.trades if args.trades is not None else settings.default_trade_count,
        duration_minutes=args.duration if args.duration is not None else settings.default_duration_minutes,
        trade_size=args.size if args.size is not None else settings.default_trade_size,
        slippage_percent=args.slippage if args.slippage is not None else settings.default_slippage_percent,
        mode=args.mode or settings.default_mode,
        custom_delay_min=args.delay_min,
        custom_delay_max=args.delay_max,
        selected_platforms=_split_csv(args.platforms),
        trending_intensity=args.intensity,
    )


def _open_wallet(settings: Settings, config_path: str) -> TradingWallet:
    manager = ConfigManager(Path(config_path))
    password = get_password()
    private_key = manager.decrypt_private_key(settings, password)
    return TradingWallet(private_key, settings.rpc_url, settings.chain_id, timeout=int(settings.request_timeout))


def build_engine(args, settings: Settings, client: BackendClient, raw: RawFormInput, on_update) -> PacingEngine:
    """
    Pick the executors for this run and fill in the wallet-dependent inputs of ``raw``.

    Raises:
        VolumeCampaignError: the requested execution path is not available
    """
    remote = args.remote or (raw.mode or "").strip().lower() == Mode.TRENDING.value
    dry_run = args.dry_run or settings.dry_run

    executor = None
    job_executor = None
    wallet = None

    if not remote and settings.chain not in EVM_CHAINS and not dry_run:
        raise VolumeCampaignError(f"Direct execution is not available on {settings.chain}; use --remote")

    if not dry_run and settings.chain in EVM_CHAINS and (not remote or (args.wallet is None and settings.encrypted_private_key)):
        try:
            wallet = _open_wallet(settings, args.config)
        except ValueError as e:
            raise VolumeCampaignError(str(e))

    if remote:
        user_wallet = args.wallet or (wallet.address if wallet else None)
        if not user_wallet:
            raise VolumeCampaignError("Remote campaigns need --wallet or a stored trading key")
        job_executor = JobExecutor(client, user_wallet, use_jito=args.use_jito, target_price_usd=args.target_price)
        raw.wallet_connected = True
        raw.wallet_address = user_wallet
    elif dry_run:
        executor = DryRunExecutor(failure_rate=args.failure_rate)
        raw.wallet_connected = True
    else:
        executor = SwapExecutor(
            wallet,
            api_key=settings.zerox_api_key,
            confirm_timeout=settings.confirm_timeout,
            request_timeout=settings.request_timeout,
        )
        raw.wallet_connected = True
        raw.wallet_address = wallet.address

    if wallet is not None:
        raw.balance = run_lookup(wallet.get_native_balance)
    elif dry_run:
        raw.balance = LookupResult.unavailable("dry run: balance not checked")
    else:
        raw.balance = LookupResult.unavailable("balance is checked by the remote service")

    if raw.token_address:
        raw.pool = run_lookup(lambda: client.check_pool(raw.token_address))

    return PacingEngine(
        executor=executor,
        job_executor=job_executor,
        settings=settings,
        notify=console_notify,
        on_update=on_update,
        remote=remote,
    )


async def _drive(engine: PacingEngine, config):
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.stop)
    except NotImplementedError:
        # Windows: Ctrl+C arrives as KeyboardInterrupt in run_command
        pass
    engine.start(config)
    try:
        return await engine.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def run_command(args):
    """Handle run command - validate and run a campaign."""
    print_banner()
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    raw = _raw_input_from_args(args, settings)

    live = Live(console=console, refresh_per_second=4, transient=False)

    try:
        engine = build_engine(args, settings, client, raw, on_update=lambda run: live.update(render_run(run)))
        is_trending = str(raw.mode).strip().lower() == Mode.TRENDING.value
        catalog = client.get_trending_catalog() if is_trending else None
        result = validate(raw, settings, catalog.intensity_ids if catalog else None)
        if not result.ok:
            raise ValidationError(result.errors)
    except ValidationError as e:
        print_errors(e.errors)
        sys.exit(1)
    except (VolumeCampaignError, ValueError) as e:
        console.print(f"[red]{sanitize_error_message(e)}[/red]")
        sys.exit(1)

    for name, reason in result.warnings.items():
        console.print(f"[yellow]⚠ {name} check skipped: {sanitize_error_message(reason)}[/yellow]")

    config = result.config
    console.print(f"\n[bold cyan]⚙️  Campaign[/bold cyan]")
    console.print(f"  Token: {format_address(config.token_address)}")
    console.print(f"  Mode: {config.mode.value}")
    console.print(f"  Pairs: {config.trade_count} over {config.duration_minutes}m")
    console.print(f"  Trade Size: {config.trade_size}")
    console.print(f"  Slippage: {config.slippage_percent}%")
    if engine.uses_remote_job(config):
        execution = "🌐 REMOTE"
    elif isinstance(engine.executor, DryRunExecutor):
        execution = "🧪 DRY RUN"
    else:
        execution = "💰 LIVE"
    console.print(f"  Execution: {execution}")
    console.print("[dim]Press Ctrl+C to stop\n[/dim]")

    try:
        with live:
            run = asyncio.run(_drive(engine, config))
    except KeyboardInterrupt:
        engine.stop()
        run = engine.run

    console.print(stats_table(run))
    console.print(trade_log_table(run))
    if run.status is RunStatus.ERROR:
        sys.exit(1)


def status_command(args):
    """Handle status command - show remote job progress."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    try:
        snapshot = client.get_bot_progress(args.job_id)
    except LookupUnavailable as e:
        console.print(f"[red]Could not fetch job status: {sanitize_error_message(e)}[/red]")
        sys.exit(1)
    console.print(snapshot_table(snapshot))


def stop_command(args):
    """Handle stop command - stop a remote job."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    try:
        response = client.stop_bot_job(args.job_id)
    except LookupUnavailable as e:
        console.print(f"[red]Stop request failed: {sanitize_error_message(e)}[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Job {response.get('job_id', args.job_id)}: {response.get('status', 'stopped')}[/green]")


def check_pool_command(args):
    """Handle check-pool command."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    try:
        pool = client.check_pool(args.token)
    except LookupUnavailable as e:
        console.print(f"[yellow]Pool lookup unavailable: {sanitize_error_message(e)}[/yellow]")
        sys.exit(1)
    console.print(pool_panel(pool))


def platforms_command(args):
    """Handle platforms command - list trending platforms and intensities."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    console.print(catalog_tables(client.get_trending_catalog()))


def costs_command(args):
    """Handle costs command - estimate trending costs."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    platforms = _split_csv(args.platforms)
    if not platforms:
        console.print("[red]Select at least one platform with --platforms[/red]")
        sys.exit(1)
    try:
        estimate = client.get_multi_platform_costs(args.token, list(platforms), args.intensity, args.hours)
    except LookupUnavailable as e:
        console.print(f"[yellow]Cost estimate unavailable: {sanitize_error_message(e)}[/yellow]")
        sys.exit(1)
    console.print(costs_table(estimate))


def jobs_command(args):
    """Handle jobs command - list jobs of a wallet."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    try:
        jobs = client.list_jobs(args.wallet)
    except LookupUnavailable as e:
        console.print(f"[red]Could not list jobs: {sanitize_error_message(e)}[/red]")
        sys.exit(1)
    if not jobs:
        console.print("[dim]No jobs found[/dim]")
        return
    console.print(jobs_table(jobs))


def health_command(args):
    """Handle health command - probe the remote service."""
    settings = load_settings(args)
    client = BackendClient.from_settings(settings)
    answered, probed = client.test_connection()
    style = "green" if answered == probed else ("yellow" if answered else "red")
    console.print(f"[{style}]{answered}/{probed} endpoints answering at {settings.backend_url}[/{style}]")
    if answered == 0:
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Volume Campaign Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Global options
    parser.add_argument(
        '--config',
        default=str(DEFAULT_CONFIG_PATH),
        help='Path to campaign config'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override the configured log level'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Init command
    init_parser = subparsers.add_parser('init', help='Write a default config')
    init_parser.add_argument('--chain', choices=SUPPORTED_CHAINS, default='base', help='Target chain')
    init_parser.add_argument('--rpc', help='RPC URL')
    init_parser.add_argument('--api-url', help='Remote service API base URL')
    init_parser.add_argument('--backend-url', help='Remote service root URL')
    init_parser.add_argument('--import-key', action='store_true', help='Prompt for a trading key and encrypt it')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing config')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a campaign')
    run_parser.add_argument('--token', required=True, help='Token address / mint')
    run_parser.add_argument('--trades', type=int, help='Number of buy/sell pairs')
    run_parser.add_argument('--duration', type=int, help='Campaign duration in minutes')
    run_parser.add_argument('--size', type=float, help='Trade size in native units')
    run_parser.add_argument('--slippage', type=float, help='Slippage tolerance in percent')
    run_parser.add_argument('--mode', choices=[m.value for m in Mode], help='Pacing mode')
    run_parser.add_argument('--delay-min', type=float, help='Advanced mode: minimum delay (seconds)')
    run_parser.add_argument('--delay-max', type=float, help='Advanced mode: maximum delay (seconds)')
    run_parser.add_argument('--platforms', help='Trending mode: comma-separated platform ids')
    run_parser.add_argument('--intensity', help='Trending mode: intensity id')
    run_parser.add_argument('--remote', action='store_true', help='Run the campaign as a remote job')
    run_parser.add_argument('--wallet', help='Remote mode: wallet address submitting the job')
    run_parser.add_argument('--use-jito', action='store_true', default=None, help='Remote mode: use Jito bundles')
    run_parser.add_argument('--target-price', type=float, help='Remote mode: target price in USD')
    run_parser.add_argument('--dry-run', action='store_true', help='Simulate trades without sending transactions')
    run_parser.add_argument('--failure-rate', type=float, default=0.0, help='Dry run: simulated failure rate (0-1)')

    # Remote job commands
    status_parser = subparsers.add_parser('status', help='Show remote job progress')
    status_parser.add_argument('job_id', help='Job id')

    stop_parser = subparsers.add_parser('stop', help='Stop a remote job')
    stop_parser.add_argument('job_id', help='Job id')

    jobs_parser = subparsers.add_parser('jobs', help='List jobs submitted by a wallet')
    jobs_parser.add_argument('wallet', help='Wallet address')

    # Lookups
    pool_parser = subparsers.add_parser('check-pool', help='Check that a token has a liquidity pool')
    pool_parser.add_argument('token', help='Token address / mint')

    subparsers.add_parser('platforms', help='List trending platforms and intensities')

    costs_parser = subparsers.add_parser('costs', help='Estimate trending costs')
    costs_parser.add_argument('--token', required=True, help='Token address / mint')
    costs_parser.add_argument('--platforms', required=True, help='Comma-separated platform ids')
    costs_parser.add_argument('--intensity', default='medium', help='Intensity id')
    costs_parser.add_argument('--hours', type=float, help='Campaign duration in hours')

    subparsers.add_parser('health', help='Probe the remote service')

    args = parser.parse_args()

    if args.command == 'init':
        init_command(args)
    elif args.command == 'run':
        run_command(args)
    elif args.command == 'status':
        status_command(args)
    elif args.command == 'stop':
        stop_command(args)
    elif args.command == 'jobs':
        jobs_command(args)
    elif args.command == 'check-pool':
        check_pool_command(args)
    elif args.command == 'platforms':
        platforms_command(args)
    elif args.command == 'costs':
        costs_command(args)
    elif args.command == 'health':
        health_command(args)
    else:
        parser.print_help()


if __name__ == '__main__':
    main()
