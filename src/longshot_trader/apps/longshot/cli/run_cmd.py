"""CLI command for running the longshot trading bot.

Load the config file, build the paper executor and, when credentials and
``--confirm-live`` are supplied, the live executor, then run the cycle loop
until SIGINT or ``--max-cycles``.  Live trading without ``--confirm-live``
or without ``POLYMARKET_PRIVATE_KEY`` aborts before any order is placed.
"""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from longshot_trader.apps.longshot.cli._helpers import (
    DEFAULT_CONFIG_PATH,
    build_authenticated_client,
    build_sinks,
    configure_verbose_logging,
    has_private_key,
    load_provider,
)
from longshot_trader.apps.longshot_bot.config_provider import ConfigSnapshotProvider
from longshot_trader.apps.longshot_bot.data_source import GammaMarketSource
from longshot_trader.apps.longshot_bot.engine import LongshotEngine
from longshot_trader.apps.longshot_bot.exceptions import FatalAuthError
from longshot_trader.apps.longshot_bot.execution import LiveExecutor
from longshot_trader.apps.longshot_bot.models import BotConfig
from longshot_trader.apps.longshot_bot.notifications import NotificationDispatcher, TelegramNotifier
from longshot_trader.clients.polymarket.client import PolymarketClient
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError


def run(
    config: Annotated[
        Path, typer.Option(help="Path to the YAML/JSON config file")
    ] = DEFAULT_CONFIG_PATH,
    max_cycles: Annotated[
        int | None, typer.Option(help="Stop after N cycles (None = unlimited)")
    ] = None,
    confirm_live: Annotated[  # noqa: FBT002
        bool, typer.Option("--confirm-live", help="Required flag to enable live trading")
    ] = False,
    verbose: Annotated[  # noqa: FBT002
        bool, typer.Option("--verbose", "-v", help="Enable per-cycle logging")
    ] = False,
) -> None:
    """Run the longshot bot in paper or live mode.

    The mode follows ``paper_trading`` in the config file.  Live trading
    requires ``--confirm-live`` and ``POLYMARKET_PRIVATE_KEY``.
    """
    if verbose:
        configure_verbose_logging()

    provider = load_provider(config)
    snapshot = provider.current()
    if not snapshot.paper_trading and not confirm_live:
        typer.echo("Error: --confirm-live is required for live trading.", err=True)
        typer.echo("Set paper_trading: true to simulate instead.", err=True)
        raise typer.Exit(code=1)

    live = confirm_live and (not snapshot.paper_trading or has_private_key())
    if live:
        client = build_authenticated_client(float(snapshot.request_timeout_seconds))
    else:
        client = PolymarketClient(timeout=float(snapshot.request_timeout_seconds))

    _display_banner(snapshot, live_available=live)
    cycles = asyncio.run(_run(provider, client, live=live, max_cycles=max_cycles))
    typer.echo(f"\nStopped after {cycles} cycles.")


def _display_banner(config: BotConfig, *, live_available: bool) -> None:
    """Display the trading mode and active limits.

    Args:
        config: Startup configuration snapshot.
        live_available: Whether a live executor will be built.

    """
    typer.echo("")
    typer.echo("=" * 60)
    if config.paper_trading:
        typer.echo("  PAPER TRADING MODE -- no real orders")
    else:
        typer.echo("  LIVE TRADING MODE -- real money at risk")
    typer.echo("=" * 60)
    typer.echo("")
    typer.echo(f"Buy price: <= {config.max_price_cents}c")
    typer.echo(f"Min liquidity: ${config.min_liquidity_usd}")
    typer.echo(f"Max per trade: ${config.max_per_trade_usd}")
    typer.echo(f"Max per day: ${config.max_daily_spend_usd}")
    typer.echo(f"Max open positions: {config.max_open_positions}")
    typer.echo(f"Auto-sell: {config.auto_sell_multiplier}x entry")
    typer.echo(f"Scan interval: {config.scan_interval_seconds}s")
    if config.paper_trading and live_available:
        typer.echo("Live credentials loaded: a reload with paper_trading: false goes live")
    typer.echo("")


async def _run(
    provider: ConfigSnapshotProvider,
    client: PolymarketClient,
    *,
    live: bool,
    max_cycles: int | None,
) -> int:
    """Build the engine and run it until it stops.

    Args:
        provider: Loaded configuration provider.
        client: Polymarket client, authenticated when ``live`` is set.
        live: Whether to build the live executor.
        max_cycles: Cycle limit or ``None``.

    Returns:
        Number of cycles run.

    """
    config = provider.current()
    sinks = build_sinks()
    try:
        async with client:
            live_executor = None
            if live:
                try:
                    await client.ensure_api_creds()
                except PolymarketAPIError as exc:
                    typer.echo(f"Error: could not derive CLOB credentials: {exc}", err=True)
                    raise typer.Exit(code=1) from exc
                live_executor = LiveExecutor(
                    client,
                    use_market_orders=config.use_market_orders,
                    timeout=float(config.request_timeout_seconds),
                )
            engine = LongshotEngine(
                provider,
                GammaMarketSource(client),
                NotificationDispatcher(sinks),
                live_executor=live_executor,
            )
            try:
                return await engine.run(max_cycles=max_cycles)
            except FatalAuthError as exc:
                typer.echo(f"Error: {exc}", err=True)
                raise typer.Exit(code=1) from exc
    finally:
        for sink in sinks:
            if isinstance(sink, TelegramNotifier):
                await sink.close()
