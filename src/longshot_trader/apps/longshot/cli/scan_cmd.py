"""CLI command for a one-shot longshot scan.

Fetch open markets once, apply the configured filters and ranking, and
print the qualifying candidates with the size each would be traded at.
No orders are placed.
"""

import asyncio
from decimal import Decimal
from pathlib import Path
from typing import Annotated

import typer

from longshot_trader.apps.longshot.cli._helpers import (
    DEFAULT_CONFIG_PATH,
    configure_verbose_logging,
    load_provider,
)
from longshot_trader.apps.longshot_bot.data_source import GammaMarketSource
from longshot_trader.apps.longshot_bot.models import BotConfig, MarketSnapshot, RiskState
from longshot_trader.apps.longshot_bot.scanner import MarketScanner
from longshot_trader.apps.longshot_bot.strategy import LongshotEvaluator, rank_key
from longshot_trader.clients.polymarket.client import PolymarketClient
from longshot_trader.core.timestamps import utc_now

_DEFAULT_LIMIT = 20
_MAX_QUESTION_LEN = 48


def scan(
    config: Annotated[
        Path, typer.Option(help="Path to the YAML/JSON config file")
    ] = DEFAULT_CONFIG_PATH,
    limit: Annotated[int, typer.Option(help="Maximum number of rows to display")] = _DEFAULT_LIMIT,
    verbose: Annotated[  # noqa: FBT002
        bool, typer.Option("--verbose", "-v", help="Enable scan logging")
    ] = False,
) -> None:
    """List markets that currently qualify as longshots."""
    if verbose:
        configure_verbose_logging()
    snapshot = load_provider(config).current()
    asyncio.run(_scan(snapshot, limit=limit))


async def _scan(config: BotConfig, *, limit: int) -> None:
    """Fetch, filter and display longshot candidates.

    Args:
        config: Configuration snapshot supplying the filters.
        limit: Maximum number of rows to display.

    """
    async with PolymarketClient(timeout=float(config.request_timeout_seconds)) as client:
        result = await MarketScanner(GammaMarketSource(client)).scan(config)

    if not result.ok:
        typer.echo(f"Error: market scan failed: {result.error}", err=True)
        raise typer.Exit(code=1)

    candidates = sorted(result.candidates, key=rank_key)
    if not candidates:
        typer.echo(
            f"No longshots at or below {config.max_price_cents}c"
            f" among {len(result.snapshots)} markets"
        )
        return

    state = RiskState(trading_day=utc_now().date())
    intents = LongshotEvaluator().evaluate(candidates, state, config)
    sizes = {intent.market_id: intent.size_usd for intent in intents}

    typer.echo(f"\n{len(candidates)} longshots among {len(result.snapshots)} open markets\n")
    typer.echo(
        f"{'Question':<50} {'Side':>4} {'Cents':>6} {'Liquidity':>10}"
        f" {'Vol 24h':>10} {'Ends':>10} {'Size':>7}"
    )
    typer.echo("-" * 103)
    for snapshot in candidates[:limit]:
        typer.echo(_format_row(snapshot, sizes.get(snapshot.market_id)))


def _format_row(snapshot: MarketSnapshot, size: Decimal | None) -> str:
    """Render one candidate as a table row."""
    question = snapshot.question
    if len(question) > _MAX_QUESTION_LEN:
        question = question[: _MAX_QUESTION_LEN - 3] + "..."
    side = snapshot.longshot
    ends = snapshot.end_date.date().isoformat() if snapshot.end_date else "N/A"
    sized = f"${size:.2f}" if size is not None else "-"
    return (
        f"{question:<50} {side.outcome.upper():>4} {side.price_cents:>6.1f}"
        f" {snapshot.liquidity:>10.0f} {snapshot.volume_24h:>10.0f} {ends:>10} {sized:>7}"
    )
