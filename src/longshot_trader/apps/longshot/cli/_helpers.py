"""Shared helpers for longshot CLI commands.

Centralise the utilities reused across command modules: verbose logging
setup, config loading, authenticated client construction, and notifier
selection.
"""

import logging
import os
from pathlib import Path

import typer

from longshot_trader.apps.longshot_bot.config_provider import ConfigSnapshotProvider
from longshot_trader.apps.longshot_bot.notifications import LogNotifier, TelegramNotifier
from longshot_trader.apps.longshot_bot.protocols import NotificationSink
from longshot_trader.clients.polymarket.client import PolymarketClient
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError
from longshot_trader.core.config import ConfigError

DEFAULT_CONFIG_PATH = Path("config.yaml")


def configure_verbose_logging() -> None:
    """Enable INFO-level logging for per-cycle engine output."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(message)s",
        datefmt="%H:%M:%S",
    )


def load_provider(path: Path) -> ConfigSnapshotProvider:
    """Load the config file, aborting with exit code 1 when it is invalid.

    Args:
        path: Configuration file location.

    Returns:
        A provider holding the validated snapshot.

    """
    try:
        return ConfigSnapshotProvider(path)
    except ConfigError as exc:
        typer.echo(f"Error: invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def has_private_key() -> bool:
    """Return whether ``POLYMARKET_PRIVATE_KEY`` is set."""
    return bool(os.environ.get("POLYMARKET_PRIVATE_KEY", "").strip())


def build_authenticated_client(timeout: float = 30.0) -> PolymarketClient:
    """Build an authenticated PolymarketClient from environment variables.

    Read the private key and optional API credentials from the environment.
    Abort with an error if the private key is not set or is invalid.

    Args:
        timeout: Request timeout in seconds for market data calls.

    Returns:
        Authenticated PolymarketClient ready for trading.

    """
    private_key = os.environ.get("POLYMARKET_PRIVATE_KEY", "").strip()
    if not private_key:
        typer.echo("Error: POLYMARKET_PRIVATE_KEY environment variable is required.", err=True)
        raise typer.Exit(code=1)

    api_key = os.environ.get("POLYMARKET_API_KEY") or None
    api_secret = os.environ.get("POLYMARKET_API_SECRET") or None
    api_passphrase = os.environ.get("POLYMARKET_API_PASSPHRASE") or None
    funder_address = os.environ.get("POLYMARKET_FUNDER_ADDRESS") or None

    try:
        return PolymarketClient(
            private_key=private_key,
            api_key=api_key,
            api_secret=api_secret,
            api_passphrase=api_passphrase,
            funder_address=funder_address,
            timeout=timeout,
        )
    except PolymarketAPIError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def build_sinks() -> list[NotificationSink]:
    """Return Telegram delivery when configured, otherwise log-only delivery."""
    telegram = TelegramNotifier.from_env()
    if telegram is None:
        return [LogNotifier()]
    return [telegram, LogNotifier()]
