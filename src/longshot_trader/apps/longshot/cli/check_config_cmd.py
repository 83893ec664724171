"""CLI command for validating a config file.

Load the file exactly as the bot would, including ``.env`` and
``${VAR:default}`` substitution, and print the effective snapshot.
"""

from dataclasses import fields
from pathlib import Path
from typing import Annotated

import typer

from longshot_trader.apps.longshot.cli._helpers import DEFAULT_CONFIG_PATH, load_provider


def check_config(
    config: Annotated[
        Path, typer.Option(help="Path to the YAML/JSON config file")
    ] = DEFAULT_CONFIG_PATH,
) -> None:
    """Validate the config file and print the effective values."""
    provider = load_provider(config)
    snapshot = provider.current()
    source = str(config) if config.exists() else f"{config} (not found, defaults)"
    typer.echo(f"Config: {source}")
    for f in fields(snapshot):
        typer.echo(f"  {f.name:<30} {getattr(snapshot, f.name)}")
    typer.echo("OK")
