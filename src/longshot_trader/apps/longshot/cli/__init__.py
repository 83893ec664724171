"""CLI subpackage for the longshot trading bot.

Create the Typer application and register all command modules.
"""

import typer

from longshot_trader.apps.longshot.cli.check_config_cmd import check_config
from longshot_trader.apps.longshot.cli.run_cmd import run
from longshot_trader.apps.longshot.cli.scan_cmd import scan

app = typer.Typer(help="Polymarket longshot trading bot")

app.command()(run)
app.command()(scan)
app.command(name="check-config")(check_config)

__all__ = ["app"]
