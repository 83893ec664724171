"""CLI entry point for the longshot trading bot.

All command logic lives in the cli subpackage.
"""

from longshot_trader.apps.longshot.cli import app

__all__ = ["app", "main"]


def main() -> None:
    """Run the longshot CLI application."""
    app()


if __name__ == "__main__":
    main()
