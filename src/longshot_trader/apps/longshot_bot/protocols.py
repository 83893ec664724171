"""Protocols decoupling the engine from its external collaborators.

The engine talks to the market data source, the order executors, and the
notification sink only through these interfaces, so tests and paper mode
can substitute in-memory implementations.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from longshot_trader.apps.longshot_bot.models import (
    ExecutionResult,
    MarketSnapshot,
    TradeIntent,
)

if TYPE_CHECKING:
    from longshot_trader.apps.longshot_bot.notifications import Event


@runtime_checkable
class MarketDataSource(Protocol):
    """Read-only source of market snapshots."""

    async def fetch_active(self) -> list[MarketSnapshot]:
        """Return snapshots of all currently open markets.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.

        """
        ...

    async def fetch_recent(self, limit: int) -> list[MarketSnapshot]:
        """Return up to ``limit`` of the most recently created open markets.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.

        """
        ...

    async def fetch_markets(self, market_ids: list[str]) -> list[MarketSnapshot]:
        """Return snapshots for specific markets, open or closed.

        Markets that cannot be found are omitted.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.

        """
        ...

    async def fetch_resolution(self, market_id: str, outcome: str) -> Decimal | None:
        """Return the settled price (0 or 1) of an outcome, or ``None`` if unresolved.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.

        """
        ...


@runtime_checkable
class OrderExecutor(Protocol):
    """Turns an admitted intent into a fill or a failure."""

    @property
    def mode(self) -> str:
        """Return ``"paper"`` or ``"live"``."""
        ...

    async def execute(self, intent: TradeIntent) -> ExecutionResult:
        """Execute the intent.

        Returns:
            A ``Fill`` or an ``ExecutionFailed``.

        Raises:
            FatalAuthError: When the venue refuses the credentials.

        """
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Destination for structured engine events."""

    async def send(self, event: "Event") -> None:
        """Deliver one event; may raise, callers treat delivery as best effort."""
        ...
