"""Structured engine events and best-effort delivery.

The engine emits frozen event objects through ``NotificationDispatcher``,
which hands each one to every sink on a background task so that a slow or
failing channel never blocks or fails the trading cycle.  Sinks format the
event themselves: ``TelegramNotifier`` posts to the Telegram Bot API and
``LogNotifier`` writes to the log when no chat is configured.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

from longshot_trader.apps.longshot_bot.models import (
    BotConfig,
    CloseReason,
    DiscoveryKind,
    MarketSnapshot,
    Position,
    TradeIntent,
)
from longshot_trader.apps.longshot_bot.protocols import NotificationSink
from longshot_trader.core.models import ZERO

logger = logging.getLogger(__name__)

_TELEGRAM_API = "https://api.telegram.org"
_TELEGRAM_MAX_LEN = 3900
_DISCOVERY_PREVIEW = 5
_QUESTION_PREVIEW = 60


@dataclass(frozen=True)
class BotStarted:
    """The engine began its cycle loop.

    Args:
        mode: ``"paper"`` or ``"live"``.
        config: Snapshot active at startup.

    """

    mode: str
    config: BotConfig


@dataclass(frozen=True)
class DiscoveryFound:
    """A scan produced candidates and the evaluator proposed intents.

    Args:
        candidates: Markets that passed the scanner filters.
        intents: Intents proposed for this cycle, best first.
        discoveries: How each candidate was found, keyed by market id.

    """

    candidates: tuple[MarketSnapshot, ...]
    intents: tuple[TradeIntent, ...]
    discoveries: dict[str, DiscoveryKind] = field(default_factory=dict)


@dataclass(frozen=True)
class TradeOpened:
    """A position was opened from a fill.

    Args:
        position: The new position record.
        mode: ``"paper"`` or ``"live"``.

    """

    position: Position
    mode: str


@dataclass(frozen=True)
class TradeClosed:
    """A position was closed by auto-sell or market resolution.

    Args:
        position: The closed position record.
        mode: Mode the position was opened in.

    """

    position: Position
    mode: str


@dataclass(frozen=True)
class PositionReduced:
    """Part of an open position was sold and the rest stays open.

    Args:
        position: The position record after the sale.
        shares_sold: Shares disposed of by the sale.
        price: Fill price per share.
        mode: Mode of the executor that sold.

    """

    position: Position
    shares_sold: Decimal
    price: Decimal
    mode: str


@dataclass(frozen=True)
class DailySummary:
    """Totals for a trading day that has just ended.

    Args:
        trading_day: The day being summarised.
        spent: USD spent on entries during the day.
        trades_opened: Positions opened during the day.
        positions_closed: Positions closed during the day.
        realized_pnl: Realised profit or loss of the day's closes.
        open_positions: Positions still open at the boundary.
        total_exposure: USD still committed at the boundary.

    """

    trading_day: date
    spent: Decimal
    trades_opened: int
    positions_closed: int
    realized_pnl: Decimal
    open_positions: int
    total_exposure: Decimal


@dataclass(frozen=True)
class OperationalAlert:
    """Something an operator should look at.

    Args:
        message: Human-readable description.
        severity: ``"warning"`` or ``"critical"``.

    """

    message: str
    severity: str = "warning"


type Event = (
    BotStarted
    | DiscoveryFound
    | TradeOpened
    | PositionReduced
    | TradeClosed
    | DailySummary
    | OperationalAlert
)


def _truncate(text: str, limit: int = _QUESTION_PREVIEW) -> str:
    """Shorten ``text`` to ``limit`` characters with an ellipsis."""
    return text if len(text) <= limit else f"{text[:limit]}..."


def format_event(event: Event) -> str:  # noqa: PLR0911
    """Render an event as plain text for chat delivery.

    Args:
        event: Event to render.

    Returns:
        Multi-line message text.

    """
    match event:
        case BotStarted(mode=mode, config=config):
            categories = ", ".join(config.categories) if config.categories else "All"
            return (
                f"Longshot trader started ({mode.upper()})\n"
                f"Max/trade: ${config.max_per_trade_usd:.2f}\n"
                f"Max/day: ${config.max_daily_spend_usd:.2f}\n"
                f"Buy price: <= {config.max_price_cents}c\n"
                f"Auto-sell: {config.auto_sell_multiplier}x entry\n"
                f"Scan interval: {config.scan_interval_seconds}s\n"
                f"Categories: {categories}"
            )
        case DiscoveryFound(candidates=candidates, intents=intents, discoveries=discoveries):
            lines = [f"Found {len(candidates)} longshots, {len(intents)} to trade"]
            for rank, intent in enumerate(intents[:_DISCOVERY_PREVIEW], start=1):
                kind = discoveries.get(intent.market_id, DiscoveryKind.LONGSHOT)
                tag = "" if kind is DiscoveryKind.LONGSHOT else f" [{kind.value}]"
                lines.append(
                    f"{rank}. {intent.outcome.upper()} {_truncate(intent.question)}"
                    f" @ ${intent.price:.4f} for ${intent.size_usd:.2f}{tag}"
                )
            return "\n".join(lines)
        case TradeOpened(position=position, mode=mode):
            return (
                f"[{mode.upper()}] Bought {position.outcome.upper()}\n"
                f"{_truncate(position.question)}\n"
                f"{position.shares:.0f} shares @ ${position.entry_price:.4f}"
                f" = ${position.size_usd:.2f}\n"
                f"Auto-sell at ${position.auto_sell_target:.4f}"
            )
        case PositionReduced(position=position, shares_sold=sold, price=price, mode=mode):
            return (
                f"[{mode.upper()}] Sold {sold:.0f} {position.outcome.upper()} shares\n"
                f"{_truncate(position.question)}\n"
                f"Entry ${position.entry_price:.4f} -> ${price:.4f},"
                f" {position.shares:.0f} shares still held"
            )
        case TradeClosed(position=position, mode=mode):
            how = "Sold" if position.close_reason is CloseReason.AUTO_SELL else "Resolved"
            pnl = position.realized_pnl if position.realized_pnl is not None else ZERO
            return (
                f"[{mode.upper()}] {how} {position.outcome.upper()}\n"
                f"{_truncate(position.question)}\n"
                f"Entry ${position.entry_price:.4f} -> exit ${position.exit_price or ZERO:.4f}\n"
                f"P&L: ${pnl:+.2f}"
            )
        case DailySummary():
            return (
                f"Daily summary for {event.trading_day.isoformat()}\n"
                f"Spent: ${event.spent:.2f} on {event.trades_opened} trades\n"
                f"Closed: {event.positions_closed}, realised P&L ${event.realized_pnl:+.2f}\n"
                f"Open: {event.open_positions}, exposure ${event.total_exposure:.2f}"
            )
        case OperationalAlert(message=message, severity=severity):
            return f"ALERT ({severity}): {message}"
    return str(event)


def split_message(text: str, max_len: int = _TELEGRAM_MAX_LEN) -> list[str]:
    """Split text into chunks below the Telegram message limit.

    Break at line boundaries; a single over-long line is cut hard.

    Args:
        text: Message text.
        max_len: Maximum characters per chunk.

    Returns:
        Non-empty chunks in order.

    """
    stripped = text.strip()
    if not stripped:
        return []
    if len(stripped) <= max_len:
        return [stripped]

    parts: list[str] = []
    buf = ""
    for line in stripped.splitlines():
        while len(line) > max_len:
            if buf:
                parts.append(buf)
                buf = ""
            parts.append(line[:max_len])
            line = line[max_len:]  # noqa: PLW2901
        candidate = f"{buf}\n{line}" if buf else line
        if len(candidate) <= max_len:
            buf = candidate
        else:
            parts.append(buf)
            buf = line
    if buf:
        parts.append(buf)
    return [part for part in parts if part.strip()]


class TelegramNotifier:
    """Deliver events to a Telegram chat over the Bot API.

    Args:
        bot_token: Telegram bot token.
        chat_id: Destination chat identifier.
        timeout: HTTP timeout in seconds.
        client: Optional pre-built ``httpx.AsyncClient`` (for testing).

    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            bot_token: Telegram bot token.
            chat_id: Destination chat identifier.
            timeout: HTTP timeout in seconds.
            client: Optional pre-built HTTP client.

        """
        self._chat_id = chat_id
        self._url = f"{_TELEGRAM_API}/bot{bot_token}/sendMessage"
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_env(cls) -> "TelegramNotifier | None":
        """Build a notifier from ``TELEGRAM_BOT_TOKEN`` and ``TELEGRAM_CHAT_ID``.

        Returns:
            A notifier, or ``None`` when either variable is unset.

        """
        token = os.environ.get("TELEGRAM_BOT_TOKEN", "").strip()
        chat_id = os.environ.get("TELEGRAM_CHAT_ID", "").strip()
        if not token or not chat_id:
            return None
        return cls(token, chat_id)

    async def send(self, event: Event) -> None:
        """Post the rendered event, one request per chunk.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response.

        """
        for chunk in split_message(format_event(event)):
            response = await self._client.post(
                self._url,
                json={
                    "chat_id": self._chat_id,
                    "text": chunk,
                    "disable_web_page_preview": True,
                },
            )
            response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


class LogNotifier:
    """Write events to the log; the fallback when no chat is configured."""

    async def send(self, event: Event) -> None:
        """Log the rendered event at INFO."""
        logger.info("[notify] %s", format_event(event).replace("\n", " | "))


def _log_delivery_failure(task: asyncio.Task[Any]) -> None:
    """Log an exception raised by a delivery task."""
    if not task.cancelled() and task.exception() is not None:
        logger.warning(
            "Notification delivery %s failed: %s",
            task.get_name(),
            task.exception(),
            exc_info=task.exception(),
        )


class NotificationDispatcher:
    """Fan events out to sinks without blocking the caller.

    ``emit`` schedules one background task per sink and returns at once.
    Delivery failures are logged and otherwise ignored.

    Args:
        sinks: Destinations for every event.

    """

    def __init__(self, sinks: list[NotificationSink]) -> None:
        """Initialize the dispatcher.

        Args:
            sinks: Destinations for every event.

        """
        self._sinks = list(sinks)
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Return the number of deliveries still in flight."""
        return len(self._pending)

    def emit(self, event: Event) -> None:
        """Schedule delivery of ``event`` to every sink.

        Must be called from a running event loop.

        Args:
            event: Event to deliver.

        """
        for sink in self._sinks:
            task = asyncio.create_task(
                sink.send(event), name=f"notify-{type(sink).__name__}-{type(event).__name__}"
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(_log_delivery_failure)

    async def aclose(self, timeout: float = 5.0) -> None:
        """Wait briefly for in-flight deliveries, then cancel the rest.

        Args:
            timeout: Seconds to wait before cancelling.

        """
        if not self._pending:
            return
        _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("Dropped %d undelivered notifications", len(still_pending))
            await asyncio.gather(*still_pending, return_exceptions=True)
