"""Position lifecycle and auto-sell sweep.

``PositionTracker`` owns every ``Position`` record in an arena keyed by id.
A position is created from an entry fill, re-priced each cycle, and closed
either by an auto-sell exit routed through the executor of the mode it was
opened in or by market resolution.  An optional half-sell takes part of the
position off once on the way to the target.  Closed records stay in the arena for audit and are
never mutated again.
"""

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

from longshot_trader.apps.longshot_bot.exceptions import LongshotError
from longshot_trader.apps.longshot_bot.execution import PAPER, fetch_with_retry
from longshot_trader.apps.longshot_bot.models import (
    BotConfig,
    CloseReason,
    ExecutionFailed,
    Fill,
    MarketSnapshot,
    Position,
    PositionStatus,
    TradeIntent,
)
from longshot_trader.apps.longshot_bot.notifications import (
    Event,
    NotificationDispatcher,
    PositionReduced,
    TradeClosed,
)
from longshot_trader.apps.longshot_bot.protocols import MarketDataSource, OrderExecutor
from longshot_trader.apps.longshot_bot.risk import RiskLedger
from longshot_trader.core.models import ZERO, Side
from longshot_trader.core.timestamps import trading_day, utc_now

logger = logging.getLogger(__name__)

_EXIT_RATIONALE = "auto_sell"
_HALF_SELL_RATIONALE = "partial_sell"
_HALF = Decimal("0.5")


class PositionTracker:
    """Own position records and evaluate exits every cycle.

    Args:
        ledger: Risk ledger notified when a position shrinks or closes.
        source: Market data source for snapshots and resolutions.
        dispatcher: Receives sale events; ``None`` to only log.
        sleep: Sleep function between read retries (injectable for testing).

    """

    def __init__(
        self,
        ledger: RiskLedger,
        source: MarketDataSource,
        dispatcher: NotificationDispatcher | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize an empty tracker.

        Args:
            ledger: Risk ledger to release exposure into.
            source: Market data source.
            dispatcher: Optional notification dispatcher.
            sleep: Sleep function used between read retries.

        """
        self._ledger = ledger
        self._source = source
        self._dispatcher = dispatcher
        self._sleep = sleep
        self._positions: dict[str, Position] = {}
        self._ids = itertools.count(1)

    def get(self, position_id: str) -> Position:
        """Return a position by id.

        Raises:
            KeyError: If no such position exists.

        """
        return self._positions[position_id]

    def all_positions(self) -> list[Position]:
        """Return every position, open and closed, in opening order."""
        return list(self._positions.values())

    def open_positions(self) -> list[Position]:
        """Return the positions that are still open."""
        return [p for p in self._positions.values() if p.is_open]

    def open_market_ids(self) -> frozenset[str]:
        """Return the markets that currently hold an open position."""
        return frozenset(p.market_id for p in self._positions.values() if p.is_open)

    def open_position(  # noqa: PLR0913
        self,
        intent: TradeIntent,
        fill: Fill,
        config: BotConfig,
        end_date: datetime | None = None,
        *,
        mode: str = PAPER,
    ) -> Position:
        """Record a new open position from an entry fill.

        Args:
            intent: The admitted entry intent.
            fill: Confirmed execution.
            config: Snapshot supplying the auto-sell multiplier.
            end_date: Resolution deadline of the market.
            mode: Mode of the executor that filled the entry.

        Returns:
            The new position.

        Raises:
            ValueError: If the market already holds an open position.

        """
        if intent.market_id in self.open_market_ids():
            msg = f"Market {intent.market_id} already has an open position"
            raise ValueError(msg)
        position = Position(
            id=f"pos-{next(self._ids)}",
            market_id=intent.market_id,
            token_id=intent.token_id,
            outcome=intent.outcome,
            question=intent.question,
            entry_price=fill.price,
            size_usd=fill.size_usd,
            shares=fill.shares,
            opened_at=fill.timestamp,
            auto_sell_target=fill.price * config.auto_sell_multiplier,
            mode=mode,
            end_date=end_date,
            current_price=fill.price,
        )
        self._positions[position.id] = position
        logger.info(
            "Opened %s (%s): %s %.2f shares @ %.4f ($%.2f), target %.4f",
            position.id,
            mode,
            position.outcome,
            position.shares,
            position.entry_price,
            position.size_usd,
            position.auto_sell_target,
        )
        return position

    def reduce(self, position_id: str, shares_sold: Decimal, price: Decimal) -> Position:
        """Book the sale of part of an open position.

        The position keeps its entry price; shares and cost basis shrink in
        proportion, only the sold slice of exposure is released, and the
        slice's profit or loss is added to ``realized_pnl``.

        Args:
            position_id: Position that was partly sold.
            shares_sold: Shares disposed of, fewer than the position holds.
            price: Fill price per share.

        Returns:
            The reduced, still open, position.

        Raises:
            KeyError: If no such position exists.
            ValueError: If the position is closed or ``shares_sold`` is not
                strictly between zero and the shares held.

        """
        position = self._positions[position_id]
        if not position.is_open:
            msg = f"Position {position_id} is already closed"
            raise ValueError(msg)
        if not ZERO < shares_sold < position.shares:
            msg = f"Cannot reduce {position_id} by {shares_sold} of {position.shares} shares"
            raise ValueError(msg)
        cost_slice = position.size_usd * shares_sold / position.shares
        pnl = (price - position.entry_price) * shares_sold
        position.shares -= shares_sold
        position.size_usd -= cost_slice
        position.realized_pnl = (position.realized_pnl or ZERO) + pnl
        self._ledger.reduce(position.market_id, cost_slice)
        logger.info(
            "Reduced %s: sold %.2f shares @ %.4f (P&L $%+.2f), %.2f shares left",
            position.id,
            shares_sold,
            price,
            pnl,
            position.shares,
        )
        return position

    def close(
        self,
        position_id: str,
        exit_price: Decimal,
        reason: CloseReason,
        now: datetime | None = None,
    ) -> Position:
        """Transition an open position to closed and release its exposure.

        Args:
            position_id: Position to close.
            exit_price: Exit fill price or resolution price per share.
            reason: Why the position closes.
            now: Close time (defaults to now).

        Returns:
            The closed position.

        Raises:
            KeyError: If no such position exists.
            ValueError: If the position is already closed.

        """
        position = self._positions[position_id]
        if not position.is_open:
            msg = f"Position {position_id} is already closed"
            raise ValueError(msg)
        position.status = PositionStatus.CLOSED
        position.closed_at = now or utc_now()
        position.exit_price = exit_price
        position.current_price = exit_price
        position.realized_pnl = (position.realized_pnl or ZERO) + (
            exit_price - position.entry_price
        ) * position.shares
        position.close_reason = reason
        self._ledger.release(position.market_id, position.size_usd)
        logger.info(
            "Closed %s (%s): entry %.4f exit %.4f P&L $%+.2f",
            position.id,
            reason.value,
            position.entry_price,
            exit_price,
            position.realized_pnl,
        )
        return position

    async def sweep(
        self,
        snapshots: dict[str, MarketSnapshot],
        config: BotConfig,
        executors: Mapping[str, OrderExecutor],
        now: datetime | None = None,
    ) -> list[Position]:
        """Re-price every open position and sell or close those that should exit.

        Positions past their deadline are force-closed at the resolved
        outcome price without an order; unresolved markets are retried next
        cycle.  Other positions are sold through the executor of the mode
        they were opened in once the observed price reaches entry times the
        active multiplier.  With ``partial_sell_multiplier`` set, half of a
        position is sold once when the price first reaches that lower
        multiple.  A failed or partly filled sale leaves the rest open.

        Args:
            snapshots: This cycle's snapshots keyed by market id.
            config: Active configuration snapshot.
            executors: Executors keyed by mode (``"paper"``, ``"live"``).
            now: Current time (defaults to now).

        Returns:
            Positions closed during this sweep.

        Raises:
            FatalAuthError: When an executor reports refused credentials.

        """
        moment = now or utc_now()
        open_positions = self.open_positions()
        if not open_positions:
            return []

        latest = dict(snapshots)
        missing = sorted({p.market_id for p in open_positions} - latest.keys())
        if missing:
            latest.update(await self._fetch_missing(missing, config))

        closed: list[Position] = []
        for position in open_positions:
            snapshot = latest.get(position.market_id)
            if snapshot is not None:
                position.current_price = snapshot.price_for(position.outcome)
                if snapshot.end_date is not None:
                    position.end_date = snapshot.end_date
            position.auto_sell_target = position.entry_price * config.auto_sell_multiplier

            if self._past_deadline(position, snapshot, moment):
                result = await self._resolve(position, config, moment)
            elif self._target_reached(position):
                result = await self._sell(position, position.shares, executors, moment)
            elif self._half_sell_due(position, config):
                result = await self._sell(
                    position, position.shares * _HALF, executors, moment, half=True
                )
            else:
                result = None
            if result is not None:
                closed.append(result)
                self._emit(TradeClosed(position=replace(result), mode=result.mode))
        return closed

    def closed_on(self, day: date, timezone: str) -> list[Position]:
        """Return positions closed during a trading day.

        Args:
            day: Trading day in the operating timezone.
            timezone: IANA timezone of the trading day.

        """
        return [
            p
            for p in self._positions.values()
            if p.closed_at is not None and trading_day(p.closed_at, timezone) == day
        ]

    def summary(self) -> str:
        """Return a one-line portfolio description for the cycle log."""
        open_positions = self.open_positions()
        cost = sum((p.size_usd for p in open_positions), ZERO)
        value = sum((p.marked_value for p in open_positions), ZERO)
        realised = sum((p.realized_pnl or ZERO for p in self._positions.values()), ZERO)
        return (
            f"Open: {len(open_positions)} | Cost: ${cost:.2f} | Value: ${value:.2f}"
            f" | Unrealised: ${value - cost:+.2f} | Realised: ${realised:+.2f}"
        )

    def _emit(self, event: Event) -> None:
        """Hand an event to the dispatcher when one is attached."""
        if self._dispatcher is not None:
            self._dispatcher.emit(event)

    async def _fetch_missing(
        self, market_ids: list[str], config: BotConfig
    ) -> dict[str, MarketSnapshot]:
        """Fetch snapshots for markets absent from the scan; failures yield none."""
        try:
            fetched = await fetch_with_retry(
                lambda: self._source.fetch_markets(market_ids),
                timeout=float(config.request_timeout_seconds),
                description=f"refresh of {len(market_ids)} held markets",
                sleep=self._sleep,
            )
        except LongshotError:
            logger.warning("Could not refresh %d held markets", len(market_ids), exc_info=True)
            return {}
        return {s.market_id: s for s in fetched}

    @staticmethod
    def _target_reached(position: Position) -> bool:
        """Return whether the observed price reached the auto-sell target."""
        return (
            position.current_price is not None
            and position.current_price >= position.auto_sell_target
        )

    @staticmethod
    def _half_sell_due(position: Position, config: BotConfig) -> bool:
        """Return whether the one-off half-sell threshold has been reached."""
        multiplier = config.partial_sell_multiplier
        return (
            multiplier is not None
            and not position.partial_sold
            and position.current_price is not None
            and position.current_price >= position.entry_price * multiplier
        )

    @staticmethod
    def _past_deadline(position: Position, snapshot: MarketSnapshot | None, now: datetime) -> bool:
        """Return whether the market has closed or passed its deadline."""
        if snapshot is not None and snapshot.closed:
            return True
        return position.end_date is not None and position.end_date <= now

    async def _resolve(
        self, position: Position, config: BotConfig, now: datetime
    ) -> Position | None:
        """Force-close at the resolved outcome price, or wait if unresolved."""
        try:
            price = await fetch_with_retry(
                lambda: self._source.fetch_resolution(position.market_id, position.outcome),
                timeout=float(config.request_timeout_seconds),
                description=f"resolution lookup for {position.id}",
                sleep=self._sleep,
            )
        except LongshotError:
            logger.warning("Resolution lookup failed for %s", position.id, exc_info=True)
            return None
        if price is None:
            logger.info("%s past deadline, awaiting resolution", position.id)
            return None
        return self.close(position.id, price, CloseReason.RESOLVED, now)

    async def _sell(  # noqa: PLR0913
        self,
        position: Position,
        shares: Decimal,
        executors: Mapping[str, OrderExecutor],
        now: datetime,
        *,
        half: bool = False,
    ) -> Position | None:
        """Sell ``shares`` through the position's executor.

        Returns the closed position when the fill covered every share held;
        a smaller fill reduces the position and returns ``None``.
        """
        executor = executors.get(position.mode)
        if executor is None:
            logger.warning(
                "No %s executor to sell %s; keeping it open", position.mode, position.id
            )
            return None
        price = (
            position.current_price if position.current_price is not None else position.entry_price
        )
        logger.info(
            "%s triggered for %s: %.4f, selling %.2f of %.2f shares",
            "Half-sell" if half else "Auto-sell",
            position.id,
            price,
            shares,
            position.shares,
        )
        intent = TradeIntent(
            market_id=position.market_id,
            token_id=position.token_id,
            outcome=position.outcome,
            side=Side.SELL,
            size_usd=shares * price,
            price=price,
            rationale=_HALF_SELL_RATIONALE if half else _EXIT_RATIONALE,
            question=position.question,
            share_count=shares,
        )
        result = await executor.execute(intent)
        if isinstance(result, ExecutionFailed):
            logger.warning(
                "Exit failed for %s (%s): %s", position.id, result.kind.value, result.reason
            )
            return None
        if half:
            position.partial_sold = True
        if result.shares >= position.shares:
            return self.close(position.id, result.price, CloseReason.AUTO_SELL, now)
        self.reduce(position.id, result.shares, result.price)
        self._emit(
            PositionReduced(
                position=replace(position),
                shares_sold=result.shares,
                price=result.price,
                mode=executor.mode,
            )
        )
        return None
