"""Tests for the position tracker and its auto-sell sweep."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from longshot_trader.apps.longshot_bot.exceptions import TransientIOError
from longshot_trader.apps.longshot_bot.execution import PaperExecutor
from longshot_trader.apps.longshot_bot.models import (
    BotConfig,
    CloseReason,
    ExecutionFailed,
    FailureKind,
    Fill,
    MarketSnapshot,
    PositionStatus,
    TradeIntent,
)
from longshot_trader.apps.longshot_bot.notifications import PositionReduced, TradeClosed
from longshot_trader.apps.longshot_bot.positions import PositionTracker
from longshot_trader.apps.longshot_bot.protocols import OrderExecutor
from longshot_trader.apps.longshot_bot.risk import RiskLedger
from longshot_trader.core.models import ONE, ZERO, Side

_NOW = datetime(2026, 3, 1, 12, tzinfo=UTC)
_MARKET_ID = "cond_pos"
_ENTRY = Decimal("0.05")
_SIZE = Decimal(10)
_SHARES = Decimal(200)
_END = _NOW + timedelta(days=7)


def _intent(market_id: str = _MARKET_ID) -> TradeIntent:
    """Create the entry intent.

    Args:
        market_id: Market condition identifier.

    Returns:
        TradeIntent for testing.

    """
    return TradeIntent(
        market_id=market_id,
        token_id="tok_yes",
        outcome="Yes",
        side=Side.BUY,
        size_usd=_SIZE,
        price=_ENTRY,
        rationale="longshot",
        question="Will a longshot land?",
    )


def _fill() -> Fill:
    """Create the entry fill: 200 shares at 5 cents."""
    return Fill(price=_ENTRY, size_usd=_SIZE, shares=_SHARES, timestamp=_NOW)


def _snapshot(yes_price: str, **overrides: Any) -> MarketSnapshot:
    """Create a snapshot of the held market.

    Args:
        yes_price: YES price as string.
        overrides: Fields to replace.

    Returns:
        MarketSnapshot for testing.

    """
    values: dict[str, Any] = {
        "market_id": _MARKET_ID,
        "question": "Will a longshot land?",
        "yes_token_id": "tok_yes",
        "no_token_id": "tok_no",
        "yes_price": Decimal(yes_price),
        "no_price": Decimal(1) - Decimal(yes_price),
        "liquidity": Decimal(1000),
        "volume_24h": Decimal(100),
        "end_date": _END,
        "timestamp": _NOW,
    }
    values.update(overrides)
    return MarketSnapshot(**values)


def _source(**methods: AsyncMock) -> MagicMock:
    """Create a mocked market data source.

    Args:
        methods: Async methods to install.

    Returns:
        MagicMock data source.

    """
    source = MagicMock()
    source.fetch_markets = AsyncMock(return_value=[])
    source.fetch_resolution = AsyncMock(return_value=None)
    for name, mock in methods.items():
        setattr(source, name, mock)
    return source


def _paper() -> dict[str, OrderExecutor]:
    """Return the executor mapping for paper positions."""
    return {"paper": PaperExecutor()}


def _tracker(
    source: MagicMock | None = None,
    dispatcher: MagicMock | None = None,
    *,
    mode: str = "paper",
) -> tuple[PositionTracker, RiskLedger]:
    """Create a tracker holding one open position with booked exposure.

    Args:
        source: Data source (a default mock if omitted).
        dispatcher: Notification dispatcher mock.
        mode: Mode the position is opened in.

    Returns:
        The tracker and its ledger.

    """
    ledger = RiskLedger(now=_NOW)
    config = BotConfig()
    ledger.admit(_intent(), config)
    tracker = PositionTracker(ledger, source or _source(), dispatcher, sleep=AsyncMock())
    tracker.open_position(_intent(), _fill(), config, end_date=_END, mode=mode)
    return tracker, ledger


class TestOpenPosition:
    """Tests for PositionTracker.open_position."""

    def test_records_position(self) -> None:
        """Create an open position with the auto-sell target."""
        tracker, _ = _tracker()

        position = tracker.get("pos-1")

        assert position.status is PositionStatus.OPEN
        assert position.entry_price == _ENTRY
        assert position.shares == _SHARES
        assert position.size_usd == _SIZE
        assert position.auto_sell_target == Decimal("0.15")
        assert position.current_price == _ENTRY
        assert position.end_date == _END
        assert tracker.open_market_ids() == frozenset({_MARKET_ID})

    def test_second_position_on_market_is_refused(self) -> None:
        """Refuse a duplicate open position on one market."""
        tracker, _ = _tracker()
        with pytest.raises(ValueError, match="already has an open position"):
            tracker.open_position(_intent(), _fill(), BotConfig())

    def test_ids_are_unique(self) -> None:
        """Assign sequential ids."""
        tracker, _ = _tracker()
        position = tracker.open_position(_intent("other"), _fill(), BotConfig())
        assert position.id == "pos-2"
        assert len(tracker.all_positions()) == 2  # noqa: PLR2004


class TestClose:
    """Tests for PositionTracker.close."""

    def test_close_realises_pnl_and_releases(self) -> None:
        """Compute P&L, release exposure, keep the record."""
        tracker, ledger = _tracker()

        position = tracker.close("pos-1", Decimal("0.15"), CloseReason.AUTO_SELL, _NOW)

        assert position.status is PositionStatus.CLOSED
        assert position.realized_pnl == Decimal(20)
        assert position.closed_at == _NOW
        assert ledger.state().total_exposure == ZERO
        assert ledger.state().open_position_count == 0
        assert tracker.open_positions() == []
        assert tracker.all_positions() == [position]

    def test_close_twice_raises(self) -> None:
        """Refuse to close a closed position."""
        tracker, _ = _tracker()
        tracker.close("pos-1", ONE, CloseReason.RESOLVED, _NOW)
        with pytest.raises(ValueError, match="already closed"):
            tracker.close("pos-1", ONE, CloseReason.RESOLVED, _NOW)

    def test_unknown_position(self) -> None:
        """Raise KeyError for an unknown id."""
        tracker, _ = _tracker()
        with pytest.raises(KeyError):
            tracker.close("pos-99", ONE, CloseReason.RESOLVED, _NOW)


class TestReduce:
    """Tests for PositionTracker.reduce."""

    def test_reduce_releases_sold_slice(self) -> None:
        """Shrink shares and cost in proportion and book the slice P&L."""
        tracker, ledger = _tracker()

        position = tracker.reduce("pos-1", Decimal(50), Decimal("0.09"))

        assert position.is_open
        assert position.shares == Decimal(150)
        assert position.size_usd == Decimal("7.5")
        assert position.realized_pnl == Decimal(2)
        assert ledger.state().total_exposure == Decimal("7.5")
        assert ledger.state().per_market_exposure[_MARKET_ID] == Decimal("7.5")
        assert ledger.state().open_position_count == 1

    def test_close_after_reduce_adds_remaining_pnl(self) -> None:
        """Add the close P&L to what earlier sales booked."""
        tracker, ledger = _tracker()
        tracker.reduce("pos-1", Decimal(100), Decimal("0.10"))

        position = tracker.close("pos-1", Decimal("0.15"), CloseReason.AUTO_SELL, _NOW)

        assert position.realized_pnl == Decimal(15)
        assert ledger.state().total_exposure == ZERO
        assert ledger.state().open_position_count == 0

    def test_reduce_by_whole_position_is_refused(self) -> None:
        """Require fewer shares than the position holds."""
        tracker, _ = _tracker()
        with pytest.raises(ValueError, match="Cannot reduce"):
            tracker.reduce("pos-1", _SHARES, Decimal("0.10"))

    def test_reduce_closed_position_is_refused(self) -> None:
        """Refuse to reduce a closed position."""
        tracker, _ = _tracker()
        tracker.close("pos-1", ONE, CloseReason.RESOLVED, _NOW)
        with pytest.raises(ValueError, match="already closed"):
            tracker.reduce("pos-1", Decimal(10), ONE)


class TestSweep:
    """Tests for PositionTracker.sweep."""

    @pytest.mark.asyncio
    async def test_below_target_stays_open(self) -> None:
        """Hold at 14.9 cents on a 5 cent entry with a 3x target."""
        tracker, _ = _tracker()
        snapshots = {_MARKET_ID: _snapshot("0.149")}

        closed = await tracker.sweep(snapshots, BotConfig(), _paper(), _NOW)

        assert closed == []
        assert tracker.get("pos-1").current_price == Decimal("0.149")

    @pytest.mark.asyncio
    async def test_target_reached_sells(self) -> None:
        """Sell at 15 cents on a 5 cent entry with a 3x target."""
        dispatcher = MagicMock()
        tracker, ledger = _tracker(dispatcher=dispatcher)
        snapshots = {_MARKET_ID: _snapshot("0.15")}

        closed = await tracker.sweep(snapshots, BotConfig(), _paper(), _NOW)

        assert len(closed) == 1
        position = closed[0]
        assert position.close_reason is CloseReason.AUTO_SELL
        assert position.exit_price == Decimal("0.15")
        assert position.realized_pnl == Decimal(20)
        assert ledger.state().open_position_count == 0
        event = dispatcher.emit.call_args.args[0]
        assert isinstance(event, TradeClosed)
        assert event.mode == "paper"

    @pytest.mark.asyncio
    async def test_exit_sells_held_shares(self) -> None:
        """Route a SELL for the whole position through the executor."""
        tracker, _ = _tracker(mode="live")
        executor = MagicMock()
        executor.mode = "live"
        executor.execute = AsyncMock(
            return_value=Fill(
                price=Decimal("0.16"), size_usd=Decimal(32), shares=_SHARES, timestamp=_NOW
            )
        )

        await tracker.sweep({_MARKET_ID: _snapshot("0.16")}, BotConfig(), {"live": executor}, _NOW)

        intent: TradeIntent = executor.execute.call_args.args[0]
        assert intent.side is Side.SELL
        assert intent.shares == _SHARES
        assert intent.price == Decimal("0.16")
        assert intent.token_id == "tok_yes"
        assert tracker.get("pos-1").realized_pnl == Decimal(22)

    @pytest.mark.asyncio
    async def test_failed_exit_stays_open(self) -> None:
        """Keep the position open when the exit order fails."""
        tracker, ledger = _tracker()
        executor = MagicMock()
        executor.mode = "live"
        executor.execute = AsyncMock(
            return_value=ExecutionFailed(kind=FailureKind.TRANSIENT, reason="timeout")
        )

        closed = await tracker.sweep(
            {_MARKET_ID: _snapshot("0.20")}, BotConfig(), {"paper": executor}, _NOW
        )

        assert closed == []
        assert tracker.get("pos-1").is_open
        assert ledger.state().open_position_count == 1

    @pytest.mark.asyncio
    async def test_target_follows_reloaded_multiplier(self) -> None:
        """Recompute the target from the active multiplier every sweep."""
        tracker, _ = _tracker()
        config = BotConfig(auto_sell_multiplier=Decimal(2))

        closed = await tracker.sweep(
            {_MARKET_ID: _snapshot("0.10")}, config, _paper(), _NOW
        )

        assert len(closed) == 1
        assert closed[0].auto_sell_target == Decimal("0.10")

    @pytest.mark.asyncio
    async def test_past_deadline_resolves_without_order(self) -> None:
        """Close at the resolution price once the deadline passes."""
        source = _source(fetch_resolution=AsyncMock(return_value=ONE))
        tracker, ledger = _tracker(source)
        executor = MagicMock()
        executor.mode = "paper"
        executor.execute = AsyncMock()
        later = _END + timedelta(hours=1)

        closed = await tracker.sweep({}, BotConfig(), {"paper": executor}, later)

        assert len(closed) == 1
        assert closed[0].close_reason is CloseReason.RESOLVED
        assert closed[0].realized_pnl == Decimal(190)
        executor.execute.assert_not_awaited()
        assert ledger.state().total_exposure == ZERO

    @pytest.mark.asyncio
    async def test_losing_resolution(self) -> None:
        """Realise the full cost basis as a loss when the outcome lost."""
        source = _source(fetch_resolution=AsyncMock(return_value=ZERO))
        tracker, _ = _tracker(source)

        closed = await tracker.sweep(
            {_MARKET_ID: _snapshot("0.01", closed=True, accepting_orders=False)},
            BotConfig(),
            _paper(),
            _NOW,
        )

        assert closed[0].realized_pnl == -_SIZE

    @pytest.mark.asyncio
    async def test_unresolved_market_waits(self) -> None:
        """Keep a past-deadline position open until the market resolves."""
        tracker, _ = _tracker()

        closed = await tracker.sweep({}, BotConfig(), _paper(), _END + timedelta(days=1))

        assert closed == []
        assert tracker.get("pos-1").is_open

    @pytest.mark.asyncio
    async def test_resolution_error_waits(self) -> None:
        """Keep the position open when the resolution lookup fails."""
        source = _source(fetch_resolution=AsyncMock(side_effect=TransientIOError("down")))
        tracker, _ = _tracker(source)

        closed = await tracker.sweep({}, BotConfig(), _paper(), _END + timedelta(days=1))

        assert closed == []

    @pytest.mark.asyncio
    async def test_held_markets_missing_from_scan_are_fetched(self) -> None:
        """Fetch snapshots for held markets the scan did not return."""
        source = _source(fetch_markets=AsyncMock(return_value=[_snapshot("0.30")]))
        tracker, _ = _tracker(source)

        closed = await tracker.sweep({}, BotConfig(), _paper(), _NOW)

        source.fetch_markets.assert_awaited_once_with([_MARKET_ID])
        assert len(closed) == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_positions(self) -> None:
        """Leave positions untouched when the refresh fetch fails."""
        source = _source(fetch_markets=AsyncMock(side_effect=TransientIOError("down")))
        tracker, _ = _tracker(source)

        closed = await tracker.sweep({}, BotConfig(), _paper(), _NOW)

        assert closed == []
        assert tracker.get("pos-1").current_price == _ENTRY

    @pytest.mark.asyncio
    async def test_no_positions(self) -> None:
        """Return immediately with nothing open."""
        tracker = PositionTracker(RiskLedger(now=_NOW), _source())
        assert await tracker.sweep({}, BotConfig(), _paper(), _NOW) == []


class TestPartialSales:
    """Tests for partly filled exits and the one-off half-sell."""

    @pytest.mark.asyncio
    async def test_partly_filled_exit_keeps_rest_open(self) -> None:
        """Reduce the position by the filled shares and release only that slice."""
        dispatcher = MagicMock()
        tracker, ledger = _tracker(dispatcher=dispatcher)
        executor = MagicMock()
        executor.mode = "paper"
        executor.execute = AsyncMock(
            return_value=Fill(
                price=Decimal("0.15"), size_usd=Decimal(12), shares=Decimal(80), timestamp=_NOW
            )
        )

        closed = await tracker.sweep(
            {_MARKET_ID: _snapshot("0.15")}, BotConfig(), {"paper": executor}, _NOW
        )

        assert closed == []
        position = tracker.get("pos-1")
        assert position.is_open
        assert position.shares == Decimal(120)
        assert position.size_usd == Decimal(6)
        assert position.realized_pnl == Decimal(8)
        assert ledger.state().total_exposure == Decimal(6)
        assert ledger.state().open_position_count == 1
        event = dispatcher.emit.call_args.args[0]
        assert isinstance(event, PositionReduced)
        assert event.shares_sold == Decimal(80)

    @pytest.mark.asyncio
    async def test_remaining_shares_sold_next_sweep(self) -> None:
        """Sell what is left of a reduced position on a later sweep."""
        tracker, ledger = _tracker()
        tracker.reduce("pos-1", Decimal(80), Decimal("0.15"))

        closed = await tracker.sweep({_MARKET_ID: _snapshot("0.15")}, BotConfig(), _paper(), _NOW)

        assert len(closed) == 1
        assert closed[0].shares == Decimal(120)
        assert closed[0].realized_pnl == Decimal(20)
        assert ledger.state().total_exposure == ZERO

    @pytest.mark.asyncio
    async def test_half_sell_at_partial_multiplier(self) -> None:
        """Sell half once the price reaches the partial multiple."""
        tracker, ledger = _tracker()
        config = BotConfig(partial_sell_multiplier=Decimal(2))

        closed = await tracker.sweep({_MARKET_ID: _snapshot("0.10")}, config, _paper(), _NOW)

        assert closed == []
        position = tracker.get("pos-1")
        assert position.partial_sold
        assert position.shares == Decimal(100)
        assert position.size_usd == Decimal(5)
        assert position.realized_pnl == Decimal(5)
        assert ledger.state().total_exposure == Decimal(5)

    @pytest.mark.asyncio
    async def test_half_sell_happens_once(self) -> None:
        """Hold the second half until the full target is reached."""
        tracker, _ = _tracker()
        config = BotConfig(partial_sell_multiplier=Decimal(2))
        await tracker.sweep({_MARKET_ID: _snapshot("0.10")}, config, _paper(), _NOW)

        await tracker.sweep({_MARKET_ID: _snapshot("0.12")}, config, _paper(), _NOW)
        assert tracker.get("pos-1").shares == Decimal(100)

        closed = await tracker.sweep({_MARKET_ID: _snapshot("0.15")}, config, _paper(), _NOW)
        assert len(closed) == 1
        assert closed[0].realized_pnl == Decimal(15)

    @pytest.mark.asyncio
    async def test_no_half_sell_without_multiplier(self) -> None:
        """Leave the position whole when the partial multiple is unset."""
        tracker, _ = _tracker()

        await tracker.sweep({_MARKET_ID: _snapshot("0.10")}, BotConfig(), _paper(), _NOW)

        assert tracker.get("pos-1").shares == _SHARES
        assert not tracker.get("pos-1").partial_sold

    @pytest.mark.asyncio
    async def test_failed_half_sell_is_retried(self) -> None:
        """Try the half-sell again when the first attempt failed."""
        tracker, _ = _tracker()
        config = BotConfig(partial_sell_multiplier=Decimal(2))
        executor = MagicMock()
        executor.mode = "paper"
        executor.execute = AsyncMock(
            return_value=ExecutionFailed(kind=FailureKind.TRANSIENT, reason="timeout")
        )

        await tracker.sweep({_MARKET_ID: _snapshot("0.10")}, config, {"paper": executor}, _NOW)

        assert not tracker.get("pos-1").partial_sold
        intent: TradeIntent = executor.execute.call_args.args[0]
        assert intent.shares == Decimal(100)
        assert intent.rationale == "partial_sell"


class TestExecutorModes:
    """Exits go through the executor of the mode a position was opened in."""

    @pytest.mark.asyncio
    async def test_paper_position_sold_on_paper_after_switch_to_live(self) -> None:
        """Never send a real order for a paper position."""
        dispatcher = MagicMock()
        tracker, _ = _tracker(dispatcher=dispatcher)
        live = MagicMock()
        live.mode = "live"
        live.execute = AsyncMock()
        executors = {"paper": PaperExecutor(), "live": live}

        closed = await tracker.sweep({_MARKET_ID: _snapshot("0.15")}, BotConfig(), executors, _NOW)

        assert len(closed) == 1
        live.execute.assert_not_awaited()
        assert dispatcher.emit.call_args.args[0].mode == "paper"

    @pytest.mark.asyncio
    async def test_live_position_without_live_executor_stays_open(self) -> None:
        """Keep a live position open rather than selling it on paper."""
        tracker, ledger = _tracker(mode="live")

        closed = await tracker.sweep({_MARKET_ID: _snapshot("0.15")}, BotConfig(), _paper(), _NOW)

        assert closed == []
        assert tracker.get("pos-1").is_open
        assert ledger.state().total_exposure == _SIZE

    @pytest.mark.asyncio
    async def test_live_resolution_reports_live_mode(self) -> None:
        """Report a resolved position under the mode it was opened in."""
        dispatcher = MagicMock()
        source = _source(fetch_resolution=AsyncMock(return_value=ONE))
        tracker, _ = _tracker(source, dispatcher, mode="live")

        await tracker.sweep({}, BotConfig(), _paper(), _END + timedelta(hours=1))

        event = dispatcher.emit.call_args.args[0]
        assert isinstance(event, TradeClosed)
        assert event.mode == "live"


class TestReadRetries:
    """Tests for retried market reads during the sweep."""

    @pytest.mark.asyncio
    async def test_refresh_retried_after_transient_failure(self) -> None:
        """Use the second attempt when the first refresh fails."""
        fetch_markets = AsyncMock(side_effect=[TransientIOError("down"), [_snapshot("0.30")]])
        tracker, _ = _tracker(_source(fetch_markets=fetch_markets))

        closed = await tracker.sweep({}, BotConfig(), _paper(), _NOW)

        assert fetch_markets.await_count == 2  # noqa: PLR2004
        assert len(closed) == 1

    @pytest.mark.asyncio
    async def test_resolution_retried_after_transient_failure(self) -> None:
        """Use the second attempt when the first resolution lookup fails."""
        fetch_resolution = AsyncMock(side_effect=[TransientIOError("down"), ONE])
        tracker, _ = _tracker(_source(fetch_resolution=fetch_resolution))

        closed = await tracker.sweep({}, BotConfig(), _paper(), _END + timedelta(hours=1))

        assert fetch_resolution.await_count == 2  # noqa: PLR2004
        assert closed[0].close_reason is CloseReason.RESOLVED


class TestReporting:
    """Tests for closed_on and summary."""

    def test_closed_on(self) -> None:
        """List positions closed on a trading day."""
        tracker, _ = _tracker()
        tracker.close("pos-1", ONE, CloseReason.RESOLVED, _NOW)

        assert [p.id for p in tracker.closed_on(_NOW.date(), "UTC")] == ["pos-1"]
        assert tracker.closed_on(_NOW.date() + timedelta(days=1), "UTC") == []

    def test_summary(self) -> None:
        """Describe open cost, value and realised P&L."""
        tracker, _ = _tracker()
        tracker.get("pos-1").current_price = Decimal("0.10")

        assert tracker.summary() == (
            "Open: 1 | Cost: $10.00 | Value: $20.00 | Unrealised: $+10.00 | Realised: $+0.00"
        )
