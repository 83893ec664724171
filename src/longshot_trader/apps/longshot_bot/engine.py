"""Periodic trading engine for the longshot strategy.

Drive one scan-evaluate-admit-execute-track cycle at a time.  Cycles never
overlap: each runs to completion or is cut off by ``cycle_timeout_seconds``
before the next begins.  A cycle reads the configuration snapshot once at
its start and uses it throughout.

Safety guardrails:
- Admissions still waiting on execution are rolled back when a cycle is
  cancelled or times out
- SIGINT cancels the in-flight cycle and stops the loop
- ``FatalAuthError`` raises a critical alert and halts the loop
"""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from decimal import Decimal

from longshot_trader.apps.longshot_bot.config_provider import (
    ConfigSnapshotProvider,
    describe_changes,
)
from longshot_trader.apps.longshot_bot.exceptions import ConfigError, FatalAuthError
from longshot_trader.apps.longshot_bot.execution import LiveExecutor, PaperExecutor
from longshot_trader.apps.longshot_bot.models import (
    Admitted,
    BotConfig,
    ExecutionFailed,
    MarketSnapshot,
    Position,
    Rejected,
    TradeIntent,
)
from longshot_trader.apps.longshot_bot.notifications import (
    BotStarted,
    DailySummary,
    DiscoveryFound,
    NotificationDispatcher,
    OperationalAlert,
    TradeOpened,
)
from longshot_trader.apps.longshot_bot.positions import PositionTracker
from longshot_trader.apps.longshot_bot.protocols import MarketDataSource, OrderExecutor
from longshot_trader.apps.longshot_bot.risk import DayTotals, RiskLedger
from longshot_trader.apps.longshot_bot.scanner import MarketScanner
from longshot_trader.apps.longshot_bot.strategy import LongshotEvaluator
from longshot_trader.core.models import ZERO
from longshot_trader.core.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What happened during one cycle.

    Args:
        cycle: One-based cycle number.
        mode: Execution mode used for the cycle.
        candidates: Number of scanner candidates.
        intents: Intents proposed by the evaluator.
        opened: Positions opened.
        rejected: Risk rejections.
        failed: Executions that produced no fill.
        closed: Positions closed by the sweep.
        scan_error: Scanner failure description, if any.
        timed_out: Whether the cycle hit ``cycle_timeout_seconds``.

    """

    cycle: int
    mode: str = ""
    candidates: int = 0
    intents: list[TradeIntent] = field(default_factory=list)
    opened: list[Position] = field(default_factory=list)
    rejected: list[Rejected] = field(default_factory=list)
    failed: list[ExecutionFailed] = field(default_factory=list)
    closed: list[Position] = field(default_factory=list)
    scan_error: str | None = None
    timed_out: bool = False


class LongshotEngine:
    """Run the longshot trading cycle on a fixed interval.

    Args:
        provider: Source of validated configuration snapshots.
        source: Read-only market data source.
        dispatcher: Notification dispatcher for engine events.
        paper_executor: Executor used while ``paper_trading`` is true.
        live_executor: Executor used while ``paper_trading`` is false;
            ``None`` when live credentials were not supplied at startup.
        ledger: Risk ledger (created from the config timezone if omitted).
        sleep: Sleep function between read retries (injectable for testing).

    """

    def __init__(  # noqa: PLR0913
        self,
        provider: ConfigSnapshotProvider,
        source: MarketDataSource,
        dispatcher: NotificationDispatcher,
        *,
        paper_executor: OrderExecutor | None = None,
        live_executor: OrderExecutor | None = None,
        ledger: RiskLedger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine and wire its components.

        Args:
            provider: Configuration snapshot provider.
            source: Market data source.
            dispatcher: Notification dispatcher.
            paper_executor: Paper executor (a zero-slippage one by default).
            live_executor: Optional live executor.
            ledger: Optional pre-built risk ledger.
            sleep: Sleep function between read retries.

        """
        config = provider.current()
        self._provider = provider
        self._dispatcher = dispatcher
        self._paper = paper_executor or PaperExecutor()
        self._live = live_executor
        self._ledger = ledger or RiskLedger(config.timezone)
        self._scanner = MarketScanner(source, dispatcher, sleep)
        self._evaluator = LongshotEvaluator()
        self._tracker = PositionTracker(self._ledger, source, dispatcher, sleep)
        self._shutdown = asyncio.Event()
        self._cycles = 0
        self._live_unavailable_alerted = False
        provider.subscribe(self._on_config_change)
        provider.subscribe_rejections(self._on_config_rejected)

    @property
    def ledger(self) -> RiskLedger:
        """Return the risk ledger."""
        return self._ledger

    @property
    def tracker(self) -> PositionTracker:
        """Return the position tracker."""
        return self._tracker

    @property
    def cycles(self) -> int:
        """Return the number of cycles started so far."""
        return self._cycles

    def shutdown(self) -> None:
        """Request a graceful stop; the in-flight cycle is cancelled."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
        self._shutdown.set()

    async def run(self, *, max_cycles: int | None = None) -> int:
        """Run cycles until shutdown, a fatal error, or ``max_cycles``.

        Install a SIGINT handler that cancels the in-flight cycle.

        Args:
            max_cycles: Stop after this many cycles (``None`` for unlimited).

        Returns:
            The number of cycles run.

        Raises:
            FatalAuthError: When live credentials are refused.

        """
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, self.shutdown)
        config = self._provider.current()
        self._dispatcher.emit(BotStarted(mode=self._select_executor(config).mode, config=config))
        ran = 0
        try:
            while not self._shutdown.is_set():
                cycle = asyncio.create_task(self.run_cycle(), name="longshot-cycle")
                stop = asyncio.create_task(self._shutdown.wait(), name="longshot-shutdown")
                await asyncio.wait({cycle, stop}, return_when=asyncio.FIRST_COMPLETED)
                stop.cancel()
                if not cycle.done():
                    cycle.cancel()
                    await asyncio.gather(cycle, return_exceptions=True)
                    logger.info("In-flight cycle cancelled")
                    break
                ran += 1
                try:
                    cycle.result()
                except FatalAuthError as exc:
                    message = f"Live credentials refused, stopping: {exc}"
                    logger.critical("%s", message)
                    self._dispatcher.emit(OperationalAlert(message=message, severity="critical"))
                    raise
                except Exception as exc:
                    logger.exception("Cycle %d failed unexpectedly", self._cycles)
                    message = f"Cycle {self._cycles} failed: {exc}"
                    self._dispatcher.emit(OperationalAlert(message=message))
                if max_cycles is not None and ran >= max_cycles:
                    break
                await self._pause(self._provider.current())
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            logger.info("%s", self._ledger.summary(self._provider.current()))
            logger.info("%s", self._tracker.summary())
            await self._dispatcher.aclose()
        return ran

    async def run_cycle(self) -> CycleReport:
        """Run one cycle under the cycle timeout.

        Returns:
            A report of the cycle.  A timed-out cycle returns a report with
            ``timed_out`` set; its pending admission has been rolled back.

        Raises:
            FatalAuthError: When live credentials are refused.

        """
        self._provider.refresh()
        config = self._provider.current()
        self._cycles += 1
        report = CycleReport(cycle=self._cycles)
        try:
            async with asyncio.timeout(float(config.cycle_timeout_seconds)):
                await self._cycle(config, report)
        except TimeoutError:
            report.timed_out = True
            message = f"Cycle {report.cycle} timed out after {config.cycle_timeout_seconds}s"
            logger.warning("%s", message)
            self._dispatcher.emit(OperationalAlert(message=message))
        return report

    async def _cycle(self, config: BotConfig, report: CycleReport) -> None:
        """Execute the cycle body against one config snapshot."""
        now = utc_now()
        ended = self._ledger.roll_day(now, config.timezone)
        if ended is not None:
            self._emit_daily_summary(ended, config)

        executor = self._select_executor(config)
        report.mode = executor.mode

        scan = await self._scanner.scan(config, now)
        report.scan_error = scan.error
        report.candidates = len(scan.candidates)

        intents = self._evaluator.evaluate(
            scan.candidates,
            self._ledger.state(),
            config,
            self._tracker.open_market_ids(),
        )
        report.intents = intents
        if intents:
            self._dispatcher.emit(
                DiscoveryFound(
                    candidates=tuple(scan.candidates),
                    intents=tuple(intents),
                    discoveries=dict(scan.discoveries),
                )
            )

        for intent in intents:
            await self._enter(intent, config, executor, scan.snapshots, report)

        report.closed = await self._tracker.sweep(scan.snapshots, config, self._executors(), now)

        logger.info(
            "[cycle %d %s] candidates=%d intents=%d opened=%d rejected=%d failed=%d closed=%d",
            report.cycle,
            report.mode,
            report.candidates,
            len(report.intents),
            len(report.opened),
            len(report.rejected),
            len(report.failed),
            len(report.closed),
        )
        logger.info("%s", self._ledger.summary(config))
        logger.info("%s", self._tracker.summary())

    async def _enter(
        self,
        intent: TradeIntent,
        config: BotConfig,
        executor: OrderExecutor,
        snapshots: dict[str, MarketSnapshot],
        report: CycleReport,
    ) -> None:
        """Admit, execute and record one entry intent."""
        admission = self._ledger.admit(intent, config)
        if isinstance(admission, Rejected):
            report.rejected.append(admission)
            return
        try:
            result = await executor.execute(intent)
        except BaseException:
            self._ledger.rollback(admission)
            raise
        if isinstance(result, ExecutionFailed):
            self._ledger.rollback(admission)
            report.failed.append(result)
            logger.warning(
                "Entry on %s failed (%s): %s",
                intent.market_id[:20],
                result.kind.value,
                result.reason,
            )
            return
        self._settle_partial(admission, result.size_usd)
        snapshot = snapshots.get(intent.market_id)
        position = self._tracker.open_position(
            intent,
            result,
            config,
            end_date=snapshot.end_date if snapshot is not None else None,
            mode=executor.mode,
        )
        report.opened.append(position)
        self._dispatcher.emit(TradeOpened(position=replace(position), mode=executor.mode))

    def _settle_partial(self, admission: Admitted, filled_usd: Decimal) -> None:
        """Shrink the admission when the venue filled less than requested."""
        if filled_usd < admission.intent.size_usd:
            self._ledger.settle(admission, filled_usd)

    def _executors(self) -> dict[str, OrderExecutor]:
        """Return the executors positions can be sold through, keyed by mode."""
        executors = {self._paper.mode: self._paper}
        if self._live is not None:
            executors[self._live.mode] = self._live
        return executors

    def _select_executor(self, config: BotConfig) -> OrderExecutor:
        """Pick the executor for the snapshot's mode, falling back to paper."""
        if config.paper_trading:
            self._live_unavailable_alerted = False
            return self._paper
        if self._live is not None:
            return self._live
        if not self._live_unavailable_alerted:
            self._live_unavailable_alerted = True
            message = (
                "paper_trading is false but no live credentials were loaded; staying in paper mode"
            )
            logger.warning("%s", message)
            self._dispatcher.emit(OperationalAlert(message=message))
        return self._paper

    def _emit_daily_summary(self, ended: DayTotals, config: BotConfig) -> None:
        """Send the summary of the trading day that just ended."""
        closed = self._tracker.closed_on(ended.trading_day, config.timezone)
        state = self._ledger.state()
        self._dispatcher.emit(
            DailySummary(
                trading_day=ended.trading_day,
                spent=ended.spent,
                trades_opened=ended.trades_admitted,
                positions_closed=len(closed),
                realized_pnl=sum((p.realized_pnl or ZERO for p in closed), ZERO),
                open_positions=state.open_position_count,
                total_exposure=state.total_exposure,
            )
        )

    async def _pause(self, config: BotConfig) -> None:
        """Sleep for the scan interval, waking early on shutdown."""
        try:
            await asyncio.wait_for(
                self._shutdown.wait(), timeout=float(config.scan_interval_seconds)
            )
        except TimeoutError:
            return

    def _on_config_change(self, old: BotConfig, new: BotConfig) -> None:
        """Log parameter changes and apply live order settings."""
        changes = describe_changes(old, new)
        logger.info("Config changed: %s", "; ".join(changes))
        if isinstance(self._live, LiveExecutor):
            self._live.configure(
                use_market_orders=new.use_market_orders,
                timeout=float(new.request_timeout_seconds),
            )
        if old.paper_trading != new.paper_trading:
            mode = "paper" if new.paper_trading else "live"
            self._dispatcher.emit(OperationalAlert(message=f"Execution mode switched to {mode}"))

    def _on_config_rejected(self, error: ConfigError) -> None:
        """Alert on a rejected reload; the prior snapshot stays active."""
        message = f"Config reload rejected, keeping previous values: {error}"
        self._dispatcher.emit(OperationalAlert(message=message))
