"""Authoritative exposure and spend ledger.

``RiskLedger`` owns the single mutable ``RiskState`` aggregate.  Every
operation that reads-then-writes the aggregate runs under one lock, so no
caller can observe a partially-updated state.  Admission is reversible:
``rollback`` undoes an admission whose execution failed, restoring the
state exactly.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType

from longshot_trader.apps.longshot_bot.models import (
    Admission,
    Admitted,
    BotConfig,
    Rejected,
    RejectionReason,
    RiskState,
    TradeIntent,
)
from longshot_trader.core.models import ZERO
from longshot_trader.core.timestamps import trading_day, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayTotals:
    """Spend and trade count of a trading day that has ended.

    Args:
        trading_day: The day that ended.
        spent: USD spent on entries during the day.
        trades_admitted: Admissions that were not rolled back.

    """

    trading_day: date
    spent: Decimal
    trades_admitted: int


class RiskLedger:
    """Admit, roll back, settle and release exposure under configured caps.

    The caps themselves come from the ``BotConfig`` passed to ``admit``, so a
    hot-reloaded snapshot takes effect at the next admission without
    touching the accumulated state.

    Args:
        timezone: IANA timezone whose midnight resets the daily spend.
        now: Moment used to initialise the trading day (defaults to now).

    """

    def __init__(self, timezone: str = "UTC", *, now: datetime | None = None) -> None:
        """Initialize an empty ledger for the current trading day.

        Args:
            timezone: IANA timezone of the daily boundary.
            now: Override for the current time (for testing).

        """
        self._lock = threading.Lock()
        self._timezone = timezone
        self._day = trading_day(now or utc_now(), timezone)
        self._spent_today = ZERO
        self._trades_today = 0
        self._total_exposure = ZERO
        self._per_market: dict[str, Decimal] = {}
        self._open_count = 0

    def state(self) -> RiskState:
        """Return a read-only copy of the current aggregate."""
        with self._lock:
            return self._snapshot()

    def roll_day(
        self,
        now: datetime | None = None,
        timezone: str | None = None,
    ) -> DayTotals | None:
        """Reset the daily spend if ``now`` falls on a later trading day.

        Call at the start of every cycle.  Exposure and open positions carry
        over; only the spend counter and trade count reset.

        Args:
            now: Current time (defaults to now).
            timezone: Operating timezone; updates the stored one when given.

        Returns:
            Totals of the day that ended, or ``None`` if the day is unchanged.

        """
        with self._lock:
            if timezone is not None:
                self._timezone = timezone
            today = trading_day(now or utc_now(), self._timezone)
            if today <= self._day:
                return None
            ended = DayTotals(
                trading_day=self._day,
                spent=self._spent_today,
                trades_admitted=self._trades_today,
            )
            self._day = today
            self._spent_today = ZERO
            self._trades_today = 0
        logger.info(
            "New trading day %s: daily spend reset (previous day spent $%.2f)",
            today.isoformat(),
            ended.spent,
        )
        return ended

    def admit(self, intent: TradeIntent, config: BotConfig) -> Admission:
        """Check an intent against every cap and reserve its exposure.

        The check and the reservation are one atomic step.  Caps are tested
        in order: daily spend, global exposure, per-market exposure, open
        positions; the first breached cap names the rejection.

        Args:
            intent: Proposed entry.
            config: Snapshot supplying the caps.

        Returns:
            ``Admitted`` with the booked trading day, or ``Rejected``.

        """
        size = intent.size_usd
        with self._lock:
            reason = self._check(intent.market_id, size, config)
            if reason is not None:
                logger.info(
                    "Rejected %s $%.2f on %s: %s",
                    intent.outcome,
                    size,
                    intent.market_id[:20],
                    reason.value,
                )
                return Rejected(intent=intent, reason=reason)
            self._spent_today += size
            self._trades_today += 1
            self._total_exposure += size
            self._per_market[intent.market_id] = self._per_market.get(intent.market_id, ZERO) + size
            self._open_count += 1
            return Admitted(intent=intent, trading_day=self._day)

    def rollback(self, admitted: Admitted) -> None:
        """Undo an admission whose execution failed or was cancelled.

        Restores the aggregate to its pre-admission value.  Spend booked on
        a day that has since rolled over is not refunded.

        Args:
            admitted: The admission to undo.

        """
        intent = admitted.intent
        size = intent.size_usd
        with self._lock:
            if admitted.trading_day == self._day:
                self._spent_today -= size
                self._trades_today -= 1
            self._total_exposure -= size
            self._open_count -= 1
            self._reduce_market(intent.market_id, size)
        logger.info("Rolled back $%.2f on %s", size, intent.market_id[:20])

    def settle(self, admitted: Admitted, filled_usd: Decimal) -> None:
        """Shrink a reservation to the amount actually filled.

        Args:
            admitted: The admission that executed.
            filled_usd: Executed notional, at most the admitted size.

        """
        unfilled = admitted.intent.size_usd - filled_usd
        if unfilled <= ZERO:
            return
        with self._lock:
            if admitted.trading_day == self._day:
                self._spent_today -= unfilled
            self._total_exposure -= unfilled
            self._reduce_market(admitted.intent.market_id, unfilled)
        logger.info(
            "Settled %s at $%.2f of $%.2f admitted",
            admitted.intent.market_id[:20],
            filled_usd,
            admitted.intent.size_usd,
        )

    def release(self, market_id: str, size_usd: Decimal) -> None:
        """Release a closed position's exposure.

        Values never go below zero.  An underflow means the ledger and the
        position set disagree; it is clamped and logged at ERROR.

        Args:
            market_id: Market of the closed position.
            size_usd: Cost basis of the closed position.

        """
        with self._lock:
            self._release_total(market_id, size_usd)
            held = self._per_market.pop(market_id, None)
            if held is None or held < size_usd:
                logger.error(
                    "Per-market exposure underflow on %s: held $%s, released $%.2f",
                    market_id[:20],
                    held if held is not None else "0",
                    size_usd,
                )
            if self._open_count == 0:
                logger.error("Open position count underflow on %s", market_id[:20])
            else:
                self._open_count -= 1

    def reduce(self, market_id: str, size_usd: Decimal) -> None:
        """Release the cost basis of shares sold from a position that stays open.

        The open position count is unchanged.  Underflows are clamped and
        logged at ERROR as in ``release``.

        Args:
            market_id: Market of the reduced position.
            size_usd: Cost basis of the shares sold.

        """
        with self._lock:
            self._release_total(market_id, size_usd)
            held = self._per_market.get(market_id, ZERO)
            if held < size_usd:
                logger.error(
                    "Per-market exposure underflow on %s: held $%.2f, reduced $%.2f",
                    market_id[:20],
                    held,
                    size_usd,
                )
            self._reduce_market(market_id, size_usd)
        logger.info("Reduced exposure on %s by $%.2f", market_id[:20], size_usd)

    def summary(self, config: BotConfig) -> str:
        """Return a one-line description of spend and exposure against caps."""
        state = self.state()
        exposure_cap = (
            f"${config.max_total_exposure_usd:.2f}"
            if config.max_total_exposure_usd is not None
            else "uncapped"
        )
        return (
            f"Daily: ${state.spent_today:.2f}/${config.max_daily_spend_usd:.2f}"
            f" | Positions: {state.open_position_count}/{config.max_open_positions}"
            f" | Exposure: ${state.total_exposure:.2f}/{exposure_cap}"
        )

    def _check(self, market_id: str, size: Decimal, config: BotConfig) -> RejectionReason | None:
        """Return the first cap ``size`` would breach, or ``None``."""
        if self._spent_today + size > config.max_daily_spend_usd:
            return RejectionReason.DAILY_CAP_EXCEEDED
        if (
            config.max_total_exposure_usd is not None
            and self._total_exposure + size > config.max_total_exposure_usd
        ):
            return RejectionReason.GLOBAL_EXPOSURE_EXCEEDED
        if self._per_market.get(market_id, ZERO) + size > config.max_per_trade_usd:
            return RejectionReason.PER_MARKET_CAP_EXCEEDED
        if self._open_count >= config.max_open_positions:
            return RejectionReason.MAX_POSITIONS_REACHED
        return None

    def _release_total(self, market_id: str, size_usd: Decimal) -> None:
        """Lower total exposure, clamping at zero; caller holds the lock."""
        if size_usd > self._total_exposure:
            logger.error(
                "Exposure underflow releasing $%.2f on %s: total exposure is $%.2f",
                size_usd,
                market_id[:20],
                self._total_exposure,
            )
            self._total_exposure = ZERO
        else:
            self._total_exposure -= size_usd

    def _reduce_market(self, market_id: str, amount: Decimal) -> None:
        """Lower one market's exposure, dropping the entry when it reaches zero."""
        remaining = self._per_market.get(market_id, ZERO) - amount
        if remaining > ZERO:
            self._per_market[market_id] = remaining
        else:
            self._per_market.pop(market_id, None)

    def _snapshot(self) -> RiskState:
        """Build a ``RiskState`` copy; caller holds the lock."""
        return RiskState(
            trading_day=self._day,
            spent_today=self._spent_today,
            total_exposure=self._total_exposure,
            open_position_count=self._open_count,
            per_market_exposure=MappingProxyType(dict(self._per_market)),
        )
