"""Data models for the longshot trading bot.

Define the value objects that flow through one trading cycle: market
snapshots from the scanner, the immutable configuration snapshot, trade
intents from the evaluator, admission verdicts and the read-only risk view
from the ledger, fills and failures from the executors, and the position
records owned by the tracker.  All monetary values use ``Decimal``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType

from longshot_trader.core.models import ONE, ZERO, Side, from_cents, to_cents

_DEFAULT_MAX_PRICE_CENTS = 10
_DEFAULT_MIN_LIQUIDITY = Decimal(500)
_DEFAULT_MAX_PER_TRADE = Decimal(10)
_DEFAULT_MAX_DAILY_SPEND = Decimal(100)
_DEFAULT_MAX_OPEN_POSITIONS = 50
_DEFAULT_AUTO_SELL_MULTIPLIER = Decimal(3)
_DEFAULT_MIN_TRADE = Decimal(1)
_DEFAULT_SCAN_INTERVAL = Decimal(30)
_DEFAULT_CYCLE_TIMEOUT = Decimal(120)
_DEFAULT_REQUEST_TIMEOUT = Decimal(30)
_DEFAULT_SCAN_FAILURE_THRESHOLD = 3
_DEFAULT_NEW_MARKET_SCAN_LIMIT = 100


@dataclass(frozen=True)
class BotConfig:
    """Immutable parameter snapshot for one trading cycle.

    A new snapshot replaces the active one atomically; a cycle reads the
    snapshot once at its start and uses it throughout.

    Args:
        max_price_cents: Highest longshot price worth buying, in cents.
        min_liquidity_usd: Minimum order book depth for a tradable market.
        max_per_trade_usd: Cap on a single trade and on any one market's exposure.
        max_daily_spend_usd: Cap on USD spent on entries per calendar day.
        max_open_positions: Cap on simultaneously open positions.
        auto_sell_multiplier: Exit when price reaches entry times this factor.
        paper_trading: Simulate fills instead of submitting orders.
        max_total_exposure_usd: Optional cap on aggregate open exposure.
        min_volume_24h_usd: Minimum 24-hour volume for a candidate.
        categories: Keyword categories to trade (empty for all).
        min_trade_usd: Smallest intent size worth proposing.
        scan_interval_seconds: Pause between the end of one cycle and the next.
        cycle_timeout_seconds: Upper bound on one cycle's duration.
        request_timeout_seconds: Upper bound on each external call.
        scan_failure_alert_threshold: Consecutive scan failures before an alert.
        timezone: IANA timezone whose midnight resets the daily spend.
        use_market_orders: Live mode order type, FOK market or GTC limit.
        partial_sell_multiplier: Sell half a position once when the price
            reaches entry times this factor; ``None`` disables half-sells.
        new_market_scan_limit: Newest markets checked each cycle in addition
            to the volume-ordered scan; 0 disables the new-market feed.

    """

    max_price_cents: int = _DEFAULT_MAX_PRICE_CENTS
    min_liquidity_usd: Decimal = _DEFAULT_MIN_LIQUIDITY
    max_per_trade_usd: Decimal = _DEFAULT_MAX_PER_TRADE
    max_daily_spend_usd: Decimal = _DEFAULT_MAX_DAILY_SPEND
    max_open_positions: int = _DEFAULT_MAX_OPEN_POSITIONS
    auto_sell_multiplier: Decimal = _DEFAULT_AUTO_SELL_MULTIPLIER
    paper_trading: bool = True
    max_total_exposure_usd: Decimal | None = None
    min_volume_24h_usd: Decimal = ZERO
    categories: tuple[str, ...] = ()
    min_trade_usd: Decimal = _DEFAULT_MIN_TRADE
    scan_interval_seconds: Decimal = _DEFAULT_SCAN_INTERVAL
    cycle_timeout_seconds: Decimal = _DEFAULT_CYCLE_TIMEOUT
    request_timeout_seconds: Decimal = _DEFAULT_REQUEST_TIMEOUT
    scan_failure_alert_threshold: int = _DEFAULT_SCAN_FAILURE_THRESHOLD
    timezone: str = "UTC"
    use_market_orders: bool = True
    partial_sell_multiplier: Decimal | None = None
    new_market_scan_limit: int = _DEFAULT_NEW_MARKET_SCAN_LIMIT

    @property
    def max_price(self) -> Decimal:
        """Return ``max_price_cents`` as a probability between 0 and 1."""
        return from_cents(self.max_price_cents)


@dataclass(frozen=True)
class LongshotSide:
    """The cheaper outcome of a binary market, the side a longshot buys.

    Args:
        outcome: Outcome label ("Yes" or "No").
        token_id: CLOB token identifier for the outcome.
        price: Current price of the outcome token.

    """

    outcome: str
    token_id: str
    price: Decimal

    @property
    def price_cents(self) -> Decimal:
        """Return the price in cents."""
        return to_cents(self.price)


@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time view of one binary prediction market.

    Immutable once fetched and superseded by a fresh snapshot each cycle.

    Args:
        market_id: Market condition identifier.
        question: The prediction question text.
        yes_token_id: CLOB token identifier of the YES outcome.
        no_token_id: CLOB token identifier of the NO outcome.
        yes_price: YES token price (probability between 0 and 1).
        no_price: NO token price (probability between 0 and 1).
        liquidity: Order book depth in USD.
        volume_24h: Trading volume over the last 24 hours in USD.
        end_date: Resolution deadline, or ``None`` when the venue has none.
        timestamp: When the snapshot was taken.
        slug: Market URL slug.
        accepting_orders: Whether the order book takes new orders.
        closed: Whether the market has closed.

    Raises:
        ValueError: If prices are outside the valid [0, 1] range.

    """

    market_id: str
    question: str
    yes_token_id: str
    no_token_id: str
    yes_price: Decimal
    no_price: Decimal
    liquidity: Decimal
    volume_24h: Decimal
    end_date: datetime | None
    timestamp: datetime
    slug: str = ""
    accepting_orders: bool = True
    closed: bool = False

    def __post_init__(self) -> None:
        """Validate that prices are within the valid probability range."""
        if not (ZERO <= self.yes_price <= ONE):
            msg = f"yes_price must be between 0 and 1, got {self.yes_price}"
            raise ValueError(msg)
        if not (ZERO <= self.no_price <= ONE):
            msg = f"no_price must be between 0 and 1, got {self.no_price}"
            raise ValueError(msg)

    @property
    def longshot(self) -> LongshotSide:
        """Return the cheaper outcome; YES wins ties."""
        if self.yes_price <= self.no_price:
            return LongshotSide(outcome="Yes", token_id=self.yes_token_id, price=self.yes_price)
        return LongshotSide(outcome="No", token_id=self.no_token_id, price=self.no_price)

    def price_for(self, outcome: str) -> Decimal:
        """Return the current price of the given outcome token.

        Args:
            outcome: Outcome label ("Yes" or "No").

        Returns:
            The outcome's price.

        """
        return self.yes_price if outcome == "Yes" else self.no_price

    def is_expired(self, now: datetime) -> bool:
        """Return ``True`` once the resolution deadline has passed.

        Args:
            now: Current aware datetime.

        """
        return self.end_date is not None and self.end_date <= now


class DiscoveryKind(Enum):
    """How the scanner came across a candidate."""

    LONGSHOT = "longshot"
    NEW_MARKET = "new_market"
    VOLUME_SPIKE = "volume_spike"
    MISPRICED = "mispriced"


@dataclass(frozen=True)
class TradeIntent:
    """Proposed order produced by the evaluator or the exit sweep.

    Args:
        market_id: Market condition identifier.
        token_id: CLOB token identifier of the outcome to trade.
        outcome: Outcome label ("Yes" or "No").
        side: BUY to open a position, SELL to exit one.
        size_usd: Proposed notional in USD.
        price: Proposed price per share between 0 and 1.
        rationale: Short tag explaining the intent (e.g. ``"longshot"``).
        question: Market question, carried for logs and notifications.
        share_count: Exact shares to trade; exits set it to the held count.

    """

    market_id: str
    token_id: str
    outcome: str
    side: Side
    size_usd: Decimal
    price: Decimal
    rationale: str
    question: str = ""
    share_count: Decimal | None = None

    @property
    def shares(self) -> Decimal:
        """Return ``share_count``, or the count implied by ``size_usd`` at ``price``."""
        if self.share_count is not None:
            return self.share_count
        if self.price <= ZERO:
            return ZERO
        return self.size_usd / self.price


class RejectionReason(Enum):
    """Why the risk ledger refused an intent."""

    DAILY_CAP_EXCEEDED = "DailyCapExceeded"
    PER_MARKET_CAP_EXCEEDED = "PerMarketCapExceeded"
    MAX_POSITIONS_REACHED = "MaxPositionsReached"
    GLOBAL_EXPOSURE_EXCEEDED = "GlobalExposureExceeded"


@dataclass(frozen=True)
class Admitted:
    """Ledger verdict: the intent's exposure has been reserved.

    Args:
        intent: The admitted intent.
        trading_day: Operating-timezone day the spend was booked against.

    """

    intent: TradeIntent
    trading_day: date


@dataclass(frozen=True)
class Rejected:
    """Ledger verdict: the intent would breach a risk limit.

    Args:
        intent: The rejected intent.
        reason: The first limit that would be breached.

    """

    intent: TradeIntent
    reason: RejectionReason


type Admission = Admitted | Rejected


def _empty_exposure() -> Mapping[str, Decimal]:
    """Create an empty read-only exposure mapping."""
    return MappingProxyType({})


@dataclass(frozen=True)
class RiskState:
    """Read-only copy of the risk ledger's aggregate.

    Args:
        trading_day: Operating-timezone day the spend counter belongs to.
        spent_today: USD spent on entries during ``trading_day``.
        total_exposure: USD committed to open positions.
        open_position_count: Number of open positions (including admitted
            intents still executing).
        per_market_exposure: USD committed per market.

    """

    trading_day: date
    spent_today: Decimal = ZERO
    total_exposure: Decimal = ZERO
    open_position_count: int = 0
    per_market_exposure: Mapping[str, Decimal] = field(default_factory=_empty_exposure)

    def remaining_daily(self, config: BotConfig) -> Decimal:
        """Return the USD still spendable today."""
        return max(ZERO, config.max_daily_spend_usd - self.spent_today)

    def remaining_for_market(self, market_id: str, config: BotConfig) -> Decimal:
        """Return the USD of exposure still allowed on one market."""
        used = self.per_market_exposure.get(market_id, ZERO)
        return max(ZERO, config.max_per_trade_usd - used)

    def remaining_global(self, config: BotConfig) -> Decimal | None:
        """Return the USD left under the global cap, or ``None`` when uncapped."""
        if config.max_total_exposure_usd is None:
            return None
        return max(ZERO, config.max_total_exposure_usd - self.total_exposure)


@dataclass(frozen=True)
class Fill:
    """Confirmed execution of an intent.

    Args:
        price: Execution price per share.
        size_usd: Executed notional in USD.
        shares: Executed share count.
        timestamp: When the fill was confirmed.
        order_id: Venue order identifier (empty for paper fills).

    """

    price: Decimal
    size_usd: Decimal
    shares: Decimal
    timestamp: datetime
    order_id: str = ""


class FailureKind(Enum):
    """Category of an execution failure."""

    TRANSIENT = "transient"
    VENUE_REJECTION = "venue_rejection"


@dataclass(frozen=True)
class ExecutionFailed:
    """Execution outcome when no fill was obtained.

    Args:
        kind: Whether retries were exhausted or the venue refused the order.
        reason: Human-readable description.

    """

    kind: FailureKind
    reason: str


type ExecutionResult = Fill | ExecutionFailed


class PositionStatus(Enum):
    """Lifecycle state of a position."""

    OPEN = "open"
    CLOSED = "closed"


class CloseReason(Enum):
    """Why a position was closed."""

    AUTO_SELL = "auto_sell"
    RESOLVED = "resolved"


@dataclass
class Position:
    """Position record owned by the tracker.

    Mutable only while open; once closed the record is retained unchanged
    for audit.

    Args:
        id: Unique position identifier.
        market_id: Market condition identifier.
        token_id: CLOB token identifier of the held outcome.
        outcome: Held outcome label ("Yes" or "No").
        question: Market question text.
        entry_price: Average fill price per share.
        size_usd: Cost basis in USD.
        shares: Number of shares held.
        opened_at: When the entry fill was confirmed.
        auto_sell_target: Price at which the position is exited.
        mode: Execution mode that opened the position; exits use the same one.
        end_date: Resolution deadline of the market.
        current_price: Latest observed price of the held outcome.
        status: Lifecycle state.
        closed_at: When the position was closed.
        exit_price: Exit or resolution price per share.
        realized_pnl: Profit or loss in USD booked by sales and the close.
        close_reason: Why the position was closed.
        partial_sold: Whether the one-off half-sell has happened.

    """

    id: str
    market_id: str
    token_id: str
    outcome: str
    question: str
    entry_price: Decimal
    size_usd: Decimal
    shares: Decimal
    opened_at: datetime
    auto_sell_target: Decimal
    mode: str = "paper"
    end_date: datetime | None = None
    current_price: Decimal | None = None
    status: PositionStatus = PositionStatus.OPEN
    closed_at: datetime | None = None
    exit_price: Decimal | None = None
    realized_pnl: Decimal | None = None
    close_reason: CloseReason | None = None
    partial_sold: bool = False

    @property
    def is_open(self) -> bool:
        """Return ``True`` while the position is open."""
        return self.status is PositionStatus.OPEN

    @property
    def marked_value(self) -> Decimal:
        """Return the position's value at the latest observed price."""
        price = self.current_price if self.current_price is not None else self.entry_price
        return self.shares * price

    @property
    def unrealized_pnl(self) -> Decimal:
        """Return the mark-to-market profit or loss of an open position."""
        return self.marked_value - self.size_usd
