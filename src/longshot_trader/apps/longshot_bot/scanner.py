"""Market scanner: fetch snapshots and filter longshot candidates.

Each scan reads the active markets and, when enabled, the newest markets
ordered by creation time.  Every candidate passes the same ``qualifies``
filter and is tagged with how it was found: a market first seen since the
previous scan, a 24h volume spike, a YES/NO pair priced well below one
dollar, or a plain longshot.  Tags are informational and never change the
ranking.

The scanner never raises on data-source trouble.  Reads are retried with
backoff; a fetch that still fails yields an empty result and bumps a
consecutive-failure counter, and every time the counter reaches a multiple
of the configured threshold an operational alert is emitted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from longshot_trader.apps.longshot_bot.exceptions import LongshotError
from longshot_trader.apps.longshot_bot.execution import fetch_with_retry
from longshot_trader.apps.longshot_bot.models import BotConfig, DiscoveryKind, MarketSnapshot
from longshot_trader.apps.longshot_bot.notifications import (
    NotificationDispatcher,
    OperationalAlert,
)
from longshot_trader.apps.longshot_bot.protocols import MarketDataSource
from longshot_trader.core.models import ZERO
from longshot_trader.core.timestamps import utc_now

logger = logging.getLogger(__name__)

_MIN_TRADABLE_PRICE = Decimal("0.001")
_MAX_TRADABLE_PRICE = Decimal("0.99")
_VOLUME_SPIKE_RATIO = Decimal(3)
_VOLUME_SPIKE_FLOOR = Decimal(100)
_MISPRICED_SUM = Decimal("0.95")


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan.

    Args:
        snapshots: Every snapshot the source returned, keyed by market id.
        candidates: Snapshots that satisfy the longshot filters.
        error: Description of the failure, or ``None`` on success.
        discoveries: How each candidate was found, keyed by market id.

    """

    snapshots: dict[str, MarketSnapshot] = field(default_factory=dict)
    candidates: list[MarketSnapshot] = field(default_factory=list)
    error: str | None = None
    discoveries: dict[str, DiscoveryKind] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Return ``True`` when the fetch succeeded."""
        return self.error is None


def qualifies(snapshot: MarketSnapshot, config: BotConfig, now: datetime) -> bool:
    """Return whether a snapshot is a tradable longshot candidate.

    The cheaper side must cost at most ``max_price_cents`` and sit inside
    the tradable band, liquidity must reach ``min_liquidity_usd``, the
    deadline must lie in the future, and the book must accept orders.

    Args:
        snapshot: Market to test.
        config: Active configuration snapshot.
        now: Current aware datetime.

    """
    if snapshot.closed or not snapshot.accepting_orders:
        return False
    if snapshot.end_date is None or snapshot.end_date <= now:
        return False
    price = snapshot.longshot.price
    if price <= _MIN_TRADABLE_PRICE or price >= _MAX_TRADABLE_PRICE:
        return False
    if price > config.max_price:
        return False
    return snapshot.liquidity >= config.min_liquidity_usd


def is_volume_spike(snapshot: MarketSnapshot, previous_volume: Decimal | None) -> bool:
    """Return whether 24h volume jumped to over three times its last reading.

    Readings of $100 or less are too thin to compare against.
    """
    return (
        previous_volume is not None
        and previous_volume > _VOLUME_SPIKE_FLOOR
        and snapshot.volume_24h > previous_volume * _VOLUME_SPIKE_RATIO
    )


def is_mispriced(snapshot: MarketSnapshot) -> bool:
    """Return whether the YES and NO prices sum to a positive value below 0.95."""
    total = snapshot.yes_price + snapshot.no_price
    return ZERO < total < _MISPRICED_SUM


class MarketScanner:
    """Periodically retrieve market snapshots and filter candidates.

    Args:
        source: Read-only market data source.
        dispatcher: Receives the escalation alert; ``None`` to only log.
        sleep: Sleep function between read retries (injectable for testing).

    """

    def __init__(
        self,
        source: MarketDataSource,
        dispatcher: NotificationDispatcher | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the scanner.

        Args:
            source: Read-only market data source.
            dispatcher: Optional notification dispatcher.
            sleep: Sleep function used between read retries.

        """
        self._source = source
        self._dispatcher = dispatcher
        self._sleep = sleep
        self._consecutive_failures = 0
        self._known_ids: set[str] = set()
        self._volume_history: dict[str, Decimal] = {}

    @property
    def consecutive_failures(self) -> int:
        """Return the number of failed scans since the last success."""
        return self._consecutive_failures

    async def scan(self, config: BotConfig, now: datetime | None = None) -> ScanResult:
        """Fetch active and newest markets and return them with the candidates.

        Args:
            config: Active configuration snapshot.
            now: Current time (defaults to now).

        Returns:
            A ``ScanResult``; empty with ``error`` set when the active-market
            fetch failed.

        """
        timeout = float(config.request_timeout_seconds)
        try:
            snapshots = await fetch_with_retry(
                self._source.fetch_active,
                timeout=timeout,
                description="active market fetch",
                sleep=self._sleep,
            )
        except LongshotError as exc:
            return self._record_failure(config, exc)

        if self._consecutive_failures:
            logger.info("Market scan recovered after %d failures", self._consecutive_failures)
        self._consecutive_failures = 0

        by_id = {s.market_id: s for s in snapshots}
        for snapshot in await self._fetch_recent(config, timeout):
            by_id.setdefault(snapshot.market_id, snapshot)

        moment = now or utc_now()
        candidates = [s for s in by_id.values() if qualifies(s, config, moment)]
        discoveries = {s.market_id: self._classify(s) for s in candidates}
        self._remember(by_id.values())

        tagged = sum(1 for kind in discoveries.values() if kind is not DiscoveryKind.LONGSHOT)
        logger.info(
            "Scanned %d markets, %d longshot candidates (%d flagged)",
            len(by_id),
            len(candidates),
            tagged,
        )
        return ScanResult(snapshots=by_id, candidates=candidates, discoveries=discoveries)

    async def _fetch_recent(self, config: BotConfig, timeout: float) -> list[MarketSnapshot]:
        """Fetch the newest markets; a failure only costs this cycle's extras."""
        limit = config.new_market_scan_limit
        if limit <= 0:
            return []
        try:
            return await fetch_with_retry(
                lambda: self._source.fetch_recent(limit),
                timeout=timeout,
                description="recent market fetch",
                sleep=self._sleep,
            )
        except LongshotError as exc:
            logger.warning("Recent market fetch failed: %s", exc, exc_info=True)
            return []

    def _classify(self, snapshot: MarketSnapshot) -> DiscoveryKind:
        """Tag a candidate against what earlier scans recorded."""
        if self._known_ids and snapshot.market_id not in self._known_ids:
            logger.info("New market: %s", snapshot.question[:60])
            return DiscoveryKind.NEW_MARKET
        previous = self._volume_history.get(snapshot.market_id)
        if is_volume_spike(snapshot, previous):
            logger.info(
                "Volume spike: %s (%.0f -> %.0f)",
                snapshot.question[:60],
                previous,
                snapshot.volume_24h,
            )
            return DiscoveryKind.VOLUME_SPIKE
        if is_mispriced(snapshot):
            logger.info(
                "Mispriced: %s (YES %.4f + NO %.4f)",
                snapshot.question[:60],
                snapshot.yes_price,
                snapshot.no_price,
            )
            return DiscoveryKind.MISPRICED
        return DiscoveryKind.LONGSHOT

    def _remember(self, snapshots: Iterable[MarketSnapshot]) -> None:
        """Record ids and 24h volumes for the next scan's comparisons."""
        for snapshot in snapshots:
            self._known_ids.add(snapshot.market_id)
            self._volume_history[snapshot.market_id] = snapshot.volume_24h

    def _record_failure(self, config: BotConfig, exc: Exception) -> ScanResult:
        """Count a failed scan and escalate at the alert threshold."""
        self._consecutive_failures += 1
        reason = str(exc) or type(exc).__name__
        logger.warning(
            "Market scan failed (%d consecutive): %s",
            self._consecutive_failures,
            reason,
            exc_info=True,
        )
        if self._consecutive_failures % config.scan_failure_alert_threshold == 0:
            message = f"Market scan failed {self._consecutive_failures} times in a row: {reason}"
            logger.error("%s", message)
            if self._dispatcher is not None:
                self._dispatcher.emit(OperationalAlert(message=message))
        return ScanResult(error=reason)
