"""Market data source backed by the Polymarket Gamma API.

Adapt ``PolymarketClient`` to the ``MarketDataSource`` protocol: typed
``Market`` objects become ``MarketSnapshot`` values and client errors are
mapped onto the engine's failure taxonomy.
"""

import logging
from decimal import Decimal

from longshot_trader.apps.longshot_bot.exceptions import (
    MalformedPayloadError,
    classify_api_error,
)
from longshot_trader.apps.longshot_bot.models import MarketSnapshot
from longshot_trader.clients.polymarket._constants import HTTP_NOT_FOUND
from longshot_trader.clients.polymarket.client import PolymarketClient
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError
from longshot_trader.clients.polymarket.models import Market, MarketToken
from longshot_trader.core.models import ONE, ZERO
from longshot_trader.core.timestamps import parse_deadline, utc_now

logger = logging.getLogger(__name__)

_MIN_TOKENS = 2
_RESOLUTION_TOLERANCE = Decimal("0.01")


def _find_token(tokens: tuple[MarketToken, ...], outcome: str, fallback: int) -> MarketToken:
    """Return the token labelled ``outcome``, or the one at ``fallback``."""
    for token in tokens:
        if token.outcome.lower() == outcome.lower():
            return token
    return tokens[fallback]


def to_snapshot(market: Market) -> MarketSnapshot | None:
    """Convert a venue market into a snapshot.

    Args:
        market: Typed market from the client.

    Returns:
        The snapshot, or ``None`` when the market is not a two-outcome
        market with valid prices.

    """
    if len(market.tokens) < _MIN_TOKENS:
        logger.debug("Market %s has fewer than 2 tokens", market.condition_id)
        return None
    yes = _find_token(market.tokens, "Yes", 0)
    no = _find_token(market.tokens, "No", 1)
    try:
        return MarketSnapshot(
            market_id=market.condition_id,
            question=market.question,
            yes_token_id=yes.token_id,
            no_token_id=no.token_id,
            yes_price=yes.price,
            no_price=no.price,
            liquidity=market.liquidity,
            volume_24h=market.volume_24h,
            end_date=parse_deadline(market.end_date),
            timestamp=utc_now(),
            slug=market.slug,
            accepting_orders=market.accepting_orders,
            closed=market.closed,
        )
    except ValueError:
        logger.warning("Skipping market %s with invalid prices", market.condition_id, exc_info=True)
        return None


class GammaMarketSource:
    """Read market snapshots through a ``PolymarketClient``.

    Args:
        client: Polymarket client; an unauthenticated one is enough.
        page_size: Markets requested per page of the active list.
        max_pages: Upper bound on pages fetched per scan.

    """

    def __init__(
        self,
        client: PolymarketClient,
        *,
        page_size: int = 100,
        max_pages: int = 20,
    ) -> None:
        """Initialize the source.

        Args:
            client: Polymarket client.
            page_size: Markets per page.
            max_pages: Maximum pages per scan.

        """
        self._client = client
        self._page_size = page_size
        self._max_pages = max_pages

    async def fetch_active(self) -> list[MarketSnapshot]:
        """Return snapshots of all open markets, highest 24h volume first.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.
            VenueRejectionError: When the venue refuses the request.

        """
        try:
            markets = await self._client.get_active_markets(
                page_size=self._page_size, max_pages=self._max_pages
            )
        except PolymarketAPIError as exc:
            raise classify_api_error(exc) from exc
        snapshots = [s for s in (to_snapshot(m) for m in markets) if s is not None]
        logger.debug("Fetched %d markets, %d usable", len(markets), len(snapshots))
        return snapshots

    async def fetch_recent(self, limit: int) -> list[MarketSnapshot]:
        """Return snapshots of the newest open markets, most recent first.

        Args:
            limit: Number of markets to request.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.
            VenueRejectionError: When the venue refuses the request.

        """
        try:
            markets = await self._client.get_recent_markets(limit=limit)
        except PolymarketAPIError as exc:
            raise classify_api_error(exc) from exc
        return [s for s in (to_snapshot(m) for m in markets) if s is not None]

    async def fetch_markets(self, market_ids: list[str]) -> list[MarketSnapshot]:
        """Return snapshots for specific markets.

        Unknown ids and markets whose payload cannot be converted are
        omitted, so one bad market never hides the others.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.

        """
        snapshots: list[MarketSnapshot] = []
        for market_id in market_ids:
            market = await self._get_market(market_id)
            if market is None:
                continue
            snapshot = to_snapshot(market)
            if snapshot is None:
                logger.warning("Skipping market %s: unusable payload", market_id)
                continue
            snapshots.append(snapshot)
        return snapshots

    async def fetch_resolution(self, market_id: str, outcome: str) -> Decimal | None:
        """Return 1 if ``outcome`` won, 0 if it lost, ``None`` if unresolved.

        A market counts as resolved once it is closed and the outcome's
        final price sits at 0 or 1.

        Raises:
            TransientIOError: On network errors, rate limits, or malformed
                payloads.

        """
        market = await self._get_market(market_id)
        if market is None or not market.closed:
            return None
        if len(market.tokens) < _MIN_TOKENS:
            msg = f"Closed market {market_id} has no outcome prices"
            raise MalformedPayloadError(msg)
        fallback = 0 if outcome.lower() == "yes" else 1
        price = _find_token(market.tokens, outcome, fallback).price
        if price >= ONE - _RESOLUTION_TOLERANCE:
            return ONE
        if price <= _RESOLUTION_TOLERANCE:
            return ZERO
        return None

    async def _get_market(self, market_id: str) -> Market | None:
        """Fetch one market, mapping a 404 to ``None``."""
        try:
            return await self._client.get_market(market_id)
        except PolymarketAPIError as exc:
            if exc.status_code == HTTP_NOT_FOUND:
                logger.warning("Market %s not found", market_id)
                return None
            raise classify_api_error(exc) from exc
