"""Typed async facade for Polymarket prediction market data and orders.

Compose the synchronous CLOB adapter and the async Gamma client into
a single async interface.  Synchronous CLOB calls are wrapped in
``asyncio.to_thread()`` to avoid blocking the event loop.
"""

import asyncio
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from longshot_trader.clients.polymarket import _clob_adapter
from longshot_trader.clients.polymarket._constants import TRANSPORT_ERROR
from longshot_trader.clients.polymarket._gamma_client import GammaClient
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError
from longshot_trader.clients.polymarket.models import (
    Market,
    MarketToken,
    OrderRequest,
    OrderResponse,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal(0)
_DEFAULT_PAGE_SIZE = 100
_DEFAULT_MAX_PAGES = 20


class PolymarketClient:
    """Typed async client for Polymarket prediction markets.

    Read market metadata and prices from the Gamma API and, when a
    private key is supplied, submit signed orders through the CLOB API.
    All public methods are async and return typed dataclasses.

    Args:
        host: Base URL for the Polymarket CLOB API.
        gamma_base_url: Base URL for the Gamma metadata API.
        private_key: Polygon wallet private key used to sign orders.
        api_key: Pre-existing CLOB API key.
        api_secret: Pre-existing CLOB API secret.
        api_passphrase: Pre-existing CLOB API passphrase.
        funder_address: Proxy wallet address holding the trading funds.
        timeout: Request timeout in seconds for Gamma calls.

    """

    CLOB_HOST = "https://clob.polymarket.com"
    GAMMA_URL = "https://gamma-api.polymarket.com"

    def __init__(  # noqa: PLR0913
        self,
        host: str = CLOB_HOST,
        gamma_base_url: str = GAMMA_URL,
        private_key: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        api_passphrase: str | None = None,
        funder_address: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the Polymarket client.

        When ``private_key`` is provided, create an authenticated client
        capable of placing trades.  If API credentials are also provided,
        skip the key derivation step and connect at Level 2 immediately.
        Without a private key the client operates in read-only mode.

        Args:
            host: Base URL for the Polymarket CLOB API.
            gamma_base_url: Base URL for the Gamma metadata API.
            private_key: Polygon wallet private key (hex ``0x...`` string).
            api_key: Pre-existing CLOB API key.
            api_secret: Pre-existing CLOB API secret.
            api_passphrase: Pre-existing CLOB API passphrase.
            funder_address: Proxy wallet address holding the trading funds.
            timeout: Request timeout in seconds for Gamma calls.

        """
        self._authenticated = private_key is not None
        self._has_api_creds = bool(api_key and api_secret and api_passphrase)
        if private_key is not None:
            creds = (
                (api_key, api_secret, api_passphrase)
                if api_key and api_secret and api_passphrase
                else None
            )
            self._clob_client: Any = _clob_adapter.create_authenticated_clob_client(
                host, private_key, creds=creds, funder=funder_address
            )
        else:
            self._clob_client = _clob_adapter.create_clob_client(host)
        self._gamma = GammaClient(base_url=gamma_base_url, timeout=timeout)
        self._clob_lock = asyncio.Lock()

    @property
    def authenticated(self) -> bool:
        """Return ``True`` when the client holds a signing key."""
        return self._authenticated

    async def get_active_markets(
        self,
        *,
        page_size: int = _DEFAULT_PAGE_SIZE,
        max_pages: int = _DEFAULT_MAX_PAGES,
    ) -> list[Market]:
        """Page through open markets ordered by 24-hour volume.

        Stop at the first short page or after ``max_pages`` pages.

        Args:
            page_size: Markets requested per page.
            max_pages: Upper bound on the number of pages fetched.

        Returns:
            Typed markets in venue order.

        Raises:
            PolymarketAPIError: When any page request fails.

        """
        markets: list[Market] = []
        for page in range(max_pages):
            raw_page = await self._gamma.get_markets(
                closed=False,
                limit=page_size,
                offset=page * page_size,
                order="volume24hr",
                ascending=False,
            )
            if not isinstance(raw_page, list):
                raise PolymarketAPIError(
                    msg=f"Expected a list of markets, got {type(raw_page).__name__}",
                    status_code=TRANSPORT_ERROR,
                )
            markets.extend(_parse_market(raw) for raw in raw_page)
            logger.debug("Market page %d: %d markets", page + 1, len(raw_page))
            if len(raw_page) < page_size:
                break
        return markets

    async def get_recent_markets(self, *, limit: int = _DEFAULT_PAGE_SIZE) -> list[Market]:
        """Return the most recently created open markets, newest first.

        Args:
            limit: Number of markets to request.

        Returns:
            Typed markets in creation order.

        Raises:
            PolymarketAPIError: When the request fails.

        """
        raw_page = await self._gamma.get_markets(
            closed=False,
            limit=limit,
            offset=0,
            order="createdAt",
            ascending=False,
        )
        if not isinstance(raw_page, list):
            raise PolymarketAPIError(
                msg=f"Expected a list of markets, got {type(raw_page).__name__}",
                status_code=TRANSPORT_ERROR,
            )
        return [_parse_market(raw) for raw in raw_page]

    async def get_market(self, condition_id: str) -> Market:
        """Fetch a single market, open or closed, by condition ID.

        Args:
            condition_id: Unique identifier for the market condition.

        Returns:
            Typed market with current (or final) outcome prices.

        Raises:
            PolymarketAPIError: When the market is not found or the API fails.

        """
        raw = await self._gamma.get_market(condition_id)
        return _parse_market(raw)

    def _require_auth(self) -> None:
        """Raise an error if the client is not authenticated.

        Raises:
            PolymarketAPIError: When no private key was provided at init.

        """
        if not self._authenticated:
            raise PolymarketAPIError(
                msg="Authentication required. Provide a private key to enable trading.",
                status_code=401,
            )

    async def ensure_api_creds(self) -> None:
        """Derive Level 2 API credentials when none were supplied.

        Raises:
            PolymarketAPIError: When not authenticated or derivation fails.

        """
        self._require_auth()
        if self._has_api_creds:
            return
        async with self._clob_lock:
            await asyncio.to_thread(_clob_adapter.derive_and_set_api_creds, self._clob_client)
        self._has_api_creds = True
        logger.info("Derived CLOB API credentials")

    async def place_order(self, request: OrderRequest) -> OrderResponse:
        """Place a limit or market order on Polymarket.

        Dispatch to the appropriate adapter function based on the
        ``order_type`` field of the request.  Market buys spend
        ``size * price`` dollars; market sells sell ``size`` shares.

        Args:
            request: Typed order request with token, side, price, and size.

        Returns:
            Typed order response with ID, status, and fill information.

        Raises:
            PolymarketAPIError: When not authenticated or the order fails.

        """
        self._require_auth()
        if request.order_type == "market":
            amount = request.size * request.price if request.side == "BUY" else request.size
            async with self._clob_lock:
                raw = await asyncio.to_thread(
                    _clob_adapter.place_market_order,
                    self._clob_client,
                    request.token_id,
                    request.side,
                    float(amount),
                )
        else:
            async with self._clob_lock:
                raw = await asyncio.to_thread(
                    _clob_adapter.place_limit_order,
                    self._clob_client,
                    request.token_id,
                    request.side,
                    float(request.price),
                    float(request.size),
                )
        return _parse_order_response(raw, request)

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        """Cancel an open order.

        Args:
            order_id: Identifier of the order to cancel.

        Returns:
            Raw API response confirming the cancellation.

        Raises:
            PolymarketAPIError: When not authenticated or cancellation fails.

        """
        self._require_auth()
        async with self._clob_lock:
            return await asyncio.to_thread(_clob_adapter.cancel_order, self._clob_client, order_id)

    async def close(self) -> None:
        """Close underlying HTTP clients."""
        await self._gamma.close()

    async def __aenter__(self) -> "PolymarketClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.close()


def _parse_market(raw: dict[str, Any]) -> Market:
    """Convert a raw Gamma API market dict into a typed Market.

    Args:
        raw: Market dictionary from the Gamma API.

    Returns:
        Typed Market dataclass.

    """
    return Market(
        condition_id=str(raw.get("conditionId", raw.get("condition_id", ""))),
        question=str(raw.get("question", "")),
        slug=str(raw.get("slug") or ""),
        tokens=tuple(_parse_tokens(raw)),
        end_date=str(raw.get("endDateIso") or raw.get("endDate") or ""),
        volume=_safe_decimal(raw.get("volume", "0")),
        volume_24h=_safe_decimal(raw.get("volume24hr", "0")),
        liquidity=_safe_decimal(raw.get("liquidity", "0")),
        active=bool(raw.get("active", False)),
        closed=bool(raw.get("closed", False)),
        accepting_orders=bool(raw.get("acceptingOrders", False)),
    )


def _json_list(value: Any) -> list[Any]:
    """Decode a Gamma field that may be a JSON-encoded list or a real list.

    Args:
        value: Raw field value.

    Returns:
        The decoded list, or an empty list when the value is malformed.

    """
    if isinstance(value, str):
        try:
            decoded: Any = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return []
        return list(decoded) if isinstance(decoded, list) else []  # pyright: ignore[reportUnknownArgumentType]
    if isinstance(value, list):
        return list(value)  # pyright: ignore[reportUnknownArgumentType]
    return []


def _parse_tokens(raw: dict[str, Any]) -> list[MarketToken]:
    """Extract outcome tokens from a raw Gamma API market dictionary.

    Handle the Gamma API's convention of encoding ``outcomes``,
    ``outcomePrices`` and ``clobTokenIds`` as JSON strings within the
    response.  Markets without an explicit ``outcomes`` field are binary
    Yes/No markets.

    Args:
        raw: Market dictionary from the Gamma API.

    Returns:
        List of typed MarketToken instances.

    """
    outcomes = [str(o) for o in _json_list(raw.get("outcomes", ""))] or ["Yes", "No"]
    prices = _json_list(raw.get("outcomePrices", ""))
    token_ids = _json_list(raw.get("clobTokenIds", ""))

    tokens: list[MarketToken] = []
    for i, outcome in enumerate(outcomes):
        if i >= len(prices):
            break
        price = _safe_decimal(prices[i])
        token_id = str(token_ids[i]) if i < len(token_ids) else ""
        tokens.append(MarketToken(token_id=token_id, outcome=outcome, price=price))
    return tokens


def _safe_decimal(value: Any) -> Decimal:
    """Convert a value to Decimal, returning zero for None/empty strings.

    Raise ``PolymarketAPIError`` for values that are present but
    cannot be parsed into a valid Decimal, so corrupt payloads surface
    instead of being read as zero.

    Args:
        value: Value to convert (string, float, int, or None).

    Returns:
        Decimal representation, or ``Decimal("0")`` for None/empty.

    Raises:
        PolymarketAPIError: If the value is non-empty but malformed.

    """
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return _ZERO
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        msg = f"Cannot convert {value!r} to Decimal"
        raise PolymarketAPIError(msg=msg, status_code=TRANSPORT_ERROR) from exc
    if not result.is_finite():
        msg = f"Non-finite decimal value {value!r}"
        raise PolymarketAPIError(msg=msg, status_code=TRANSPORT_ERROR)
    return result


def _parse_order_response(raw: dict[str, Any], request: OrderRequest) -> OrderResponse:
    """Convert a raw CLOB API order response into a typed OrderResponse.

    The API may return different key formats depending on the endpoint.
    Fall back to the request values for fields not present in the response.
    A ``matched`` order without an explicit fill amount is treated as fully
    filled.

    Args:
        raw: Raw dictionary from the CLOB ``post_order`` call.
        request: Original order request used for fallback values.

    Returns:
        Typed OrderResponse dataclass.

    """
    status = str(raw.get("status", "unknown"))
    error_msg = str(raw.get("errorMsg") or raw.get("error") or "")
    success = bool(raw.get("success", not error_msg))
    filled = _safe_decimal(raw.get("filled", raw.get("size_matched", "0")))
    if filled == _ZERO and status == "matched":
        filled = request.size
    return OrderResponse(
        order_id=str(raw.get("orderID", raw.get("id", ""))),
        success=success,
        status=status,
        token_id=request.token_id,
        side=request.side,
        price=request.price,
        size=request.size,
        filled=filled,
        error_msg=error_msg,
    )
