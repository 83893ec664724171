"""Isolated bridge to the untyped ``py-clob-client`` library.

This is the **only** module that imports from ``py_clob_client``.  All
imports carry ``# type: ignore[import-untyped]`` so the rest of the
codebase remains clean under pyright strict mode.  Functions return
primitive types (``dict``, ``str``) which the facade layer converts into
typed dataclasses.
"""

from typing import Any

from eth_account import Account  # type: ignore[import-untyped]
from py_clob_client.client import ClobClient  # type: ignore[import-untyped]
from py_clob_client.clob_types import (  # type: ignore[import-untyped]
    ApiCreds,
    MarketOrderArgs,
    OrderArgs,
    OrderType,
    PartialCreateOrderOptions,
)
from py_clob_client.exceptions import PolyApiException  # type: ignore[import-untyped]

from longshot_trader.clients.polymarket._constants import HTTP_INTERNAL_ERROR, TRANSPORT_ERROR
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError

_POLYGON_PROXY_WALLET = 1
_POLYGON_CHAIN_ID = 137
_TICK_SIZE = "0.001"


def _safe_clob_call(action: str, fn: Any, *args: Any) -> Any:
    """Execute a CLOB API call with standardised error handling.

    Wrap a synchronous ``py-clob-client`` call in a try/except that
    converts ``PolyApiException`` and unexpected errors into
    ``PolymarketAPIError``.  The venue's HTTP status is preserved so the
    caller can tell rate limits and outages apart from rejections; a
    ``PolyApiException`` without a status means no response was received.

    Args:
        action: Human-readable description for error messages (e.g.
            ``"place limit order"``).
        fn: The callable to invoke.
        *args: Positional arguments forwarded to *fn*.

    Returns:
        The raw result from *fn*.

    Raises:
        PolymarketAPIError: When the call fails.

    """
    try:
        return fn(*args)
    except PolyApiException as exc:
        status = getattr(exc, "status_code", None)
        raise PolymarketAPIError(
            msg=f"Failed to {action}: {exc}",
            status_code=status if isinstance(status, int) else TRANSPORT_ERROR,
        ) from exc
    except Exception as exc:
        raise PolymarketAPIError(
            msg=f"Failed to {action}: {exc}",
            status_code=HTTP_INTERNAL_ERROR,
        ) from exc


def create_clob_client(host: str) -> ClobClient:  # type: ignore[no-any-unimported]
    """Create a read-only CLOB client instance.

    Args:
        host: Base URL for the Polymarket CLOB API.

    Returns:
        Configured ``ClobClient`` for unauthenticated calls.

    """
    return ClobClient(host)  # type: ignore[no-any-return]


def derive_funder_address(private_key: str) -> str:
    """Derive the EOA address from a private key.

    Args:
        private_key: Hex-encoded private key (with ``0x`` prefix).

    Returns:
        Checksummed Ethereum address string.

    """
    return Account.from_key(private_key).address  # type: ignore[no-any-return]


def create_authenticated_clob_client(
    host: str,
    private_key: str,
    chain_id: int = _POLYGON_CHAIN_ID,
    creds: tuple[str, str, str] | None = None,
    funder: str | None = None,
) -> ClobClient:  # type: ignore[no-any-unimported]
    """Create an authenticated CLOB client for trading.

    When ``creds`` are provided, create a Level 2 client that can post
    orders.  Without ``creds``, create a Level 1 client that can derive
    API credentials.  The private key is the signing capability; it never
    leaves this module except through the ``ClobClient`` constructor.

    Args:
        host: Base URL for the Polymarket CLOB API.
        private_key: Polygon wallet private key (hex string with ``0x`` prefix).
        chain_id: Blockchain chain ID (default 137 for Polygon mainnet).
        creds: Optional tuple of ``(api_key, api_secret, api_passphrase)``.
        funder: Proxy wallet address that holds the trading funds.  If
            ``None``, falls back to the EOA address derived from the key.

    Returns:
        Configured ``ClobClient`` ready for authenticated API calls.

    Raises:
        PolymarketAPIError: When the private key cannot be parsed.

    """
    try:
        resolved_funder = funder or derive_funder_address(private_key)
    except (ValueError, TypeError) as exc:
        raise PolymarketAPIError(msg=f"Invalid private key: {exc}", status_code=401) from exc
    api_creds = None
    if creds is not None:
        api_key, api_secret, api_passphrase = creds
        api_creds = ApiCreds(
            api_key=api_key,
            api_secret=api_secret,
            api_passphrase=api_passphrase,
        )
    return ClobClient(  # type: ignore[no-any-return]
        host,
        chain_id=chain_id,
        key=private_key,
        creds=api_creds,
        signature_type=_POLYGON_PROXY_WALLET,
        funder=resolved_funder,
    )


def derive_and_set_api_creds(client: Any) -> tuple[str, str, str]:
    """Derive Level 2 API credentials and install them on the client.

    Args:
        client: A Level 1 ``ClobClient`` instance (created with private key).

    Returns:
        Tuple of ``(api_key, api_secret, api_passphrase)``.

    Raises:
        PolymarketAPIError: When credential derivation fails.

    """
    raw = _safe_clob_call("derive API credentials", client.create_or_derive_api_creds)
    client.set_api_creds(raw)
    return (str(raw.api_key), str(raw.api_secret), str(raw.api_passphrase))


def place_limit_order(
    client: Any,
    token_id: str,
    side: str,
    price: float,
    size: float,
) -> dict[str, Any]:
    """Create and post a GTC limit order on the CLOB.

    Args:
        client: A Level 2 ``ClobClient`` instance.
        token_id: CLOB token identifier for the outcome to trade.
        side: ``"BUY"`` or ``"SELL"``.
        price: Limit price between 0 and 1.
        size: Number of shares to trade.

    Returns:
        Raw API response dictionary with order ID and status.

    Raises:
        PolymarketAPIError: When the order submission fails.

    """

    def _create_and_post() -> dict[str, Any]:
        order = client.create_order(
            order_args=OrderArgs(
                token_id=token_id,
                price=price,
                size=size,
                side=side,
            ),
            options=PartialCreateOrderOptions(tick_size=_TICK_SIZE),
        )
        return client.post_order(order, orderType=OrderType.GTC)  # type: ignore[no-any-return]

    return _safe_clob_call("place limit order", _create_and_post)


def place_market_order(
    client: Any,
    token_id: str,
    side: str,
    amount: float,
) -> dict[str, Any]:
    """Create and post a FOK market order on the CLOB.

    For ``BUY`` orders, ``amount`` is the dollar amount to spend.
    For ``SELL`` orders, ``amount`` is the number of shares to sell.

    Args:
        client: A Level 2 ``ClobClient`` instance.
        token_id: CLOB token identifier for the outcome to trade.
        side: ``"BUY"`` or ``"SELL"``.
        amount: Dollar amount (buy) or share count (sell).

    Returns:
        Raw API response dictionary with order ID and status.

    Raises:
        PolymarketAPIError: When the order submission fails.

    """

    def _create_and_post() -> dict[str, Any]:
        order = client.create_market_order(
            order_args=MarketOrderArgs(
                token_id=token_id,
                amount=amount,
                side=side,
            ),
            options=PartialCreateOrderOptions(tick_size=_TICK_SIZE),
        )
        return client.post_order(order, orderType=OrderType.FOK)  # type: ignore[no-any-return]

    return _safe_clob_call("place market order", _create_and_post)


def cancel_order(client: Any, order_id: str) -> dict[str, Any]:
    """Cancel an open order by its ID.

    Args:
        client: A Level 2 ``ClobClient`` instance.
        order_id: Identifier of the order to cancel.

    Returns:
        Raw API response confirming the cancellation.

    Raises:
        PolymarketAPIError: When the cancellation fails.

    """
    return _safe_clob_call(f"cancel order {order_id}", client.cancel, order_id)
