"""Typed data models for Polymarket prediction market data.

Provide frozen dataclasses that insulate the rest of the codebase from the
untyped dictionaries returned by ``py-clob-client`` and the Gamma API.
All monetary values use ``Decimal`` for precision.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class MarketToken:
    """Represent a YES or NO outcome token in a prediction market.

    Args:
        token_id: CLOB token identifier.
        outcome: Human-readable outcome label (e.g. "Yes" or "No").
        price: Current price between 0 and 1, reflecting implied probability.

    """

    token_id: str
    outcome: str
    price: Decimal


@dataclass(frozen=True)
class Market:
    """Typed representation of a Polymarket prediction market.

    Args:
        condition_id: Unique identifier for the market condition.
        question: The prediction question (e.g. "Will BTC reach $100K?").
        slug: URL slug of the market, used to build a link.
        tokens: Outcome tokens (typically YES and NO) with current prices.
        end_date: ISO-8601 date string when the market resolves.
        volume: Total trading volume in USD.
        volume_24h: Trading volume over the last 24 hours in USD.
        liquidity: Current available liquidity in USD.
        active: Whether the market is currently open for trading.
        closed: Whether the market has closed (resolved or halted).
        accepting_orders: Whether the order book accepts new orders.

    """

    condition_id: str
    question: str
    slug: str
    tokens: tuple[MarketToken, ...]
    end_date: str
    volume: Decimal
    volume_24h: Decimal
    liquidity: Decimal
    active: bool
    closed: bool
    accepting_orders: bool


@dataclass(frozen=True)
class OrderRequest:
    """Typed input for placing an order on Polymarket.

    Encapsulate all parameters needed to submit a limit or market order
    to the CLOB API.

    Args:
        token_id: CLOB token identifier for the outcome to trade.
        side: Order side -- ``"BUY"`` or ``"SELL"``.
        price: Limit price between 0 and 1 (ignored for market orders).
        size: Number of shares to trade.
        order_type: ``"limit"`` for GTC limit orders, ``"market"`` for FOK.

    """

    token_id: str
    side: str
    price: Decimal
    size: Decimal
    order_type: str


@dataclass(frozen=True)
class OrderResponse:
    """Typed result from submitting an order to the CLOB API.

    Args:
        order_id: Unique identifier assigned by the CLOB.
        success: Whether the CLOB accepted the order.
        status: Order status (e.g. ``"live"``, ``"matched"``, ``"unmatched"``).
        token_id: CLOB token identifier that was traded.
        side: Order side -- ``"BUY"`` or ``"SELL"``.
        price: Submitted price.
        size: Submitted size in shares.
        filled: Number of shares already filled.
        error_msg: Venue-supplied reason when the order was refused.

    """

    order_id: str
    success: bool
    status: str
    token_id: str
    side: str
    price: Decimal
    size: Decimal
    filled: Decimal
    error_msg: str = ""
