"""Polymarket prediction market client for market data and order placement."""

from longshot_trader.clients.polymarket.client import PolymarketClient
from longshot_trader.clients.polymarket.exceptions import (
    PolymarketAPIError,
    PolymarketError,
)
from longshot_trader.clients.polymarket.models import (
    Market,
    MarketToken,
    OrderRequest,
    OrderResponse,
)

__all__ = [
    "Market",
    "MarketToken",
    "OrderRequest",
    "OrderResponse",
    "PolymarketAPIError",
    "PolymarketClient",
    "PolymarketError",
]
