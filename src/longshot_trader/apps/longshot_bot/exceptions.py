"""Failure taxonomy of the trading engine.

``TransientIOError`` is retried inside the component that owns the call,
``VenueRejectionError`` ends one intent, ``FatalAuthError`` halts the bot.
Invalid configuration is ``ConfigError`` from ``core.config``.  Risk
rejections are ordinary values, not exceptions.
"""

from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError
from longshot_trader.core.config import ConfigError

__all__ = [
    "ConfigError",
    "FatalAuthError",
    "LongshotError",
    "MalformedPayloadError",
    "TransientIOError",
    "VenueRejectionError",
    "classify_api_error",
]


class LongshotError(Exception):
    """Base exception for engine failures."""


class TransientIOError(LongshotError):
    """Retryable failure: network error, rate limit, timeout, or outage."""


class MalformedPayloadError(TransientIOError):
    """The data source answered with a payload that could not be parsed."""


class VenueRejectionError(LongshotError):
    """The venue refused an order (liquidity gone, market closed, bad price)."""


class FatalAuthError(LongshotError):
    """Live credentials are invalid or the signing capability is unavailable."""


def classify_api_error(exc: PolymarketAPIError) -> LongshotError:
    """Map a venue client error onto the engine taxonomy.

    Args:
        exc: Error raised by the Polymarket client.

    Returns:
        ``FatalAuthError`` for refused credentials, ``TransientIOError`` for
        transport failures, rate limits and server errors, and
        ``VenueRejectionError`` for every other client error.

    """
    if exc.is_auth_failure:
        return FatalAuthError(str(exc))
    if exc.is_transient:
        return TransientIOError(str(exc))
    return VenueRejectionError(str(exc))
