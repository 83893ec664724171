"""Core value objects shared across the longshot trader.

Define the decimal constants and the ``Side`` enum used by the venue
client, the risk ledger, and the executors.  All monetary values and
probabilities flow through the application as ``Decimal``.
"""

from decimal import Decimal
from enum import Enum

ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)


class Side(Enum):
    """Direction of a trade: BUY (open a position) or SELL (exit it)."""

    BUY = "BUY"
    SELL = "SELL"


def to_cents(price: Decimal) -> Decimal:
    """Convert a probability price between 0 and 1 into cents.

    Args:
        price: Token price expressed as a probability.

    Returns:
        The same price in cents (e.g. ``0.05`` becomes ``5``).

    """
    return price * HUNDRED


def from_cents(cents: int | Decimal) -> Decimal:
    """Convert a price in cents into a probability between 0 and 1.

    Args:
        cents: Price in cents.

    Returns:
        The price as a probability.

    """
    return Decimal(cents) / HUNDRED
