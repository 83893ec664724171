"""Order execution adapters for paper and live trading.

Both executors satisfy the ``OrderExecutor`` protocol: ``execute`` turns an
admitted intent into a ``Fill`` or an ``ExecutionFailed`` and never touches
the risk ledger, so ledger transitions are identical in either mode given
identical fill outcomes.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal

from longshot_trader.apps.longshot_bot.exceptions import (
    FatalAuthError,
    TransientIOError,
    VenueRejectionError,
    classify_api_error,
)
from longshot_trader.apps.longshot_bot.models import (
    ExecutionFailed,
    ExecutionResult,
    FailureKind,
    Fill,
    TradeIntent,
)
from longshot_trader.clients.polymarket.client import PolymarketClient
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError
from longshot_trader.clients.polymarket.models import OrderRequest, OrderResponse
from longshot_trader.core.models import ONE, ZERO, Side
from longshot_trader.core.timestamps import utc_now

logger = logging.getLogger(__name__)

PAPER = "paper"
LIVE = "live"

_DEFAULT_MAX_ATTEMPTS = 3
_DEFAULT_BASE_DELAY = 0.5
_DEFAULT_MAX_DELAY = 8.0
_RESTING_STATUSES = frozenset({"live", "delayed"})
_FILL_STATUSES = _RESTING_STATUSES | {"matched"}
_MIN_PRICE = Decimal("0.001")


async def retry_transient[T](
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
    base_delay: float = _DEFAULT_BASE_DELAY,
    max_delay: float = _DEFAULT_MAX_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` and retry it on ``TransientIOError`` with backoff.

    The delay starts at ``base_delay`` and doubles after every failure up
    to ``max_delay``.  Any other exception propagates immediately.

    Args:
        operation: Zero-argument coroutine factory.
        description: Label for log messages.
        max_attempts: Total attempts including the first.
        base_delay: First backoff delay in seconds.
        max_delay: Upper bound on the backoff delay.
        sleep: Sleep function (injectable for testing).

    Returns:
        The operation's result.

    Raises:
        TransientIOError: When every attempt failed transiently.

    """
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except TransientIOError:
            if attempt == max_attempts:
                logger.warning("%s failed after %d attempts", description, attempt)
                raise
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs",
                description,
                attempt,
                max_attempts,
                delay,
                exc_info=True,
            )
        await sleep(delay)
        delay = min(delay * 2, max_delay)
    msg = f"{description}: no attempts made"
    raise TransientIOError(msg)


async def fetch_with_retry[T](
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    description: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run a read under a per-attempt timeout and retry transient failures.

    A timed-out attempt counts as a ``TransientIOError``.

    Args:
        operation: Zero-argument coroutine factory.
        timeout: Seconds allowed for each attempt.
        description: Label for log messages.
        sleep: Sleep function used between attempts.

    Returns:
        The operation's result.

    """

    async def attempt() -> T:
        try:
            async with asyncio.timeout(timeout):
                return await operation()
        except TimeoutError as exc:
            msg = f"{description} timed out after {timeout:.0f}s"
            raise TransientIOError(msg) from exc

    return await retry_transient(attempt, description=description, sleep=sleep)


class PaperExecutor:
    """Synthesize fills at the requested price with optional slippage.

    Args:
        slippage: Fractional price penalty; buys fill higher and sells
            lower by this fraction.  Defaults to zero.

    """

    def __init__(self, slippage: Decimal = ZERO) -> None:
        """Initialize the paper executor.

        Args:
            slippage: Fractional price penalty, zero for exact fills.

        """
        self._slippage = slippage

    @property
    def mode(self) -> str:
        """Return ``"paper"``."""
        return PAPER

    async def execute(self, intent: TradeIntent) -> ExecutionResult:
        """Fill the whole intent immediately.

        Buys spend exactly ``size_usd``; sells dispose of exactly
        ``intent.shares``.

        Args:
            intent: Intent to simulate.

        Returns:
            A ``Fill``, or ``ExecutionFailed`` for a non-positive price.

        """
        if intent.price <= ZERO:
            return ExecutionFailed(kind=FailureKind.VENUE_REJECTION, reason="non-positive price")
        if intent.side is Side.BUY:
            price = min(ONE, intent.price * (ONE + self._slippage))
            size_usd = intent.size_usd
            shares = size_usd / price
        else:
            price = max(ZERO, intent.price * (ONE - self._slippage))
            shares = intent.shares
            size_usd = shares * price
        logger.info(
            "[PAPER] %s %s %.2f shares of %s @ %.4f ($%.2f)",
            intent.side.value,
            intent.outcome,
            shares,
            intent.market_id[:20],
            price,
            size_usd,
        )
        return Fill(price=price, size_usd=size_usd, shares=shares, timestamp=utc_now())


class LiveExecutor:
    """Submit signed orders to the Polymarket CLOB.

    Transient failures (network, rate limit, timeout, outage) are retried
    with bounded exponential backoff.  A venue refusal is terminal for the
    intent.  Refused credentials raise ``FatalAuthError``.  A resting order
    counts only its matched shares; the unfilled remainder is cancelled.

    Args:
        client: Authenticated Polymarket client.
        use_market_orders: FOK market orders (default) or GTC limit orders.
        timeout: Seconds allowed for each submission.
        max_attempts: Total submission attempts for transient failures.
        base_delay: First backoff delay in seconds.
        sleep: Sleep function (injectable for testing).

    """

    def __init__(  # noqa: PLR0913
        self,
        client: PolymarketClient,
        *,
        use_market_orders: bool = True,
        timeout: float = 30.0,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        base_delay: float = _DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the live executor.

        Args:
            client: Authenticated Polymarket client.
            use_market_orders: Use FOK market orders or GTC limit orders.
            timeout: Per-submission timeout in seconds.
            max_attempts: Attempts for transient failures.
            base_delay: Initial backoff delay in seconds.
            sleep: Sleep function used between attempts.

        """
        self._client = client
        self._use_market_orders = use_market_orders
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    @property
    def mode(self) -> str:
        """Return ``"live"``."""
        return LIVE

    def configure(self, *, use_market_orders: bool, timeout: float) -> None:
        """Apply order-type and timeout settings from a reloaded config."""
        self._use_market_orders = use_market_orders
        self._timeout = timeout

    async def execute(self, intent: TradeIntent) -> ExecutionResult:
        """Submit the intent and interpret the venue's answer.

        Args:
            intent: Admitted entry or exit intent.

        Returns:
            A ``Fill`` for a matched order (possibly partial), otherwise an
            ``ExecutionFailed`` naming the venue's reason or the exhausted
            retries.

        Raises:
            FatalAuthError: When the venue refuses the credentials.

        """
        price = max(intent.price, _MIN_PRICE)
        request = OrderRequest(
            token_id=intent.token_id,
            side=intent.side.value,
            price=price,
            size=intent.shares,
            order_type="market" if self._use_market_orders else "limit",
        )
        description = f"{request.order_type} {request.side} on {intent.market_id[:20]}"
        try:
            response = await retry_transient(
                lambda: self._submit(request),
                description=description,
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
                sleep=self._sleep,
            )
        except TransientIOError as exc:
            return ExecutionFailed(kind=FailureKind.TRANSIENT, reason=str(exc))
        except VenueRejectionError as exc:
            logger.warning("Venue rejected %s: %s", description, exc)
            return ExecutionFailed(kind=FailureKind.VENUE_REJECTION, reason=str(exc))
        if (
            response.success
            and response.status in _RESTING_STATUSES
            and response.filled < request.size
        ):
            await self._cancel_remainder(response, description)
        return self._interpret(response, request, intent.size_usd, description)

    async def _cancel_remainder(self, response: OrderResponse, description: str) -> None:
        """Cancel the unfilled part of a resting order so only its fill counts."""
        if not response.order_id:
            logger.warning("Resting order for %s has no id; cannot cancel it", description)
            return
        try:
            async with asyncio.timeout(self._timeout):
                await self._client.cancel_order(response.order_id)
        except (PolymarketAPIError, TimeoutError) as exc:
            logger.warning(
                "Could not cancel resting order %s for %s: %s",
                response.order_id,
                description,
                exc,
            )
            return
        logger.info("Cancelled unfilled remainder of order %s", response.order_id)

    async def _submit(self, request: OrderRequest) -> OrderResponse:
        """Place one order under the timeout, mapping errors to the taxonomy."""
        try:
            async with asyncio.timeout(self._timeout):
                return await self._client.place_order(request)
        except TimeoutError as exc:
            msg = f"Order submission timed out after {self._timeout:.0f}s"
            raise TransientIOError(msg) from exc
        except PolymarketAPIError as exc:
            error = classify_api_error(exc)
            if isinstance(error, FatalAuthError):
                logger.error("Venue refused credentials: %s", exc)  # noqa: TRY400
            raise error from exc

    @staticmethod
    def _interpret(
        response: OrderResponse,
        request: OrderRequest,
        requested_usd: Decimal,
        description: str,
    ) -> ExecutionResult:
        """Turn an order response into a fill or a venue rejection."""
        if not response.success or response.status not in _FILL_STATUSES:
            reason = response.error_msg or f"order {response.status}"
            logger.warning("Order not filled for %s: %s", description, reason)
            return ExecutionFailed(kind=FailureKind.VENUE_REJECTION, reason=reason)

        shares = min(response.filled, request.size)
        if shares <= ZERO:
            reason = f"order {response.status} with nothing filled"
            logger.warning("Order not filled for %s: %s", description, reason)
            return ExecutionFailed(kind=FailureKind.VENUE_REJECTION, reason=reason)
        logger.info(
            "[LIVE] %s filled %.2f/%.2f shares @ %.4f (order %s, status %s)",
            description,
            shares,
            request.size,
            request.price,
            response.order_id,
            response.status,
        )
        return Fill(
            price=request.price,
            size_usd=requested_usd if shares == request.size else shares * request.price,
            shares=shares,
            timestamp=utc_now(),
            order_id=response.order_id,
        )
