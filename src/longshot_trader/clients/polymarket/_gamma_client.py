r"""Async HTTP client for the Polymarket Gamma API.

The Gamma API (``https://gamma-api.polymarket.com``) provides market
metadata, prices, volume, and liquidity data.  The client is an async
context manager with structured error handling.

Note:
    The Gamma API returns ``outcomePrices`` and ``clobTokenIds`` as
    JSON-encoded strings (e.g. ``"[\"0.72\",\"0.28\"]"``).  Callers
    must call ``json.loads()`` on these fields before use.

"""

from typing import Any

import httpx

from longshot_trader.clients.polymarket._constants import (
    HTTP_BAD_REQUEST,
    HTTP_NOT_FOUND,
    TRANSPORT_ERROR,
)
from longshot_trader.clients.polymarket.exceptions import PolymarketAPIError


class GammaClient:
    """Async HTTP client for Polymarket Gamma API market metadata.

    Args:
        base_url: Base URL for the Gamma API.
        timeout: Request timeout in seconds.

    """

    BASE_URL = "https://gamma-api.polymarket.com"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the Gamma API client.

        Args:
            base_url: Base URL for the Gamma API.
            timeout: Request timeout in seconds.

        """
        self.base_url = base_url.rstrip("/")
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def get_markets(
        self,
        *,
        closed: bool = False,
        limit: int = 100,
        offset: int = 0,
        order: str = "",
        ascending: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch a paginated list of prediction markets.

        Args:
            closed: Include closed (resolved) markets.
            limit: Maximum number of markets to return.
            offset: Pagination offset.
            order: Field to sort by (e.g. ``"volume24hr"``); empty for default.
            ascending: Sort direction when ``order`` is set.

        Returns:
            List of market dictionaries from the Gamma API.

        Raises:
            PolymarketAPIError: When the API returns an error response.

        """
        params: dict[str, str | int | bool] = {
            "limit": limit,
            "offset": offset,
            "closed": closed,
        }
        if order:
            params["order"] = order
            params["ascending"] = ascending
        return await self._get("/markets", params=params)

    async def get_market(self, condition_id: str) -> dict[str, Any]:
        """Fetch a single market by its condition ID.

        Args:
            condition_id: Unique identifier for the market condition.

        Returns:
            Market dictionary from the Gamma API.

        Raises:
            PolymarketAPIError: When the market is missing or the API fails.

        """
        markets: list[dict[str, Any]] = await self._get(
            "/markets",
            params={"condition_ids": condition_id},
        )
        if not markets:
            raise PolymarketAPIError(
                msg=f"Market not found: {condition_id}",
                status_code=HTTP_NOT_FOUND,
            )
        return markets[0]

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a GET request and return parsed JSON.

        Args:
            path: Request path relative to base_url.
            params: Query parameters.

        Returns:
            Parsed JSON response.

        Raises:
            PolymarketAPIError: When the request fails, the API returns an
                error response, or the body is not JSON.

        """
        url = f"{self.base_url}{path}"
        try:
            response = await self._http_client.request("GET", url, params=params)
        except httpx.HTTPError as exc:
            raise PolymarketAPIError(
                msg=f"HTTP request failed: {exc}",
                status_code=TRANSPORT_ERROR,
            ) from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            self._handle_error(response)

        try:
            result: Any = response.json()
        except ValueError as exc:
            raise PolymarketAPIError(
                msg=f"Malformed JSON from {path}: {exc}",
                status_code=response.status_code,
            ) from exc
        return result

    @staticmethod
    def _handle_error(response: httpx.Response) -> None:
        """Raise a PolymarketAPIError from an error response.

        Args:
            response: HTTP response with a non-2xx status code.

        Raises:
            PolymarketAPIError: Always raised with status code and message.

        """
        try:
            data = response.json()
            msg: str = data.get("message", f"HTTP {response.status_code}")
        except Exception:  # noqa: BLE001
            msg = f"HTTP {response.status_code}"
        raise PolymarketAPIError(msg=msg, status_code=response.status_code)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http_client.aclose()

    async def __aenter__(self) -> "GammaClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.close()
