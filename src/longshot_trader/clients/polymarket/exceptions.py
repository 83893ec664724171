"""Exception hierarchy for Polymarket client errors.

A base exception class with a specialised API error that carries status
code and message attributes.  A status code of ``0`` marks a transport
failure (connection error or timeout) where no HTTP response was received.
"""

_TRANSIENT_STATUS_CODES = frozenset({0, 408, 425, 429})
_AUTH_STATUS_CODES = frozenset({401, 403})
_HTTP_SERVER_ERROR = 500


class PolymarketError(Exception):
    """Base exception for all Polymarket client errors."""


class PolymarketAPIError(PolymarketError):
    """Error returned by a Polymarket API call.

    Carry a human-readable message and an HTTP status code so callers
    can distinguish transient failures from client errors.

    Args:
        msg: Human-readable description of the error.
        status_code: HTTP status code from the API response.

    """

    def __init__(self, msg: str, status_code: int) -> None:
        """Initialize Polymarket API error.

        Args:
            msg: Human-readable description of the error.
            status_code: HTTP status code from the API response.

        """
        super().__init__(f"[{status_code}] {msg}")
        self.msg = msg
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        """Return ``True`` for network, timeout, rate-limit, and server errors."""
        return self.status_code in _TRANSIENT_STATUS_CODES or self.status_code >= _HTTP_SERVER_ERROR

    @property
    def is_auth_failure(self) -> bool:
        """Return ``True`` when the venue refused the credentials."""
        return self.status_code in _AUTH_STATUS_CODES
