"""Shared test configuration and fixtures."""

import os
from collections.abc import Iterator
from unittest.mock import patch

import pytest

_CREDENTIAL_ENV_VARS = (
    "POLYMARKET_PRIVATE_KEY",
    "POLYMARKET_API_KEY",
    "POLYMARKET_API_SECRET",
    "POLYMARKET_API_PASSPHRASE",
    "POLYMARKET_FUNDER_ADDRESS",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
)


@pytest.fixture(autouse=True)
def _clear_credential_env_vars() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    """Hide trading and chat credentials from every test.

    A developer shell or a ``.env`` file loaded by an earlier test may
    export real keys.  Tests that need them set them explicitly, so no
    test can sign an order or post to a chat by accident.
    """
    with patch.dict(os.environ, {}, clear=False):
        for name in _CREDENTIAL_ENV_VARS:
            os.environ.pop(name, None)
        yield
