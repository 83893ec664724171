"""Tests for the config snapshot provider and its validation."""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from longshot_trader.apps.longshot_bot.config_provider import (
    ConfigSnapshotProvider,
    build_config,
    describe_changes,
)
from longshot_trader.apps.longshot_bot.models import BotConfig
from longshot_trader.core.config import ConfigError

_BASE_YAML = """\
max_price_cents: 5
min_liquidity_usd: 1000
max_per_trade_usd: 10
max_daily_spend_usd: 20
auto_sell_multiplier: 3
paper_trading: true
categories: [crypto, Politics]
"""


def _write(path: Path, text: str, *, tick: int = 0) -> None:
    """Write a config file and give it a distinct modification time.

    Args:
        path: File to write.
        text: File contents.
        tick: Seconds added to a fixed base mtime.

    """
    path.write_text(text)
    stamp = 1_700_000_000 + tick
    os.utime(path, (stamp, stamp))


class TestBuildConfig:
    """Tests for build_config."""

    def test_empty_document_uses_defaults(self) -> None:
        """Fill every missing key with its default."""
        assert build_config({}) == BotConfig()

    def test_values_are_coerced(self) -> None:
        """Convert numbers to Decimal and normalise categories."""
        config = build_config(
            {
                "max_price_cents": 5,
                "min_liquidity_usd": 1000,
                "max_per_trade_usd": "12.5",
                "max_total_exposure_usd": 200,
                "categories": ["Crypto", " sports "],
                "timezone": "America/New_York",
            }
        )
        assert config.max_price_cents == 5  # noqa: PLR2004
        assert config.min_liquidity_usd == Decimal(1000)
        assert config.max_per_trade_usd == Decimal("12.5")
        assert config.max_total_exposure_usd == Decimal(200)
        assert config.categories == ("crypto", "sports")
        assert config.timezone == "America/New_York"

    def test_discovery_and_partial_sell_keys(self) -> None:
        """Read the half-sell multiple and the newest-markets limit."""
        config = build_config({"partial_sell_multiplier": "2", "new_market_scan_limit": "25"})
        assert config.partial_sell_multiplier == Decimal(2)
        assert config.new_market_scan_limit == 25  # noqa: PLR2004
        assert BotConfig().partial_sell_multiplier is None

    def test_env_substituted_strings(self) -> None:
        """Accept strings produced by environment substitution."""
        config = build_config(
            {"paper_trading": "false", "max_open_positions": "7", "categories": "crypto, tech"}
        )
        assert config.paper_trading is False
        assert config.max_open_positions == 7  # noqa: PLR2004
        assert config.categories == ("crypto", "tech")

    def test_unknown_key_is_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        """Warn about and ignore unrecognised keys."""
        with caplog.at_level(logging.WARNING):
            config = build_config({"telegram_token": "x"})
        assert config == BotConfig()
        assert "telegram_token" in caplog.text

    @pytest.mark.parametrize(
        ("document", "message"),
        [
            ({"max_price_cents": 0}, "max_price_cents"),
            ({"max_price_cents": 100}, "max_price_cents"),
            ({"max_price_cents": 5.5}, "integer"),
            ({"max_per_trade_usd": 0}, "max_per_trade_usd"),
            ({"max_daily_spend_usd": -1}, "max_daily_spend_usd"),
            ({"auto_sell_multiplier": 1}, "auto_sell_multiplier"),
            ({"max_open_positions": 0}, "max_open_positions"),
            ({"max_total_exposure_usd": 0}, "max_total_exposure_usd"),
            ({"scan_interval_seconds": 0}, "scan_interval_seconds"),
            ({"min_liquidity_usd": "lots"}, "must be a number"),
            ({"min_liquidity_usd": True}, "boolean"),
            ({"min_liquidity_usd": "inf"}, "finite"),
            ({"paper_trading": "maybe"}, "must be a boolean"),
            ({"categories": [1, 2]}, "list of strings"),
            ({"timezone": "Mars/Olympus"}, "unknown timezone"),
            ({"partial_sell_multiplier": 1}, "partial_sell_multiplier"),
            ({"auto_sell_multiplier": 3, "partial_sell_multiplier": 3}, "partial_sell_multiplier"),
            ({"new_market_scan_limit": -1}, "new_market_scan_limit"),
        ],
    )
    def test_invalid_values(self, document: dict[str, Any], message: str) -> None:
        """Reject wrongly typed and out-of-range values."""
        with pytest.raises(ConfigError, match=message):
            build_config(document)


class TestConfigSnapshotProvider:
    """Tests for ConfigSnapshotProvider."""

    def test_loads_file(self, tmp_path: Path) -> None:
        """Load the initial snapshot from disk."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)

        provider = ConfigSnapshotProvider(path, load_env=False)

        config = provider.current()
        assert config.max_price_cents == 5  # noqa: PLR2004
        assert config.categories == ("crypto", "politics")
        assert provider.path == path

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        """Fall back to defaults when the file does not exist."""
        provider = ConfigSnapshotProvider(tmp_path / "absent.yaml", load_env=False)
        assert provider.current() == BotConfig()

    def test_invalid_file_at_startup_raises(self, tmp_path: Path) -> None:
        """Raise ConfigError when there is no prior snapshot to keep."""
        path = tmp_path / "config.yaml"
        _write(path, "max_price_cents: 0\n")
        with pytest.raises(ConfigError):
            ConfigSnapshotProvider(path, load_env=False)

    def test_env_substitution(self, tmp_path: Path) -> None:
        """Resolve ${VAR:default} references while loading."""
        path = tmp_path / "config.yaml"
        _write(path, "paper_trading: ${LONGSHOT_TEST_PAPER:true}\nmax_price_cents: 4\n")
        with patch.dict(os.environ, {"LONGSHOT_TEST_PAPER": "false"}):
            provider = ConfigSnapshotProvider(path, load_env=False)
        assert provider.current().paper_trading is False

    def test_load_env_reads_dotenv(self, tmp_path: Path) -> None:
        """Call load_dotenv when requested."""
        with patch(
            "longshot_trader.apps.longshot_bot.config_provider.load_dotenv"
        ) as mock_load:
            ConfigSnapshotProvider(tmp_path / "absent.yaml")
        mock_load.assert_called_once()

    def test_refresh_unchanged_file(self, tmp_path: Path) -> None:
        """Return False when the file has not changed."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)

        assert provider.refresh() is False

    def test_refresh_swaps_snapshot_and_notifies(self, tmp_path: Path) -> None:
        """Activate a changed, valid file and call change listeners."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        before = provider.current()
        listener = MagicMock()
        provider.subscribe(listener)

        _write(path, _BASE_YAML.replace("max_price_cents: 5", "max_price_cents: 7"), tick=1)

        assert provider.refresh() is True
        assert provider.current().max_price_cents == 7  # noqa: PLR2004
        listener.assert_called_once_with(before, provider.current())

    def test_refresh_rejects_invalid_file(self, tmp_path: Path) -> None:
        """Keep the prior snapshot and notify rejection listeners."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        before = provider.current()
        changed = MagicMock()
        rejected = MagicMock()
        provider.subscribe(changed)
        provider.subscribe_rejections(rejected)

        _write(path, "max_price_cents: 250\n", tick=1)

        assert provider.refresh() is False
        assert provider.current() is before
        changed.assert_not_called()
        assert isinstance(rejected.call_args.args[0], ConfigError)

    def test_refresh_rejects_malformed_yaml(self, tmp_path: Path) -> None:
        """Keep the prior snapshot when the file cannot be parsed."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        before = provider.current()

        _write(path, "max_price_cents: [5\n", tick=1)

        assert provider.refresh() is False
        assert provider.current() is before

    def test_rejected_file_is_not_retried_until_changed(self, tmp_path: Path) -> None:
        """Report a rejected revision once, then accept the next good one."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        rejected = MagicMock()
        provider.subscribe_rejections(rejected)

        _write(path, "max_price_cents: 250\n", tick=1)
        provider.refresh()
        provider.refresh()
        _write(path, "max_price_cents: 9\n", tick=2)

        assert provider.refresh() is True
        assert rejected.call_count == 1
        assert provider.current().max_price_cents == 9  # noqa: PLR2004

    def test_identical_content_is_not_a_change(self, tmp_path: Path) -> None:
        """Return False when a touched file yields the same snapshot."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        listener = MagicMock()
        provider.subscribe(listener)

        _write(path, _BASE_YAML + "\n# comment\n", tick=1)

        assert provider.refresh() is False
        listener.assert_not_called()

    def test_deleted_file_keeps_snapshot(self, tmp_path: Path) -> None:
        """Keep the last snapshot when the file disappears."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        before = provider.current()

        path.unlink()

        assert provider.refresh() is False
        assert provider.current() is before

    def test_failing_listener_is_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Log a listener failure and still swap the snapshot."""
        path = tmp_path / "config.yaml"
        _write(path, _BASE_YAML)
        provider = ConfigSnapshotProvider(path, load_env=False)
        provider.subscribe(MagicMock(side_effect=RuntimeError("boom")))

        _write(path, "max_price_cents: 9\n", tick=1)
        with caplog.at_level(logging.ERROR):
            assert provider.refresh() is True

        assert "listener" in caplog.text
        assert provider.current().max_price_cents == 9  # noqa: PLR2004


class TestDescribeChanges:
    """Tests for describe_changes."""

    def test_lists_changed_fields(self) -> None:
        """Name only the fields that differ."""
        old = BotConfig()
        new = BotConfig(max_price_cents=7, paper_trading=False)

        assert describe_changes(old, new) == [
            "max_price_cents: 10 -> 7",
            "paper_trading: True -> False",
        ]

    def test_no_changes(self) -> None:
        """Return an empty list for equal snapshots."""
        assert describe_changes(BotConfig(), BotConfig()) == []
