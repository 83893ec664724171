"""Config snapshot provider with validated hot reload.

Read the bot's YAML/JSON parameter file into an immutable ``BotConfig``.
``current()`` never blocks and always returns the last valid snapshot;
``refresh()`` re-reads the file when it changes and swaps the snapshot
atomically.  An invalid document is rejected and the prior snapshot stays
active.
"""

import logging
from collections.abc import Callable
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from longshot_trader.apps.longshot_bot.models import BotConfig
from longshot_trader.core.config import ConfigError, load_document
from longshot_trader.core.models import ONE, ZERO

logger = logging.getLogger(__name__)

_MAX_PRICE_CENTS_LIMIT = 99
_TRUE_STRINGS = frozenset({"true", "yes", "1", "on"})
_FALSE_STRINGS = frozenset({"false", "no", "0", "off"})

type ChangeListener = Callable[[BotConfig, BotConfig], None]
type RejectionListener = Callable[[ConfigError], None]


def _as_decimal(key: str, value: Any) -> Decimal:
    """Coerce a numeric config value, rejecting booleans and garbage."""
    if isinstance(value, bool):
        msg = f"{key} must be a number, got a boolean"
        raise ConfigError(msg)
    if not isinstance(value, int | float | str | Decimal):
        msg = f"{key} must be a number, got {type(value).__name__}"
        raise ConfigError(msg)
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation as exc:
        msg = f"{key} must be a number, got {value!r}"
        raise ConfigError(msg) from exc
    if not result.is_finite():
        msg = f"{key} must be finite, got {value!r}"
        raise ConfigError(msg)
    return result


def _as_int(key: str, value: Any) -> int:
    """Coerce an integer config value."""
    number = _as_decimal(key, value)
    if number != number.to_integral_value():
        msg = f"{key} must be an integer, got {value!r}"
        raise ConfigError(msg)
    return int(number)


def _as_bool(key: str, value: Any) -> bool:
    """Coerce a boolean config value; env-substituted strings are accepted."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    msg = f"{key} must be a boolean, got {value!r}"
    raise ConfigError(msg)


def _as_categories(key: str, value: Any) -> tuple[str, ...]:
    """Coerce the category list."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(c.strip().lower() for c in value.split(",") if c.strip())
    if isinstance(value, list):
        items = cast("list[Any]", value)
        if all(isinstance(item, str) for item in items):
            return tuple(str(item).strip().lower() for item in items if str(item).strip())
    msg = f"{key} must be a list of strings, got {value!r}"
    raise ConfigError(msg)


def _as_timezone(key: str, value: Any) -> str:
    """Validate an IANA timezone name."""
    if not isinstance(value, str) or not value.strip():
        msg = f"{key} must be a timezone name, got {value!r}"
        raise ConfigError(msg)
    try:
        ZoneInfo(value.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"{key}: unknown timezone {value!r}"
        raise ConfigError(msg) from exc
    return value.strip()


def _require(condition: bool, message: str) -> None:  # noqa: FBT001
    """Raise ``ConfigError`` with ``message`` unless ``condition`` holds."""
    if not condition:
        raise ConfigError(message)


_DECIMAL_KEYS = frozenset(
    {
        "min_liquidity_usd",
        "max_per_trade_usd",
        "max_daily_spend_usd",
        "auto_sell_multiplier",
        "min_volume_24h_usd",
        "min_trade_usd",
        "scan_interval_seconds",
        "cycle_timeout_seconds",
        "request_timeout_seconds",
    }
)
_INT_KEYS = frozenset(
    {
        "max_price_cents",
        "max_open_positions",
        "scan_failure_alert_threshold",
        "new_market_scan_limit",
    }
)
_OPTIONAL_DECIMAL_KEYS = frozenset({"max_total_exposure_usd", "partial_sell_multiplier"})
_BOOL_KEYS = frozenset({"paper_trading", "use_market_orders"})
_KNOWN_KEYS = frozenset(f.name for f in fields(BotConfig))


def build_config(document: dict[str, Any]) -> BotConfig:
    """Validate a parsed configuration document into a ``BotConfig``.

    Missing keys take their defaults.  Unknown keys are logged and ignored.

    Args:
        document: Mapping parsed from the configuration file.

    Returns:
        The validated, immutable configuration snapshot.

    Raises:
        ConfigError: If any recognised key has the wrong type or an
            out-of-range value.

    """
    values: dict[str, Any] = {}
    for key, raw in document.items():
        if key not in _KNOWN_KEYS:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if key in _DECIMAL_KEYS:
            values[key] = _as_decimal(key, raw)
        elif key in _INT_KEYS:
            values[key] = _as_int(key, raw)
        elif key in _BOOL_KEYS:
            values[key] = _as_bool(key, raw)
        elif key in _OPTIONAL_DECIMAL_KEYS:
            values[key] = None if raw is None else _as_decimal(key, raw)
        elif key == "categories":
            values[key] = _as_categories(key, raw)
        elif key == "timezone":
            values[key] = _as_timezone(key, raw)

    config = BotConfig(**values)
    _require(
        1 <= config.max_price_cents <= _MAX_PRICE_CENTS_LIMIT,
        f"max_price_cents must be between 1 and {_MAX_PRICE_CENTS_LIMIT}",
    )
    _require(config.min_liquidity_usd >= ZERO, "min_liquidity_usd must be >= 0")
    _require(config.max_per_trade_usd > ZERO, "max_per_trade_usd must be > 0")
    _require(config.max_daily_spend_usd > ZERO, "max_daily_spend_usd must be > 0")
    _require(config.max_open_positions >= 1, "max_open_positions must be >= 1")
    _require(config.auto_sell_multiplier > ONE, "auto_sell_multiplier must be > 1")
    _require(
        config.max_total_exposure_usd is None or config.max_total_exposure_usd > ZERO,
        "max_total_exposure_usd must be > 0 when set",
    )
    _require(
        config.partial_sell_multiplier is None
        or ONE < config.partial_sell_multiplier < config.auto_sell_multiplier,
        "partial_sell_multiplier must be > 1 and below auto_sell_multiplier when set",
    )
    _require(config.min_volume_24h_usd >= ZERO, "min_volume_24h_usd must be >= 0")
    _require(config.min_trade_usd > ZERO, "min_trade_usd must be > 0")
    _require(config.scan_interval_seconds > ZERO, "scan_interval_seconds must be > 0")
    _require(config.cycle_timeout_seconds > ZERO, "cycle_timeout_seconds must be > 0")
    _require(config.request_timeout_seconds > ZERO, "request_timeout_seconds must be > 0")
    _require(config.new_market_scan_limit >= 0, "new_market_scan_limit must be >= 0")
    _require(
        config.scan_failure_alert_threshold >= 1,
        "scan_failure_alert_threshold must be >= 1",
    )
    return config


class ConfigSnapshotProvider:
    """Supply the latest valid ``BotConfig`` and reload it on change.

    Args:
        path: Configuration file.  When it does not exist the defaults are
            used until the file appears.
        load_env: Load a ``.env`` file into the process environment first.

    Raises:
        ConfigError: If the file exists but is invalid at construction,
            since there is no prior snapshot to fall back on.

    """

    def __init__(self, path: Path, *, load_env: bool = True) -> None:
        """Load the initial snapshot.

        Args:
            path: Configuration file location.
            load_env: Load ``.env`` before reading the file.

        """
        if load_env:
            load_dotenv()
        self._path = Path(path)
        self._change_listeners: list[ChangeListener] = []
        self._rejection_listeners: list[RejectionListener] = []
        self._mtime: float | None = self._stat()
        if self._mtime is None:
            logger.warning("Config file %s not found, using defaults", self._path)
            self._current = BotConfig()
        else:
            self._current = build_config(load_document(self._path))

    @property
    def path(self) -> Path:
        """Return the watched configuration file."""
        return self._path

    def current(self) -> BotConfig:
        """Return the latest valid snapshot without blocking."""
        return self._current

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callback invoked with ``(old, new)`` after each change."""
        self._change_listeners.append(listener)

    def subscribe_rejections(self, listener: RejectionListener) -> None:
        """Register a callback invoked with the error of each rejected reload."""
        self._rejection_listeners.append(listener)

    def refresh(self) -> bool:
        """Re-read the file if it changed since the last attempt.

        Returns:
            ``True`` when a new, different snapshot became active.

        """
        mtime = self._stat()
        if mtime is None or mtime == self._mtime:
            return False
        self._mtime = mtime
        try:
            candidate = build_config(load_document(self._path))
        except ConfigError as exc:
            logger.error("Rejected config reload from %s: %s", self._path, exc)  # noqa: TRY400
            for rejection_listener in self._rejection_listeners:
                self._notify(rejection_listener, exc)
            return False

        if candidate == self._current:
            return False
        previous, self._current = self._current, candidate
        logger.info("Config reloaded from %s", self._path)
        for listener in self._change_listeners:
            self._notify(listener, previous, candidate)
        return True

    def _stat(self) -> float | None:
        """Return the file's modification time, or ``None`` if it is missing."""
        try:
            return self._path.stat().st_mtime
        except FileNotFoundError:
            return None

    @staticmethod
    def _notify(listener: Callable[..., None], *args: Any) -> None:
        """Invoke a listener, logging rather than propagating its failure."""
        try:
            listener(*args)
        except Exception:
            logger.exception("Config listener %r failed", listener)


def describe_changes(old: BotConfig, new: BotConfig) -> list[str]:
    """List the parameters that differ between two snapshots.

    Args:
        old: Previous snapshot.
        new: Replacement snapshot.

    Returns:
        ``"key: old -> new"`` strings in field order.

    """
    changes: list[str] = []
    for f in fields(BotConfig):
        before = getattr(old, f.name)
        after = getattr(new, f.name)
        if before != after:
            changes.append(f"{f.name}: {before} -> {after}")
    return changes
