"""Longshot strategy evaluator.

Turn the scanner's candidates into sized trade intents.  Evaluation is pure:
it reads a ``RiskState`` copy and a ``BotConfig`` snapshot and never touches
the ledger, which remains the final authority at admission.
"""

import logging
import re
from decimal import ROUND_DOWN, Decimal

from longshot_trader.apps.longshot_bot.models import (
    BotConfig,
    MarketSnapshot,
    RiskState,
    TradeIntent,
)
from longshot_trader.core.models import Side

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
_RATIONALE = "longshot"

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "politics": (
        "president", "election", "congress", "senate", "vote", "trump", "biden",
        "democrat", "republican", "governor", "mayor", "parliament",
    ),
    "crypto": (
        "bitcoin", "btc", "ethereum", "eth", "solana", "sol", "crypto",
        "blockchain", "defi", "token", "coin", "nft",
    ),
    "sports": (
        "nba", "nfl", "mlb", "nhl", "soccer", "football", "basketball", "baseball",
        "championship", "playoffs", "super bowl", "world cup", "finals",
    ),
    "geopolitics": (
        "war", "invasion", "strike", "ceasefire", "nato", "sanctions", "nuclear",
        "missile", "iran", "ukraine", "russia", "china", "taiwan", "israel",
    ),
    "economics": (
        "fed", "interest rate", "inflation", "gdp", "recession", "unemployment",
        "cpi", "s&p", "nasdaq", "dow", "stock", "tariff",
    ),
    "tech": (
        "ai", "agi", "openai", "google", "apple", "microsoft", "meta", "nvidia",
        "chatgpt", "artificial intelligence",
    ),
}  # fmt: skip
CATEGORY_KEYWORDS["economy"] = CATEGORY_KEYWORDS["economics"]
CATEGORY_KEYWORDS["ai"] = CATEGORY_KEYWORDS["tech"]


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    """Compile a whole-word, case-insensitive alternation of ``keywords``."""
    alternation = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)


_CATEGORY_PATTERNS = {name: _keyword_pattern(words) for name, words in CATEGORY_KEYWORDS.items()}


def matches_categories(question: str, categories: tuple[str, ...]) -> bool:
    """Return whether a question belongs to any of the configured categories.

    An empty category list accepts everything.  A category without a
    keyword list is matched on its own name.

    Args:
        question: Market question text.
        categories: Lower-case category names from the config.

    Returns:
        ``True`` when at least one category's keywords appear as whole words.

    """
    if not categories:
        return True
    for category in categories:
        pattern = _CATEGORY_PATTERNS.get(category) or _keyword_pattern((category,))
        if pattern.search(question):
            return True
    return False


def rank_key(snapshot: MarketSnapshot) -> tuple[Decimal, Decimal]:
    """Sort key: cheaper longshot first, then deeper liquidity."""
    return (snapshot.longshot.price, -snapshot.liquidity)


class LongshotEvaluator:
    """Score candidates and size one intent per eligible market.

    Candidates are ranked by longshot price ascending with ties broken by
    higher liquidity.  Each intent is sized at the smallest of the per-trade
    cap, the remaining daily budget, the market's remaining cap, and the
    remaining global exposure when one is configured.  Budget is consumed
    locally as intents are proposed so the batch never over-commits.
    """

    def evaluate(
        self,
        candidates: list[MarketSnapshot],
        state: RiskState,
        config: BotConfig,
        open_market_ids: frozenset[str] = frozenset(),
    ) -> list[TradeIntent]:
        """Produce ranked, sized intents for the current cycle.

        Args:
            candidates: Snapshots that passed the scanner filters.
            state: Read-only copy of the ledger.
            config: Active configuration snapshot.
            open_market_ids: Markets that already hold an open position.

        Returns:
            At most one intent per market, best first.

        """
        daily_left = state.remaining_daily(config)
        global_left = state.remaining_global(config)
        slots = config.max_open_positions - state.open_position_count

        eligible = [c for c in candidates if self._eligible(c, config, open_market_ids)]
        eligible.sort(key=rank_key)

        intents: list[TradeIntent] = []
        seen: set[str] = set()
        for snapshot in eligible:
            if slots <= 0:
                logger.debug("No position slots left, stopping evaluation")
                break
            if snapshot.market_id in seen:
                continue
            limits = [
                config.max_per_trade_usd,
                daily_left,
                state.remaining_for_market(snapshot.market_id, config),
            ]
            if global_left is not None:
                limits.append(global_left)
            size = min(limits).quantize(_CENT, rounding=ROUND_DOWN)
            if size < config.min_trade_usd:
                logger.debug(
                    "Skipping %s: size $%s below minimum $%s",
                    snapshot.market_id[:20],
                    size,
                    config.min_trade_usd,
                )
                continue

            side = snapshot.longshot
            intents.append(
                TradeIntent(
                    market_id=snapshot.market_id,
                    token_id=side.token_id,
                    outcome=side.outcome,
                    side=Side.BUY,
                    size_usd=size,
                    price=side.price,
                    rationale=_RATIONALE,
                    question=snapshot.question,
                )
            )
            seen.add(snapshot.market_id)
            daily_left -= size
            if global_left is not None:
                global_left -= size
            slots -= 1

        logger.info("Evaluator: %d of %d candidates proposed", len(intents), len(candidates))
        return intents

    @staticmethod
    def _eligible(
        snapshot: MarketSnapshot,
        config: BotConfig,
        open_market_ids: frozenset[str],
    ) -> bool:
        """Apply the dedup, token, volume and category rules."""
        if snapshot.market_id in open_market_ids:
            logger.debug("Skipping %s: position already open", snapshot.market_id[:20])
            return False
        if not snapshot.longshot.token_id:
            return False
        if snapshot.volume_24h < config.min_volume_24h_usd:
            return False
        return matches_categories(snapshot.question, config.categories)
