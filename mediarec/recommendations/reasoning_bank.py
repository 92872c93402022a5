"""Reasoning bank: stored request outcomes used to evolve strategy weights."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping

from mediarec.data.repository import Repository
from mediarec.recommendations.models import PatternQuery, PatternRecord
from mediarec.recommendations.protocols import ReasoningBank

logger = logging.getLogger(__name__)


class SqliteReasoningBank:
    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def store_pattern(self, record: PatternRecord) -> str:
        pattern_id = self._repo.insert_pattern(
            user_id=record.user_id,
            dominant_strategy=record.dominant_strategy,
            strategy_weights=dict(record.strategy_weights),
            context_key=record.context_key,
            item_count=record.item_count,
            created_at=record.created_at.isoformat(),
        )
        logger.debug(
            "Stored pattern %d for user '%s' (dominant=%s)",
            pattern_id,
            record.user_id,
            record.dominant_strategy,
        )
        return str(pattern_id)

    def find_similar_patterns(self, query: PatternQuery) -> list[PatternRecord]:
        rows = self._repo.list_patterns(
            user_id=query.user_id,
            dominant_strategy=query.dominant_strategy,
            context_key=query.context_key,
            limit=query.limit,
        )
        return [
            PatternRecord(
                id=str(row["id"]),
                user_id=row["user_id"],
                dominant_strategy=row["dominant_strategy"],
                strategy_weights=row["strategy_weights"],
                context_key=row["context_key"],
                item_count=row["item_count"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


class AdaptiveWeightLearner:
    """Nudges strategy weights toward how often each strategy dominated.

    ``new = (1 - learning_rate) * old + learning_rate * share``, where
    ``share`` is the fraction of stored patterns a strategy dominated.
    """

    def __init__(self, bank: ReasoningBank, learning_rate: float = 0.1) -> None:
        if not 0.0 <= learning_rate <= 1.0:
            raise ValueError("learning_rate must be between 0 and 1")
        self._bank = bank
        self._learning_rate = learning_rate

    def dominance_shares(self, query: PatternQuery) -> dict[str, float]:
        patterns = self._bank.find_similar_patterns(query)
        counts = Counter(p.dominant_strategy for p in patterns)
        total = sum(counts.values())
        if total == 0:
            return {}
        return {name: count / total for name, count in counts.items()}

    def suggest_weights(
        self,
        current: Mapping[str, float],
        query: PatternQuery | None = None,
    ) -> dict[str, float]:
        shares = self.dominance_shares(query or PatternQuery())
        if not shares:
            logger.info("No stored patterns; keeping current strategy weights")
            return dict(current)
        lr = self._learning_rate
        suggested = {
            name: min(1.0, max(0.0, (1 - lr) * weight + lr * shares.get(name, 0.0)))
            for name, weight in current.items()
        }
        logger.debug("Suggested weights from %d strategy share(s): %s", len(shares), suggested)
        return suggested
