"""Human-readable explanations derived from fusion metadata."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from mediarec.recommendations.config import (
    COLLABORATIVE_FILTERING,
    CONTENT_BASED,
    CONTEXT_AWARE,
    SECONDARY_REASON_SHARE,
    TRENDING,
)
from mediarec.recommendations.models import (
    ExplanationFactor,
    FusedResult,
    RecommendationExplanation,
)

logger = logging.getLogger(__name__)

PRIMARY_PHRASES: dict[str, str] = {
    COLLABORATIVE_FILTERING: "users with similar tastes enjoyed this",
    CONTENT_BASED: "matches your viewing preferences",
    TRENDING: "trending and popular right now",
    CONTEXT_AWARE: "fits your current watching context",
}

SECONDARY_PHRASES: dict[str, str] = {
    COLLABORATIVE_FILTERING: "also enjoyed by similar users",
    CONTENT_BASED: "aligns with your taste profile",
    TRENDING: "currently popular",
    CONTEXT_AWARE: "suitable for now",
}

FALLBACK_REASONING = "Recommended based on general popularity"

_MAX_FACTORS = 5
_MIN_FACTOR_SHARE = 0.05


def _capitalize(sentence: str) -> str:
    return sentence[:1].upper() + sentence[1:]


class RecommendationExplainer:
    """Turns per-strategy contributions into reasons a UI can show.

    The primary reason is the strategy with the largest positive
    contribution. A second strategy is mentioned when it carries more than
    ``secondary_share`` of the fused score.
    """

    def __init__(
        self,
        primary_phrases: Mapping[str, str] | None = None,
        secondary_phrases: Mapping[str, str] | None = None,
        secondary_share: float = SECONDARY_REASON_SHARE,
    ) -> None:
        self._primary = dict(PRIMARY_PHRASES)
        self._primary.update(primary_phrases or {})
        self._secondary = dict(SECONDARY_PHRASES)
        self._secondary.update(secondary_phrases or {})
        self._secondary_share = secondary_share

    def primary_phrase(self, strategy_name: str) -> str:
        return self._primary.get(strategy_name, f"recommended by {strategy_name}")

    def secondary_phrase(self, strategy_name: str) -> str:
        return self._secondary.get(strategy_name, f"also recommended by {strategy_name}")

    def rank_reasons(self, result: FusedResult) -> list[ExplanationFactor]:
        """Positive contributions, largest first (ties by strategy name)."""
        positive = [
            c for c in result.strategy_contributions.values() if c.contribution > 0
        ]
        positive.sort(key=lambda c: (-c.contribution, c.strategy_name))
        total = result.rrf_score
        return [
            ExplanationFactor(
                strategy_name=c.strategy_name,
                rank=c.rank,
                contribution=c.contribution,
                share=c.contribution / total if total > 0 else 0.0,
                phrase=self.primary_phrase(c.strategy_name),
            )
            for c in positive
        ]

    def generate_reasoning(self, result: FusedResult) -> str:
        factors = self.rank_reasons(result)
        if not factors:
            logger.debug(
                "No positive contribution for content %s; using fallback reasoning",
                result.content_id,
            )
            return FALLBACK_REASONING

        reasons = [self.primary_phrase(factors[0].strategy_name)]
        if len(factors) > 1 and factors[1].share > self._secondary_share:
            reasons.append(self.secondary_phrase(factors[1].strategy_name))
        return _capitalize(", ".join(reasons))

    def explain(self, result: FusedResult) -> RecommendationExplanation:
        factors = [
            f for f in self.rank_reasons(result) if f.share >= _MIN_FACTOR_SHARE
        ][:_MAX_FACTORS]
        return RecommendationExplanation(
            content_id=result.content_id,
            factors=factors,
            summary=self.generate_reasoning(result),
            confidence=self._confidence(factors),
        )

    @staticmethod
    def _confidence(factors: list[ExplanationFactor]) -> float:
        if not factors:
            return 0.5
        total = sum(f.share for f in factors)
        weighted = sum(f.share * f.share for f in factors) / total
        bonus = min(len(factors) * 0.05, 0.15)
        return max(0.3, min(0.95, weighted * 0.8 + bonus))
