"""Weighted Reciprocal Rank Fusion over strategy rankings.

Implements RRF as described in:
    Cormack, Clarke & Buettcher (2009) "Reciprocal Rank Fusion outperforms
    Condorcet and individual Rank Learning Methods"

Fusion looks only at rank positions, so a strategy whose scores cluster near
1.0 cannot drown out one whose scores cluster near 0.3. This module is a pure
function of its inputs and knows nothing about how the rankings were produced.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from mediarec.recommendations.config import RRF_K
from mediarec.recommendations.models import (
    FusedResult,
    MediaType,
    RankedItem,
    StrategyContribution,
)

logger = logging.getLogger(__name__)


class _Accumulator:
    __slots__ = ("media_type", "total", "contributions")

    def __init__(self, media_type: MediaType) -> None:
        self.media_type = media_type
        self.total = 0.0
        self.contributions: dict[str, StrategyContribution] = {}


def reciprocal_rank_fusion(
    rankings: Mapping[str, Sequence[RankedItem]],
    weights: Mapping[str, float],
    k: int = RRF_K,
) -> list[FusedResult]:
    """Fuse per-strategy rankings into one ordered list.

    Each item's score is the sum of ``weight / (k + rank)`` over every
    strategy that ranked it. Items ranked by a single strategy still get a
    (small) positive score; no quorum is required.

    Args:
        rankings: Strategy name to that strategy's ranked items (best first).
            Names missing from *weights* are ignored.
        weights: Snapshot of the strategy registry (name to weight). Every
            fused item carries exactly one contribution per entry, in this
            order, zero-filled with ``rank=None`` when the strategy did not
            rank the item.
        k: Smoothing constant. Larger k flattens the gap between adjacent
            ranks; smaller k sharpens it.

    Returns:
        Fused results sorted by ``rrf_score`` descending, ties broken by
        ``content_id`` ascending.
    """
    if k < 0:
        raise ValueError(f"RRF constant k must be non-negative, got {k}")

    items: dict[str, _Accumulator] = {}

    for strategy_name, ranked in rankings.items():
        weight = weights.get(strategy_name)
        if weight is None:
            logger.debug("Ignoring rankings from unregistered strategy '%s'", strategy_name)
            continue
        for item in ranked:
            acc = items.get(item.content_id)
            if acc is None:
                acc = _Accumulator(item.media_type)
                items[item.content_id] = acc
            elif strategy_name in acc.contributions:
                # Keep the best rank if a strategy lists the same item twice.
                continue
            contribution = weight / (k + item.rank)
            acc.total += contribution
            acc.contributions[strategy_name] = StrategyContribution(
                strategy_name=strategy_name,
                weight=weight,
                rank=item.rank,
                contribution=contribution,
            )

    results: list[FusedResult] = []
    for content_id, acc in items.items():
        contributions = {
            name: acc.contributions.get(name)
            or StrategyContribution(
                strategy_name=name, weight=weight, rank=None, contribution=0.0
            )
            for name, weight in weights.items()
        }
        results.append(
            FusedResult(
                content_id=content_id,
                media_type=acc.media_type,
                rrf_score=acc.total,
                strategy_contributions=contributions,
            )
        )

    results.sort(key=lambda r: (-r.rrf_score, r.content_id))

    logger.debug(
        "RRF fusion: %d strategy list(s) → %d unique items fused (k=%d)",
        len(rankings),
        len(results),
        k,
    )
    return results
