from __future__ import annotations

import logging
import threading
from collections import defaultdict

from mediarec.recommendations.config import (
    COLLABORATIVE_FILTERING,
    COLLABORATIVE_MIN_SIMILARITY,
    COLLABORATIVE_NEIGHBOUR_LIMIT,
    DEFAULT_STRATEGY_WEIGHTS,
)
from mediarec.recommendations.models import (
    MediaType,
    RankedItem,
    RecommendationContext,
    UserSimilarity,
)

logger = logging.getLogger(__name__)


class CollaborativeFilteringStrategy:
    """Recommends what users with overlapping watch histories watched.

    Similar users are found with Jaccard similarity over watch-history sets.
    Each candidate the target user has not watched scores the summed
    similarity of the neighbours who watched it, divided by neighbour count.

    Neighbour lists are memoised per user. ``add_watch_event`` drops exactly
    that user's entry; a per-user generation counter stops a computation that
    raced the invalidation from storing a stale list.
    """

    name = COLLABORATIVE_FILTERING

    def __init__(
        self,
        default_weight: float = DEFAULT_STRATEGY_WEIGHTS[COLLABORATIVE_FILTERING],
        neighbour_limit: int = COLLABORATIVE_NEIGHBOUR_LIMIT,
        min_similarity: float = COLLABORATIVE_MIN_SIMILARITY,
    ) -> None:
        self.default_weight = default_weight
        self._neighbour_limit = neighbour_limit
        self._min_similarity = min_similarity
        self._lock = threading.Lock()
        self._history: dict[str, set[str]] = {}
        self._media_types: dict[str, MediaType] = {}
        self._similarities: dict[str, list[UserSimilarity]] = {}
        self._generations: dict[str, int] = defaultdict(int)

    def add_watch_event(
        self,
        user_id: str,
        content_id: str,
        media_type: MediaType = MediaType.MOVIE,
    ) -> None:
        with self._lock:
            history = self._history.setdefault(user_id, set())
            self._media_types[content_id] = media_type
            if content_id in history:
                return
            history.add(content_id)
            self._similarities.pop(user_id, None)
            self._generations[user_id] += 1

    def watch_history(self, user_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._history.get(user_id, ()))

    def find_similar_users(self, user_id: str) -> list[UserSimilarity]:
        with self._lock:
            cached = self._similarities.get(user_id)
            if cached is not None:
                return cached[: self._neighbour_limit]
            generation = self._generations[user_id]
            own = frozenset(self._history.get(user_id, ()))
            if not own:
                return []
            others = {
                other: frozenset(history)
                for other, history in self._history.items()
                if other != user_id
            }

        similarities: list[UserSimilarity] = []
        for other_id, other_history in others.items():
            common = len(own & other_history)
            union = len(own | other_history)
            similarity = common / union if union else 0.0
            if similarity > self._min_similarity:
                similarities.append(
                    UserSimilarity(
                        user_id=other_id, similarity=similarity, common_items=common
                    )
                )
        similarities.sort(key=lambda s: (-s.similarity, s.user_id))

        with self._lock:
            if self._generations[user_id] == generation:
                self._similarities[user_id] = similarities
        return similarities[: self._neighbour_limit]

    async def get_rankings(
        self,
        user_id: str,
        limit: int,
        context: RecommendationContext | None = None,
    ) -> list[RankedItem]:
        if limit <= 0:
            return []
        neighbours = self.find_similar_users(user_id)
        if not neighbours:
            return []

        with self._lock:
            own = frozenset(self._history.get(user_id, ()))
            neighbour_histories = [
                (n.similarity, frozenset(self._history.get(n.user_id, ())))
                for n in neighbours
            ]
            media_types = dict(self._media_types)

        scores: dict[str, float] = defaultdict(float)
        for similarity, history in neighbour_histories:
            for content_id in history:
                if content_id in own:
                    continue
                scores[content_id] += similarity

        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        logger.debug(
            "Collaborative: %d neighbour(s), %d candidate(s) for user '%s'",
            len(neighbours),
            len(scores),
            user_id,
        )
        return [
            RankedItem(
                content_id=content_id,
                media_type=media_types.get(content_id, MediaType.MOVIE),
                rank=position,
                score=score / len(neighbours),
                strategy_name=self.name,
            )
            for position, (content_id, score) in enumerate(ranked, start=1)
        ]
