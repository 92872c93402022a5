from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from mediarec.errors import InvalidConfigurationError
from mediarec.recommendations.cache import make_cache_key
from mediarec.recommendations.config import (
    DEFAULT_LIMIT,
    FANOUT_DEADLINE,
    MAX_RANKING_LIMIT,
    OVERFETCH_FACTOR,
    RESULT_CACHE_TTL,
    RRF_K,
    STRATEGY_TIMEOUT,
)
from mediarec.recommendations.diversity import MMRDiversityReranker
from mediarec.recommendations.explainer import RecommendationExplainer
from mediarec.recommendations.fusion import reciprocal_rank_fusion
from mediarec.recommendations.models import (
    DeviceType,
    FusedResult,
    HybridRecommendation,
    MediaContent,
    MediaType,
    PatternQuery,
    PatternRecord,
    RankedItem,
    RecommendationContext,
    RecommendationExplanation,
    RecommendationOptions,
)
from mediarec.recommendations.protocols import (
    ContentConsumer,
    ContentSource,
    EmbeddingConsumer,
    QueryCache,
    ReasoningBank,
    RecommendationStrategy,
)
from mediarec.recommendations.reasoning_bank import AdaptiveWeightLearner
from mediarec.recommendations.registry import StrategyRegistration, StrategyRegistry
from mediarec.recommendations.strategies.context_temporal import (
    context_key,
    resolve_context,
)

logger = logging.getLogger(__name__)


def _check_rankings(items: Any) -> list[RankedItem]:
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
        raise ValueError(f"expected a sequence, got {type(items).__name__}")
    ranked = list(items)
    for item in ranked:
        if not isinstance(item, RankedItem):
            raise ValueError(f"expected RankedItem, got {type(item).__name__}")
    ranks = sorted(item.rank for item in ranked)
    if ranks != list(range(1, len(ranked) + 1)):
        raise ValueError("ranks are not dense 1..N")
    return ranked


def _dominant_strategy(recommendations: Sequence[HybridRecommendation]) -> str | None:
    totals: Counter[str] = Counter()
    for rec in recommendations:
        for name, contribution in rec.strategy_contributions.items():
            totals[name] += contribution.contribution
    positive = [(name, total) for name, total in totals.items() if total > 0]
    if not positive:
        return None
    return min(positive, key=lambda kv: (-kv[1], kv[0]))[0]


class HybridRecommendationEngine:
    """Runs every registered strategy concurrently and fuses their rankings.

    A strategy that fails, times out or returns malformed output contributes
    nothing to the request; only registry misuse raises. The result cache,
    content source and reasoning bank are optional and decided at
    construction.
    """

    def __init__(
        self,
        strategies: Iterable[RecommendationStrategy] = (),
        weights: Mapping[str, float] | None = None,
        *,
        rrf_k: int = RRF_K,
        overfetch_factor: int = OVERFETCH_FACTOR,
        max_ranking_limit: int = MAX_RANKING_LIMIT,
        strategy_timeout: float = STRATEGY_TIMEOUT,
        fanout_deadline: float = FANOUT_DEADLINE,
        cache: QueryCache | None = None,
        cache_ttl: float = RESULT_CACHE_TTL,
        content_source: ContentSource | None = None,
        reasoning_bank: ReasoningBank | None = None,
        diversity_reranker: MMRDiversityReranker | None = None,
        explainer: RecommendationExplainer | None = None,
        default_options: RecommendationOptions | None = None,
        default_device: DeviceType = DeviceType.DESKTOP,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if rrf_k < 0:
            raise InvalidConfigurationError(f"rrf_k must be non-negative, got {rrf_k}")
        if overfetch_factor < 1 or max_ranking_limit < 1:
            raise InvalidConfigurationError(
                "overfetch_factor and max_ranking_limit must be at least 1"
            )
        self._registry = StrategyRegistry()
        self._rrf_k = rrf_k
        self._overfetch_factor = overfetch_factor
        self._max_ranking_limit = max_ranking_limit
        self._strategy_timeout = strategy_timeout
        self._fanout_deadline = fanout_deadline
        self._cache = cache
        self._cache_ttl = cache_ttl
        self._content_source = content_source
        self._reasoning_bank = reasoning_bank
        self._diversity = diversity_reranker or MMRDiversityReranker()
        self._explainer = explainer or RecommendationExplainer()
        self._default_options = default_options or RecommendationOptions()
        self._default_device = default_device
        self._clock = clock
        self._closers: list[Callable[[], None]] = []

        self._content: dict[str, MediaContent] = {}
        self._embeddings: dict[str, list[float]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._stats: Counter[str] = Counter()

        weights = weights or {}
        for strategy in strategies:
            self._registry.add(strategy, weights.get(strategy.name))

    # -- Registry --

    def add_strategy(
        self, strategy: RecommendationStrategy, weight: float | None = None
    ) -> None:
        self._registry.add(strategy, weight)

    def remove_strategy(self, name: str) -> bool:
        return self._registry.remove(name)

    def update_weights(self, weights: Mapping[str, float]) -> None:
        self._registry.update_weights(weights)

    def get_strategies(self) -> list[str]:
        return self._registry.names()

    def get_strategy(self, name: str) -> RecommendationStrategy | None:
        registration = self._registry.get(name)
        return registration.strategy if registration is not None else None

    def get_weights(self) -> dict[str, float]:
        return self._registry.weights()

    # -- Content hydration cache --

    def add_content(self, content: MediaContent) -> None:
        self._content[content.id] = content
        for strategy in self._strategies_of(ContentConsumer):
            strategy.add_content(content)

    def add_content_bulk(self, contents: Iterable[MediaContent]) -> int:
        consumers = self._strategies_of(ContentConsumer)
        count = 0
        for content in contents:
            self._content[content.id] = content
            for strategy in consumers:
                strategy.add_content(content)
            count += 1
        logger.info("Added %d content record(s) to hydration cache", count)
        return count

    def add_content_embedding(
        self,
        content_id: str,
        embedding: Sequence[float],
        media_type: MediaType = MediaType.MOVIE,
    ) -> None:
        """Register an embedding for diversity and for embedding-based strategies."""
        self._embeddings[content_id] = [float(v) for v in embedding]
        for strategy in self._strategies_of(EmbeddingConsumer):
            strategy.add_content_embedding(content_id, embedding, media_type)

    def _strategies_of(self, kind: type) -> list[Any]:
        return [
            reg.strategy
            for reg in self._registry.snapshot().values()
            if isinstance(reg.strategy, kind)
        ]

    def clear_content_cache(self) -> None:
        self._content.clear()
        self._embeddings.clear()
        logger.info("Content hydration cache cleared")

    def clear_result_cache(self) -> int:
        if self._cache is None:
            return 0
        try:
            removed = self._cache.clear()
        except Exception:
            logger.warning("Result cache clear failed", exc_info=True)
            return 0
        logger.info("Cleared %d cached recommendation list(s)", removed)
        return removed

    # -- Recommendation pipeline --

    def ranking_limit(self, limit: int) -> int:
        """Candidates requested from each strategy for a final list of *limit*."""
        return max(1, min(limit * self._overfetch_factor, self._max_ranking_limit))

    async def get_hybrid_recommendations(
        self,
        user_id: str,
        limit: int = DEFAULT_LIMIT,
        context: RecommendationContext | None = None,
        options: RecommendationOptions | None = None,
    ) -> list[HybridRecommendation]:
        if limit <= 0:
            return []
        options = options or self._default_options
        self._stats["requests"] += 1

        # Per-request tuning overrides are not part of the cache key.
        use_cache = (
            options.use_cache
            and self._cache is not None
            and options.rrf_k is None
            and options.diversity_lambda is None
        )
        cache_key = make_cache_key(user_id, limit, context, options.diversity)
        if use_cache:
            cached = self._cache_get(cache_key)
            if cached is not None:
                self._stats["cache_hits"] += 1
                logger.info("Cache hit for user '%s' (limit=%d)", user_id, limit)
                return [rec.model_copy(deep=True) for rec in cached]

        snapshot = self._registry.snapshot()
        weights = {name: reg.weight for name, reg in snapshot.items()}
        ranking_limit = self.ranking_limit(limit)
        logger.info(
            "Recommendation request: user='%s' limit=%d strategies=%d ranking_limit=%d",
            user_id,
            limit,
            len(snapshot),
            ranking_limit,
        )

        rankings = await self._collect_rankings(snapshot, user_id, ranking_limit, context)
        k = options.rrf_k if options.rrf_k is not None else self._rrf_k
        fused = reciprocal_rank_fusion(
            {name: items for name, items in rankings.items() if items}, weights, k=k
        )

        if options.diversity:
            reranker = (
                self._diversity
                if options.diversity_lambda is None
                else MMRDiversityReranker(options.diversity_lambda)
            )
            fused = reranker.rerank(fused, self._embeddings)

        recommendations = self._hydrate(fused[:limit])
        logger.info(
            "Fused %d candidate(s), returning %d recommendation(s) for user '%s'",
            len(fused),
            len(recommendations),
            user_id,
        )

        if use_cache:
            self._cache_set(
                cache_key, [rec.model_copy(deep=True) for rec in recommendations]
            )
        if options.record_pattern and self._reasoning_bank is not None:
            self._record_pattern(user_id, context, weights, recommendations)
        return recommendations

    async def _collect_rankings(
        self,
        snapshot: Mapping[str, StrategyRegistration],
        user_id: str,
        limit: int,
        context: RecommendationContext | None,
    ) -> dict[str, list[RankedItem]]:
        if not snapshot:
            return {}
        tasks = {
            asyncio.create_task(
                self._run_strategy(reg.strategy, user_id, limit, context),
                name=f"strategy:{name}",
            ): name
            for name, reg in snapshot.items()
        }
        try:
            done, pending = await asyncio.wait(tasks, timeout=self._fanout_deadline)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        for task in pending:
            self._stats["strategy_failures"] += 1
            logger.warning(
                "Strategy '%s' missed the %.1fs fan-out deadline; abandoned",
                tasks[task],
                self._fanout_deadline,
            )
        return {tasks[task]: task.result() for task in done}

    async def _run_strategy(
        self,
        strategy: RecommendationStrategy,
        user_id: str,
        limit: int,
        context: RecommendationContext | None,
    ) -> list[RankedItem]:
        name = strategy.name
        try:
            items = await asyncio.wait_for(
                strategy.get_rankings(user_id, limit, context),
                timeout=self._strategy_timeout,
            )
        except TimeoutError:
            self._stats["strategy_failures"] += 1
            logger.warning(
                "Strategy '%s' timed out after %.1fs", name, self._strategy_timeout
            )
            return []
        except Exception:
            self._stats["strategy_failures"] += 1
            logger.warning("Strategy '%s' failed", name, exc_info=True)
            return []

        try:
            ranked = _check_rankings(items)
        except ValueError as exc:
            self._stats["strategy_failures"] += 1
            logger.warning("Strategy '%s' returned malformed rankings: %s", name, exc)
            return []

        if len(ranked) > limit:
            logger.debug(
                "Strategy '%s' returned %d item(s); truncating to %d",
                name,
                len(ranked),
                limit,
            )
            ranked = [item for item in ranked if item.rank <= limit]
        logger.debug("Strategy '%s' returned %d item(s)", name, len(ranked))
        return ranked

    def _resolve(self, content_id: str) -> MediaContent | None:
        content = self._content.get(content_id)
        if content is not None or self._content_source is None:
            return content
        try:
            return self._content_source.resolve(content_id)
        except Exception:
            logger.warning("Content source failed for %s", content_id, exc_info=True)
            return None

    def _hydrate(self, fused: Sequence[FusedResult]) -> list[HybridRecommendation]:
        recommendations: list[HybridRecommendation] = []
        misses = 0
        for result in fused:
            content = self._resolve(result.content_id)
            if content is None:
                misses += 1
                continue
            recommendations.append(
                HybridRecommendation(
                    content=content,
                    final_score=result.rrf_score,
                    strategy_contributions=result.strategy_contributions,
                    reasoning=self._explainer.generate_reasoning(result),
                )
            )
        if misses:
            self._stats["hydration_misses"] += misses
            logger.warning("Dropped %d unresolvable content item(s)", misses)
        return recommendations

    def _cache_get(self, key: str) -> list[HybridRecommendation] | None:
        assert self._cache is not None
        try:
            return self._cache.get(key)
        except Exception:
            self._stats["cache_errors"] += 1
            logger.warning("Result cache unavailable; serving uncached", exc_info=True)
            return None

    def _cache_set(self, key: str, value: list[HybridRecommendation]) -> None:
        assert self._cache is not None
        try:
            self._cache.set(key, value, ttl=self._cache_ttl)
        except Exception:
            self._stats["cache_errors"] += 1
            logger.warning("Result cache write failed", exc_info=True)

    # -- Adaptive learning --

    def _record_pattern(
        self,
        user_id: str,
        context: RecommendationContext | None,
        weights: Mapping[str, float],
        recommendations: Sequence[HybridRecommendation],
    ) -> None:
        assert self._reasoning_bank is not None
        dominant = _dominant_strategy(recommendations)
        if dominant is None:
            return
        record = PatternRecord(
            user_id=user_id,
            dominant_strategy=dominant,
            strategy_weights=dict(weights),
            context_key=context_key(
                resolve_context(context, self._clock(), self._default_device)
            ),
            item_count=len(recommendations),
        )
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self._reasoning_bank.store_pattern, record),
            name=f"pattern-write:{user_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._on_pattern_written)

    def _on_pattern_written(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._stats["pattern_failures"] += 1
            logger.warning("Reasoning bank write failed", exc_info=exc)
        else:
            self._stats["pattern_writes"] += 1

    async def wait_for_background_tasks(self) -> None:
        """Wait for outstanding pattern writes (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self._closers.append(callback)

    def close(self) -> None:
        """Release resources handed to the engine, most recent first.

        Await ``wait_for_background_tasks`` before closing so pending pattern
        writes do not hit a closed store.
        """
        while self._closers:
            callback = self._closers.pop()
            try:
                callback()
            except Exception:
                logger.warning("Engine close callback failed", exc_info=True)

    async def adapt_weights(
        self, learning_rate: float = 0.1, user_id: str | None = None
    ) -> dict[str, float]:
        """Move strategy weights toward the strategies that dominated recently."""
        if self._reasoning_bank is None:
            raise InvalidConfigurationError(
                "Weight adaptation requires a reasoning bank"
            )
        try:
            learner = AdaptiveWeightLearner(self._reasoning_bank, learning_rate)
        except ValueError as exc:
            raise InvalidConfigurationError(str(exc)) from exc
        suggested = await asyncio.to_thread(
            learner.suggest_weights,
            self._registry.weights(),
            PatternQuery(user_id=user_id),
        )
        self._registry.update_weights(suggested)
        return suggested

    # -- Introspection --

    def explain(
        self, result: FusedResult | HybridRecommendation
    ) -> RecommendationExplanation:
        if isinstance(result, HybridRecommendation):
            result = FusedResult(
                content_id=result.content.id,
                media_type=result.content.media_type,
                rrf_score=result.final_score,
                strategy_contributions=result.strategy_contributions,
            )
        return self._explainer.explain(result)

    def get_statistics(self) -> dict[str, Any]:
        cache_stats: dict[str, Any] | None = None
        if self._cache is not None:
            try:
                cache_stats = self._cache.get_statistics()
            except Exception:
                logger.warning("Result cache statistics unavailable", exc_info=True)
                cache_stats = {"backend": "unavailable"}
        return {
            "requests": self._stats["requests"],
            "cache_hits": self._stats["cache_hits"],
            "cache_errors": self._stats["cache_errors"],
            "strategy_failures": self._stats["strategy_failures"],
            "hydration_misses": self._stats["hydration_misses"],
            "pattern_writes": self._stats["pattern_writes"],
            "pattern_failures": self._stats["pattern_failures"],
            "strategies": self._registry.weights(),
            "content_cached": len(self._content),
            "embeddings_cached": len(self._embeddings),
            "cache": cache_stats,
        }
