from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mediarec.config import CacheBackend
from mediarec.recommendations.config import (
    COLLABORATIVE_FILTERING,
    CONTENT_BASED,
    CONTEXT_AWARE,
    TRENDING,
)
from mediarec.recommendations.diversity import MMRDiversityReranker
from mediarec.recommendations.engine import HybridRecommendationEngine
from mediarec.recommendations.models import RecommendationOptions
from mediarec.recommendations.protocols import (
    ContentSource,
    QueryCache,
    TrendingSource,
)
from mediarec.recommendations.strategies.collaborative import (
    CollaborativeFilteringStrategy,
)
from mediarec.recommendations.strategies.content_similarity import (
    ContentSimilarityStrategy,
)
from mediarec.recommendations.strategies.context_temporal import ContextAwareStrategy
from mediarec.recommendations.strategies.trending import TrendingStrategy

if TYPE_CHECKING:
    from mediarec.config import Config
    from mediarec.data.repository import Repository


logger = logging.getLogger(__name__)


def create_query_cache(config: Config) -> QueryCache | None:
    """Instantiate the result cache for the configured backend."""
    if config.cache_backend == CacheBackend.NONE:
        return None
    if config.cache_backend == CacheBackend.REDIS:
        from mediarec.recommendations.cache import RedisRecommendationCache

        return RedisRecommendationCache.from_url(
            config.redis_url, ttl_seconds=config.result_cache_ttl
        )
    from mediarec.recommendations.cache import TTLQueryCache

    return TTLQueryCache(ttl_seconds=config.result_cache_ttl)


def create_hybrid_recommendation_engine(
    config: Config,
    repo: Repository | None = None,
    trending_source: TrendingSource | None = None,
    content_source: ContentSource | None = None,
) -> HybridRecommendationEngine:
    """Wire the four built-in strategies with the configured weights.

    With a repository the content strategy searches the sqlite-vec index
    and request outcomes are stored in the reasoning bank. When no
    repository is passed and ``config.db_path`` is set, one is opened there
    and closed by ``engine.close()``.
    """
    owned_repo = None
    if repo is None and config.db_path:
        from mediarec.data.repository import Repository

        logger.info("Opening recommendation store at %s", config.db_path)
        repo = owned_repo = Repository(config.db_path)

    index = None
    reasoning_bank = None
    if repo is not None:
        from mediarec.recommendations.reasoning_bank import SqliteReasoningBank
        from mediarec.recommendations.vector_index import SqliteVecIndex

        index = SqliteVecIndex(repo)
        reasoning_bank = SqliteReasoningBank(repo)

    weights = config.strategy_weights
    strategies = [
        CollaborativeFilteringStrategy(),
        ContentSimilarityStrategy(index=index),
        TrendingStrategy(source=trending_source),
        ContextAwareStrategy(),
    ]
    engine = HybridRecommendationEngine(
        strategies,
        {
            name: weights[name]
            for name in (COLLABORATIVE_FILTERING, CONTENT_BASED, TRENDING, CONTEXT_AWARE)
            if name in weights
        },
        rrf_k=config.rrf_k,
        overfetch_factor=config.overfetch_factor,
        max_ranking_limit=config.max_ranking_limit,
        strategy_timeout=config.strategy_timeout,
        fanout_deadline=config.fanout_deadline,
        cache=create_query_cache(config),
        cache_ttl=config.result_cache_ttl,
        content_source=content_source,
        reasoning_bank=reasoning_bank,
        diversity_reranker=MMRDiversityReranker(config.diversity_lambda),
        default_options=RecommendationOptions(diversity=config.diversity_enabled),
    )
    if owned_repo is not None:
        engine.add_close_callback(owned_repo.close)
    return engine
