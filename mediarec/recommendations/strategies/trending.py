from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

from mediarec.recommendations.config import (
    DEFAULT_STRATEGY_WEIGHTS,
    TRENDING,
    TRENDING_REFRESH_INTERVAL,
)
from mediarec.recommendations.models import (
    RankedItem,
    RecommendationContext,
    TrendingItem,
)
from mediarec.recommendations.protocols import TrendingSource

logger = logging.getLogger(__name__)


class TrendingStrategy:
    """Serves a prefix of a periodically refreshed popularity list.

    A stale list is returned as-is while a single background refresh runs
    (stale-while-revalidate); requests never wait on the source.
    """

    name = TRENDING

    def __init__(
        self,
        default_weight: float = DEFAULT_STRATEGY_WEIGHTS[TRENDING],
        source: TrendingSource | None = None,
        refresh_interval: float = TRENDING_REFRESH_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_weight = default_weight
        self._source = source
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._items: tuple[TrendingItem, ...] = ()
        self._last_update: float | None = None
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def items(self) -> tuple[TrendingItem, ...]:
        return self._items

    def is_stale(self) -> bool:
        if self._last_update is None:
            return True
        return self._clock() - self._last_update >= self._refresh_interval

    def set_trending_items(self, items: Iterable[TrendingItem]) -> None:
        self._items = tuple(
            sorted(items, key=lambda i: (-i.popularity_score, i.content_id))
        )
        self._last_update = self._clock()
        logger.info("Trending list updated with %d item(s)", len(self._items))

    async def refresh(self) -> None:
        if self._source is None:
            return
        items = await self._source.fetch_trending()
        self.set_trending_items(items)

    async def get_rankings(
        self,
        user_id: str,
        limit: int,
        context: RecommendationContext | None = None,
    ) -> list[RankedItem]:
        if self.is_stale():
            self._schedule_refresh()
        if limit <= 0:
            return []
        return [
            RankedItem(
                content_id=item.content_id,
                media_type=item.media_type,
                rank=position,
                score=item.popularity_score,
                strategy_name=self.name,
            )
            for position, item in enumerate(self._items[:limit], start=1)
        ]

    def _schedule_refresh(self) -> None:
        if self._source is None:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        logger.debug("Trending list stale; scheduling background refresh")
        self._refresh_task = asyncio.get_running_loop().create_task(
            self.refresh(), name="trending-refresh"
        )
        self._refresh_task.add_done_callback(self._on_refresh_done)

    @staticmethod
    def _on_refresh_done(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Trending refresh failed; keeping previous list",
                exc_info=exc,
            )
