from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import pytest

from mediarec.errors import InvalidConfigurationError
from mediarec.recommendations.cache import TTLQueryCache
from mediarec.recommendations.engine import HybridRecommendationEngine
from mediarec.recommendations.models import (
    HybridRecommendation,
    MediaContent,
    MediaType,
    PatternRecord,
    RecommendationContext,
    RecommendationOptions,
    WatchEvent,
)
from mediarec.recommendations.strategies.content_similarity import (
    ContentSimilarityStrategy,
)
from mediarec.recommendations.strategies.context_temporal import ContextAwareStrategy

from .test_helpers import (
    BrokenCache,
    FailingStrategy,
    FakeContentSource,
    FakeIndex,
    FakeReasoningBank,
    MalformedStrategy,
    SlowStrategy,
    StaticStrategy,
    content,
)

ALL_IDS = ["x", "y", "z", "w", "v", "m1", "m3", "slow-item"]


def _engine(*strategies, weights=None, **kwargs) -> HybridRecommendationEngine:
    engine = HybridRecommendationEngine(strategies, weights, **kwargs)
    engine.add_content_bulk(content(cid) for cid in ALL_IDS)
    return engine


def _ids(recs: list[HybridRecommendation]) -> list[str]:
    return [r.content.id for r in recs]


def _scores(recs: list[HybridRecommendation]) -> list[tuple[str, float]]:
    return [(r.content.id, r.final_score) for r in recs]


class TestRecommendationPipeline:
    def test_two_strategy_example(self) -> None:
        engine = _engine(
            StaticStrategy("A", ["x", "y"]),
            StaticStrategy("B", ["y", "z"]),
            weights={"A": 0.6, "B": 0.4},
        )
        recs = asyncio.run(engine.get_hybrid_recommendations("u1", limit=10))

        assert _ids(recs) == ["y", "x", "z"]
        assert recs[0].final_score == pytest.approx(0.6 / 62 + 0.4 / 61)
        assert list(recs[0].strategy_contributions) == ["A", "B"]
        assert recs[1].strategy_contributions["B"].rank is None
        assert recs[0].reasoning

    def test_limit_zero_returns_empty(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]))
        assert asyncio.run(engine.get_hybrid_recommendations("u1", limit=0)) == []

    def test_no_strategies_returns_empty(self) -> None:
        assert asyncio.run(_engine().get_hybrid_recommendations("u1")) == []

    def test_overfetch_gives_fusion_more_candidates(self) -> None:
        long_ids = [f"a{n}" for n in range(1, 31)]
        a = StaticStrategy("A", long_ids)
        b = StaticStrategy("B", ["a15"])
        engine = _engine(a, b, weights={"A": 0.5, "B": 0.5})
        engine.add_content_bulk(content(cid) for cid in long_ids)

        recs = asyncio.run(engine.get_hybrid_recommendations("u1", limit=5))

        assert a.calls == [("u1", 15)]
        assert len(recs) == 5
        assert recs[0].content.id == "a15"

    def test_ranking_limit_is_capped(self) -> None:
        engine = _engine()
        assert engine.ranking_limit(5) == 15
        assert engine.ranking_limit(50) == 100
        tuned = _engine(overfetch_factor=2, max_ranking_limit=30)
        assert tuned.ranking_limit(20) == 30

    def test_context_reaches_strategies(self) -> None:
        seen: list[RecommendationContext | None] = []

        class _ContextProbe(StaticStrategy):
            async def get_rankings(self, user_id, limit, context=None):
                seen.append(context)
                return await super().get_rankings(user_id, limit, context)

        ctx = RecommendationContext(hour_of_day=21)
        engine = _engine(_ContextProbe("probe", ["x"]))
        asyncio.run(engine.get_hybrid_recommendations("u1", context=ctx))
        assert seen == [ctx]


class TestStrategyFailures:
    def _baseline(self) -> list[tuple[str, float]]:
        engine = _engine(StaticStrategy("A", ["x", "y"]), StaticStrategy("B", ["y", "z"]))
        return _scores(asyncio.run(engine.get_hybrid_recommendations("u1")))

    def test_failing_strategy_is_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        engine = _engine(
            StaticStrategy("A", ["x", "y"]),
            StaticStrategy("B", ["y", "z"]),
            FailingStrategy("C"),
        )
        with caplog.at_level(logging.WARNING):
            recs = asyncio.run(engine.get_hybrid_recommendations("u1"))

        assert _scores(recs) == self._baseline()
        assert recs[0].strategy_contributions["C"].contribution == 0.0
        assert engine.get_statistics()["strategy_failures"] == 1
        assert "Strategy 'C' failed" in caplog.text

    def test_strategy_timeout(self) -> None:
        slow = SlowStrategy("C", delay=5.0)
        engine = _engine(
            StaticStrategy("A", ["x", "y"]),
            StaticStrategy("B", ["y", "z"]),
            slow,
            strategy_timeout=0.05,
        )
        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))
        assert _scores(recs) == self._baseline()
        assert slow.cancelled
        assert engine.get_statistics()["strategy_failures"] == 1

    def test_fanout_deadline_abandons_stragglers(self) -> None:
        slow = SlowStrategy("C", delay=5.0)
        engine = _engine(
            StaticStrategy("A", ["x", "y"]),
            StaticStrategy("B", ["y", "z"]),
            slow,
            strategy_timeout=10.0,
            fanout_deadline=0.05,
        )

        async def scenario() -> list[HybridRecommendation]:
            recs = await engine.get_hybrid_recommendations("u1")
            for _ in range(5):
                await asyncio.sleep(0)
            return recs

        recs = asyncio.run(scenario())
        assert _scores(recs) == self._baseline()
        assert slow.cancelled
        assert engine.get_statistics()["strategy_failures"] == 1

    def test_malformed_output_is_ignored(self) -> None:
        engine = _engine(
            StaticStrategy("A", ["x", "y"]),
            StaticStrategy("B", ["y", "z"]),
            MalformedStrategy("C"),
        )
        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))
        assert _scores(recs) == self._baseline()
        assert "m1" not in _ids(recs)

    def test_empty_strategy_does_not_block_others(self) -> None:
        engine = _engine(StaticStrategy("content_based", []), StaticStrategy("A", ["x"]))
        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))
        assert _ids(recs) == ["x"]


class TestHydration:
    def test_unresolved_items_dropped_and_counted(self) -> None:
        engine = HybridRecommendationEngine([StaticStrategy("A", ["x", "unknown", "y"])])
        engine.add_content(content("x"))
        engine.add_content(content("y"))

        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))

        assert _ids(recs) == ["x", "y"]
        assert engine.get_statistics()["hydration_misses"] == 1

    def test_content_source_fallback(self) -> None:
        source = FakeContentSource({"remote": MediaContent(id="remote", title="Remote")})
        engine = HybridRecommendationEngine(
            [StaticStrategy("A", ["local", "remote"])], content_source=source
        )
        engine.add_content(content("local"))

        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))

        assert _ids(recs) == ["local", "remote"]
        assert source.calls == ["remote"]

    def test_content_source_error_is_a_miss(self) -> None:
        class _Exploding:
            def resolve(self, content_id: str) -> MediaContent | None:
                raise ConnectionError("catalog down")

        engine = HybridRecommendationEngine(
            [StaticStrategy("A", ["x"])], content_source=_Exploding()
        )
        assert asyncio.run(engine.get_hybrid_recommendations("u1")) == []
        assert engine.get_statistics()["hydration_misses"] == 1

    def test_clear_content_cache(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]))
        engine.clear_content_cache()
        assert asyncio.run(engine.get_hybrid_recommendations("u1")) == []


class TestResultCache:
    def test_second_call_served_from_cache(self) -> None:
        a = StaticStrategy("A", ["x", "y"])
        engine = _engine(a, cache=TTLQueryCache())

        first = asyncio.run(engine.get_hybrid_recommendations("u1", limit=5))
        second = asyncio.run(engine.get_hybrid_recommendations("u1", limit=5))

        assert _scores(first) == _scores(second)
        assert len(a.calls) == 1
        assert engine.get_statistics()["cache_hits"] == 1

    def test_cached_results_are_not_shared_with_callers(self) -> None:
        engine = _engine(StaticStrategy("A", ["x", "y"]), cache=TTLQueryCache())

        first = asyncio.run(engine.get_hybrid_recommendations("u1"))
        first[0].reasoning = "edited by caller"
        first[0].strategy_contributions.clear()
        second = asyncio.run(engine.get_hybrid_recommendations("u1"))
        second[0].content.title = "edited again"
        third = asyncio.run(engine.get_hybrid_recommendations("u1"))

        assert engine.get_statistics()["cache_hits"] == 2
        assert third[0].reasoning == second[0].reasoning != "edited by caller"
        assert "A" in third[0].strategy_contributions
        assert third[0].content.title == "Title x"

    def test_cache_key_varies_with_limit_and_diversity(self) -> None:
        a = StaticStrategy("A", ["x", "y"])
        engine = _engine(a, cache=TTLQueryCache())
        asyncio.run(engine.get_hybrid_recommendations("u1", limit=5))
        asyncio.run(engine.get_hybrid_recommendations("u1", limit=6))
        asyncio.run(
            engine.get_hybrid_recommendations(
                "u1", limit=5, options=RecommendationOptions(diversity=True)
            )
        )
        assert len(a.calls) == 3

    def test_use_cache_false_bypasses(self) -> None:
        a = StaticStrategy("A", ["x"])
        engine = _engine(a, cache=TTLQueryCache())
        options = RecommendationOptions(use_cache=False)
        asyncio.run(engine.get_hybrid_recommendations("u1", options=options))
        asyncio.run(engine.get_hybrid_recommendations("u1", options=options))
        assert len(a.calls) == 2

    def test_cache_outage_serves_uncached(self) -> None:
        engine = _engine(StaticStrategy("A", ["x", "y"]), cache=BrokenCache())
        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))
        stats = engine.get_statistics()

        assert _ids(recs) == ["x", "y"]
        assert stats["cache_errors"] == 2
        assert stats["cache"] == {"backend": "unavailable"}
        assert engine.clear_result_cache() == 0

    def test_concurrent_identical_requests_agree(self) -> None:
        engine = _engine(
            StaticStrategy("A", ["x", "y", "z"]),
            StaticStrategy("B", ["z", "w"]),
            cache=TTLQueryCache(),
        )

        async def scenario():
            return await asyncio.gather(
                engine.get_hybrid_recommendations("u1", limit=3),
                engine.get_hybrid_recommendations("u1", limit=3),
            )

        first, second = asyncio.run(scenario())
        assert [r.model_dump() for r in first] == [r.model_dump() for r in second]

    def test_clear_result_cache(self) -> None:
        a = StaticStrategy("A", ["x"])
        engine = _engine(a, cache=TTLQueryCache())
        asyncio.run(engine.get_hybrid_recommendations("u1"))
        assert engine.clear_result_cache() == 1
        asyncio.run(engine.get_hybrid_recommendations("u1"))
        assert len(a.calls) == 2


class TestDiversity:
    def test_without_embeddings_order_unchanged(self) -> None:
        engine = _engine(StaticStrategy("A", ["x", "y", "z"]))
        plain = asyncio.run(engine.get_hybrid_recommendations("u1"))
        diverse = asyncio.run(
            engine.get_hybrid_recommendations(
                "u1", options=RecommendationOptions(diversity=True)
            )
        )
        assert _ids(plain) == _ids(diverse)

    def test_with_embeddings_reorders(self) -> None:
        engine = _engine(StaticStrategy("A", ["x", "y", "z"]))
        engine.add_content_embedding("x", [1.0, 0.0])
        engine.add_content_embedding("y", [1.0, 0.0])
        engine.add_content_embedding("z", [0.0, 1.0])

        recs = asyncio.run(
            engine.get_hybrid_recommendations(
                "u1",
                limit=2,
                options=RecommendationOptions(diversity=True, diversity_lambda=0.5),
            )
        )
        assert _ids(recs) == ["x", "z"]
        assert recs[1].strategy_contributions["A"].rank == 3


class TestContentForwarding:
    def test_embeddings_reach_content_strategy(self) -> None:
        index = FakeIndex()
        strategy = ContentSimilarityStrategy(index=index)
        engine = _engine(strategy, StaticStrategy("A", ["x"]))
        engine.add_content_embedding("x", [1.0, 0.0], MediaType.TV)
        engine.add_content_embedding("y", [0.0, 1.0])
        strategy.update_user_preferences("u1", [0.0, 1.0])

        assert sorted(index.added) == ["x", "y"]
        assert index.added["x"][1] == MediaType.TV
        items = asyncio.run(strategy.get_rankings("u1", 5))
        assert [i.content_id for i in items] == ["y", "x"]

    def test_content_metadata_reaches_context_strategy(self) -> None:
        saturday = datetime(2026, 10, 17, 20, 30)
        strategy = ContextAwareStrategy(now=lambda: saturday)
        engine = HybridRecommendationEngine([strategy])
        engine.add_content_bulk(
            [
                MediaContent(id="long", title="Long", runtime=200),
                MediaContent(id="short", title="Short", runtime=25),
            ]
        )
        for cid in ("short", "long"):
            strategy.learn_from_watch_event(
                WatchEvent(user_id="u1", content_id=cid, timestamp=saturday)
            )

        recs = asyncio.run(
            engine.get_hybrid_recommendations(
                "u1", context=RecommendationContext(available_time=30)
            )
        )
        assert _ids(recs) == ["short"]


class TestRegistryOperations:
    def test_add_remove_and_weights(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"], default_weight=0.3))
        engine.add_strategy(StaticStrategy("B", ["y"]), 0.7)

        assert engine.get_strategies() == ["A", "B"]
        assert engine.get_weights() == {"A": 0.3, "B": 0.7}
        assert engine.remove_strategy("A") is True
        assert engine.get_strategy("A") is None
        assert engine.get_strategy("B") is not None

    def test_update_unknown_strategy_raises(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]))
        with pytest.raises(InvalidConfigurationError):
            engine.update_weights({"missing": 0.5})

    def test_weight_update_changes_order(self) -> None:
        engine = _engine(
            StaticStrategy("A", ["x"]), StaticStrategy("B", ["y"]),
            weights={"A": 0.6, "B": 0.4},
        )
        before = asyncio.run(engine.get_hybrid_recommendations("u1"))
        engine.update_weights({"A": 0.1})
        after = asyncio.run(engine.get_hybrid_recommendations("u1"))
        assert _ids(before) == ["x", "y"]
        assert _ids(after) == ["y", "x"]

    def test_invalid_constructor_values(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            HybridRecommendationEngine(rrf_k=-1)
        with pytest.raises(InvalidConfigurationError):
            HybridRecommendationEngine(overfetch_factor=0)


class TestPatternRecording:
    def test_dominant_strategy_recorded(self) -> None:
        bank = FakeReasoningBank()
        engine = _engine(
            StaticStrategy("A", ["x", "y"]),
            StaticStrategy("B", ["z"]),
            weights={"A": 0.6, "B": 0.4},
            reasoning_bank=bank,
        )
        ctx = RecommendationContext(hour_of_day=20, day_of_week=5)

        async def scenario() -> None:
            await engine.get_hybrid_recommendations("u1", context=ctx)
            await engine.wait_for_background_tasks()

        asyncio.run(scenario())

        assert len(bank.records) == 1
        record = bank.records[0]
        assert record.user_id == "u1"
        assert record.dominant_strategy == "A"
        assert record.strategy_weights == {"A": 0.6, "B": 0.4}
        assert record.context_key == "evening_weekend_desktop"
        assert record.item_count == 3
        assert engine.get_statistics()["pattern_writes"] == 1

    def test_partial_context_key_is_resolved(self) -> None:
        bank = FakeReasoningBank()
        # 2026-10-14 is a Wednesday.
        engine = _engine(
            StaticStrategy("A", ["x"]),
            reasoning_bank=bank,
            clock=lambda: datetime(2026, 10, 14, 9, 0),
        )

        async def scenario() -> None:
            await engine.get_hybrid_recommendations(
                "u1", context=RecommendationContext(hour_of_day=21)
            )
            await engine.get_hybrid_recommendations("u2")
            await engine.wait_for_background_tasks()

        asyncio.run(scenario())

        keys = {record.user_id: record.context_key for record in bank.records}
        assert keys == {
            "u1": "evening_weekday_desktop",
            "u2": "morning_weekday_desktop",
        }

    def test_bank_failure_does_not_affect_response(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]), reasoning_bank=FakeReasoningBank(fail=True))

        async def scenario() -> list[HybridRecommendation]:
            recs = await engine.get_hybrid_recommendations("u1")
            await engine.wait_for_background_tasks()
            return recs

        assert _ids(asyncio.run(scenario())) == ["x"]
        assert engine.get_statistics()["pattern_failures"] == 1

    def test_record_pattern_disabled(self) -> None:
        bank = FakeReasoningBank()
        engine = _engine(StaticStrategy("A", ["x"]), reasoning_bank=bank)

        async def scenario() -> None:
            await engine.get_hybrid_recommendations(
                "u1", options=RecommendationOptions(record_pattern=False)
            )
            await engine.wait_for_background_tasks()

        asyncio.run(scenario())
        assert bank.records == []


class TestAdaptWeights:
    def test_requires_reasoning_bank(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]))
        with pytest.raises(InvalidConfigurationError):
            asyncio.run(engine.adapt_weights())

    def test_moves_toward_dominant_strategy(self) -> None:
        bank = FakeReasoningBank()
        for _ in range(2):
            bank.store_pattern(PatternRecord(user_id="u1", dominant_strategy="A"))
        engine = _engine(
            StaticStrategy("A", ["x"]),
            StaticStrategy("B", ["y"]),
            weights={"A": 0.5, "B": 0.5},
            reasoning_bank=bank,
        )

        suggested = asyncio.run(engine.adapt_weights(learning_rate=0.1, user_id="u1"))

        assert suggested == pytest.approx({"A": 0.55, "B": 0.45})
        assert engine.get_weights() == pytest.approx({"A": 0.55, "B": 0.45})
        assert bank.queries[0].user_id == "u1"

    def test_invalid_learning_rate(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]), reasoning_bank=FakeReasoningBank())
        with pytest.raises(InvalidConfigurationError):
            asyncio.run(engine.adapt_weights(learning_rate=2.0))


class TestExplain:
    def test_explain_recommendation(self) -> None:
        engine = _engine(
            StaticStrategy("collaborative_filtering", ["x"]),
            StaticStrategy("trending", ["x"]),
        )
        recs = asyncio.run(engine.get_hybrid_recommendations("u1"))
        explanation = engine.explain(recs[0])

        assert explanation.content_id == "x"
        assert explanation.summary == recs[0].reasoning
        assert {f.strategy_name for f in explanation.factors} == {
            "collaborative_filtering",
            "trending",
        }

    def test_statistics_shape(self) -> None:
        engine = _engine(StaticStrategy("A", ["x"]), cache=TTLQueryCache())
        asyncio.run(engine.get_hybrid_recommendations("u1"))
        stats = engine.get_statistics()

        assert stats["requests"] == 1
        assert stats["strategies"] == {"A": 0.5}
        assert stats["content_cached"] == len(ALL_IDS)
        assert stats["cache"]["backend"] == "in-memory"
