"""
Tests for the recommendation engine.

The engine is a pure function of a PatternAnalysis, so these tests
build analyses by hand.
"""

import pytest

from conftest import make_relation
from txgraph.graph import RecommendationEngine
from txgraph.models.graph import (
    Insight,
    InsightType,
    PatternAnalysis,
    PatternStat,
    RecommendationPriority,
    RelationType,
)


def insight(insight_type):
    return Insight(type=insight_type, title="t", description="d", strength=0.8)


def same_day_stat(count):
    return PatternStat(
        relation_type=RelationType.SAME_DAY,
        occurrence_count=count,
        average_strength=0.5,
    )


@pytest.fixture
def engine(pattern_settings):
    return RecommendationEngine(settings=pattern_settings)


class TestRules:
    """Tests for each recommendation rule."""

    def test_nothing_in_nothing_out(self, engine):
        assert engine.recommend(PatternAnalysis()) == []

    def test_sequential_patterns_suggest_consolidation(self, engine):
        analysis = PatternAnalysis(
            sequential_patterns=[make_relation(RelationType.FOLLOWED_BY, 0.9)],
        )

        recommendations = engine.recommend(analysis)

        assert [r.type for r in recommendations] == ["consolidate_purchases"]
        assert recommendations[0].priority == RecommendationPriority.MEDIUM

    def test_burst_insight_alone_suggests_consolidation(self, engine):
        analysis = PatternAnalysis(insights=[insight(InsightType.SEQUENTIAL_BURST)])

        assert [r.type for r in engine.recommend(analysis)] == ["consolidate_purchases"]

    @pytest.mark.parametrize("count, fires", [(20, False), (21, True)])
    def test_shopping_list_threshold(self, engine, count, fires):
        analysis = PatternAnalysis(patterns=[same_day_stat(count)])

        types = [r.type for r in engine.recommend(analysis)]

        assert ("shopping_list" in types) is fires

    def test_shopping_list_priority(self, engine):
        analysis = PatternAnalysis(patterns=[same_day_stat(30)])

        [recommendation] = engine.recommend(analysis)

        assert recommendation.priority == RecommendationPriority.LOW

    def test_category_clustering_suggests_budget(self, engine):
        analysis = PatternAnalysis(insights=[insight(InsightType.CATEGORY_CLUSTERING)])

        [recommendation] = engine.recommend(analysis)

        assert recommendation.type == "category_budget"
        assert recommendation.priority == RecommendationPriority.MEDIUM

    def test_rule_order_is_fixed(self, engine):
        analysis = PatternAnalysis(
            patterns=[same_day_stat(25)],
            sequential_patterns=[make_relation(RelationType.FOLLOWED_BY, 0.9)],
            insights=[
                insight(InsightType.CATEGORY_CLUSTERING),
                insight(InsightType.SEQUENTIAL_BURST),
            ],
        )

        assert [r.type for r in engine.recommend(analysis)] == [
            "consolidate_purchases",
            "shopping_list",
            "category_budget",
        ]

    def test_same_input_same_output(self, engine):
        analysis = PatternAnalysis(
            patterns=[same_day_stat(25)],
            insights=[insight(InsightType.SEQUENTIAL_BURST)],
        )

        assert engine.recommend(analysis) == engine.recommend(analysis)

    def test_threshold_comes_from_settings(self, pattern_settings):
        engine = RecommendationEngine(
            settings=pattern_settings.model_copy(update={"same_day_volume_threshold": 5})
        )

        types = [r.type for r in engine.recommend(PatternAnalysis(patterns=[same_day_stat(6)]))]

        assert types == ["shopping_list"]
