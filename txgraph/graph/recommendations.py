"""
Recommendation Engine

Turns a PatternAnalysis into a short list of user-facing suggestions.

DESIGN DECISION: Each rule is independent and contributes at most one
recommendation with a fixed priority. Rules never look at each other's
output and nothing re-ranks them; the list order is the rule order.
"""

from typing import Callable, Optional

from txgraph.config import PatternSettings, get_settings
from txgraph.models.graph import (
    InsightType,
    PatternAnalysis,
    Recommendation,
    RecommendationPriority,
    RelationType,
)


Rule = Callable[[PatternAnalysis], Optional[Recommendation]]


class RecommendationEngine:
    """Pure function of its input: same analysis, same recommendations."""

    def __init__(self, settings: Optional[PatternSettings] = None):
        self._settings = settings or get_settings().patterns
        self._rules: list[Rule] = [
            self._consolidate_purchases,
            self._shopping_list,
            self._category_budget,
        ]

    def recommend(self, analysis: PatternAnalysis) -> list[Recommendation]:
        recommendations = []
        for rule in self._rules:
            recommendation = rule(analysis)
            if recommendation is not None:
                recommendations.append(recommendation)
        return recommendations

    def _consolidate_purchases(self, analysis: PatternAnalysis) -> Optional[Recommendation]:
        if not (
            analysis.sequential_patterns
            or analysis.has_insight(InsightType.SEQUENTIAL_BURST)
        ):
            return None
        return Recommendation(
            type="consolidate_purchases",
            priority=RecommendationPriority.MEDIUM,
            title="Plan purchases together",
            description=(
                "You often make several transactions within a short time. "
                "Planning them as one trip can cut impulse spending."
            ),
            action="Write down what you need before going out and buy it in one go.",
        )

    def _shopping_list(self, analysis: PatternAnalysis) -> Optional[Recommendation]:
        same_day = analysis.pattern_for(RelationType.SAME_DAY)
        if same_day is None or same_day.occurrence_count <= self._settings.same_day_volume_threshold:
            return None
        return Recommendation(
            type="shopping_list",
            priority=RecommendationPriority.LOW,
            title="Shop from a list",
            description=(
                f"{same_day.occurrence_count} pairs of purchases fell on the same day. "
                "A shopping list helps avoid extra trips and unplanned buys."
            ),
            action="Keep a running shopping list and check it before each purchase.",
        )

    def _category_budget(self, analysis: PatternAnalysis) -> Optional[Recommendation]:
        if not analysis.has_insight(InsightType.CATEGORY_CLUSTERING):
            return None
        return Recommendation(
            type="category_budget",
            priority=RecommendationPriority.MEDIUM,
            title="Set a daily limit for frequent categories",
            description=(
                "Several purchases in the same category often happen on one day. "
                "A category budget makes that spending visible."
            ),
            action="Create a budget for the categories you buy from repeatedly.",
        )
