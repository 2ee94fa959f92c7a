"""
Pattern Analyzer

Summarizes a user's current relation set into per-type statistics,
high-confidence sequential relations and rule-based insights.

GUARANTEES:
- Read-only: no relation is created, changed or deleted
- Deterministic: the same stored relation set always yields the same output,
  regardless of the order the store returns records in
"""

from collections import defaultdict
from typing import Optional

import structlog

from txgraph.config import PatternSettings, get_settings
from txgraph.errors import AnalysisReadFailure
from txgraph.models.graph import (
    Insight,
    InsightType,
    PatternAnalysis,
    PatternStat,
    Relation,
    RelationType,
)
from txgraph.services.storage import RelationStoreInterface


logger = structlog.get_logger(__name__)


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 4) if values else 0.0


class PatternAnalyzer:
    """Pure aggregation over the relation store."""

    def __init__(
        self,
        relation_store: RelationStoreInterface,
        settings: Optional[PatternSettings] = None,
    ):
        self._relations = relation_store
        self._settings = settings or get_settings().patterns

    async def load_relations(self, user_id: str) -> list[Relation]:
        """
        Read and parse the user's relations.

        Raises:
            AnalysisReadFailure: if the store read fails or a record is unreadable
        """
        try:
            records = await self._relations.list_for_user(user_id)
            return [Relation.from_record(record) for record in records]
        except Exception as e:
            raise AnalysisReadFailure(
                f"Failed to read relations for {user_id}: {e}"
            ) from e

    # =========================================================================
    # PURE AGGREGATION
    # =========================================================================

    def pattern_stats(self, relations: list[Relation]) -> list[PatternStat]:
        """
        Count and average strength per relation type.

        Types below min_occurrences are dropped. Sorted by count
        (descending), then type name.
        """
        strengths: dict[RelationType, list[float]] = defaultdict(list)
        for relation in relations:
            strengths[relation.relation_type].append(relation.strength)

        stats = [
            PatternStat(
                relation_type=relation_type,
                occurrence_count=len(values),
                average_strength=_mean(values),
            )
            for relation_type, values in strengths.items()
            if len(values) >= self._settings.min_occurrences
        ]
        stats.sort(key=lambda s: (-s.occurrence_count, s.relation_type.value))
        return stats

    def sequential_relations(self, relations: list[Relation]) -> list[Relation]:
        """followed_by relations at or above the high-confidence strength."""
        threshold = self._settings.sequential_min_strength
        sequential = [
            r for r in relations
            if r.relation_type == RelationType.FOLLOWED_BY and r.strength >= threshold
        ]
        sequential.sort(key=lambda r: (-r.strength, r.source.entity_id, r.target.entity_id))
        return sequential

    def derive_insights(
        self,
        patterns: list[PatternStat],
        sequential: list[Relation],
    ) -> list[Insight]:
        """
        Rule-based insights. Each rule fires at most once, in a fixed order.
        """
        by_type = {stat.relation_type: stat for stat in patterns}
        insights = []

        followed = by_type.get(RelationType.FOLLOWED_BY)
        if followed and followed.occurrence_count >= self._settings.sequential_burst_min_count:
            insights.append(Insight(
                type=InsightType.SEQUENTIAL_BURST,
                title="Purchases in quick succession",
                description=(
                    f"{followed.occurrence_count} times a transaction was followed "
                    "by another one within the adjacency window. Spending tends "
                    "to come in bursts."
                ),
                # No high-confidence edges: fall back to the type average
                strength=(
                    _mean([r.strength for r in sequential])
                    if sequential
                    else followed.average_strength
                ),
            ))

        same_day = by_type.get(RelationType.SAME_DAY)
        if same_day and same_day.occurrence_count >= self._settings.same_day_insight_min_count:
            insights.append(Insight(
                type=InsightType.MULTIPLE_SAME_DAY,
                title="Multiple purchases on the same day",
                description=(
                    f"{same_day.occurrence_count} pairs of transactions happened "
                    "on the same day."
                ),
                strength=same_day.average_strength,
            ))

        clustered = by_type.get(RelationType.SAME_DAY_SAME_CATEGORY)
        if clustered and clustered.occurrence_count >= self._settings.category_cluster_min_count:
            insights.append(Insight(
                type=InsightType.CATEGORY_CLUSTERING,
                title="Repeated spending in one category per day",
                description=(
                    f"{clustered.occurrence_count} same-day pairs share a category. "
                    "Several purchases of the same kind are made on one day."
                ),
                strength=clustered.average_strength,
            ))

        return insights

    def analyze_relations(self, relations: list[Relation]) -> PatternAnalysis:
        patterns = self.pattern_stats(relations)
        sequential = self.sequential_relations(relations)
        return PatternAnalysis(
            patterns=patterns,
            sequential_patterns=sequential,
            insights=self.derive_insights(patterns, sequential),
        )

    # =========================================================================
    # STORE-BACKED OPERATIONS
    # =========================================================================

    async def aggregate_patterns(self, user_id: str) -> list[PatternStat]:
        return self.pattern_stats(await self.load_relations(user_id))

    async def sequential_patterns(self, user_id: str) -> list[Relation]:
        return self.sequential_relations(await self.load_relations(user_id))

    async def analyze(self, user_id: str) -> PatternAnalysis:
        """
        Full analysis from a single read of the relation set.

        Raises:
            AnalysisReadFailure: callers that want graceful degradation
                catch this (GraphService does)
        """
        relations = await self.load_relations(user_id)
        analysis = self.analyze_relations(relations)
        logger.debug(
            "patterns_analyzed",
            user_id=user_id,
            relation_count=len(relations),
            pattern_count=len(analysis.patterns),
            insight_count=len(analysis.insights),
        )
        return analysis
