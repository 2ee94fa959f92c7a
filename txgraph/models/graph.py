"""
Graph Data Models

These models describe the transaction relationship graph and the
values derived from it:
1. EntityRef / Relation - the persisted, typed, weighted edges
2. PatternStat / Insight / Recommendation - computed on demand, never stored
3. BuildResult / PatternAnalysis / RecommendationReport - operation results

DESIGN DECISION: Relations are immutable once built. A rebuild replaces
the whole set for a user; nothing edits a relation in place.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class EntityType(str, Enum):
    """Kinds of node a relation can point at."""
    TRANSACTION = "transaction"
    CATEGORY = "category"
    ACCOUNT = "account"


class RelationType(str, Enum):
    """
    Edge types emitted by the graph builder.

    Structural edges (belongs_to, from_account) always carry strength 1.0.
    Temporal edges (followed_by) decay with elapsed time.
    Co-occurrence edges (same_day*) carry fixed configured strengths.
    """
    BELONGS_TO = "belongs_to"
    FROM_ACCOUNT = "from_account"
    FOLLOWED_BY = "followed_by"
    SAME_DAY = "same_day"
    SAME_DAY_SAME_CATEGORY = "same_day_same_category"


class InsightType(str, Enum):
    """Rule-derived observations about a user's graph."""
    SEQUENTIAL_BURST = "sequential_burst"
    MULTIPLE_SAME_DAY = "multiple_same_day"
    CATEGORY_CLUSTERING = "category_clustering"


class RecommendationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# GRAPH
# =============================================================================

class EntityRef(BaseModel):
    """A (type, id) pair identifying a transaction, category or account."""
    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)

    @classmethod
    def transaction(cls, entity_id: str) -> "EntityRef":
        return cls(entity_type=EntityType.TRANSACTION, entity_id=entity_id)

    @classmethod
    def category(cls, entity_id: str) -> "EntityRef":
        return cls(entity_type=EntityType.CATEGORY, entity_id=entity_id)

    @classmethod
    def account(cls, entity_id: str) -> "EntityRef":
        return cls(entity_type=EntityType.ACCOUNT, entity_id=entity_id)


class Relation(BaseModel):
    """
    A directed, typed, weighted edge owned by one user.

    metadata is for diagnostics only (elapsed time, calendar day,
    sampling flag). Nothing in the analyzer reads it.
    """
    model_config = ConfigDict(frozen=True)

    owner_user_id: str = Field(
        ...,
        min_length=1,
        description="User that owns this relation"
    )
    source: EntityRef = Field(
        ...,
        description="Edge origin"
    )
    target: EntityRef = Field(
        ...,
        description="Edge destination"
    )
    relation_type: RelationType
    strength: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Confidence/weight of the relation"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Diagnostic key-value bag"
    )

    def to_record(self) -> dict[str, Any]:
        """
        Flatten into the relation store record shape.

        Keys: owner_user_id, entity_type, entity_id, related_type,
        related_id, relation_type, strength, metadata.
        """
        return {
            "owner_user_id": self.owner_user_id,
            "entity_type": self.source.entity_type.value,
            "entity_id": self.source.entity_id,
            "related_type": self.target.entity_type.value,
            "related_id": self.target.entity_id,
            "relation_type": self.relation_type.value,
            "strength": self.strength,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Relation":
        """Parse a relation store record. Storage-assigned keys are ignored."""
        metadata = record.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata) if metadata else {}
        return cls(
            owner_user_id=record["owner_user_id"],
            source=EntityRef(
                entity_type=record["entity_type"],
                entity_id=record["entity_id"],
            ),
            target=EntityRef(
                entity_type=record["related_type"],
                entity_id=record["related_id"],
            ),
            relation_type=record["relation_type"],
            strength=float(record["strength"]),
            metadata=metadata,
        )

    def identity(self) -> tuple:
        """Storage-independent identity, for comparing relation multisets."""
        return (
            self.owner_user_id,
            self.source.entity_type.value,
            self.source.entity_id,
            self.target.entity_type.value,
            self.target.entity_id,
            self.relation_type.value,
            round(self.strength, 6),
            json.dumps(self.metadata, sort_keys=True, default=str),
        )


# =============================================================================
# DERIVED VALUES
# =============================================================================

class PatternStat(BaseModel):
    """Aggregate over all of a user's relations of one type."""

    relation_type: RelationType
    occurrence_count: int = Field(ge=0)
    average_strength: float = Field(ge=0.0, le=1.0)


class Insight(BaseModel):
    """A human-readable observation derived from pattern statistics."""

    type: InsightType
    title: str
    description: str
    strength: float = Field(ge=0.0, le=1.0)


class Recommendation(BaseModel):
    """An actionable suggestion with a fixed, rule-assigned priority."""

    type: str
    priority: RecommendationPriority
    title: str
    description: str
    action: str


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class BuildResult(BaseModel):
    """
    Outcome of one graph rebuild.

    relation_count is what actually reached the relation store;
    expected_count is what the builder produced. They differ only
    when insert batches failed.
    """

    user_id: str
    relation_count: int = Field(default=0, ge=0)
    expected_count: int = Field(default=0, ge=0)
    transactions_seen: int = Field(default=0, ge=0)
    transactions_skipped: int = Field(default=0, ge=0)
    deleted_count: int = Field(default=0, ge=0)
    failed_batches: int = Field(default=0, ge=0)
    truncated_buckets: list[str] = Field(
        default_factory=list,
        description="Calendar days whose bucket exceeded the cap"
    )
    started_at: datetime
    finished_at: Optional[datetime] = None

    @property
    def is_partial(self) -> bool:
        """True if some relations failed to persist."""
        return self.failed_batches > 0 or self.relation_count < self.expected_count


class PatternAnalysis(BaseModel):
    """Result of analyze_patterns."""

    patterns: list[PatternStat] = Field(default_factory=list)
    sequential_patterns: list[Relation] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)

    def pattern_for(self, relation_type: RelationType) -> Optional[PatternStat]:
        for stat in self.patterns:
            if stat.relation_type == relation_type:
                return stat
        return None

    def has_insight(self, insight_type: InsightType) -> bool:
        return any(insight.type == insight_type for insight in self.insights)


class RecommendationReport(BaseModel):
    """Result of get_recommendations."""

    recommendations: list[Recommendation] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    patterns: list[PatternStat] = Field(default_factory=list)
