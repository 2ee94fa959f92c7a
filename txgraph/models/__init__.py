"""
Data Models Package

This package contains all Pydantic models used by the transaction graph.
All data flowing through the system must conform to these schemas.
"""

from txgraph.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from txgraph.models.graph import (
    BuildResult,
    EntityRef,
    EntityType,
    Insight,
    InsightType,
    PatternAnalysis,
    PatternStat,
    Recommendation,
    RecommendationPriority,
    RecommendationReport,
    Relation,
    RelationType,
)
from txgraph.models.transaction import (
    SnapshotValidation,
    Transaction,
    TransactionDirection,
    ValidationIssue,
)

__all__ = [
    # Graph models
    "BuildResult",
    "EntityRef",
    "EntityType",
    "Insight",
    "InsightType",
    "PatternAnalysis",
    "PatternStat",
    "Recommendation",
    "RecommendationPriority",
    "RecommendationReport",
    "Relation",
    "RelationType",
    # Transaction models
    "Transaction",
    "TransactionDirection",
    "SnapshotValidation",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
