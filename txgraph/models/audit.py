"""
Audit Models for the Transaction Graph

Every rebuild is destructive (delete-then-insert), so each run leaves a
trail: when it started, what it skipped, which batches failed, how it
ended. Analysis runs only log when they degrade.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Graph rebuild lifecycle
    GRAPH_REBUILD_STARTED = "graph_rebuild_started"
    GRAPH_REBUILD_COMPLETED = "graph_rebuild_completed"
    GRAPH_REBUILD_PARTIAL = "graph_rebuild_partial"
    GRAPH_REBUILD_FAILED = "graph_rebuild_failed"

    # Input quality
    TRANSACTION_SKIPPED = "transaction_skipped"
    DAY_BUCKET_TRUNCATED = "day_bucket_truncated"

    # Analysis
    ANALYSIS_DEGRADED = "analysis_degraded"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    correlation_id ties together every event of one rebuild.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'user', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one rebuild)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.rebuild_started(user_id, correlation_id)
        event = AuditEventBuilder.rebuild_completed(user_id, 42, 0, correlation_id)
    """

    @staticmethod
    def rebuild_started(
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GRAPH_REBUILD_STARTED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Graph rebuild started for user {user_id}",
        )

    @staticmethod
    def rebuild_completed(
        user_id: str,
        relation_count: int,
        transactions_skipped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GRAPH_REBUILD_COMPLETED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Graph rebuilt with {relation_count} relations",
            details={
                "relation_count": relation_count,
                "transactions_skipped": transactions_skipped,
            },
        )

    @staticmethod
    def rebuild_partial(
        user_id: str,
        relation_count: int,
        expected_count: int,
        failed_batches: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GRAPH_REBUILD_PARTIAL,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=(
                f"Graph rebuild wrote {relation_count} of {expected_count} relations"
            ),
            details={
                "relation_count": relation_count,
                "expected_count": expected_count,
                "failed_batches": failed_batches,
            },
        )

    @staticmethod
    def rebuild_failed(
        user_id: str,
        stage: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GRAPH_REBUILD_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Graph rebuild failed during {stage}",
            details={"stage": stage},
            error_message=error_message,
        )

    @staticmethod
    def transaction_skipped(
        transaction_id: Optional[str],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Malformed transaction skipped",
            details={"reason": reason},
        )

    @staticmethod
    def bucket_truncated(
        user_id: str,
        day: str,
        bucket_size: int,
        policy: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DAY_BUCKET_TRUNCATED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Day bucket {day} exceeded cap ({bucket_size} transactions)",
            details={
                "day": day,
                "bucket_size": bucket_size,
                "policy": policy,
            },
        )

    @staticmethod
    def analysis_degraded(
        user_id: str,
        operation: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ANALYSIS_DEGRADED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            description=f"{operation} returned empty result: relations unreadable",
            details={"operation": operation},
            error_message=error_message,
        )

