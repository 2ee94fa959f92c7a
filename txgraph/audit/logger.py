"""
Audit Logger

DESIGN DECISION: Every graph rebuild is audited. A rebuild deletes the
user's relations before writing new ones, so when insights look stale
the audit trail answers: did the last run finish, and what did it skip?

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash a rebuild if logging fails)
- Supports correlation IDs to trace all events of one rebuild
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from txgraph.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from txgraph.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """
    Route structlog output to stdout at the given level.

    Call once from the process entry point (web worker, job runner).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_rebuild_started(
        self,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rebuild_started(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_rebuild_completed(
        self,
        user_id: str,
        relation_count: int,
        transactions_skipped: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rebuild_completed(
            user_id=user_id,
            relation_count=relation_count,
            transactions_skipped=transactions_skipped,
            correlation_id=correlation_id,
        ))

    async def log_rebuild_partial(
        self,
        user_id: str,
        relation_count: int,
        expected_count: int,
        failed_batches: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rebuild_partial(
            user_id=user_id,
            relation_count=relation_count,
            expected_count=expected_count,
            failed_batches=failed_batches,
            correlation_id=correlation_id,
        ))

    async def log_rebuild_failed(
        self,
        user_id: str,
        stage: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rebuild_failed(
            user_id=user_id,
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_transaction_skipped(
        self,
        transaction_id: Optional[str],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_skipped(
            transaction_id=transaction_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_bucket_truncated(
        self,
        user_id: str,
        day: str,
        bucket_size: int,
        policy: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.bucket_truncated(
            user_id=user_id,
            day=day,
            bucket_size=bucket_size,
            policy=policy,
            correlation_id=correlation_id,
        ))

    async def log_analysis_degraded(
        self,
        user_id: str,
        operation: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.analysis_degraded(
            user_id=user_id,
            operation=operation,
            error_message=error_message,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use one per rebuild and pass it through every step of that run.
    """
    return uuid4()
