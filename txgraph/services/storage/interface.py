"""
Abstract Storage Interface

DESIGN DECISION: The graph never talks to a concrete database. It is
handed store objects implementing these interfaces. This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Scope a store handle to one request or job instead of a global client

The interfaces are intentionally narrow - only the operations the graph
needs. Transaction CRUD lives elsewhere; from here transactions are
read-only.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
from uuid import UUID

from txgraph.models.audit import AuditEvent


class TransactionStoreInterface(ABC):
    """
    Read-only source of a user's transactions.

    Returns raw rows; the caller validates them into Transaction models.
    """

    @abstractmethod
    async def transactions_for_user(
        self,
        user_id: str,
        since: datetime,
    ) -> list[dict[str, Any]]:
        """
        Fetch a user's transactions that occurred at or after `since`.

        Args:
            user_id: Owner whose transactions to read
            since: Lower bound (inclusive) on occurred_at

        Returns:
            Rows with keys id, occurred_at, category_id, account_id,
            amount, direction, ascending by occurred_at

        Raises:
            StorageError: If the query fails
        """
        pass


class RelationStoreInterface(ABC):
    """
    Durable storage for graph relations.

    Records are flat dicts: owner_user_id, entity_type, entity_id,
    related_type, related_id, relation_type, strength, metadata.
    Implementations may add their own id key.
    """

    @abstractmethod
    async def delete_all_for_user(self, user_id: str) -> int:
        """
        Delete every relation owned by a user.

        Returns:
            Number of records deleted

        Raises:
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def insert_batch(self, records: list[dict[str, Any]]) -> int:
        """
        Insert a batch of relation records.

        Each call must be independently retryable: a failed batch
        leaves no partial rows behind.

        Returns:
            Number of records inserted

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """
        Read every relation owned by a user.

        Raises:
            StorageError: If the read fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one rebuild).

        Returns:
            List of related events in chronological order
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """A required sheet or table is missing from storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
