"""
In-Memory Storage Implementation

Process-local stores implementing the storage interfaces. Used by the
test suite and by create_graph_service() when Google Sheets is not
configured.

The relation store can be told to fail specific operations so that
partial-write and abort paths can be exercised without a real backend.
"""

import asyncio
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from txgraph.models.audit import AuditEvent
from txgraph.services.storage.interface import (
    AuditStorageInterface,
    RelationStoreInterface,
    StorageError,
    TransactionStoreInterface,
)


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class InMemoryTransactionStore(TransactionStoreInterface):
    """
    Transaction rows held in a dict keyed by user id.

    Rows are returned in the order they were added. Rows whose
    occurred_at cannot be read are passed through untouched so the
    caller's validation sees them.
    """

    def __init__(self, rows: Optional[dict[str, list[dict[str, Any]]]] = None):
        self._rows: dict[str, list[dict[str, Any]]] = {
            user_id: list(user_rows) for user_id, user_rows in (rows or {}).items()
        }
        self.fail_with: Optional[Exception] = None
        self.calls: list[tuple[str, datetime]] = []

    def add(self, user_id: str, rows: Iterable[dict[str, Any]]) -> None:
        self._rows.setdefault(user_id, []).extend(rows)

    async def transactions_for_user(
        self,
        user_id: str,
        since: datetime,
    ) -> list[dict[str, Any]]:
        self.calls.append((user_id, since))
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

        result = []
        for row in self._rows.get(user_id, []):
            occurred_at = _as_datetime(row.get("occurred_at"))
            if occurred_at is not None and occurred_at < since:
                continue
            result.append(dict(row))
        return result


class InMemoryRelationStore(RelationStoreInterface):
    """
    Relation records in a list, each given a storage id on insert.

    Failure injection:
        fail_delete: raise on delete_all_for_user
        fail_insert_calls: 1-based insert_batch call numbers that raise
        fail_list: raise on list_for_user
    """

    def __init__(self):
        self._records: list[dict[str, Any]] = []
        self.fail_delete = False
        self.fail_list = False
        self.fail_insert_calls: set[int] = set()
        self.delete_calls = 0
        self.insert_calls = 0
        # Ordered log of ("delete"|"insert", user_id) for interleaving checks
        self.operations: list[tuple[str, str]] = []

    async def delete_all_for_user(self, user_id: str) -> int:
        self.delete_calls += 1
        await asyncio.sleep(0)
        if self.fail_delete:
            raise StorageError(f"Simulated delete failure for {user_id}")

        before = len(self._records)
        self._records = [r for r in self._records if r["owner_user_id"] != user_id]
        self.operations.append(("delete", user_id))
        return before - len(self._records)

    async def insert_batch(self, records: list[dict[str, Any]]) -> int:
        self.insert_calls += 1
        await asyncio.sleep(0)
        if self.insert_calls in self.fail_insert_calls:
            raise StorageError(f"Simulated insert failure on call {self.insert_calls}")

        for record in records:
            stored = deepcopy(record)
            stored["id"] = str(uuid4())
            self._records.append(stored)
            self.operations.append(("insert", record["owner_user_id"]))
        return len(records)

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        if self.fail_list:
            raise StorageError(f"Simulated read failure for {user_id}")
        return [deepcopy(r) for r in self._records if r["owner_user_id"] == user_id]

    def seed(self, records: Iterable[dict[str, Any]]) -> None:
        """Place records directly, bypassing insert accounting."""
        for record in records:
            stored = deepcopy(record)
            stored.setdefault("id", str(uuid4()))
            self._records.append(stored)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit events in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events
