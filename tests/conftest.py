"""
Shared fixtures for the transaction graph tests.

No real API calls in tests: Google Sheets is replaced by the in-memory
stores or by mocks.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from txgraph.config import GraphBuilderSettings, PatternSettings
from txgraph.graph import GraphBuilder
from txgraph.models.graph import EntityRef, Relation, RelationType
from txgraph.models.transaction import Transaction
from txgraph.services.storage import InMemoryRelationStore, InMemoryTransactionStore


USER_ID = "user-1"
NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def at(day: int, hour: int, minute: int = 0, month: int = 6) -> datetime:
    return datetime(2024, month, day, hour, minute, tzinfo=timezone.utc)


def make_tx(
    tx_id: str,
    occurred_at: datetime,
    category_id: Optional[str] = None,
    account_id: Optional[str] = None,
    amount: str = "-10.00",
) -> Transaction:
    return Transaction(
        id=tx_id,
        occurred_at=occurred_at,
        category_id=category_id,
        account_id=account_id,
        amount=Decimal(amount),
    )


def make_row(
    tx_id: str,
    occurred_at: datetime,
    category_id: Optional[str] = None,
    account_id: Optional[str] = None,
    amount: str = "-10.00",
    user_id: str = USER_ID,
) -> dict:
    return {
        "id": tx_id,
        "user_id": user_id,
        "occurred_at": occurred_at.isoformat(),
        "category_id": category_id or "",
        "account_id": account_id or "",
        "amount": amount,
        "direction": "expense",
    }


def make_relation(
    relation_type: RelationType,
    strength: float,
    source: str = "t1",
    target: str = "t2",
    user_id: str = USER_ID,
) -> Relation:
    return Relation(
        owner_user_id=user_id,
        source=EntityRef.transaction(source),
        target=EntityRef.transaction(target),
        relation_type=relation_type,
        strength=strength,
    )


@pytest.fixture
def graph_settings() -> GraphBuilderSettings:
    return GraphBuilderSettings(
        adjacency_window_hours=24,
        followed_by_min_strength=0.3,
        day_bucket_cap=200,
        batch_size=100,
        batch_retry_attempts=1,
        batch_retry_backoff_seconds=0,
        reference_timezone="UTC",
        history_months=6,
        build_timeout_seconds=5,
    )


@pytest.fixture
def pattern_settings() -> PatternSettings:
    return PatternSettings()


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def relation_store() -> InMemoryRelationStore:
    return InMemoryRelationStore()


@pytest.fixture
def builder(transaction_store, relation_store, graph_settings) -> GraphBuilder:
    return GraphBuilder(
        transaction_store,
        relation_store,
        settings=graph_settings,
        clock=lambda: NOW,
    )
