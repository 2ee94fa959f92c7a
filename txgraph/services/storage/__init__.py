"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the
transaction source and the relation store. Google Sheets is the
production backend; the in-memory stores back tests and local runs.
"""

from txgraph.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    NotFoundError,
    RelationStoreInterface,
    StorageError,
    TransactionStoreInterface,
)
from txgraph.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRelationStore,
    GoogleSheetsTransactionStore,
)
from txgraph.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRelationStore,
    InMemoryTransactionStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RelationStoreInterface",
    "TransactionStoreInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRelationStore",
    "GoogleSheetsTransactionStore",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRelationStore",
    "InMemoryTransactionStore",
]
