"""Services package."""

from txgraph.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRelationStore,
    GoogleSheetsTransactionStore,
    InMemoryAuditStorage,
    InMemoryRelationStore,
    InMemoryTransactionStore,
    NotFoundError,
    RelationStoreInterface,
    StorageError,
    TransactionStoreInterface,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRelationStore",
    "GoogleSheetsTransactionStore",
    "InMemoryAuditStorage",
    "InMemoryRelationStore",
    "InMemoryTransactionStore",
    "NotFoundError",
    "RelationStoreInterface",
    "StorageError",
    "TransactionStoreInterface",
]
