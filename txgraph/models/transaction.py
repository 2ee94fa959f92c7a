"""
Transaction Models

The graph builder only ever sees transactions through this model.
Rows coming back from a transaction store are loosely typed (strings
from a spreadsheet, dicts from a database driver); they are parsed into
a Transaction at the fetch boundary and rejected there if malformed.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransactionDirection(str, Enum):
    """Money flow direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Transaction(BaseModel):
    """
    A single financial transaction, as read from the transaction store.

    Read-only from the graph's point of view: the graph never writes
    transactions back.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Transaction identifier in the transaction store"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the transaction, when the store returns it"
    )
    occurred_at: datetime = Field(
        ...,
        description="When the transaction happened (timezone-aware)"
    )
    category_id: Optional[str] = Field(
        default=None,
        description="Category reference, if categorized"
    )
    account_id: Optional[str] = Field(
        default=None,
        description="Account the money moved through, if known"
    )
    amount: Decimal = Field(
        ...,
        description="Signed amount"
    )
    direction: TransactionDirection = Field(
        default=TransactionDirection.EXPENSE,
        description="Income, expense or transfer"
    )

    @field_validator('category_id', 'account_id', 'user_id', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        """Spreadsheets and forms hand back empty strings for missing refs."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('direction', mode='before')
    @classmethod
    def default_direction(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return TransactionDirection.EXPENSE
        return v

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('occurred_at')
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are stored in UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found in a transaction row."""

    transaction_id: Optional[str] = Field(
        default=None,
        description="ID of the offending row, if it had one"
    )
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


class SnapshotValidation(BaseModel):
    """
    Result of validating one fetched transaction snapshot.

    transactions are sorted by (occurred_at, id); rejected rows are
    described in issues, one entry per rejected row.
    """

    transactions: list[Transaction] = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.issues)
