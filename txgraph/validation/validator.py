"""
Transaction Snapshot Validation

DESIGN DECISION: Rows from the transaction store are untrusted until they
pass through here. This is the only place loosely-typed rows become
Transaction objects; the graph builder never sees a raw row.

A bad row never aborts a build. It is rejected with a ValidationIssue,
logged, and the rest of the snapshot proceeds. Rejections cover:
- missing id or timestamp
- values the Transaction model cannot parse (bad date, bad amount)
- rows owned by a different user
- repeated transaction ids (the first occurrence wins)

IMPORTANT: Validation NEVER silently fixes issues.
Every rejected row is reported.
"""

from typing import Any, Iterable

import structlog
from pydantic import ValidationError

from txgraph.errors import MalformedInput
from txgraph.models.transaction import (
    SnapshotValidation,
    Transaction,
    ValidationIssue,
)


logger = structlog.get_logger(__name__)


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class TransactionValidator:
    """Turns raw transaction rows into a sorted, validated snapshot."""

    def validate_row(self, row: Any, user_id: str) -> Transaction:
        """
        Validate one row.

        Raises:
            MalformedInput: with the offending field in the message
        """
        if not isinstance(row, dict):
            raise MalformedInput(f"row: not a mapping ({type(row).__name__})")

        raw_id = row.get("id")
        transaction_id = None if _missing(raw_id) else str(raw_id)

        if transaction_id is None:
            raise MalformedInput("id: missing")
        if _missing(row.get("occurred_at")):
            raise MalformedInput("occurred_at: missing", transaction_id)

        owner = row.get("user_id")
        if not _missing(owner) and str(owner) != user_id:
            raise MalformedInput(
                f"user_id: belongs to {owner}, expected {user_id}", transaction_id
            )

        try:
            return Transaction.model_validate(row)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "row"
            raise MalformedInput(f"{field}: {first['msg']}", transaction_id)

    def validate_snapshot(
        self,
        rows: Iterable[Any],
        user_id: str,
    ) -> SnapshotValidation:
        """
        Validate every row of a fetched snapshot.

        Returns:
            SnapshotValidation with transactions sorted by (occurred_at, id)
        """
        transactions: list[Transaction] = []
        issues: list[ValidationIssue] = []
        seen_ids: set[str] = set()

        for row in rows:
            try:
                transaction = self.validate_row(row, user_id)
            except MalformedInput as e:
                field, _, detail = str(e).partition(": ")
                issues.append(ValidationIssue(
                    transaction_id=e.transaction_id,
                    field=field,
                    issue_type="missing" if detail == "missing" else "invalid",
                    message=str(e),
                ))
                logger.warning(
                    "transaction_skipped",
                    user_id=user_id,
                    transaction_id=e.transaction_id,
                    reason=str(e),
                )
                continue

            if transaction.id in seen_ids:
                issues.append(ValidationIssue(
                    transaction_id=transaction.id,
                    field="id",
                    issue_type="duplicate",
                    message=f"id: duplicate transaction {transaction.id}",
                ))
                logger.warning(
                    "transaction_skipped",
                    user_id=user_id,
                    transaction_id=transaction.id,
                    reason="duplicate id",
                )
                continue

            seen_ids.add(transaction.id)
            transactions.append(transaction)

        transactions.sort(key=lambda t: (t.occurred_at, t.id))
        return SnapshotValidation(transactions=transactions, issues=issues)
