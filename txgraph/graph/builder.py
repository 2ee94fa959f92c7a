"""
Transaction Graph Builder

Turns one user's transaction snapshot into a complete relation set and
writes it to the relation store.

Flow:
1. Fetch  -> transactions in the trailing window, validated and sorted
2. Build  -> structural, temporal adjacency and same-day edges (pure, in memory)
3. Delete -> every relation the user currently owns
4. Insert -> the new set, in fixed-size batches, each retried independently

DESIGN DECISION: There is no incremental merge. Each rebuild replaces the
user's whole relation set, which is what makes a rebuild idempotent and
makes any partial state repairable by simply running it again.

SCALING BOUNDARY: same-day edges are pairwise, so a day bucket of k
transactions yields k*(k-1)/2 edges. day_bucket_cap bounds this. Above
the cap the bucket is either sampled down to cap transactions or skipped,
per the bucket_overflow setting.
"""

import calendar
from datetime import date, datetime, timezone
from itertools import combinations
from typing import Callable, Optional
from uuid import UUID

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from txgraph.audit import AuditLogger
from txgraph.config import GraphBuilderSettings, get_settings
from txgraph.errors import FetchFailure, PersistenceFailure
from txgraph.models.graph import BuildResult, EntityRef, Relation, RelationType
from txgraph.models.transaction import SnapshotValidation, Transaction
from txgraph.services.storage import RelationStoreInterface, TransactionStoreInterface
from txgraph.validation import TransactionValidator


logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def months_before(moment: datetime, months: int) -> datetime:
    """Same wall-clock time `months` calendar months earlier, day clamped."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def adjacency_strength(elapsed_hours: float, window_hours: float, floor: float) -> float:
    """
    Strength of a followed_by edge: linear decay over the window, floored.

    Callers only ask for gaps within the window.
    """
    return max(floor, 1.0 - elapsed_hours / window_hours)


def sample_evenly(items: list, size: int) -> list:
    """Deterministic, order-preserving sample of `size` items spread across the list."""
    if len(items) <= size:
        return list(items)
    if size == 1:
        return [items[0]]
    last = len(items) - 1
    return [items[i * last // (size - 1)] for i in range(size)]


class GraphBuilder:
    """
    Builds and persists the relation graph for one user at a time.

    Stores are injected per instance. The builder keeps no state between
    runs; the same instance may serve many users, but two rebuilds of the
    same user must not overlap (GraphService serializes them).
    """

    def __init__(
        self,
        transaction_store: TransactionStoreInterface,
        relation_store: RelationStoreInterface,
        settings: Optional[GraphBuilderSettings] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._transactions = transaction_store
        self._relations = relation_store
        self._settings = settings or get_settings().graph
        self._validator = validator or TransactionValidator()
        self._audit_logger = audit_logger
        self._clock = clock

    # =========================================================================
    # EDGE CONSTRUCTION (pure)
    # =========================================================================

    def structural_edges(
        self,
        user_id: str,
        transactions: list[Transaction],
    ) -> list[Relation]:
        """belongs_to and from_account edges, strength 1.0."""
        relations = []
        for tx in transactions:
            source = EntityRef.transaction(tx.id)
            if tx.category_id is not None:
                relations.append(Relation(
                    owner_user_id=user_id,
                    source=source,
                    target=EntityRef.category(tx.category_id),
                    relation_type=RelationType.BELONGS_TO,
                    strength=1.0,
                ))
            if tx.account_id is not None:
                relations.append(Relation(
                    owner_user_id=user_id,
                    source=source,
                    target=EntityRef.account(tx.account_id),
                    relation_type=RelationType.FROM_ACCOUNT,
                    strength=1.0,
                ))
        return relations

    def adjacency_edges(
        self,
        user_id: str,
        transactions: list[Transaction],
    ) -> list[Relation]:
        """followed_by edges between consecutive transactions inside the window."""
        window = self._settings.adjacency_window_hours
        floor = self._settings.followed_by_min_strength

        relations = []
        for current, following in zip(transactions, transactions[1:]):
            elapsed_hours = (following.occurred_at - current.occurred_at).total_seconds() / 3600
            if elapsed_hours > window:
                continue
            relations.append(Relation(
                owner_user_id=user_id,
                source=EntityRef.transaction(current.id),
                target=EntityRef.transaction(following.id),
                relation_type=RelationType.FOLLOWED_BY,
                strength=adjacency_strength(elapsed_hours, window, floor),
                metadata={"elapsed_hours": round(elapsed_hours, 4)},
            ))
        return relations

    def day_buckets(
        self,
        transactions: list[Transaction],
    ) -> dict[date, list[Transaction]]:
        """Group time-ordered transactions by calendar day in the reference timezone."""
        tz = self._settings.tzinfo
        buckets: dict[date, list[Transaction]] = {}
        for tx in transactions:
            day = tx.occurred_at.astimezone(tz).date()
            buckets.setdefault(day, []).append(tx)
        return buckets

    def same_day_edges(
        self,
        user_id: str,
        transactions: list[Transaction],
    ) -> tuple[list[Relation], list[date]]:
        """
        Pairwise same-day edges, one per unordered pair, earlier -> later.

        Returns:
            (relations, days whose bucket exceeded the cap)
        """
        cap = self._settings.day_bucket_cap
        overflow = self._settings.bucket_overflow

        relations = []
        truncated: list[date] = []
        for day, bucket in self.day_buckets(transactions).items():
            sampled = False
            if len(bucket) > cap:
                truncated.append(day)
                logger.warning(
                    "day_bucket_over_cap",
                    user_id=user_id,
                    day=day.isoformat(),
                    bucket_size=len(bucket),
                    cap=cap,
                    policy=overflow,
                )
                if overflow == "skip":
                    continue
                bucket = sample_evenly(bucket, cap)
                sampled = True

            for first, second in combinations(bucket, 2):
                same_category = (
                    first.category_id is not None
                    and first.category_id == second.category_id
                )
                metadata = {"day": day.isoformat()}
                if sampled:
                    metadata["sampled"] = True
                relations.append(Relation(
                    owner_user_id=user_id,
                    source=EntityRef.transaction(first.id),
                    target=EntityRef.transaction(second.id),
                    relation_type=(
                        RelationType.SAME_DAY_SAME_CATEGORY
                        if same_category
                        else RelationType.SAME_DAY
                    ),
                    strength=(
                        self._settings.same_day_same_category_strength
                        if same_category
                        else self._settings.same_day_strength
                    ),
                    metadata=metadata,
                ))
        return relations, truncated

    def build_relations(
        self,
        user_id: str,
        transactions: list[Transaction],
    ) -> tuple[list[Relation], list[date]]:
        """
        Build the full relation set for a time-ordered snapshot.

        Output order is deterministic: structural, then adjacency, then
        same-day edges by day.
        """
        same_day, truncated = self.same_day_edges(user_id, transactions)
        relations = (
            self.structural_edges(user_id, transactions)
            + self.adjacency_edges(user_id, transactions)
            + same_day
        )
        return relations, truncated

    # =========================================================================
    # I/O
    # =========================================================================

    async def fetch_snapshot(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> SnapshotValidation:
        """
        Read and validate the user's transactions for the history window.

        Raises:
            FetchFailure: if the transaction store query fails
        """
        since = months_before(self._clock(), self._settings.history_months)
        try:
            rows = await self._transactions.transactions_for_user(user_id, since)
        except Exception as e:
            raise FetchFailure(f"Failed to fetch transactions for {user_id}: {e}") from e

        snapshot = self._validator.validate_snapshot(rows, user_id)

        if self._audit_logger:
            for issue in snapshot.issues:
                await self._audit_logger.log_transaction_skipped(
                    transaction_id=issue.transaction_id,
                    reason=issue.message,
                    correlation_id=correlation_id,
                )
        return snapshot

    async def _insert_with_retry(self, records: list[dict]) -> int:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.batch_retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.batch_retry_backoff_seconds,
                max=10,
            ),
            reraise=True,
        ):
            with attempt:
                return await self._relations.insert_batch(records)

    async def persist(
        self,
        user_id: str,
        relations: list[Relation],
        result: BuildResult,
    ) -> BuildResult:
        """
        Replace the user's relation set with `relations`.

        A failed delete raises. A failed batch is logged and counted; the
        remaining batches still run and committed batches stay.

        Raises:
            PersistenceFailure: if the delete fails
        """
        try:
            result.deleted_count = await self._relations.delete_all_for_user(user_id)
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to delete relations for {user_id}: {e}"
            ) from e

        batch_size = self._settings.batch_size
        for offset in range(0, len(relations), batch_size):
            records = [r.to_record() for r in relations[offset:offset + batch_size]]
            try:
                result.relation_count += await self._insert_with_retry(records)
            except Exception as e:
                result.failed_batches += 1
                logger.error(
                    "relation_batch_failed",
                    user_id=user_id,
                    batch_offset=offset,
                    batch_size=len(records),
                    error=str(e),
                )
        return result

    async def rebuild(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> BuildResult:
        """
        Run one full rebuild for a user.

        Raises:
            FetchFailure: transactions could not be read; nothing was deleted
            PersistenceFailure: the delete failed, or batches failed and
                raise_on_partial is set
        """
        result = BuildResult(user_id=user_id, started_at=self._clock())

        snapshot = await self.fetch_snapshot(user_id, correlation_id)
        result.transactions_seen = len(snapshot.transactions) + snapshot.skipped_count
        result.transactions_skipped = snapshot.skipped_count

        relations, truncated = self.build_relations(user_id, snapshot.transactions)
        result.expected_count = len(relations)
        result.truncated_buckets = [day.isoformat() for day in truncated]

        if self._audit_logger and truncated:
            buckets = self.day_buckets(snapshot.transactions)
            for day in truncated:
                await self._audit_logger.log_bucket_truncated(
                    user_id=user_id,
                    day=day.isoformat(),
                    bucket_size=len(buckets[day]),
                    policy=self._settings.bucket_overflow,
                    correlation_id=correlation_id,
                )

        await self.persist(user_id, relations, result)
        result.finished_at = self._clock()

        logger.info(
            "graph_rebuilt",
            user_id=user_id,
            relation_count=result.relation_count,
            expected_count=result.expected_count,
            transactions_skipped=result.transactions_skipped,
            failed_batches=result.failed_batches,
        )

        if result.is_partial and self._settings.raise_on_partial:
            raise PersistenceFailure(
                f"Wrote {result.relation_count} of {result.expected_count} "
                f"relations for {user_id}",
                result,
            )
        return result
