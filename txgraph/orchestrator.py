"""
Graph Service - the public entry point

Callers (an API endpoint, a scheduled job runner) hold one GraphService
and call three operations:
1. rebuild_graph(user_id)       -> BuildResult (relation_count is the count written)
2. analyze_patterns(user_id)    -> PatternAnalysis
3. get_recommendations(user_id) -> RecommendationReport

DESIGN DECISION: The service enforces the boundaries the components rely on:
- Rebuilds of the same user are serialized (per-user lock); rebuilds of
  different users run concurrently
- Every rebuild runs under a deadline and is audited
- Analysis is advisory: an unreadable relation set degrades to an empty
  result instead of an error

Stores are passed in. Nothing here reaches for a global client.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

import structlog

from txgraph.audit import AuditLogger, configure_logging, create_correlation_id
from txgraph.config import (
    GraphBuilderSettings,
    PatternSettings,
    get_settings,
)
from txgraph.errors import (
    AnalysisReadFailure,
    BuildTimeout,
    FetchFailure,
    PersistenceFailure,
)
from txgraph.graph import GraphBuilder, PatternAnalyzer, RecommendationEngine
from txgraph.models.graph import BuildResult, PatternAnalysis, RecommendationReport
from txgraph.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRelationStore,
    GoogleSheetsTransactionStore,
    InMemoryRelationStore,
    InMemoryTransactionStore,
    RelationStoreInterface,
    TransactionStoreInterface,
)


logger = structlog.get_logger(__name__)


class GraphService:
    """
    Facade over builder, analyzer and recommendation engine.

    One instance per store handle. The per-user locks live on the
    instance, so all rebuilds for a given relation store must go through
    the same GraphService.
    """

    def __init__(
        self,
        transaction_store: TransactionStoreInterface,
        relation_store: RelationStoreInterface,
        graph_settings: Optional[GraphBuilderSettings] = None,
        pattern_settings: Optional[PatternSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        builder: Optional[GraphBuilder] = None,
    ):
        self._graph_settings = graph_settings or get_settings().graph
        self._pattern_settings = pattern_settings or get_settings().patterns
        self._audit_logger = audit_logger or AuditLogger()
        self._builder = builder or GraphBuilder(
            transaction_store,
            relation_store,
            settings=self._graph_settings,
            audit_logger=self._audit_logger,
        )
        self._analyzer = PatternAnalyzer(relation_store, settings=self._pattern_settings)
        self._recommender = RecommendationEngine(settings=self._pattern_settings)
        self._user_locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per user; the lock is dropped when this hits 0
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    def is_rebuilding(self, user_id: str) -> bool:
        lock = self._user_locks.get(user_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        lock = self._user_locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._user_locks[user_id]

    async def rebuild_graph(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> BuildResult:
        """
        Rebuild a user's relation graph from their transactions.

        Waits for any in-flight rebuild of the same user to finish first.
        The deadline covers the build itself, not the wait.

        Raises:
            FetchFailure: nothing was deleted; existing relations are intact
            PersistenceFailure: retry the whole rebuild
            BuildTimeout: retry the whole rebuild
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._user_lock(user_id):
            await self._audit_logger.log_rebuild_started(user_id, correlation_id)
            try:
                result = await asyncio.wait_for(
                    self._builder.rebuild(user_id, correlation_id),
                    timeout=self._graph_settings.build_timeout_seconds,
                )
            except asyncio.TimeoutError:
                message = (
                    f"Rebuild for {user_id} exceeded "
                    f"{self._graph_settings.build_timeout_seconds}s"
                )
                await self._audit_logger.log_rebuild_failed(
                    user_id, "timeout", message, correlation_id
                )
                raise BuildTimeout(message)
            except FetchFailure as e:
                await self._audit_logger.log_rebuild_failed(
                    user_id, "fetch", str(e), correlation_id
                )
                raise
            except PersistenceFailure as e:
                if e.result is not None and e.result.is_partial:
                    await self._log_partial(e.result, correlation_id)
                else:
                    await self._audit_logger.log_rebuild_failed(
                        user_id, "delete", str(e), correlation_id
                    )
                raise

        if result.is_partial:
            await self._log_partial(result, correlation_id)
        else:
            await self._audit_logger.log_rebuild_completed(
                user_id,
                result.relation_count,
                result.transactions_skipped,
                correlation_id,
            )
        return result

    async def _log_partial(self, result: BuildResult, correlation_id: UUID) -> None:
        await self._audit_logger.log_rebuild_partial(
            result.user_id,
            result.relation_count,
            result.expected_count,
            result.failed_batches,
            correlation_id,
        )

    async def analyze_patterns(self, user_id: str) -> PatternAnalysis:
        """Pattern statistics, sequential patterns and insights; empty if unreadable."""
        try:
            return await self._analyzer.analyze(user_id)
        except AnalysisReadFailure as e:
            await self._audit_logger.log_analysis_degraded(
                user_id, "analyze_patterns", str(e)
            )
            return PatternAnalysis()

    async def get_recommendations(self, user_id: str) -> RecommendationReport:
        """Recommendations with the insights and patterns behind them; empty if unreadable."""
        try:
            analysis = await self._analyzer.analyze(user_id)
        except AnalysisReadFailure as e:
            await self._audit_logger.log_analysis_degraded(
                user_id, "get_recommendations", str(e)
            )
            return RecommendationReport()

        return RecommendationReport(
            recommendations=self._recommender.recommend(analysis),
            insights=analysis.insights,
            patterns=analysis.patterns,
        )


def create_graph_service(
    use_storage: bool = True,
) -> tuple[GraphService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create the graph service.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run against in-memory stores.

    Returns:
        (graph_service, sheets_client)
    """
    configure_logging(get_settings().app.log_level)

    sheets_client = None
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            transaction_store = GoogleSheetsTransactionStore(sheets_client)
            relation_store = GoogleSheetsRelationStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    if sheets_client is None:
        transaction_store = InMemoryTransactionStore()
        relation_store = InMemoryRelationStore()
        audit_logger = AuditLogger()  # Local-only logging

    service = GraphService(
        transaction_store,
        relation_store,
        audit_logger=audit_logger,
    )
    return service, sheets_client
