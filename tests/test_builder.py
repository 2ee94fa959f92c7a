"""
Tests for the graph builder.

Edge construction is tested directly on Transaction lists; rebuild
behaviour (fetch, delete, batched insert, failure handling) runs against
the in-memory stores.
"""

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, USER_ID, at, make_row, make_tx
from txgraph.errors import FetchFailure, PersistenceFailure
from txgraph.graph import GraphBuilder, adjacency_strength
from txgraph.graph.builder import months_before, sample_evenly
from txgraph.models.graph import EntityType, Relation, RelationType
from txgraph.services.storage import StorageError


SAME_DAY_FAMILY = {RelationType.SAME_DAY, RelationType.SAME_DAY_SAME_CATEGORY}


def of_type(relations, relation_type):
    return [r for r in relations if r.relation_type == relation_type]


def edge(relations, relation_type, source, target):
    matches = [
        r for r in relations
        if r.relation_type == relation_type
        and r.source.entity_id == source
        and r.target.entity_id == target
    ]
    assert len(matches) == 1, f"expected one {relation_type.value} {source}->{target}"
    return matches[0]


def stored_identities(relation_store) -> Counter:
    records = asyncio.run(relation_store.list_for_user(USER_ID))
    return Counter(Relation.from_record(r).identity() for r in records)


class TestAdjacencyDecay:
    """Tests for the followed_by strength law."""

    def test_zero_gap_is_full_strength(self):
        assert adjacency_strength(0, 24, 0.3) == 1.0

    def test_gap_equal_to_window_hits_floor(self):
        assert adjacency_strength(24, 24, 0.3) == pytest.approx(0.3)

    def test_linear_decay_inside_window(self):
        assert adjacency_strength(6, 24, 0.3) == pytest.approx(0.75)

    def test_floor_applies_before_window_end(self):
        """1 - 20/24 is below the floor, so the floor wins."""
        assert adjacency_strength(20, 24, 0.3) == pytest.approx(0.3)

    def test_gap_beyond_window_emits_nothing(self, builder):
        transactions = [make_tx("t1", at(1, 8)), make_tx("t2", at(2, 9))]
        assert builder.adjacency_edges(USER_ID, transactions) == []

    def test_gap_exactly_window_emits_floor_edge(self, builder):
        transactions = [make_tx("t1", at(1, 8)), make_tx("t2", at(2, 8))]
        relations = builder.adjacency_edges(USER_ID, transactions)
        assert len(relations) == 1
        assert relations[0].strength == pytest.approx(0.3)
        assert relations[0].metadata["elapsed_hours"] == 24.0


class TestStructuralEdges:
    """Tests for belongs_to and from_account edges."""

    def test_category_and_account_edges(self, builder):
        relations = builder.structural_edges(
            USER_ID,
            [make_tx("t1", at(1, 8), category_id="food", account_id="cash")],
        )
        belongs = edge(relations, RelationType.BELONGS_TO, "t1", "food")
        from_account = edge(relations, RelationType.FROM_ACCOUNT, "t1", "cash")

        assert belongs.target.entity_type == EntityType.CATEGORY
        assert from_account.target.entity_type == EntityType.ACCOUNT
        assert belongs.strength == 1.0
        assert from_account.strength == 1.0

    def test_missing_refs_emit_nothing(self, builder):
        relations = builder.structural_edges(USER_ID, [make_tx("t1", at(1, 8))])
        assert relations == []


class TestSameDayEdges:
    """Tests for pairwise same-day co-occurrence edges."""

    @pytest.mark.parametrize("k", [0, 1, 2, 5])
    def test_pair_count(self, builder, k):
        """A bucket of k transactions yields k*(k-1)/2 edges."""
        transactions = [make_tx(f"t{i}", at(10, 8 + i)) for i in range(k)]
        relations, truncated = builder.same_day_edges(USER_ID, transactions)

        assert len(relations) == k * (k - 1) // 2
        assert all(r.relation_type in SAME_DAY_FAMILY for r in relations)
        assert truncated == []

    def test_shared_category_uses_category_edge(self, builder):
        transactions = [
            make_tx("t1", at(10, 8), category_id="food"),
            make_tx("t2", at(10, 9), category_id="food"),
        ]
        relations, _ = builder.same_day_edges(USER_ID, transactions)

        assert len(relations) == 1
        assert relations[0].relation_type == RelationType.SAME_DAY_SAME_CATEGORY
        assert relations[0].strength == pytest.approx(0.8)

    def test_missing_categories_are_not_shared(self, builder):
        transactions = [make_tx("t1", at(10, 8)), make_tx("t2", at(10, 9))]
        relations, _ = builder.same_day_edges(USER_ID, transactions)

        assert relations[0].relation_type == RelationType.SAME_DAY
        assert relations[0].strength == pytest.approx(0.5)

    def test_edges_point_earlier_to_later(self, builder):
        transactions = [make_tx("a", at(10, 8)), make_tx("b", at(10, 9))]
        relations, _ = builder.same_day_edges(USER_ID, transactions)

        assert relations[0].source.entity_id == "a"
        assert relations[0].target.entity_id == "b"
        assert relations[0].metadata == {"day": "2024-06-10"}

    def test_different_days_do_not_pair(self, builder):
        transactions = [make_tx("t1", at(10, 23)), make_tx("t2", at(11, 1))]
        relations, _ = builder.same_day_edges(USER_ID, transactions)
        assert relations == []

    def test_reference_timezone_decides_the_day(self, transaction_store, relation_store, graph_settings):
        """20:00 and 22:00 UTC fall on different days in Moscow (UTC+3)."""
        transactions = [make_tx("t1", at(10, 20)), make_tx("t2", at(10, 22))]

        utc_builder = GraphBuilder(transaction_store, relation_store, settings=graph_settings)
        moscow_builder = GraphBuilder(
            transaction_store,
            relation_store,
            settings=graph_settings.model_copy(update={"reference_timezone": "Europe/Moscow"}),
        )

        assert len(utc_builder.same_day_edges(USER_ID, transactions)[0]) == 1
        assert moscow_builder.same_day_edges(USER_ID, transactions)[0] == []


class TestBucketCap:
    """Tests for the per-day bucket cap."""

    def _crowded_day(self, size=25):
        start = at(12, 6)
        return [make_tx(f"t{i:02d}", start + timedelta(minutes=20 * i)) for i in range(size)]

    def test_sampled_bucket_is_bounded(self, transaction_store, relation_store, graph_settings):
        settings = graph_settings.model_copy(update={"day_bucket_cap": 10})
        builder = GraphBuilder(transaction_store, relation_store, settings=settings)

        relations, truncated = builder.same_day_edges(USER_ID, self._crowded_day())

        assert len(relations) <= 10 * 9 // 2
        assert len(relations) == 45
        assert all(r.metadata.get("sampled") is True for r in relations)
        assert [d.isoformat() for d in truncated] == ["2024-06-12"]

    def test_skipped_bucket_emits_no_same_day_edges(self, transaction_store, relation_store, graph_settings):
        settings = graph_settings.model_copy(
            update={"day_bucket_cap": 10, "bucket_overflow": "skip"}
        )
        builder = GraphBuilder(transaction_store, relation_store, settings=settings)

        relations, truncated = builder.same_day_edges(USER_ID, self._crowded_day())

        assert relations == []
        assert len(truncated) == 1

    def test_bucket_at_cap_is_fully_enumerated(self, transaction_store, relation_store, graph_settings):
        settings = graph_settings.model_copy(update={"day_bucket_cap": 10})
        builder = GraphBuilder(transaction_store, relation_store, settings=settings)

        relations, truncated = builder.same_day_edges(USER_ID, self._crowded_day(10))

        assert len(relations) == 45
        assert truncated == []

    def test_sample_evenly_keeps_ends_and_order(self):
        items = list(range(25))
        sample = sample_evenly(items, 10)

        assert len(sample) == 10
        assert sample[0] == 0
        assert sample[-1] == 24
        assert sample == sorted(set(sample))


class TestScenarioMixedDay:
    """One day, three transactions: 09:00 (A), 09:30 (A), 20:00 (B)."""

    def test_expected_relations(self, builder):
        transactions = [
            make_tx("t1", at(3, 9, 0), category_id="A"),
            make_tx("t2", at(3, 9, 30), category_id="A"),
            make_tx("t3", at(3, 20, 0), category_id="B"),
        ]
        relations, _ = builder.build_relations(USER_ID, transactions)

        assert edge(relations, RelationType.FOLLOWED_BY, "t1", "t2").strength == pytest.approx(
            1 - 0.5 / 24
        )
        assert edge(relations, RelationType.FOLLOWED_BY, "t2", "t3").strength == pytest.approx(
            1 - 10.5 / 24
        )
        assert edge(relations, RelationType.SAME_DAY_SAME_CATEGORY, "t1", "t2").strength == 0.8
        assert edge(relations, RelationType.SAME_DAY, "t1", "t3").strength == 0.5
        assert edge(relations, RelationType.SAME_DAY, "t2", "t3").strength == 0.5

        belongs = of_type(relations, RelationType.BELONGS_TO)
        assert {(r.source.entity_id, r.target.entity_id) for r in belongs} == {
            ("t1", "A"), ("t2", "A"), ("t3", "B"),
        }
        assert len(relations) == 8

    def test_strengths_within_bounds(self, builder):
        transactions = [
            make_tx(f"t{i}", at(1 + i // 4, (i * 5) % 24), category_id=f"c{i % 3}", account_id="acc")
            for i in range(40)
        ]
        relations, _ = builder.build_relations(USER_ID, sorted(transactions, key=lambda t: t.occurred_at))
        assert relations
        assert all(0.0 <= r.strength <= 1.0 for r in relations)


class TestRebuild:
    """Tests for the full fetch -> build -> delete -> insert run."""

    def _seed_day(self, transaction_store, count=5):
        transaction_store.add(
            USER_ID,
            [make_row(f"t{i}", at(10, 8 + i)) for i in range(count)],
        )

    def test_rebuild_writes_all_relations(self, builder, transaction_store, relation_store):
        self._seed_day(transaction_store)

        result = asyncio.run(builder.rebuild(USER_ID))

        # 4 followed_by + 10 same_day
        assert result.relation_count == 14
        assert result.expected_count == 14
        assert result.transactions_seen == 5
        assert not result.is_partial
        assert sum(stored_identities(relation_store).values()) == 14

    def test_rebuild_is_idempotent(self, builder, transaction_store, relation_store):
        self._seed_day(transaction_store)

        asyncio.run(builder.rebuild(USER_ID))
        first = stored_identities(relation_store)
        second_result = asyncio.run(builder.rebuild(USER_ID))
        second = stored_identities(relation_store)

        assert first == second
        assert second_result.deleted_count == 14

    def test_rebuild_replaces_previous_set(self, builder, transaction_store, relation_store):
        relation_store.seed([{
            "owner_user_id": USER_ID,
            "entity_type": "transaction",
            "entity_id": "stale",
            "related_type": "category",
            "related_id": "old",
            "relation_type": "belongs_to",
            "strength": 1.0,
            "metadata": {},
        }])
        self._seed_day(transaction_store, count=2)

        asyncio.run(builder.rebuild(USER_ID))

        records = asyncio.run(relation_store.list_for_user(USER_ID))
        assert all(r["entity_id"] != "stale" for r in records)

    def test_rebuild_leaves_other_users_alone(self, builder, transaction_store, relation_store):
        relation_store.seed([{
            "owner_user_id": "someone-else",
            "entity_type": "transaction",
            "entity_id": "x",
            "related_type": "category",
            "related_id": "y",
            "relation_type": "belongs_to",
            "strength": 1.0,
            "metadata": {},
        }])
        self._seed_day(transaction_store, count=2)

        asyncio.run(builder.rebuild(USER_ID))

        assert len(asyncio.run(relation_store.list_for_user("someone-else"))) == 1

    def test_rebuild_sorts_out_of_order_rows(self, builder, transaction_store, relation_store):
        transaction_store.add(USER_ID, [
            make_row("late", at(10, 12)),
            make_row("early", at(10, 8)),
        ])

        asyncio.run(builder.rebuild(USER_ID))

        relations = [
            Relation.from_record(r)
            for r in asyncio.run(relation_store.list_for_user(USER_ID))
        ]
        followed = of_type(relations, RelationType.FOLLOWED_BY)
        assert len(followed) == 1
        assert followed[0].source.entity_id == "early"
        assert followed[0].target.entity_id == "late"

    def test_fetch_failure_never_deletes(self, builder, transaction_store, relation_store):
        """A failed read must not destroy the existing relation set."""
        relation_store.seed([{
            "owner_user_id": USER_ID,
            "entity_type": "transaction",
            "entity_id": "t1",
            "related_type": "category",
            "related_id": "food",
            "relation_type": "belongs_to",
            "strength": 1.0,
            "metadata": {},
        }])
        transaction_store.fail_with = StorageError("database unavailable")

        with pytest.raises(FetchFailure):
            asyncio.run(builder.rebuild(USER_ID))

        assert relation_store.delete_calls == 0
        assert relation_store.insert_calls == 0
        assert len(asyncio.run(relation_store.list_for_user(USER_ID))) == 1

    def test_delete_failure_raises_and_inserts_nothing(self, builder, transaction_store, relation_store):
        self._seed_day(transaction_store)
        relation_store.fail_delete = True

        with pytest.raises(PersistenceFailure):
            asyncio.run(builder.rebuild(USER_ID))

        assert relation_store.insert_calls == 0

    def test_failed_batch_reports_partial_count(self, transaction_store, relation_store, graph_settings):
        settings = graph_settings.model_copy(update={"batch_size": 4})
        builder = GraphBuilder(transaction_store, relation_store, settings=settings, clock=lambda: NOW)
        self._seed_day(transaction_store)
        relation_store.fail_insert_calls = {2}

        result = asyncio.run(builder.rebuild(USER_ID))

        assert result.expected_count == 14
        assert result.relation_count == 10
        assert result.failed_batches == 1
        assert result.is_partial
        # Batches committed before and after the failure stay in place
        assert relation_store.insert_calls == 4
        assert sum(stored_identities(relation_store).values()) == 10

    def test_failed_batch_is_retried(self, transaction_store, relation_store, graph_settings):
        settings = graph_settings.model_copy(update={"batch_size": 4, "batch_retry_attempts": 2})
        builder = GraphBuilder(transaction_store, relation_store, settings=settings, clock=lambda: NOW)
        self._seed_day(transaction_store)
        relation_store.fail_insert_calls = {1}

        result = asyncio.run(builder.rebuild(USER_ID))

        assert result.relation_count == 14
        assert result.failed_batches == 0
        assert relation_store.insert_calls == 5

    def test_raise_on_partial(self, transaction_store, relation_store, graph_settings):
        settings = graph_settings.model_copy(update={"batch_size": 4, "raise_on_partial": True})
        builder = GraphBuilder(transaction_store, relation_store, settings=settings, clock=lambda: NOW)
        self._seed_day(transaction_store)
        relation_store.fail_insert_calls = {1}

        with pytest.raises(PersistenceFailure) as exc_info:
            asyncio.run(builder.rebuild(USER_ID))

        assert exc_info.value.result is not None
        assert exc_info.value.result.relation_count == 10

    def test_malformed_rows_are_skipped(self, builder, transaction_store):
        good = [make_row("g1", at(10, 8)), make_row("g2", at(10, 9))]
        bad = [
            {**make_row("bad1", at(10, 10)), "occurred_at": ""},
            {**make_row("bad2", at(10, 10)), "occurred_at": "not-a-date"},
            {**make_row("bad3", at(10, 10)), "amount": "abc"},
            make_row("foreign", at(10, 10), user_id="other-user"),
            make_row("g1", at(10, 11)),
            {k: v for k, v in make_row("noid", at(10, 10)).items() if k != "id"},
        ]
        transaction_store.add(USER_ID, good + bad)

        result = asyncio.run(builder.rebuild(USER_ID))

        assert result.transactions_seen == 8
        assert result.transactions_skipped == 6
        # g1 -> g2 followed_by + same_day
        assert result.relation_count == 2

    def test_history_window(self, builder, transaction_store):
        transaction_store.add(USER_ID, [
            make_row("old", datetime(2023, 11, 1, tzinfo=timezone.utc)),
            make_row("new", at(10, 8)),
        ])

        result = asyncio.run(builder.rebuild(USER_ID))

        assert transaction_store.calls == [
            (USER_ID, datetime(2023, 12, 30, 12, 0, tzinfo=timezone.utc))
        ]
        assert result.transactions_seen == 1

    def test_empty_history_clears_graph(self, builder, relation_store):
        relation_store.seed([{
            "owner_user_id": USER_ID,
            "entity_type": "transaction",
            "entity_id": "t1",
            "related_type": "category",
            "related_id": "food",
            "relation_type": "belongs_to",
            "strength": 1.0,
            "metadata": {},
        }])

        result = asyncio.run(builder.rebuild(USER_ID))

        assert result.relation_count == 0
        assert result.deleted_count == 1
        assert relation_store.insert_calls == 0


class TestMonthsBefore:
    """Tests for the history window arithmetic."""

    def test_clamps_to_month_end(self):
        moment = datetime(2024, 3, 31, 10, tzinfo=timezone.utc)
        assert months_before(moment, 1) == datetime(2024, 2, 29, 10, tzinfo=timezone.utc)

    def test_crosses_year_boundary(self):
        moment = datetime(2024, 2, 15, tzinfo=timezone.utc)
        assert months_before(moment, 6) == datetime(2023, 8, 15, tzinfo=timezone.utc)
