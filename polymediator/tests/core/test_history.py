"""Tests for history filtering, aggregation and the in-memory history store."""

from datetime import UTC, datetime, timedelta

import pytest

from polymediator.core.history import InMemoryHistoryStore, aggregate_stats, filter_records
from polymediator.core.models import (
    Dialect,
    ExecutionMetrics,
    ExecutionOutcome,
    ExecutionRecord,
    HistoryFilter,
    PerformanceProfile,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def make_record(
    index: int,
    store: str = "postgres",
    query_text: str = "SELECT * FROM accounts",
    execution_time_ms: float = 10.0,
    success: bool = True,
    age_seconds: float = 0.0,
) -> ExecutionRecord:
    return ExecutionRecord(
        id=f"rec-{index}",
        signature="q_0123456789abcdef",
        query_text=query_text,
        store=store,
        dialect=Dialect.RELATIONAL,
        metrics=ExecutionMetrics(
            execution_time_ms=execution_time_ms,
            latency_ms=execution_time_ms * 0.3,
            cpu_time_ms=1.0,
            memory_used_bytes=0,
        ),
        outcome=ExecutionOutcome(success=success, row_count=1 if success else 0),
        timestamp=NOW - timedelta(seconds=age_seconds),
    )


@pytest.fixture
def records() -> list[ExecutionRecord]:
    return [
        make_record(0, "postgres", "SELECT * FROM accounts", 10.0, age_seconds=300),
        make_record(1, "mongo", "db.accounts.find({})", 20.0, age_seconds=200),
        make_record(2, "postgres", "SELECT * FROM customers", 30.0, success=False, age_seconds=100),
        make_record(3, "kv", "GET account:ACC001", 1.0, age_seconds=10),
    ]


# ============================================================================
# filter_records
# ============================================================================


def test_filter_returns_newest_first(records: list[ExecutionRecord]) -> None:
    assert [r.id for r in filter_records(records, now=NOW)] == ["rec-3", "rec-2", "rec-1", "rec-0"]


def test_filter_by_query_text_is_case_insensitive(records: list[ExecutionRecord]) -> None:
    matched = filter_records(records, HistoryFilter(query_text="ACCOUNTS"), now=NOW)
    assert [r.id for r in matched] == ["rec-1", "rec-0"]


def test_filter_by_store(records: list[ExecutionRecord]) -> None:
    matched = filter_records(records, HistoryFilter(store="postgres"), now=NOW)
    assert [r.id for r in matched] == ["rec-2", "rec-0"]


def test_filter_by_recency(records: list[ExecutionRecord]) -> None:
    matched = filter_records(records, HistoryFilter(within_seconds=150), now=NOW)
    assert [r.id for r in matched] == ["rec-3", "rec-2"]


def test_filter_limit_applies_after_ordering(records: list[ExecutionRecord]) -> None:
    matched = filter_records(records, HistoryFilter(limit=1), now=NOW)
    assert [r.id for r in matched] == ["rec-3"]


def test_filter_keeps_insertion_order_for_equal_timestamps() -> None:
    same_time = [make_record(i) for i in range(3)]
    assert [r.id for r in filter_records(same_time, now=NOW)] == ["rec-2", "rec-1", "rec-0"]


def test_history_filter_validation() -> None:
    with pytest.raises(ValueError):
        HistoryFilter(limit=0)
    with pytest.raises(ValueError):
        HistoryFilter(within_seconds=-1)


# ============================================================================
# aggregate_stats
# ============================================================================


def test_aggregate_stats_per_store(records: list[ExecutionRecord]) -> None:
    stats = aggregate_stats(records)

    assert stats.total_queries == 4
    assert list(stats.stores) == ["kv", "mongo", "postgres"]
    postgres = stats.stores["postgres"]
    assert postgres.count == 2
    assert postgres.avg_execution_time_ms == 20.0
    assert postgres.min_execution_time_ms == 10.0
    assert postgres.max_execution_time_ms == 30.0
    assert postgres.success_rate == 50.0


def test_aggregate_stats_for_one_store(records: list[ExecutionRecord]) -> None:
    stats = aggregate_stats(records, store="mongo")
    assert stats.total_queries == 1
    assert list(stats.stores) == ["mongo"]


def test_aggregate_stats_rounds_success_rate() -> None:
    rows = [make_record(0), make_record(1), make_record(2, success=False)]
    assert aggregate_stats(rows).stores["postgres"].success_rate == 66.67


def test_aggregate_stats_empty() -> None:
    stats = aggregate_stats([])
    assert stats.total_queries == 0
    assert stats.stores == {}


# ============================================================================
# InMemoryHistoryStore
# ============================================================================


@pytest.mark.asyncio
async def test_in_memory_store_trims_oldest() -> None:
    store = InMemoryHistoryStore(max_records=3)
    for i in range(5):
        await store.append(make_record(i, age_seconds=100 - i))

    assert [r.id for r in await store.query()] == ["rec-4", "rec-3", "rec-2"]


@pytest.mark.asyncio
async def test_in_memory_store_profiles_are_copies() -> None:
    store = InMemoryHistoryStore()
    profile = PerformanceProfile(signature="q_1", store="postgres")
    profile.add_sample(make_record(0).metrics, NOW)
    await store.save_profile(profile)

    profile.add_sample(make_record(1).metrics, NOW)

    (loaded,) = await store.load_profiles()
    assert loaded.sample_count == 1


@pytest.mark.asyncio
async def test_in_memory_store_clear() -> None:
    store = InMemoryHistoryStore()
    await store.append(make_record(0))
    await store.save_profile(PerformanceProfile(signature="q_1", store="postgres"))

    await store.clear()

    assert await store.query() == []
    assert await store.load_profiles() == []
    assert (await store.stats()).total_queries == 0


def test_in_memory_store_rejects_bad_capacity() -> None:
    with pytest.raises(ValueError):
        InMemoryHistoryStore(max_records=0)
