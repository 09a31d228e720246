"""In-memory history store and the filtering/aggregation shared by adapters.

InMemoryHistoryStore backs the `memory` history backend and is the
fallback the mediator switches to when durable persistence fails.
"""

import logging
from collections import deque
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from .models import (
    ExecutionRecord,
    HistoryFilter,
    HistoryStats,
    PerformanceProfile,
    StoreAggregate,
)
from .ports import HistoryStorePort

logger = logging.getLogger(__name__)


def filter_records(
    records: Iterable[ExecutionRecord],
    filters: HistoryFilter | None = None,
    now: datetime | None = None,
) -> list[ExecutionRecord]:
    """Apply a HistoryFilter and return matches newest first.

    Args:
        records: Records in insertion order, oldest first.
        filters: Filters to apply (optional).
        now: Reference time for the recency window. Defaults to the current time.
    """
    filters = filters or HistoryFilter()
    matched = list(records)

    if filters.query_text:
        needle = filters.query_text.lower()
        matched = [r for r in matched if needle in r.query_text.lower()]

    if filters.store:
        matched = [r for r in matched if r.store == filters.store]

    if filters.within_seconds is not None:
        cutoff = (now or datetime.now(UTC)) - timedelta(seconds=filters.within_seconds)
        matched = [r for r in matched if r.timestamp >= cutoff]

    # Reverse first so records sharing a timestamp stay newest-inserted first
    matched.reverse()
    matched.sort(key=lambda r: r.timestamp, reverse=True)

    if filters.limit is not None:
        matched = matched[: filters.limit]
    return matched


def aggregate_stats(
    records: Iterable[ExecutionRecord], store: str | None = None
) -> HistoryStats:
    """Per-store count, execution-time statistics and success rate."""
    selected = [r for r in records if store is None or r.store == store]

    by_store: dict[str, list[ExecutionRecord]] = {}
    for record in selected:
        by_store.setdefault(record.store, []).append(record)

    aggregates = {}
    for name, store_records in sorted(by_store.items()):
        times = [r.metrics.execution_time_ms for r in store_records]
        successes = sum(1 for r in store_records if r.outcome.success)
        aggregates[name] = StoreAggregate(
            count=len(store_records),
            avg_execution_time_ms=sum(times) / len(times),
            min_execution_time_ms=min(times),
            max_execution_time_ms=max(times),
            success_rate=round(successes / len(store_records) * 100, 2),
        )

    return HistoryStats(total_queries=len(selected), stores=aggregates)


class InMemoryHistoryStore(HistoryStorePort):
    """Process-local history. Nothing survives a restart."""

    def __init__(self, max_records: int = 1000):
        if max_records < 1:
            raise ValueError(f"max_records must be >= 1, got {max_records}")
        self.max_records = max_records
        self._records: deque[ExecutionRecord] = deque(maxlen=max_records)
        self._profiles: dict[tuple[str, str], dict] = {}

    async def append(self, record: ExecutionRecord) -> None:
        self._records.append(record)

    async def query(self, filters: HistoryFilter | None = None) -> list[ExecutionRecord]:
        return filter_records(self._records, filters)

    async def stats(
        self, store: str | None = None, filters: HistoryFilter | None = None
    ) -> HistoryStats:
        records = filter_records(self._records, filters) if filters else self._records
        return aggregate_stats(records, store)

    async def clear(self) -> None:
        self._records.clear()
        self._profiles.clear()
        logger.info("Cleared in-memory history")

    async def save_profile(self, profile: PerformanceProfile) -> None:
        # Stored as documents so later mutation of the live profile is not shared
        self._profiles[(profile.signature, profile.store)] = profile.to_dict()

    async def load_profiles(self) -> list[PerformanceProfile]:
        return [PerformanceProfile.from_dict(doc) for doc in self._profiles.values()]
