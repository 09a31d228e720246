"""Tests for MediatorService using fake stores and a fake history store."""

import asyncio

import pytest

from polymediator.core.errors import UnknownStoreError
from polymediator.core.history import InMemoryHistoryStore
from polymediator.core.locator import DataLocator
from polymediator.core.mediator import RECENT_SAMPLES, MediatorService
from polymediator.core.models import Dialect, HistoryFilter, SelectionState
from polymediator.core.performance import PerformanceModel
from polymediator.core.recorder import MetricsRecorder
from polymediator.core.registry import StoreRegistry
from polymediator.core.selection import SelectionPolicy
from polymediator.core.signature import QuerySignature
from polymediator.tests.fakes import FakeHistoryStorePort, FakeStorePort

RELATIONAL_QUERY = "SELECT * FROM accounts WHERE balance > 5000"
TRANSLATED_QUERY = 'db.accounts.find({"balance": {"$gt": 5000}})'


def build(
    stores: list[FakeStorePort],
    history: FakeHistoryStorePort | None = None,
    translate_relational: bool = True,
    execute_timeout: float = 5.0,
    defaults: dict[Dialect, str] | None = None,
) -> MediatorService:
    registry = StoreRegistry(stores, defaults=defaults)
    model = PerformanceModel(window_size=100, saturation_samples=50, priority=registry.priority_of)
    return MediatorService(
        registry=registry,
        history=history or FakeHistoryStorePort(),
        model=model,
        policy=SelectionPolicy(model, confidence_threshold=60.0),
        locator=DataLocator(probe_timeout=1.0),
        recorder=MetricsRecorder(),
        translate_relational=translate_relational,
        execute_timeout=execute_timeout,
    )


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def postgres() -> FakeStorePort:
    return FakeStorePort(
        "postgres", {Dialect.RELATIONAL}, rows=[{"id": "ACC001"}], present={"accounts"}
    )


@pytest.fixture
def mongo() -> FakeStorePort:
    return FakeStorePort(
        "mongo", {Dialect.DOCUMENT}, rows=[{"_id": "1"}], present={"accounts"}
    )


@pytest.fixture
def kv() -> FakeStorePort:
    return FakeStorePort(
        "kv", {Dialect.KEY_VALUE}, rows=[{"key": "account:ACC001", "value": 1}],
        present={"account:ACC001"},
    )


@pytest.fixture
def history() -> FakeHistoryStorePort:
    return FakeHistoryStorePort()


@pytest.fixture
def mediator(
    postgres: FakeStorePort,
    mongo: FakeStorePort,
    kv: FakeStorePort,
    history: FakeHistoryStorePort,
) -> MediatorService:
    return build([postgres, mongo, kv], history=history)


# ============================================================================
# Automatic routing
# ============================================================================


@pytest.mark.asyncio
async def test_single_compatible_store_routes_directly(
    postgres: FakeStorePort, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    mediator = build([postgres, mongo], history=history, translate_relational=False)

    result = await mediator.execute("SELECT * FROM accounts")

    assert result.store == "postgres"
    assert result.success is True
    assert result.data == ({"id": "ACC001"},)
    assert result.dialect == Dialect.RELATIONAL
    assert mongo.executed_queries == []
    assert mongo.has_data_calls == []
    assert len(history.append_calls) == 1
    assert history.append_calls[0].mode == "routed"

    signature = QuerySignature.of("SELECT * FROM accounts")
    assert mediator.model.profile(signature, "postgres").sample_count == 1


@pytest.mark.asyncio
async def test_cold_start_uses_priors(
    mediator: MediatorService, postgres: FakeStorePort, mongo: FakeStorePort
) -> None:
    result = await mediator.execute(RELATIONAL_QUERY)

    assert result.store == "postgres"
    assert result.data_locations == ("postgres", "mongo")
    assert result.decision.state == SelectionState.NO_HISTORY
    assert result.decision.scores == {"postgres": 0.85, "mongo": 0.75}
    assert postgres.executed_queries == [RELATIONAL_QUERY]
    assert mongo.executed_queries == []
    assert mongo.has_data_calls == ["accounts"]


@pytest.mark.asyncio
async def test_exploits_history_once_confident(
    mediator: MediatorService, postgres: FakeStorePort, mongo: FakeStorePort
) -> None:
    for _ in range(60):
        await mediator.execute(RELATIONAL_QUERY, target="mongo")

    result = await mediator.execute(RELATIONAL_QUERY)

    assert result.store == "mongo"
    assert result.decision.state == SelectionState.EXPLOITING
    assert result.decision.confidence == 100.0
    assert postgres.executed_queries == []
    assert mongo.executed_queries[-1] == TRANSLATED_QUERY


@pytest.mark.asyncio
async def test_explores_below_confidence_threshold(
    mediator: MediatorService, mongo: FakeStorePort
) -> None:
    for _ in range(5):
        await mediator.execute(RELATIONAL_QUERY, target="mongo")

    result = await mediator.execute(RELATIONAL_QUERY)

    assert result.decision.state == SelectionState.EXPLORING
    assert set(result.decision.scores) == {"postgres", "mongo"}
    # postgres has no samples and keeps its prior
    assert result.decision.scores["postgres"] == 0.85


@pytest.mark.asyncio
async def test_falls_back_to_default_when_nothing_located(
    postgres: FakeStorePort, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    postgres.present.clear()
    mongo.present.clear()
    mediator = build(
        [postgres, mongo], history=history, defaults={Dialect.RELATIONAL: "postgres"}
    )

    result = await mediator.execute(RELATIONAL_QUERY)

    assert result.store == "postgres"
    assert result.data_locations == ()
    assert "default" in result.decision.reason


@pytest.mark.asyncio
async def test_key_value_query_goes_to_key_value_store(
    mediator: MediatorService, kv: FakeStorePort, postgres: FakeStorePort
) -> None:
    result = await mediator.execute("GET account:ACC001")

    assert result.store == "kv"
    assert result.dialect == Dialect.KEY_VALUE
    assert kv.executed_queries == ["GET account:ACC001"]
    assert postgres.has_data_calls == []


# ============================================================================
# Forced targets
# ============================================================================


@pytest.mark.asyncio
async def test_forced_target_translates_relational_query(
    mediator: MediatorService, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    result = await mediator.execute(RELATIONAL_QUERY, target="mongo")

    assert result.store == "mongo"
    assert result.decision.state == SelectionState.FORCED_TARGET
    assert mongo.executed_queries == [TRANSLATED_QUERY]
    assert mongo.has_data_calls == []
    assert history.append_calls[0].mode == "forced"
    assert history.append_calls[0].query_text == RELATIONAL_QUERY


@pytest.mark.asyncio
async def test_unknown_target_contacts_no_store(
    mediator: MediatorService,
    postgres: FakeStorePort,
    mongo: FakeStorePort,
    kv: FakeStorePort,
    history: FakeHistoryStorePort,
) -> None:
    with pytest.raises(UnknownStoreError) as exc_info:
        await mediator.execute(RELATIONAL_QUERY, target="oracle")

    assert exc_info.value.store == "oracle"
    assert exc_info.value.known == ["kv", "mongo", "postgres"]
    for store in (postgres, mongo, kv):
        assert store.executed_queries == []
        assert store.has_data_calls == []
    assert history.append_calls == []


# ============================================================================
# Failure handling
# ============================================================================


@pytest.mark.asyncio
async def test_failed_execution_counts_failure_without_sample(
    mediator: MediatorService, postgres: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    postgres.set_error('relation "accounts" does not exist')

    result = await mediator.execute(RELATIONAL_QUERY, target="postgres")

    assert result.success is False
    assert result.error == 'relation "accounts" does not exist'
    profile = mediator.model.profile(QuerySignature.of(RELATIONAL_QUERY), "postgres")
    assert profile.failures == 1
    assert profile.sample_count == 0
    assert history.append_calls[0].outcome.success is False


@pytest.mark.asyncio
async def test_execute_timeout_reports_unavailable(
    postgres: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    postgres.execute_delay = 1.0
    mediator = build([postgres], history=history, execute_timeout=0.05)

    result = await mediator.execute(RELATIONAL_QUERY)

    assert result.success is False
    assert "unavailable" in result.error
    assert result.metrics.execution_time_ms == 0.0
    profile = mediator.model.profile(QuerySignature.of(RELATIONAL_QUERY), "postgres")
    assert profile.failures == 1


@pytest.mark.asyncio
async def test_degrades_to_in_memory_history(
    mediator: MediatorService, history: FakeHistoryStorePort
) -> None:
    history.set_error("disk I/O error")

    result = await mediator.execute(RELATIONAL_QUERY)

    assert result.success is True
    assert mediator.degraded is True
    assert isinstance(mediator.history_store, InMemoryHistoryStore)
    assert len(await mediator.history()) == 1
    assert (await mediator.stats()).total_queries == 1

    # Later requests keep working on the fallback
    await mediator.execute(RELATIONAL_QUERY)
    assert len(await mediator.history()) == 2

    await mediator.close()
    assert history.closed is True


@pytest.mark.asyncio
async def test_concurrent_writes_all_reach_fallback_history(
    postgres: FakeStorePort, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    history.append_delay = 0.01
    history.set_error("disk I/O error")
    mediator = build([postgres, mongo], history=history)

    results = await mediator.execute_all(RELATIONAL_QUERY)

    assert len(results) == 2
    assert mediator.degraded is True
    assert len(await mediator.history()) == 2
    assert mediator.model.sample_count(QuerySignature.of(RELATIONAL_QUERY)) == 2


@pytest.mark.asyncio
async def test_hydrate_loads_persisted_profiles(
    postgres: FakeStorePort, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    first = build([postgres, mongo], history=history)
    for _ in range(3):
        await first.execute(RELATIONAL_QUERY, target="postgres")

    second = build([postgres, mongo], history=history)
    loaded = await second.hydrate()

    assert loaded == 1
    profile = second.model.profile(QuerySignature.of(RELATIONAL_QUERY), "postgres")
    assert profile.sample_count == 3


# ============================================================================
# Compare mode
# ============================================================================


@pytest.mark.asyncio
async def test_execute_all_runs_every_compatible_store(
    mediator: MediatorService,
    postgres: FakeStorePort,
    mongo: FakeStorePort,
    kv: FakeStorePort,
    history: FakeHistoryStorePort,
) -> None:
    results = await mediator.execute_all(RELATIONAL_QUERY)

    assert list(results) == ["postgres", "mongo"]
    assert results["postgres"].translated_query is None
    assert results["mongo"].translated_query == TRANSLATED_QUERY
    assert kv.executed_queries == []
    assert {r.mode for r in history.append_calls} == {"compare"}
    assert len(history.append_calls) == 2

    signature = QuerySignature.of(RELATIONAL_QUERY)
    assert mediator.model.profile(signature, "postgres").sample_count == 1
    assert mediator.model.profile(signature, "mongo").sample_count == 1


@pytest.mark.asyncio
async def test_execute_all_isolates_store_failures(
    mediator: MediatorService, postgres: FakeStorePort, mongo: FakeStorePort
) -> None:
    mongo.raise_on_execute = RuntimeError("connection reset")

    results = await mediator.execute_all(RELATIONAL_QUERY)

    assert results["postgres"].success is True
    assert results["mongo"].success is False
    assert results["mongo"].error == "Store mongo failed: connection reset"


@pytest.mark.asyncio
async def test_execute_all_with_no_compatible_store(postgres: FakeStorePort) -> None:
    mediator = build([postgres])
    assert await mediator.execute_all("GET account:ACC001") == {}


@pytest.mark.asyncio
async def test_untranslatable_query_skips_document_store(
    mediator: MediatorService, mongo: FakeStorePort
) -> None:
    results = await mediator.execute_all("SELECT id FROM accounts")

    assert list(results) == ["postgres"]
    assert mongo.executed_queries == []


# ============================================================================
# Concurrent requests
# ============================================================================


@pytest.mark.asyncio
async def test_concurrent_forced_executions_are_all_recorded(
    mediator: MediatorService, history: FakeHistoryStorePort
) -> None:
    await asyncio.gather(
        *(mediator.execute(RELATIONAL_QUERY, target="postgres") for _ in range(20))
    )

    profile = mediator.model.profile(QuerySignature.of(RELATIONAL_QUERY), "postgres")
    assert profile.sample_count == 20
    assert len(history.append_calls) == 20
    assert len(history.saved_profiles) == 20


@pytest.mark.asyncio
async def test_compare_and_routed_requests_side_by_side(
    postgres: FakeStorePort, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    mediator = build([postgres, mongo], history=history)

    compared, routed = await asyncio.gather(
        mediator.execute_all(RELATIONAL_QUERY),
        mediator.execute(RELATIONAL_QUERY),
    )

    assert set(compared) == {"postgres", "mongo"}
    assert routed.success is True
    assert sorted(r.mode for r in history.append_calls) == ["compare", "compare", "routed"]
    assert mediator.model.sample_count(QuerySignature.of(RELATIONAL_QUERY)) == 3


@pytest.mark.asyncio
async def test_side_by_side_requests_survive_history_failure(
    postgres: FakeStorePort, mongo: FakeStorePort, history: FakeHistoryStorePort
) -> None:
    history.append_delay = 0.01
    history.set_error("database is locked")
    mediator = build([postgres, mongo], history=history)

    await asyncio.gather(
        mediator.execute_all(RELATIONAL_QUERY),
        mediator.execute(RELATIONAL_QUERY, target="postgres"),
    )

    assert mediator.degraded is True
    records = await mediator.history()
    assert sorted(r.mode for r in records) == ["compare", "compare", "forced"]


# ============================================================================
# Recommendations, history and analytics
# ============================================================================


@pytest.mark.asyncio
async def test_recommend_without_history(mediator: MediatorService) -> None:
    recommendation = await mediator.recommend(RELATIONAL_QUERY)

    assert recommendation.recommendation is None
    assert recommendation.confidence == 0.0
    assert recommendation.reason == "No historical data for this query pattern"


@pytest.mark.asyncio
async def test_recommend_contacts_no_store(
    mediator: MediatorService, postgres: FakeStorePort
) -> None:
    for _ in range(10):
        await mediator.execute(RELATIONAL_QUERY, target="postgres")
    postgres.reset()

    recommendation = await mediator.recommend(RELATIONAL_QUERY.lower())

    assert recommendation.recommendation == "postgres"
    assert recommendation.confidence == 20.0
    assert recommendation.reason == "Based on 10 historical executions"
    assert postgres.executed_queries == []
    assert postgres.has_data_calls == []


@pytest.mark.asyncio
async def test_history_filters_and_stats(mediator: MediatorService) -> None:
    await mediator.execute(RELATIONAL_QUERY, target="postgres")
    await mediator.execute("GET account:ACC001")

    records = await mediator.history()
    assert [r.store for r in records] == ["kv", "postgres"]

    only_kv = await mediator.history(HistoryFilter(store="kv"))
    assert [r.query_text for r in only_kv] == ["GET account:ACC001"]

    stats = await mediator.stats("postgres")
    assert stats.total_queries == 1
    assert stats.stores["postgres"].success_rate == 100.0


@pytest.mark.asyncio
async def test_clear_history_resets_model(
    mediator: MediatorService, history: FakeHistoryStorePort
) -> None:
    await mediator.execute(RELATIONAL_QUERY, target="postgres")

    await mediator.clear_history()

    assert history.clear_call_count == 1
    assert await mediator.history() == []
    assert mediator.model.sample_count(QuerySignature.of(RELATIONAL_QUERY)) == 0
    assert (await mediator.recommend(RELATIONAL_QUERY)).recommendation is None


@pytest.mark.asyncio
async def test_analytics_describes_profiles(mediator: MediatorService) -> None:
    await mediator.execute(RELATIONAL_QUERY, target="postgres")

    report = await mediator.analytics(RELATIONAL_QUERY)

    assert report["signature"] == QuerySignature.of(RELATIONAL_QUERY)
    assert report["normalized_query"] == RELATIONAL_QUERY.lower()
    assert report["dialect"] == "relational"
    assert report["state"] == SelectionState.EXPLORING.value
    assert report["profiles"]["postgres"]["sample_count"] == 1
    assert report["profiles"]["postgres"]["confidence"] == 2.0
    assert report["prediction"]["recommended_store"] == "postgres"


@pytest.mark.asyncio
async def test_analytics_by_signature_matches_query_text(mediator: MediatorService) -> None:
    await mediator.execute(RELATIONAL_QUERY, target="postgres")

    by_text = await mediator.analytics(RELATIONAL_QUERY)
    by_signature = await mediator.analytics(QuerySignature.of(RELATIONAL_QUERY))

    assert by_signature == by_text
    assert by_signature["normalized_query"] == RELATIONAL_QUERY.lower()


@pytest.mark.asyncio
async def test_analytics_reports_recent_samples(mediator: MediatorService) -> None:
    for _ in range(7):
        await mediator.execute(RELATIONAL_QUERY, target="postgres")

    report = await mediator.analytics(RELATIONAL_QUERY)

    postgres_report = report["profiles"]["postgres"]
    assert postgres_report["sample_count"] == 7
    assert len(postgres_report["recent_samples"]) == RECENT_SAMPLES
    profile = mediator.model.profile(QuerySignature.of(RELATIONAL_QUERY), "postgres")
    assert postgres_report["recent_samples"] == [
        m.to_dict() for m in list(profile.window)[-RECENT_SAMPLES:]
    ]
    assert postgres_report["recent_samples"][-1]["latency_estimated"] is True


@pytest.mark.asyncio
async def test_analytics_for_unknown_signature(
    mediator: MediatorService, postgres: FakeStorePort
) -> None:
    report = await mediator.analytics("q_0123456789abcdef")

    assert report["signature"] == "q_0123456789abcdef"
    assert report["normalized_query"] is None
    assert report["dialect"] is None
    assert report["state"] == SelectionState.NO_HISTORY.value
    assert report["profiles"] == {}
    assert report["prediction"] is None
    assert postgres.executed_queries == []


@pytest.mark.asyncio
async def test_close_closes_stores_and_history(
    mediator: MediatorService,
    postgres: FakeStorePort,
    kv: FakeStorePort,
    history: FakeHistoryStorePort,
) -> None:
    await mediator.close()

    assert history.closed is True
    assert postgres.closed is True
    assert kv.closed is True
