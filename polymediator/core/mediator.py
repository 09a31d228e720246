"""Query mediation service.

This module implements the request pipeline: classify the query, translate
it per target where supported, probe which stores hold the data, select a
store, execute through the metrics recorder, then record the execution in
the history store and the performance model.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from .classifier import classify
from .errors import PersistenceError
from .history import InMemoryHistoryStore
from .locator import DataLocator
from .models import (
    Dialect,
    ExecutionMode,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionResult,
    HistoryFilter,
    HistoryStats,
    Measurement,
    Recommendation,
    StoreExecution,
)
from .performance import PerformanceModel
from .ports import HistoryStorePort, MediatorPort, StorePort
from .recorder import MetricsRecorder
from .registry import StoreRegistry
from .selection import SelectionPolicy
from .signature import QuerySignature
from .translator import translate

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Window entries reported per profile by analytics()
RECENT_SAMPLES = 5


class MediatorService(MediatorPort):
    """Routes queries to stores and learns from every execution.

    This service orchestrates:
    - Dialect classification and relational to document translation
    - Data-location probing and store selection
    - Measured execution on the chosen store(s)
    - Recording each execution once in history and in the performance model

    If the history store raises PersistenceError the service logs it once
    and carries on with an in-memory history (degraded mode).
    """

    def __init__(
        self,
        registry: StoreRegistry,
        history: HistoryStorePort,
        model: PerformanceModel,
        policy: SelectionPolicy,
        locator: DataLocator,
        recorder: MetricsRecorder,
        translate_relational: bool = True,
        execute_timeout: float = 10.0,
        fallback_max_records: int = 1000,
    ):
        self.registry = registry
        self.history_store = history
        self.model = model
        self.policy = policy
        self.locator = locator
        self.recorder = recorder
        self.translate_relational = translate_relational
        self.execute_timeout = execute_timeout
        self.fallback_max_records = fallback_max_records
        self._degraded = False
        self._failed_history: HistoryStorePort | None = None

    @property
    def degraded(self) -> bool:
        """True once the durable history failed and the in-memory fallback took over."""
        return self._degraded

    # ------------------------------------------------------------------
    # Persistence with degradation
    # ------------------------------------------------------------------

    def _degrade(self, error: Exception) -> None:
        if self._degraded:
            return
        logger.warning(
            f"History persistence failed, continuing with in-memory history: {error}",
            exc_info=True,
        )
        self._failed_history = self.history_store
        self.history_store = InMemoryHistoryStore(max_records=self.fallback_max_records)
        self._degraded = True

    async def _persist(self, operation: Callable[[HistoryStorePort], Awaitable[T]]) -> T:
        history = self.history_store
        try:
            return await operation(history)
        except PersistenceError as e:
            # A concurrent call may already have switched to the fallback
            if history is self.history_store:
                if self._degraded:
                    raise
                self._degrade(e)
            return await operation(self.history_store)

    async def hydrate(self) -> int:
        """Load persisted profiles into the performance model.

        Returns:
            Number of profiles loaded.
        """
        profiles = await self._persist(lambda h: h.load_profiles())
        return self.model.load(profiles)

    # ------------------------------------------------------------------
    # Routing helpers
    # ------------------------------------------------------------------

    def _query_for(self, store: StorePort, query_text: str, dialect: Dialect) -> str | None:
        """Query text a store would receive, or None if it cannot serve the query."""
        if store.descriptor.serves(dialect):
            return query_text
        if (
            self.translate_relational
            and dialect == Dialect.RELATIONAL
            and store.descriptor.serves(Dialect.DOCUMENT)
        ):
            translated = translate(query_text, Dialect.RELATIONAL, Dialect.DOCUMENT)
            # Untranslatable statements would only fail on the document store
            if translated != query_text:
                return translated
        return None

    def _compatible_queries(self, query_text: str, dialect: Dialect) -> dict[str, str]:
        """Per compatible store, the query text it would receive. Priority order."""
        queries: dict[str, str] = {}
        for store in self.registry.all():
            query = self._query_for(store, query_text, dialect)
            if query is not None:
                queries[store.name] = query
        return queries

    async def _run(self, store: StorePort, query: str) -> Measurement:
        return await self.recorder.measure(
            store.name,
            lambda: store.execute_query(query),
            timeout=self.execute_timeout,
        )

    async def _record(
        self,
        signature: str,
        query_text: str,
        dialect: Dialect,
        measurement: Measurement,
        mode: ExecutionMode,
    ) -> ExecutionRecord:
        """Append one execution to history and fold it into the model."""
        record = ExecutionRecord(
            id=str(uuid.uuid4()),
            signature=signature,
            query_text=query_text,
            store=measurement.store,
            dialect=dialect,
            metrics=measurement.metrics,
            outcome=ExecutionOutcome(
                success=measurement.success,
                row_count=measurement.result.row_count,
                error=measurement.result.error,
            ),
            timestamp=datetime.now(UTC),
            mode=mode,
        )

        await self._persist(lambda h: h.append(record))
        profile = await self.model.observe(record)
        await self._persist(lambda h: h.save_profile(profile))

        if not measurement.success:
            logger.warning(
                f"Execution on {measurement.store} failed: {measurement.result.error}",
                extra={"signature": signature, "mode": mode},
            )
        return record

    # ------------------------------------------------------------------
    # MediatorPort
    # ------------------------------------------------------------------

    async def recommend(self, query_text: str) -> Recommendation:
        """Recommend a store from history alone. No store is contacted."""
        signature = QuerySignature.of(query_text)
        prediction = self.model.predict(signature, self.registry.names())

        if prediction is None:
            return Recommendation(
                recommendation=None,
                confidence=0.0,
                reason="No historical data for this query pattern",
            )

        profile = self.model.profile(signature, prediction.recommended_store)
        samples = profile.sample_count if profile is not None else 0
        return Recommendation(
            recommendation=prediction.recommended_store,
            confidence=prediction.confidence,
            reason=f"Based on {samples} historical executions",
            scores=dict(prediction.per_store_scores),
        )

    async def execute(self, query_text: str, target: str = "auto") -> ExecutionResult:
        """Execute on an explicit target, or on the store the policy selects.

        Raises:
            UnknownStoreError: If target names an unregistered store.
        """
        signature = QuerySignature.of(query_text)
        dialect = classify(query_text)
        located: list[str] = []

        if target != "auto":
            store = self.registry.get(target)
            query = self._query_for(store, query_text, dialect) or query_text
            decision = self.policy.forced(signature, store.name)
            mode: ExecutionMode = "forced"
        else:
            queries = self._compatible_queries(query_text, dialect)
            candidates = [self.registry.get(name) for name in queries]
            located = await self.locator.locate(queries, candidates)
            default = self.registry.default_for(dialect)
            decision = self.policy.select(
                signature,
                [self.registry.get(name).descriptor for name in located],
                default.name,
            )
            store = self.registry.get(decision.store)
            query = queries.get(store.name) or self._query_for(store, query_text, dialect) or query_text
            mode = "routed"

        logger.info(
            f"Executing on {store.name} ({decision.state.value})",
            extra={"signature": signature, "dialect": dialect.value, "mode": mode},
        )

        measurement = await self._run(store, query)
        await self._record(signature, query_text, dialect, measurement, mode)

        return ExecutionResult(
            store=store.name,
            success=measurement.success,
            metrics=measurement.metrics,
            data=measurement.result.data,
            error=measurement.result.error,
            dialect=dialect,
            data_locations=tuple(located),
            decision=decision,
        )

    async def execute_all(self, query_text: str) -> dict[str, StoreExecution]:
        """Run the query on every compatible store concurrently and record each run."""
        signature = QuerySignature.of(query_text)
        dialect = classify(query_text)
        queries = self._compatible_queries(query_text, dialect)

        if not queries:
            logger.warning(f"No registered store can serve a {dialect.value} query")
            return {}

        async def run_one(name: str, query: str) -> StoreExecution:
            measurement = await self._run(self.registry.get(name), query)
            await self._record(signature, query_text, dialect, measurement, "compare")
            return StoreExecution(
                success=measurement.success,
                metrics=measurement.metrics,
                data=measurement.result.data,
                error=measurement.result.error,
                translated_query=query if query != query_text else None,
            )

        names = list(queries)
        results = await asyncio.gather(*(run_one(name, queries[name]) for name in names))
        return dict(zip(names, results))

    async def history(self, filters: HistoryFilter | None = None) -> list[ExecutionRecord]:
        return await self._persist(lambda h: h.query(filters))

    async def stats(self, store: str | None = None) -> HistoryStats:
        return await self._persist(lambda h: h.stats(store))

    async def clear_history(self) -> None:
        await self._persist(lambda h: h.clear())
        self.model.reset()
        logger.info("Cleared execution history and performance profiles")

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    async def analytics(self, query: str) -> dict[str, Any]:
        """What the model knows about one query shape.

        Args:
            query: Query text, or a signature as returned by QuerySignature.of().
                Given a signature, the query text shown is the profiles' stored sample.
        """
        if QuerySignature.is_signature(query):
            signature = query
            profiles = self.model.profiles_for(signature)
            query_text = next(
                (p.query_sample for _, p in sorted(profiles.items()) if p.query_sample), None
            )
        else:
            signature = QuerySignature.of(query)
            profiles = self.model.profiles_for(signature)
            query_text = query
        prediction = self.model.predict(signature)

        return {
            "signature": signature,
            "normalized_query": (
                QuerySignature.normalize(query_text) if query_text is not None else None
            ),
            "dialect": classify(query_text).value if query_text is not None else None,
            "state": self.policy.state_for(signature).value,
            "profiles": {
                store: {
                    "sample_count": profile.sample_count,
                    "failures": profile.failures,
                    "score": profile.score,
                    "confidence": profile.confidence(self.model.saturation_samples),
                    "aggregates": profile.aggregates.to_dict(),
                    "recent_samples": [
                        m.to_dict() for m in list(profile.window)[-RECENT_SAMPLES:]
                    ],
                }
                for store, profile in sorted(profiles.items())
            },
            "prediction": (
                {
                    "recommended_store": prediction.recommended_store,
                    "confidence": prediction.confidence,
                    "expected_execution_time_ms": prediction.expected_execution_time_ms,
                    "per_store_scores": dict(prediction.per_store_scores),
                }
                if prediction is not None
                else None
            ),
        }

    async def close(self) -> None:
        """Close the history store(s) and every registered store."""
        for history in (self.history_store, self._failed_history):
            if history is None:
                continue
            try:
                await history.close()
            except Exception as e:
                logger.error(f"Failed to close history store: {e}", exc_info=True)
        await self.registry.close_all()
