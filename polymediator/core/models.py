"""Domain models for the polymediator query router.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from statistics import fmean, pstdev
from types import MappingProxyType
from typing import Any, Literal, TypeAlias


class Dialect(Enum):
    """Query-language family a query text is written in."""

    RELATIONAL = "relational"
    DOCUMENT = "document"
    KEY_VALUE = "key_value"


ExecutionMode: TypeAlias = Literal["routed", "forced", "compare"]


@dataclass(frozen=True)
class StoreDescriptor:
    """Static description of a registered backing store."""

    name: str
    dialects: frozenset[Dialect]
    capabilities: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        """Validate descriptor invariants on creation."""
        if not self.name or not self.name.strip():
            raise ValueError("store name must be a non-empty string")
        if not self.dialects:
            raise ValueError(f"store {self.name} must serve at least one dialect")

    def serves(self, dialect: Dialect) -> bool:
        """Whether the store natively accepts queries in this dialect."""
        return dialect in self.dialects


@dataclass(frozen=True)
class StoreResult:
    """Raw result returned by a store driver."""

    success: bool
    data: tuple[Any, ...] = ()
    error: str | None = None

    @property
    def row_count(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ExecutionMetrics:
    """Cost of a single store invocation.

    ``latency_ms`` is an estimate derived from execution time whenever
    ``latency_estimated`` is set; drivers do not expose network latency.
    """

    execution_time_ms: float
    latency_ms: float
    cpu_time_ms: float
    memory_used_bytes: int
    latency_estimated: bool = True

    def __post_init__(self) -> None:
        """Validate metric invariants on creation."""
        for name in ("execution_time_ms", "latency_ms", "cpu_time_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.memory_used_bytes < 0:
            raise ValueError("memory_used_bytes must be non-negative")

    @classmethod
    def zero(cls) -> "ExecutionMetrics":
        """Metrics reported for a failed or timed-out invocation."""
        return cls(
            execution_time_ms=0.0,
            latency_ms=0.0,
            cpu_time_ms=0.0,
            memory_used_bytes=0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_time_ms": self.execution_time_ms,
            "latency_ms": self.latency_ms,
            "cpu_time_ms": self.cpu_time_ms,
            "memory_used_bytes": self.memory_used_bytes,
            "latency_estimated": self.latency_estimated,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionMetrics":
        """Build metrics from a persisted document, ignoring unknown keys."""
        return cls(
            execution_time_ms=float(data.get("execution_time_ms", 0.0)),
            latency_ms=float(data.get("latency_ms", 0.0)),
            cpu_time_ms=float(data.get("cpu_time_ms", 0.0)),
            memory_used_bytes=int(data.get("memory_used_bytes", 0)),
            latency_estimated=bool(data.get("latency_estimated", True)),
        )


@dataclass(frozen=True)
class ExecutionOutcome:
    """Whether a store invocation succeeded, and what it returned."""

    success: bool
    row_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "row_count": self.row_count,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionOutcome":
        return cls(
            success=bool(data.get("success", False)),
            row_count=int(data.get("row_count", 0)),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class Measurement:
    """What the metrics recorder observed around one store call."""

    store: str
    result: StoreResult
    metrics: ExecutionMetrics

    @property
    def success(self) -> bool:
        return self.result.success


@dataclass(frozen=True)
class ExecutionRecord:
    """An immutable entry in the execution log.

    Created once per executed query and never mutated afterwards.
    """

    id: str
    signature: str
    query_text: str
    store: str
    dialect: Dialect
    metrics: ExecutionMetrics
    outcome: ExecutionOutcome
    timestamp: datetime
    mode: ExecutionMode = "routed"

    def __post_init__(self) -> None:
        """Validate record invariants on creation or deserialization."""
        if not self.signature:
            raise ValueError("signature must be a non-empty string")
        if not self.store:
            raise ValueError("store must be a non-empty string")
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "signature": self.signature,
            "query_text": self.query_text,
            "store": self.store,
            "dialect": self.dialect.value,
            "metrics": self.metrics.to_dict(),
            "outcome": self.outcome.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "mode": self.mode,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionRecord":
        """Rebuild a record from its persisted document.

        Unknown keys are ignored so newer writers stay readable.
        """
        return cls(
            id=str(data["id"]),
            signature=str(data["signature"]),
            query_text=str(data.get("query_text", "")),
            store=str(data["store"]),
            dialect=Dialect(data.get("dialect", Dialect.RELATIONAL.value)),
            metrics=ExecutionMetrics.from_dict(data.get("metrics", {})),
            outcome=ExecutionOutcome.from_dict(data.get("outcome", {})),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            mode=data.get("mode", "routed"),
        )


@dataclass(frozen=True)
class MetricStats:
    """Aggregates of one metric over a rolling window."""

    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    std_dev: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "mean": self.mean,
            "min": self.min,
            "max": self.max,
            "std_dev": self.std_dev,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MetricStats":
        return cls(
            mean=float(data.get("mean", 0.0)),
            min=float(data.get("min", 0.0)),
            max=float(data.get("max", 0.0)),
            std_dev=float(data.get("std_dev", 0.0)),
        )


@dataclass(frozen=True)
class ProfileAggregates:
    """Per-metric aggregates recomputed from a profile's retained window."""

    execution_time: MetricStats = MetricStats()
    latency: MetricStats = MetricStats()
    cpu_time: MetricStats = MetricStats()
    memory_used: MetricStats = MetricStats()

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {
            "execution_time": self.execution_time.to_dict(),
            "latency": self.latency.to_dict(),
            "cpu_time": self.cpu_time.to_dict(),
            "memory_used": self.memory_used.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProfileAggregates":
        return cls(
            execution_time=MetricStats.from_dict(data.get("execution_time", {})),
            latency=MetricStats.from_dict(data.get("latency", {})),
            cpu_time=MetricStats.from_dict(data.get("cpu_time", {})),
            memory_used=MetricStats.from_dict(data.get("memory_used", {})),
        )


SCORE_WEIGHTS: Mapping[str, float] = MappingProxyType(
    {
        "execution_time": 0.4,
        "latency": 0.3,
        "cpu_time": 0.2,
        "stability": 0.1,
    }
)


def _stats(values: list[float]) -> MetricStats:
    if not values:
        return MetricStats()
    return MetricStats(
        mean=fmean(values),
        min=min(values),
        max=max(values),
        std_dev=pstdev(values),
    )


@dataclass
class PerformanceProfile:
    """Rolling performance statistics for one (signature, store) pair.

    The window holds at most ``capacity`` successful samples; the oldest
    sample is evicted first. ``aggregates`` and ``score`` are recomputed on
    every change so they always describe exactly the retained window.
    Failed executions only bump ``failures``: their zeroed metrics would
    otherwise make a broken store look fast.

    Note: This dataclass is intentionally mutable. Callers serialize
    updates per pair (see PerformanceModel).
    """

    signature: str
    store: str
    capacity: int = 100
    window: deque[ExecutionMetrics] = field(default_factory=deque)
    aggregates: ProfileAggregates = ProfileAggregates()
    score: float = 0.0
    failures: int = 0
    query_sample: str = ""
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate profile invariants and trim an oversized window."""
        if self.capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {self.capacity}")
        if not isinstance(self.window, deque):
            self.window = deque(self.window)
        while len(self.window) > self.capacity:
            self.window.popleft()
        self.recompute()

    @property
    def sample_count(self) -> int:
        return len(self.window)

    def add_sample(self, metrics: ExecutionMetrics, timestamp: datetime) -> None:
        """Append a successful sample, evicting the oldest beyond capacity."""
        self.window.append(metrics)
        while len(self.window) > self.capacity:
            self.window.popleft()
        self.updated_at = timestamp
        self.recompute()

    def record_failure(self, timestamp: datetime) -> None:
        """Count a failed execution without touching the window."""
        self.failures += 1
        self.updated_at = timestamp

    def recompute(self) -> None:
        """Rebuild aggregates and score from the retained window."""
        samples = list(self.window)
        self.aggregates = ProfileAggregates(
            execution_time=_stats([m.execution_time_ms for m in samples]),
            latency=_stats([m.latency_ms for m in samples]),
            cpu_time=_stats([m.cpu_time_ms for m in samples]),
            memory_used=_stats([float(m.memory_used_bytes) for m in samples]),
        )
        self.score = self._score() if samples else 0.0

    def _score(self) -> float:
        """Weighted inverse-cost score; higher is better.

        The stability term is always 1 / (stddev of execution time + 1).
        """
        agg = self.aggregates
        return (
            SCORE_WEIGHTS["execution_time"] / (agg.execution_time.mean + 1)
            + SCORE_WEIGHTS["latency"] / (agg.latency.mean + 1)
            + SCORE_WEIGHTS["cpu_time"] / (agg.cpu_time.mean + 1)
            + SCORE_WEIGHTS["stability"] / (agg.execution_time.std_dev + 1)
        )

    def confidence(self, saturation_samples: int = 50) -> float:
        """Sample-count confidence in percent: min(samples / saturation, 1) * 100."""
        if saturation_samples <= 0:
            raise ValueError("saturation_samples must be positive")
        return min(self.sample_count / saturation_samples, 1.0) * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "store": self.store,
            "capacity": self.capacity,
            "window": [m.to_dict() for m in self.window],
            "aggregates": self.aggregates.to_dict(),
            "score": self.score,
            "failures": self.failures,
            "query_sample": self.query_sample,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], capacity: int | None = None
    ) -> "PerformanceProfile":
        """Rebuild a profile from its persisted document.

        Stored aggregates are ignored and recomputed from the window so the
        two can never disagree. Unknown keys are ignored.
        """
        updated_at = data.get("updated_at")
        return cls(
            signature=str(data["signature"]),
            store=str(data["store"]),
            capacity=capacity if capacity is not None else int(data.get("capacity", 100)),
            window=deque(ExecutionMetrics.from_dict(m) for m in data.get("window", [])),
            failures=int(data.get("failures", 0)),
            query_sample=str(data.get("query_sample", "")),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class Prediction:
    """Derived recommendation for a signature. Never persisted."""

    signature: str
    recommended_store: str
    confidence: float
    expected_execution_time_ms: float
    per_store_scores: Mapping[str, float]

    def __post_init__(self) -> None:
        """Convert the scores dict to a read-only proxy."""
        if isinstance(self.per_store_scores, dict):
            object.__setattr__(
                self, "per_store_scores", MappingProxyType(self.per_store_scores)
            )


class SelectionState(Enum):
    """Where a signature sits in the exploration lifecycle.

    - NO_HISTORY: no samples recorded for the signature yet
    - EXPLORING: samples exist but confidence is below the threshold
    - EXPLOITING: confidence is at or above the threshold
    - FORCED_TARGET: the caller named a store explicitly
    """

    NO_HISTORY = "no_history"
    EXPLORING = "exploring"
    EXPLOITING = "exploiting"
    FORCED_TARGET = "forced_target"


@dataclass(frozen=True)
class SelectionDecision:
    """The store chosen for a request and why."""

    store: str
    state: SelectionState
    reason: str
    confidence: float = 0.0
    scores: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.scores, dict):
            object.__setattr__(self, "scores", MappingProxyType(self.scores))

    def to_dict(self) -> dict[str, Any]:
        return {
            "store": self.store,
            "state": self.state.value,
            "reason": self.reason,
            "confidence": self.confidence,
            "scores": dict(self.scores),
        }


@dataclass(frozen=True)
class Recommendation:
    """Answer to a recommend() call."""

    recommendation: str | None
    confidence: float
    reason: str
    scores: Mapping[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation": self.recommendation,
            "scores": dict(self.scores) if self.scores is not None else None,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Response of a single-target execute() call."""

    store: str
    success: bool
    metrics: ExecutionMetrics
    data: tuple[Any, ...] = ()
    error: str | None = None
    dialect: Dialect = Dialect.RELATIONAL
    data_locations: tuple[str, ...] = ()
    decision: SelectionDecision | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "store": self.store,
            "success": self.success,
            "metrics": self.metrics.to_dict(),
            "data": list(self.data),
            "error": self.error,
            "dialect": self.dialect.value,
            "data_locations": list(self.data_locations),
            "decision": self.decision.to_dict() if self.decision else None,
        }


@dataclass(frozen=True)
class StoreExecution:
    """One store's entry in an execute_all() comparison."""

    success: bool
    metrics: ExecutionMetrics
    data: tuple[Any, ...] = ()
    error: str | None = None
    translated_query: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "metrics": self.metrics.to_dict(),
            "data": list(self.data),
            "error": self.error,
            "translated_query": self.translated_query,
        }


@dataclass(frozen=True)
class HistoryFilter:
    """Filters accepted by history retrieval and aggregation."""

    query_text: str | None = None
    store: str | None = None
    within_seconds: float | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.within_seconds is not None and self.within_seconds <= 0:
            raise ValueError("within_seconds must be positive")
        if self.limit is not None and self.limit <= 0:
            raise ValueError("limit must be positive")


@dataclass(frozen=True)
class StoreAggregate:
    """Execution-time statistics for one store."""

    count: int
    avg_execution_time_ms: float
    min_execution_time_ms: float
    max_execution_time_ms: float
    success_rate: float  # percent, 0-100

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "avg_execution_time_ms": self.avg_execution_time_ms,
            "min_execution_time_ms": self.min_execution_time_ms,
            "max_execution_time_ms": self.max_execution_time_ms,
            "success_rate": self.success_rate,
        }


@dataclass(frozen=True)
class HistoryStats:
    """Aggregate statistics over the execution log."""

    total_queries: int
    stores: Mapping[str, StoreAggregate]

    def __post_init__(self) -> None:
        """Convert mutable dicts to immutable proxies."""
        object.__setattr__(self, "stores", MappingProxyType(dict(self.stores)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_queries": self.total_queries,
            "stores": {name: agg.to_dict() for name, agg in self.stores.items()},
        }
