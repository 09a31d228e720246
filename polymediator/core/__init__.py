"""Core domain logic for the polymediator query router.

This package holds the decision engine: classification, translation,
data location, the performance model and the selection policy. Store
drivers and durable persistence live in the adapters package; the core
never imports them.
"""

from .errors import (
    MediatorError,
    PersistenceError,
    StoreExecutionError,
    StoreUnavailableError,
    UnknownStoreError,
)
from .models import (
    Dialect,
    ExecutionMetrics,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionResult,
    HistoryFilter,
    HistoryStats,
    PerformanceProfile,
    Prediction,
    Recommendation,
    SelectionDecision,
    SelectionState,
    StoreDescriptor,
    StoreExecution,
    StoreResult,
)

__all__ = [
    "Dialect",
    "ExecutionMetrics",
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionResult",
    "HistoryFilter",
    "HistoryStats",
    "MediatorError",
    "PerformanceProfile",
    "PersistenceError",
    "Prediction",
    "Recommendation",
    "SelectionDecision",
    "SelectionState",
    "StoreDescriptor",
    "StoreExecution",
    "StoreExecutionError",
    "StoreResult",
    "StoreUnavailableError",
    "UnknownStoreError",
]
