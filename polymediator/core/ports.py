"""Port interfaces for the polymediator query router.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - StorePort: A backing store that executes queries (relational, document, key-value)
   - HistoryStorePort: Persist the execution log and performance profiles

2. **Driving Ports** (adapters/external systems call into core)
   - MediatorPort: Entry point for recommend / execute / compare / history operations
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import (
    ExecutionRecord,
    ExecutionResult,
    HistoryFilter,
    HistoryStats,
    PerformanceProfile,
    Recommendation,
    StoreDescriptor,
    StoreExecution,
    StoreResult,
)


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class StorePort(ABC):
    """Port for a backing store the mediator can route queries to.

    Adapters implementing this port wrap a single store driver (PostgreSQL,
    MongoDB, a key-value service, ...) and expose only the narrow capability
    contract the mediator needs.

    Implementations must fail closed:
    - has_data() returns False rather than raising when the store is down
    - execute_query() returns StoreResult(success=False, error=...) rather
      than raising on unavailability or query errors
    """

    @property
    @abstractmethod
    def descriptor(self) -> StoreDescriptor:
        """Static description of this store (name, dialects, capabilities)."""

    @property
    def name(self) -> str:
        return self.descriptor.name

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection to the backing store.

        Raises:
            ConnectionError: If the store cannot be reached.
        """

    @abstractmethod
    async def execute_query(self, query: str) -> StoreResult:
        """Execute query text written in one of this store's dialects.

        Args:
            query: Query text, already translated for this store if needed.

        Returns:
            StoreResult with the returned rows/documents, or success=False
            and an error message.
        """

    @abstractmethod
    async def has_data(self, identifier: str) -> bool:
        """Report whether the addressed object holds data in this store.

        Args:
            identifier: Table, collection, or key name extracted from a query.

        Returns:
            True only if the object exists and is non-empty. False on any
            doubt, including connection failure.
        """

    async def close(self) -> None:
        """Release driver resources. Default is a no-op."""


class HistoryStorePort(ABC):
    """Port for the durable execution log and performance-profile document.

    Implementations must handle:
    - Append-only semantics for execution records
    - Retention of at most a configured number of records (oldest dropped)
    - Atomic bulk clear of both the log and the profiles
    - Tolerating unknown fields in persisted documents

    Implementations raise PersistenceError on storage failures so the
    mediator can switch to degraded in-memory operation.
    """

    @abstractmethod
    async def append(self, record: ExecutionRecord) -> None:
        """Append one execution record, truncating the oldest on overflow.

        Raises:
            PersistenceError: If the record cannot be written.
        """

    @abstractmethod
    async def query(self, filters: HistoryFilter | None = None) -> list[ExecutionRecord]:
        """Return records matching the filters, newest first.

        Args:
            filters: Substring on query text (case-insensitive), exact store
                name, recency window in seconds, and an optional limit.

        Raises:
            PersistenceError: If the log cannot be read.
        """

    @abstractmethod
    async def stats(
        self, store: str | None = None, filters: HistoryFilter | None = None
    ) -> HistoryStats:
        """Aggregate count, execution time and success rate per store.

        Args:
            store: Restrict aggregation to one store (optional).
            filters: Aggregate over a filtered subset (optional).

        Raises:
            PersistenceError: If the log cannot be read.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Atomically empty the execution log and every stored profile.

        Raises:
            PersistenceError: If the clear cannot be committed.
        """

    @abstractmethod
    async def save_profile(self, profile: PerformanceProfile) -> None:
        """Create or replace the stored document for one (signature, store) pair.

        Raises:
            PersistenceError: If the profile cannot be written.
        """

    @abstractmethod
    async def load_profiles(self) -> list[PerformanceProfile]:
        """Load every stored profile, for hydrating the performance model.

        Raises:
            PersistenceError: If the profiles cannot be read.
        """

    async def close(self) -> None:
        """Release storage resources. Default is a no-op."""


# ============================================================================
# DRIVING PORTS (Adapters/external systems call into core)
# ============================================================================


class MediatorPort(ABC):
    """Port for routing queries and inspecting what the router has learned.

    Driving port: the CLI (or an HTTP layer) invokes these methods.
    Implementations of this port live in the core (mediator.py).
    """

    @abstractmethod
    async def recommend(self, query_text: str) -> Recommendation:
        """Recommend a store for a query from accumulated history.

        Does not contact any store.
        """

    @abstractmethod
    async def execute(self, query_text: str, target: str = "auto") -> ExecutionResult:
        """Execute a query on one store.

        Args:
            query_text: Query in any supported dialect.
            target: "auto" to let the selection policy choose, or the
                name of a registered store.

        Returns:
            ExecutionResult with data, metrics, and the selection decision.

        Raises:
            UnknownStoreError: If target names an unregistered store.
                Raised before any store is contacted.
        """

    @abstractmethod
    async def execute_all(self, query_text: str) -> dict[str, StoreExecution]:
        """Execute a query on every compatible store concurrently.

        One store's failure never fails the others.
        """

    @abstractmethod
    async def history(self, filters: HistoryFilter | None = None) -> list[ExecutionRecord]:
        """Return execution records, newest first."""

    @abstractmethod
    async def stats(self, store: str | None = None) -> HistoryStats:
        """Return aggregate execution statistics."""

    @abstractmethod
    async def clear_history(self) -> None:
        """Empty the execution log and reset the performance model."""

    @abstractmethod
    async def analytics(self, query: str) -> dict[str, Any]:
        """Return the signature, per-store profile aggregates and prediction
        for a query shape, given its text or its signature. Does not contact
        any store.
        """
