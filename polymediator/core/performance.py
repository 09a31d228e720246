"""Per-signature performance model.

Keeps one PerformanceProfile per (signature, store) pair, folds every
execution record into it, and predicts the best store for a signature.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from .models import ExecutionRecord, PerformanceProfile, Prediction

logger = logging.getLogger(__name__)

PairKey = tuple[str, str]


def _name_priority(store: str) -> tuple[Any, ...]:
    return (store,)


class PerformanceModel:
    """In-process model of how fast each store runs each query shape.

    Updates to a single (signature, store) pair are serialized by a lock
    scoped to that pair; independent pairs update concurrently.
    """

    def __init__(
        self,
        window_size: int = 100,
        saturation_samples: int = 50,
        priority: Callable[[str], tuple[Any, ...]] | None = None,
    ):
        """Initialize the model.

        Args:
            window_size: Samples retained per profile (N).
            saturation_samples: Sample count at which confidence reaches 100%.
            priority: Sort key used to break score ties between stores.
                Lower keys win. Defaults to store name order.
        """
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        if saturation_samples < 1:
            raise ValueError(f"saturation_samples must be >= 1, got {saturation_samples}")

        self.window_size = window_size
        self.saturation_samples = saturation_samples
        self.priority = priority or _name_priority
        self._profiles: dict[PairKey, PerformanceProfile] = {}
        self._locks: dict[PairKey, asyncio.Lock] = {}

    def _lock_for(self, key: PairKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def observe(self, record: ExecutionRecord) -> PerformanceProfile:
        """Fold one execution record into its profile.

        Successful records add a sample; failed records only count a failure.
        The profile is created on first use.

        Returns:
            The updated profile, for the caller to persist.
        """
        key = (record.signature, record.store)
        async with self._lock_for(key):
            profile = self._profiles.get(key)
            if profile is None:
                profile = PerformanceProfile(
                    signature=record.signature,
                    store=record.store,
                    capacity=self.window_size,
                )
                self._profiles[key] = profile

            if not profile.query_sample:
                profile.query_sample = record.query_text[:200]

            if record.outcome.success:
                profile.add_sample(record.metrics, record.timestamp)
            else:
                profile.record_failure(record.timestamp)

            logger.debug(
                f"Profile {record.signature}/{record.store} now has "
                f"{profile.sample_count} samples, score {profile.score:.4f}",
                extra={"failures": profile.failures, "mode": record.mode},
            )
            return profile

    def profile(self, signature: str, store: str) -> PerformanceProfile | None:
        return self._profiles.get((signature, store))

    def profiles_for(self, signature: str) -> dict[str, PerformanceProfile]:
        """All profiles recorded for a signature, keyed by store name."""
        return {
            store: profile
            for (sig, store), profile in self._profiles.items()
            if sig == signature
        }

    def sample_count(self, signature: str) -> int:
        """Total successful samples for a signature across every store."""
        return sum(p.sample_count for p in self.profiles_for(signature).values())

    def confidence(self, signature: str, store: str) -> float:
        profile = self.profile(signature, store)
        if profile is None:
            return 0.0
        return profile.confidence(self.saturation_samples)

    def predict(
        self, signature: str, stores: Iterable[str] | None = None
    ) -> Prediction | None:
        """Predict the best store for a signature.

        Only profiles with at least one sample take part. Highest score wins;
        ties go to the store with the lowest priority key.

        Args:
            signature: Query signature.
            stores: Restrict the prediction to these stores (optional).

        Returns:
            Prediction for the winning store, or None if nothing qualifies.
        """
        allowed = set(stores) if stores is not None else None
        candidates = [
            profile
            for store, profile in self.profiles_for(signature).items()
            if profile.sample_count > 0 and (allowed is None or store in allowed)
        ]
        if not candidates:
            return None

        best = min(candidates, key=lambda p: (-p.score, self.priority(p.store)))
        return Prediction(
            signature=signature,
            recommended_store=best.store,
            confidence=best.confidence(self.saturation_samples),
            expected_execution_time_ms=best.aggregates.execution_time.mean,
            per_store_scores={p.store: p.score for p in candidates},
        )

    def load(self, profiles: Iterable[PerformanceProfile]) -> int:
        """Hydrate the model from persisted profiles.

        Profiles persisted with a different capacity are re-windowed to the
        configured size, keeping the newest samples.

        Returns:
            Number of profiles loaded.
        """
        loaded = 0
        for profile in profiles:
            if profile.capacity != self.window_size:
                profile = PerformanceProfile(
                    signature=profile.signature,
                    store=profile.store,
                    capacity=self.window_size,
                    window=deque(profile.window),
                    failures=profile.failures,
                    query_sample=profile.query_sample,
                    updated_at=profile.updated_at,
                )
            self._profiles[(profile.signature, profile.store)] = profile
            loaded += 1

        logger.info(f"Loaded {loaded} performance profiles")
        return loaded

    def reset(self) -> None:
        """Drop every profile."""
        self._profiles.clear()
        self._locks.clear()
