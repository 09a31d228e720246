"""Store selection rules.

This module decides which store runs a query, given the stores that
reported holding its data and what the performance model has learned
about the query's signature.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .models import Dialect, SelectionDecision, SelectionState, StoreDescriptor
from .performance import PerformanceModel

logger = logging.getLogger(__name__)

# Static scores used for stores that have no samples for a signature.
DEFAULT_PRIORS: Mapping[Dialect, float] = {
    Dialect.KEY_VALUE: 0.90,
    Dialect.RELATIONAL: 0.85,
    Dialect.DOCUMENT: 0.75,
}


class SelectionPolicy:
    """Chooses one store per request.

    Pure decision logic over the performance model; never contacts a store
    and never returns an empty choice.
    """

    def __init__(
        self,
        model: PerformanceModel,
        confidence_threshold: float = 60.0,
        priors: Mapping[Dialect, float] | None = None,
        priority: Callable[[str], tuple[Any, ...]] | None = None,
    ):
        if not 0.0 <= confidence_threshold <= 100.0:
            raise ValueError(
                f"confidence_threshold must be between 0 and 100, got {confidence_threshold}"
            )
        self.model = model
        self.confidence_threshold = confidence_threshold
        self.priors = dict(DEFAULT_PRIORS if priors is None else priors)
        self.priority = priority or model.priority

    def prior_for(self, descriptor: StoreDescriptor) -> float:
        """Best static prior among the dialects a store serves."""
        return max(self.priors.get(d, 0.5) for d in descriptor.dialects)

    def state_for(self, signature: str, stores: Sequence[str] | None = None) -> SelectionState:
        """Exploration state of a signature, optionally restricted to some stores."""
        if self.model.sample_count(signature) == 0:
            return SelectionState.NO_HISTORY

        prediction = self.model.predict(signature, stores)
        if prediction is not None and prediction.confidence >= self.confidence_threshold:
            return SelectionState.EXPLOITING
        return SelectionState.EXPLORING

    def forced(self, signature: str, store: str) -> SelectionDecision:
        """Decision for an explicitly named target; the state machine is bypassed."""
        return SelectionDecision(
            store=store,
            state=SelectionState.FORCED_TARGET,
            reason=f"target {store} requested explicitly",
            confidence=self.model.confidence(signature, store),
        )

    def select(
        self,
        signature: str,
        located: Sequence[StoreDescriptor],
        default_store: str,
    ) -> SelectionDecision:
        """Pick a store for an automatic single-target request.

        Args:
            signature: Query signature.
            located: Compatible stores that reported holding the data, in
                candidate order.
            default_store: Configured default for the query's dialect, used
                when no store reported data.

        Returns:
            SelectionDecision naming exactly one store.
        """
        names = [d.name for d in located]

        if not located:
            decision = SelectionDecision(
                store=default_store,
                state=self.state_for(signature),
                reason=f"no compatible store reported data, using default {default_store}",
            )
            logger.info(decision.reason, extra={"signature": signature})
            return decision

        if len(located) == 1:
            only = located[0].name
            return SelectionDecision(
                store=only,
                state=self.state_for(signature, names),
                reason=f"{only} is the only store holding the data",
                confidence=self.model.confidence(signature, only),
            )

        prediction = self.model.predict(signature, names)
        if prediction is not None and prediction.confidence >= self.confidence_threshold:
            decision = SelectionDecision(
                store=prediction.recommended_store,
                state=SelectionState.EXPLOITING,
                reason=(
                    f"history recommends {prediction.recommended_store} "
                    f"with {prediction.confidence:.1f}% confidence"
                ),
                confidence=prediction.confidence,
                scores=dict(prediction.per_store_scores),
            )
            logger.info(decision.reason, extra={"signature": signature})
            return decision

        # Stores without samples fall back to their prior
        scores: dict[str, float] = {}
        for descriptor in located:
            profile = self.model.profile(signature, descriptor.name)
            if profile is not None and profile.sample_count > 0:
                scores[descriptor.name] = profile.score
            else:
                scores[descriptor.name] = self.prior_for(descriptor)

        best = min(scores, key=lambda name: (-scores[name], self.priority(name)))
        state = (
            SelectionState.NO_HISTORY
            if self.model.sample_count(signature) == 0
            else SelectionState.EXPLORING
        )
        decision = SelectionDecision(
            store=best,
            state=state,
            reason=f"{state.value}: {best} has the best score among {len(scores)} stores",
            confidence=prediction.confidence if prediction is not None else 0.0,
            scores=scores,
        )
        logger.info(decision.reason, extra={"signature": signature, "scores": scores})
        return decision
