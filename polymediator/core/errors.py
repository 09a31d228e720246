"""Exception taxonomy for the mediator.

Classification and translation never raise: ambiguous text defaults to the
relational dialect and unsupported statements pass through unchanged. The
errors below are scoped to one request or one store; none of them is meant
to terminate the process.
"""


class MediatorError(Exception):
    """Base class for all mediator errors."""


class StoreUnavailableError(MediatorError):
    """A store could not be reached, or did not answer within its timeout."""

    def __init__(self, store: str, reason: str):
        self.store = store
        self.reason = reason
        super().__init__(f"Store {store} unavailable: {reason}")


class StoreExecutionError(MediatorError):
    """A store accepted the query but failed to execute it."""

    def __init__(self, store: str, message: str):
        self.store = store
        self.message = message
        super().__init__(f"Store {store} failed: {message}")


class UnknownStoreError(MediatorError):
    """The caller named a store that is not registered."""

    def __init__(self, store: str, known: list[str] | None = None):
        self.store = store
        self.known = sorted(known or [])
        known_str = ", ".join(self.known) if self.known else "none"
        super().__init__(f"Unknown store: {store} (registered: {known_str})")


class PersistenceError(MediatorError):
    """The durable history store failed to read or write."""
