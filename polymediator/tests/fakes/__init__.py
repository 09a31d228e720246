"""Fake/mock implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeStorePort: Configurable store with canned rows, data presence and failures
- FakeHistoryStorePort: In-memory history that tracks calls and can fail on demand
"""

from .history import FakeHistoryStorePort
from .store import FakeStorePort

__all__ = [
    "FakeHistoryStorePort",
    "FakeStorePort",
]
