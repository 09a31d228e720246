"""Data-location probing across candidate stores.

For each candidate the addressed identifier (table, collection or key) is
extracted from the query text that store would receive, and the store is
asked whether it holds data under that identifier. Probing is fail-closed:
an extraction miss, an exception, or a timeout all count as "not present".
"""

import asyncio
import logging
import re
from collections.abc import Mapping, Sequence

from .classifier import classify
from .models import Dialect
from .ports import StorePort

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERNS: Mapping[Dialect, re.Pattern[str]] = {
    Dialect.RELATIONAL: re.compile(r"\b(?:FROM|INTO|UPDATE)\s+[\"`]?([\w.]+)", re.IGNORECASE),
    Dialect.DOCUMENT: re.compile(r"^\s*\w+\.(\w+)\.\w+\s*\("),
    Dialect.KEY_VALUE: re.compile(r"^\s*\w+\s+[\"']?([^\s\"']+)"),
}


def extract_identifier(query_text: str, dialect: Dialect) -> str | None:
    """Return the table, collection or key a query addresses, or None."""
    match = IDENTIFIER_PATTERNS[dialect].search(query_text)
    return match.group(1) if match else None


class DataLocator:
    """Finds which candidate stores actually hold the data a query addresses."""

    def __init__(self, probe_timeout: float = 2.0):
        if probe_timeout <= 0:
            raise ValueError(f"probe_timeout must be positive, got {probe_timeout}")
        self.probe_timeout = probe_timeout

    async def locate(
        self, queries_by_store: Mapping[str, str], stores: Sequence[StorePort]
    ) -> list[str]:
        """Probe every candidate concurrently.

        Args:
            queries_by_store: The query text each store would receive,
                translated where needed. Stores missing from the mapping
                are treated as not present.
            stores: Candidate stores, in the order the result should keep.

        Returns:
            Names of the stores that reported data, in candidate order.
        """
        if not stores:
            return []

        results = await asyncio.gather(
            *(self._probe(store, queries_by_store.get(store.name)) for store in stores)
        )
        located = [store.name for store, present in zip(stores, results) if present]

        logger.debug(
            f"Located data in {len(located)} of {len(stores)} candidate stores",
            extra={"located": located},
        )
        return located

    async def _probe(self, store: StorePort, query_text: str | None) -> bool:
        if query_text is None:
            return False

        dialect = classify(query_text)
        if not store.descriptor.serves(dialect):
            return False

        identifier = extract_identifier(query_text, dialect)
        if identifier is None:
            logger.debug(f"No identifier extractable for {store.name}, treating as absent")
            return False

        try:
            present = await asyncio.wait_for(
                store.has_data(identifier), timeout=self.probe_timeout
            )
        except TimeoutError:
            logger.warning(
                f"Data probe on {store.name} timed out after {self.probe_timeout}s",
                extra={"store": store.name, "identifier": identifier},
            )
            return False
        except Exception as e:
            logger.warning(
                f"Data probe on {store.name} failed: {e}",
                extra={"store": store.name, "identifier": identifier},
            )
            return False

        return present is True
