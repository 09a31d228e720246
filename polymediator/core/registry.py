"""Registry of the backing stores a mediator may route to.

Built explicitly by the composition root and handed to the mediator;
there is no module-level registry.
"""

import logging
from collections.abc import Iterable, Mapping

from .errors import UnknownStoreError
from .models import Dialect, StoreDescriptor
from .ports import StorePort

logger = logging.getLogger(__name__)

# Fixed tie-break order between dialect families. Lower ranks first.
DIALECT_PRIORITY: Mapping[Dialect, int] = {
    Dialect.KEY_VALUE: 0,
    Dialect.RELATIONAL: 1,
    Dialect.DOCUMENT: 2,
}


def store_priority(descriptor: StoreDescriptor) -> tuple[int, str]:
    """Sort key: best-ranked dialect the store serves, then its name."""
    rank = min(DIALECT_PRIORITY[d] for d in descriptor.dialects)
    return (rank, descriptor.name)


class StoreRegistry:
    """Name-indexed collection of StorePort adapters."""

    def __init__(
        self,
        stores: Iterable[StorePort] = (),
        defaults: Mapping[Dialect, str] | None = None,
    ):
        self._stores: dict[str, StorePort] = {}
        self._defaults: dict[Dialect, str] = dict(defaults or {})
        for store in stores:
            self.register(store)

    def register(self, store: StorePort) -> None:
        """Add a store. Registering a second store with the same name replaces the first."""
        name = store.descriptor.name
        if name in self._stores:
            logger.warning(f"Replacing already registered store {name}")
        self._stores[name] = store
        logger.debug(
            f"Registered store {name}",
            extra={"dialects": sorted(d.value for d in store.descriptor.dialects)},
        )

    def set_default(self, dialect: Dialect, name: str) -> None:
        self._defaults[dialect] = name

    def get(self, name: str) -> StorePort:
        """Look up a store by name.

        Raises:
            UnknownStoreError: If no store is registered under that name.
        """
        try:
            return self._stores[name]
        except KeyError:
            raise UnknownStoreError(name, list(self._stores)) from None

    def __contains__(self, name: object) -> bool:
        return name in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    def names(self) -> list[str]:
        """Registered store names in priority order."""
        return [store.descriptor.name for store in self.all()]

    def all(self) -> list[StorePort]:
        """Registered stores in priority order."""
        return sorted(self._stores.values(), key=lambda s: store_priority(s.descriptor))

    def compatible(self, dialect: Dialect) -> list[StorePort]:
        """Stores that natively serve the dialect, in priority order."""
        return [store for store in self.all() if store.descriptor.serves(dialect)]

    def priority_of(self, name: str) -> tuple[int, str]:
        """Tie-break key for a store name. Unknown names sort last."""
        store = self._stores.get(name)
        if store is None:
            return (len(DIALECT_PRIORITY), name)
        return store_priority(store.descriptor)

    def default_for(self, dialect: Dialect) -> StorePort:
        """Configured default store for a dialect.

        Falls back to the highest-priority compatible store when the
        configured default is not registered, then to the highest-priority
        store of any dialect.

        Raises:
            UnknownStoreError: If the registry is empty.
        """
        configured = self._defaults.get(dialect)
        if configured is not None and configured in self._stores:
            return self._stores[configured]

        candidates = self.compatible(dialect) or self.all()
        if not candidates:
            raise UnknownStoreError(configured or dialect.value, [])

        fallback = candidates[0]
        if configured is not None:
            logger.warning(
                f"Default store {configured} for {dialect.value} is not registered, "
                f"falling back to {fallback.descriptor.name}"
            )
        return fallback

    async def close_all(self) -> None:
        """Close every registered store, logging failures."""
        for store in self._stores.values():
            try:
                await store.close()
            except Exception as e:
                logger.error(f"Failed to close store {store.descriptor.name}: {e}", exc_info=True)
