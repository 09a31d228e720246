"""MongoDB store adapter.

Implements StorePort with pymongo. pymongo is synchronous, so every call
runs in a worker thread via asyncio.to_thread.

Accepted query form:

    db.<collection>.find(<json filter>)[.limit(<n>)]
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from polymediator.core.models import Dialect, StoreDescriptor, StoreResult
from polymediator.core.ports import StorePort

logger = logging.getLogger(__name__)

_FIND = re.compile(
    r"^\s*\w+\.(\w+)\.find\s*\(\s*(\{.*\})?\s*\)"
    r"(?:\s*\.limit\s*\(\s*(\d+)\s*\))?"
    r"\s*;?\s*$",
    re.DOTALL,
)


@dataclass(frozen=True)
class FindQuery:
    """Parsed `find` call."""

    collection: str
    filter: dict[str, Any]
    limit: int | None = None


def parse_find(query: str) -> FindQuery:
    """Parse document call syntax into a FindQuery.

    Raises:
        ValueError: If the text is not a `find` call or the filter is not a JSON object.
    """
    match = _FIND.match(query)
    if not match:
        raise ValueError("Invalid document query format. Use: db.<collection>.find({...})")

    collection, raw_filter, limit = match.groups()
    try:
        parsed = json.loads(raw_filter) if raw_filter else {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Filter is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Filter must be a JSON object")

    return FindQuery(
        collection=collection,
        filter=parsed,
        limit=int(limit) if limit is not None else None,
    )


def clean_document(document: dict[str, Any]) -> dict[str, Any]:
    """Make a document JSON-friendly by stringifying its ObjectId."""
    cleaned = dict(document)
    if "_id" in cleaned:
        cleaned["_id"] = str(cleaned["_id"])
    return cleaned


class MongoDBStore(StorePort):
    """MongoDB-backed document store."""

    def __init__(
        self,
        uri: str,
        database: str = "mediator",
        name: str = "mongo",
        server_selection_timeout_ms: int = 3000,
    ):
        self.uri = uri
        self.database = database
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._descriptor = StoreDescriptor(
            name=name,
            dialects=frozenset({Dialect.DOCUMENT}),
            capabilities=frozenset({"documents", "filters"}),
        )
        self.client: MongoClient | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def descriptor(self) -> StoreDescriptor:
        return self._descriptor

    def _connect_sync(self) -> None:
        client = MongoClient(
            self.uri, serverSelectionTimeoutMS=self.server_selection_timeout_ms
        )
        try:
            client.admin.command("ping")
        except PyMongoError:
            client.close()
            raise
        self.client = client

    async def connect(self) -> None:
        """Create the client on first use."""
        async with self._connect_lock:
            if self.client is not None:
                return
            try:
                await asyncio.to_thread(self._connect_sync)
            except (ConnectionFailure, PyMongoError) as e:
                raise ConnectionError(f"MongoDB connection failed: {e}") from e
        logger.info(f"Connected to MongoDB store {self.name}")

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def _find_sync(self, find: FindQuery) -> list[dict[str, Any]]:
        assert self.client is not None
        cursor = self.client[self.database][find.collection].find(find.filter)
        if find.limit is not None:
            cursor = cursor.limit(find.limit)
        return [clean_document(doc) for doc in cursor]

    def _count_sync(self, collection: str) -> int:
        assert self.client is not None
        return self.client[self.database][collection].count_documents({}, limit=1)

    async def execute_query(self, query: str) -> StoreResult:
        try:
            find = parse_find(query)
        except ValueError as e:
            return StoreResult(success=False, error=str(e))

        try:
            await self.connect()
            documents = await asyncio.to_thread(self._find_sync, find)
        except (ConnectionError, PyMongoError) as e:
            logger.debug(f"MongoDB query failed: {e}")
            return StoreResult(success=False, error=str(e))

        return StoreResult(success=True, data=tuple(documents))

    async def has_data(self, identifier: str) -> bool:
        """True if the collection holds at least one document."""
        try:
            await self.connect()
            return await asyncio.to_thread(self._count_sync, identifier) > 0
        except (ConnectionError, PyMongoError) as e:
            logger.debug(f"MongoDB data probe for {identifier} failed: {e}")
            return False
