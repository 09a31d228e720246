"""Key-value store adapter over a Redis-compatible REST endpoint.

Implements StorePort by posting commands as JSON arrays, e.g.
``["GET", "account:ACC001"]``, and reading ``{"result": ...}`` or
``{"error": ...}`` back. Upstash and similar services speak this protocol.
"""

import json
import logging
import shlex
from typing import Any

import httpx

from polymediator.core.models import Dialect, StoreDescriptor, StoreResult
from polymediator.core.ports import StorePort

logger = logging.getLogger(__name__)


def parse_command(query: str) -> list[str]:
    """Split a key-value command into its verb and arguments.

    Quoted arguments keep their spaces. The verb is upper-cased.

    Raises:
        ValueError: If the command is empty, unbalanced, or has no key.
    """
    parts = shlex.split(query.strip().rstrip(";"))
    if not parts:
        raise ValueError("Empty key-value command")
    if len(parts) < 2:
        raise ValueError(f"{parts[0].upper()} requires a key")
    return [parts[0].upper(), *parts[1:]]


def _decode_value(value: Any) -> Any:
    """Decode JSON-encoded string values, leaving anything else untouched."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def result_to_rows(command: str, key: str, result: Any) -> tuple[Any, ...]:
    """Shape a REST result into rows.

    GET -> one {key, value} row, or none for a missing key
    HGETALL -> one row mapping fields to values
    list results (KEYS, LRANGE, SMEMBERS, ...) -> one {value} row per element
    anything else -> one {value} row
    """
    if result is None:
        return ()
    if command == "GET":
        return ({"key": key, "value": _decode_value(result)},)
    if command == "HGETALL":
        if isinstance(result, list):
            # Flat [field, value, field, value, ...] reply
            result = dict(zip(result[::2], result[1::2]))
        return ({field: _decode_value(v) for field, v in result.items()},) if result else ()
    if isinstance(result, list):
        return tuple({"value": _decode_value(v)} for v in result)
    return ({"value": result},)


class KeyValueRestStore(StorePort):
    """Key-value store reached over HTTP."""

    def __init__(self, url: str, token: str = "", name: str = "kv", timeout: float = 3.0):
        """Initialize the REST adapter.

        Args:
            url: Base URL of the REST endpoint.
            token: Bearer token (optional).
            name: Name the store is registered under.
            timeout: Per-request timeout in seconds.
        """
        self.url = url.rstrip("/")
        self.token = token
        self._descriptor = StoreDescriptor(
            name=name,
            dialects=frozenset({Dialect.KEY_VALUE}),
            capabilities=frozenset({"keys", "hashes", "lists", "sets"}),
        )
        self.client = httpx.AsyncClient(
            base_url=self.url,
            headers=self._get_headers(),
            timeout=timeout,
        )

    @property
    def descriptor(self) -> StoreDescriptor:
        return self._descriptor

    def _get_headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _command(self, *args: str) -> Any:
        """Send one command and return its result.

        Raises:
            httpx.HTTPError: If the request fails.
            ValueError: If the endpoint reports a command error.
        """
        response = await self.client.post("", json=list(args))
        response.raise_for_status()
        body = response.json()
        if isinstance(body, dict) and body.get("error"):
            raise ValueError(str(body["error"]))
        return body.get("result") if isinstance(body, dict) else body

    async def connect(self) -> None:
        try:
            await self._command("PING")
        except (httpx.HTTPError, ValueError) as e:
            raise ConnectionError(f"Key-value endpoint unreachable: {e}") from e
        logger.info(f"Connected to key-value store {self.name}")

    async def close(self) -> None:
        """Close the httpx client."""
        await self.client.aclose()

    async def execute_query(self, query: str) -> StoreResult:
        try:
            command = parse_command(query)
        except ValueError as e:
            return StoreResult(success=False, error=str(e))

        try:
            result = await self._command(*command)
        except httpx.HTTPError as e:
            logger.debug(f"Key-value request failed: {e}")
            return StoreResult(success=False, error=f"Key-value request failed: {e}")
        except ValueError as e:
            return StoreResult(success=False, error=str(e))

        return StoreResult(success=True, data=result_to_rows(command[0], command[1], result))

    async def has_data(self, identifier: str) -> bool:
        """True if the key exists."""
        try:
            return await self._command("EXISTS", identifier) == 1
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Key-value data probe for {identifier} failed: {e}")
            return False
