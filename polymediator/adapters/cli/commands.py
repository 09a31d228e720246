"""CLI command implementations for the query mediator.

This adapter maps CLI commands (recommend, execute, execute_all, history,
stats, clear, analytics) to MediatorPort operations. It handles CLI-specific
formatting and error reporting; domain errors come back as
``{"status": "error", ...}`` dictionaries rather than exceptions.
"""

import logging
from typing import Any

from polymediator.core.errors import MediatorError
from polymediator.core.models import HistoryFilter
from polymediator.core.ports import MediatorPort

logger = logging.getLogger(__name__)


class CLICommandHandler:
    """Handles CLI commands by delegating to MediatorPort."""

    def __init__(self, mediator: MediatorPort):
        """Initialize the CLI command handler.

        Args:
            mediator: MediatorPort implementation to execute commands.
        """
        self.mediator = mediator

    @staticmethod
    def _error(operation: str, message: str, **context: Any) -> dict[str, Any]:
        return {"status": "error", "operation": operation, "message": message, **context}

    async def recommend(self, query: str) -> dict[str, Any]:
        """Recommend a store for a query from history."""
        try:
            recommendation = await self.mediator.recommend(query)
        except MediatorError as e:
            logger.error(f"Failed to recommend a store: {e}")
            return self._error("recommend", str(e))

        return {
            "status": "success",
            "operation": "recommend",
            **recommendation.to_dict(),
        }

    async def execute(self, query: str, target: str = "auto") -> dict[str, Any]:
        """Execute a query on one store.

        Args:
            query: Query text in any supported dialect.
            target: "auto" or the name of a registered store.

        Returns:
            Dictionary with status, the chosen store, metrics and data.
        """
        try:
            result = await self.mediator.execute(query, target)
        except MediatorError as e:
            logger.error(f"Failed to execute query: {e}")
            return self._error("execute", str(e), target=target)

        response = {
            "status": "success" if result.success else "error",
            "operation": "execute",
            **result.to_dict(),
        }
        if not result.success:
            response["message"] = result.error
        return response

    async def execute_all(self, query: str) -> dict[str, Any]:
        """Execute a query on every compatible store and compare."""
        try:
            results = await self.mediator.execute_all(query)
        except MediatorError as e:
            logger.error(f"Failed to compare stores: {e}")
            return self._error("execute_all", str(e))

        if not results:
            return self._error("execute_all", "No registered store can serve this query")

        fastest = min(
            (name for name, r in results.items() if r.success),
            key=lambda name: results[name].metrics.execution_time_ms,
            default=None,
        )
        return {
            "status": "success",
            "operation": "execute_all",
            "results": {name: r.to_dict() for name, r in results.items()},
            "fastest": fastest,
        }

    async def history(
        self,
        query_text: str | None = None,
        store: str | None = None,
        within_seconds: float | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """List execution records, newest first."""
        try:
            filters = HistoryFilter(
                query_text=query_text,
                store=store,
                within_seconds=within_seconds,
                limit=limit,
            )
            records = await self.mediator.history(filters)
        except (MediatorError, ValueError) as e:
            logger.error(f"Failed to read history: {e}")
            return self._error("history", str(e))

        return {
            "status": "success",
            "operation": "history",
            "count": len(records),
            "records": [r.to_dict() for r in records],
        }

    async def stats(self, store: str | None = None) -> dict[str, Any]:
        """Aggregate execution statistics, optionally for one store."""
        try:
            stats = await self.mediator.stats(store)
        except MediatorError as e:
            logger.error(f"Failed to compute stats: {e}")
            return self._error("stats", str(e))

        return {"status": "success", "operation": "stats", **stats.to_dict()}

    async def clear(self) -> dict[str, Any]:
        """Clear the execution log and every performance profile."""
        try:
            await self.mediator.clear_history()
        except MediatorError as e:
            logger.error(f"Failed to clear history: {e}")
            return self._error("clear", str(e))

        return {
            "status": "success",
            "operation": "clear",
            "message": "History and performance profiles cleared",
        }

    async def analytics(self, query: str) -> dict[str, Any]:
        """What the performance model knows about a query shape."""
        try:
            report = await self.mediator.analytics(query)
        except MediatorError as e:
            logger.error(f"Failed to build analytics: {e}")
            return self._error("analytics", str(e))

        return {"status": "success", "operation": "analytics", **report}


async def run_command(
    mediator: MediatorPort,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Run a CLI command.

    Entry point for executing CLI commands. Maps command names to handler methods.

    Args:
        mediator: MediatorPort implementation.
        command: Command name ('recommend', 'execute', 'execute_all',
            'history', 'stats', 'clear', 'analytics').
        args: Dictionary of command arguments.

    Returns:
        Dictionary with command result.

    Raises:
        ValueError: If command is not recognized.
        KeyError: If a required argument is missing.
    """
    handler = CLICommandHandler(mediator)

    if command == "recommend":
        return await handler.recommend(args["query"])

    elif command == "execute":
        return await handler.execute(args["query"], args.get("target", "auto"))

    elif command == "execute_all":
        return await handler.execute_all(args["query"])

    elif command == "history":
        return await handler.history(
            args.get("query_text"),
            args.get("store"),
            args.get("within_seconds"),
            args.get("limit"),
        )

    elif command == "stats":
        return await handler.stats(args.get("store"))

    elif command == "clear":
        return await handler.clear()

    elif command == "analytics":
        return await handler.analytics(args["query"])

    else:
        raise ValueError(f"Unknown command: {command}")
