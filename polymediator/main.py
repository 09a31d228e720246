"""Composition root for the polymediator query router.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Configuration loading via config module
- Store registry and history store instantiation
- Core service initialization and model hydration
- Interactive CLI loop
"""

import asyncio
import json
import logging
import sys
from typing import Any

from polymediator.adapters.cli.commands import CLICommandHandler
from polymediator.adapters.history.sqlite import SQLiteHistoryStore
from polymediator.config import Settings, load_settings
from polymediator.core.history import InMemoryHistoryStore
from polymediator.core.locator import DataLocator
from polymediator.core.mediator import MediatorService
from polymediator.core.models import Dialect
from polymediator.core.performance import PerformanceModel
from polymediator.core.ports import HistoryStorePort, StorePort
from polymediator.core.recorder import MetricsRecorder
from polymediator.core.registry import StoreRegistry
from polymediator.core.selection import SelectionPolicy

logger = logging.getLogger(__name__)


async def _run_cli_interactive(cli_handler: CLICommandHandler) -> None:
    """Run interactive CLI loop.

    Provides a REPL-like interface for mediator commands.

    Args:
        cli_handler: CLICommandHandler instance for executing commands.
    """
    logger.info("Starting interactive CLI. Type 'help' for available commands or 'exit' to quit.")

    loop = asyncio.get_running_loop()

    while True:
        try:
            # Read command from stdin in a thread to avoid blocking
            command_line = await loop.run_in_executor(None, input, "mediator> ")

            command_line = command_line.strip()

            if not command_line:
                continue

            if command_line.lower() == "exit":
                logger.info("Exiting CLI")
                break

            if command_line.lower() == "help":
                _print_cli_help()
                continue

            parts = command_line.split(maxsplit=1)
            command = parts[0].lower()
            args_str = parts[1] if len(parts) > 1 else ""

            try:
                args = json.loads(args_str) if args_str else {}
            except json.JSONDecodeError:
                logger.error("Invalid JSON arguments. Use 'help' for command syntax.")
                continue

            if not isinstance(args, dict):
                logger.error("Arguments must be a JSON object. Use 'help' for command syntax.")
                continue

            try:
                result = await _execute_cli_command(cli_handler, command, args)
                print(json.dumps(result, indent=2, default=str))
            except Exception as e:
                logger.error(f"Command execution error: {e}", exc_info=True)
                print(json.dumps({"status": "error", "message": str(e)}, indent=2))

        except EOFError:
            # Ctrl+D to exit
            logger.info("EOF received, exiting CLI")
            break
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            continue


def _require(args: dict[str, Any], name: str) -> Any:
    if name not in args:
        raise ValueError(f"Missing required parameter: {name}")
    return args[name]


async def _execute_cli_command(
    cli_handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Execute a CLI command.

    Args:
        cli_handler: CLICommandHandler instance.
        command: Command name.
        args: Command arguments.

    Returns:
        Command result dictionary.

    Raises:
        ValueError: If command is not recognized or a required parameter is missing.
    """
    if command == "recommend":
        return await cli_handler.recommend(_require(args, "query"))

    elif command == "execute":
        return await cli_handler.execute(
            _require(args, "query"),
            target=args.get("target", "auto"),
        )

    elif command == "execute_all":
        return await cli_handler.execute_all(_require(args, "query"))

    elif command == "history":
        return await cli_handler.history(
            query_text=args.get("query_text"),
            store=args.get("store"),
            within_seconds=args.get("within_seconds"),
            limit=args.get("limit"),
        )

    elif command == "stats":
        return await cli_handler.stats(args.get("store"))

    elif command == "clear":
        return await cli_handler.clear()

    elif command == "analytics":
        return await cli_handler.analytics(_require(args, "query"))

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")


def _print_cli_help() -> None:
    """Print CLI help message."""
    help_text = """
Available Commands (JSON format):

  recommend
    Recommend a store for a query from accumulated history.
    Required: query

    Example: recommend {"query": "SELECT * FROM accounts"}

  execute
    Execute a query on the selected store, or on an explicit target.
    Required: query
    Optional: target ("auto" or a store name)

    Example: execute {"query": "GET account:ACC001", "target": "kv"}

  execute_all
    Execute a query on every compatible store and compare metrics.
    Required: query

    Example: execute_all {"query": "SELECT * FROM accounts WHERE balance > 5000"}

  history
    List execution records, newest first.
    Optional: query_text, store, within_seconds, limit

    Example: history {"store": "postgres", "limit": 10}

  stats
    Aggregate execution statistics per store.
    Optional: store

  analytics
    Show what the performance model knows about a query shape.
    The query may be the query text or its q_... signature.
    Required: query

  clear
    Clear the execution history and every performance profile.

  help
    Show this help message.

  exit
    Exit the CLI.

Note: All commands accept arguments as a single JSON object.
Provide the JSON after the command name on the same line.
    """
    print(help_text)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = (
            '{"time": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


def build_registry(settings: Settings) -> StoreRegistry:
    """Register a driver for every store with a configured connection URL."""
    registry = StoreRegistry(
        defaults={
            Dialect.RELATIONAL: settings.default_relational_store,
            Dialect.DOCUMENT: settings.default_document_store,
            Dialect.KEY_VALUE: settings.default_key_value_store,
        }
    )

    # Drivers are imported lazily so an unused backend's library is never loaded
    if settings.postgres_url:
        from polymediator.adapters.stores.postgresql import PostgreSQLStore

        registry.register(
            PostgreSQLStore(dsn=settings.postgres_url, name=settings.postgres_store_name)
        )
        logger.info(f"Store registered: {settings.postgres_store_name} (PostgreSQL)")

    if settings.mongo_uri:
        from polymediator.adapters.stores.mongodb import MongoDBStore

        registry.register(
            MongoDBStore(
                uri=settings.mongo_uri,
                database=settings.mongo_database,
                name=settings.mongo_store_name,
            )
        )
        logger.info(f"Store registered: {settings.mongo_store_name} (MongoDB)")

    if settings.kv_rest_url:
        from polymediator.adapters.stores.kv_rest import KeyValueRestStore

        registry.register(
            KeyValueRestStore(
                url=settings.kv_rest_url,
                token=settings.kv_rest_token,
                name=settings.kv_store_name,
            )
        )
        logger.info(f"Store registered: {settings.kv_store_name} (key-value REST)")

    if len(registry) == 0:
        logger.warning("No store drivers configured; every execution will fail")

    return registry


def build_history(settings: Settings) -> HistoryStorePort:
    """Instantiate the configured history backend."""
    if settings.history_backend == "sqlite":
        logger.info(f"History store initialized: {settings.history_sqlite_path}")
        return SQLiteHistoryStore(
            db_path=settings.history_sqlite_path,
            max_records=settings.history_max_records,
            profile_capacity=settings.profile_window_size,
        )
    logger.info("History store initialized: in-memory")
    return InMemoryHistoryStore(max_records=settings.history_max_records)


def build_mediator(
    settings: Settings,
    registry: StoreRegistry | None = None,
    history: HistoryStorePort | None = None,
) -> MediatorService:
    """Wire the core services around a registry and a history store.

    Args:
        settings: Loaded configuration.
        registry: Store registry to use instead of the configured drivers (optional).
        history: History store to use instead of the configured backend (optional).
    """
    registry = registry if registry is not None else build_registry(settings)
    history = history if history is not None else build_history(settings)

    model = PerformanceModel(
        window_size=settings.profile_window_size,
        saturation_samples=settings.confidence_saturation_samples,
        priority=registry.priority_of,
    )
    policy = SelectionPolicy(
        model=model,
        confidence_threshold=settings.confidence_threshold,
        priority=registry.priority_of,
    )

    return MediatorService(
        registry=registry,
        history=history,
        model=model,
        policy=policy,
        locator=DataLocator(probe_timeout=settings.probe_timeout_seconds),
        recorder=MetricsRecorder(latency_ratio=settings.latency_estimate_ratio),
        translate_relational=settings.translate_relational,
        execute_timeout=settings.execute_timeout_seconds,
        fallback_max_records=settings.history_max_records,
    )


async def _connect_stores(stores: list[StorePort]) -> None:
    """Connect every store up front. Unreachable stores stay registered and fail closed."""
    results = await asyncio.gather(
        *(store.connect() for store in stores), return_exceptions=True
    )
    for store, result in zip(stores, results):
        if isinstance(result, BaseException):
            logger.warning(f"Store {store.name} unavailable at startup: {result}")


async def bootstrap() -> None:
    """Load configuration, wire adapters, and start the interactive CLI.

    This is the composition root: the single place where all components
    are instantiated and wired together.

    Steps:
    1. Load configuration from environment
    2. Configure logging
    3. Instantiate stores and the history store
    4. Initialize core services and hydrate the performance model
    5. Run the CLI loop
    """
    settings = load_settings()

    configure_logging(settings.log_level, settings.log_format)
    logger.info("Loading polymediator...")

    mediator = build_mediator(settings)

    try:
        await _connect_stores(mediator.registry.all())
        loaded = await mediator.hydrate()
        logger.info(f"Performance model ready ({loaded} profiles)")

        cli_handler = CLICommandHandler(mediator)
        await _run_cli_interactive(cli_handler)
    finally:
        await mediator.close()


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Successful shutdown
        1: Fatal bootstrap or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
