"""FastMCP server initialization for autoflow.

This module initializes the MCP server and manages shared resources via lifespan context.
All tool implementations are in the tools module.

Two entry points share the same engine wiring:
- ``main()``: MCP server over stdio, with the run scheduler embedded
- ``worker_main()``: scheduler only, for driving runs from a separate process
"""

import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .context import AppContext
from .engine import (
    RunDriver,
    RunScheduler,
    RunStore,
    SQLiteRunStore,
    create_default_registry,
    discover_workflows,
)
from .engine.scheduler import DEFAULT_MAX_CONCURRENT_RUNS, DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================


def get_max_concurrent_runs() -> int:
    """Get the scheduler concurrency cap from environment.

    Reads AUTOFLOW_MAX_CONCURRENT_RUNS.
    Default: 5, Valid range: 1-1000 (clamped automatically)
    """
    try:
        value = int(os.getenv("AUTOFLOW_MAX_CONCURRENT_RUNS", str(DEFAULT_MAX_CONCURRENT_RUNS)))
        return max(1, min(1000, value))
    except ValueError:
        return DEFAULT_MAX_CONCURRENT_RUNS


def get_poll_interval() -> float:
    """Get the scheduler scan interval (seconds) from environment.

    Reads AUTOFLOW_POLL_INTERVAL.
    Default: 1.0, Valid range: 0.05-60 (clamped automatically)
    """
    try:
        value = float(os.getenv("AUTOFLOW_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL)))
        return max(0.05, min(60.0, value))
    except ValueError:
        return DEFAULT_POLL_INTERVAL


def scheduler_enabled() -> bool:
    return os.getenv("AUTOFLOW_SCHEDULER_ENABLED", "true").lower() == "true"


def get_workflow_paths() -> list[Path]:
    """Directories listed in AUTOFLOW_WORKFLOW_PATHS (comma-separated, ``~`` expanded).

    Missing or non-directory entries are skipped with a warning.
    """
    paths: list[Path] = []
    for path_str in os.getenv("AUTOFLOW_WORKFLOW_PATHS", "").split(","):
        path_str = path_str.strip()
        if not path_str:
            continue
        expanded_path = Path(path_str).expanduser()
        if not expanded_path.is_dir():
            logger.warning(f"Workflow path is not a directory, skipping: {expanded_path}")
            continue
        paths.append(expanded_path)
    return paths


def configure_logging() -> None:
    """Configure logging to stderr from AUTOFLOW_LOG_LEVEL (stdout belongs to MCP)."""
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("AUTOFLOW_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid AUTOFLOW_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


async def import_workflows(store: RunStore, directories: list[Path]) -> int:
    """Save every valid workflow file found in ``directories`` into the store.

    Files override stored workflows with the same id. Invalid files are
    skipped with warnings.

    Returns:
        Number of workflows imported
    """
    imported = 0
    for directory in directories:
        result = discover_workflows(directory)
        if not result.is_success or result.value is None:
            logger.warning(f"Skipping workflow directory {directory}: {result.error}")
            continue
        for workflow in result.value:
            await store.save_workflow(workflow)
            imported += 1
        logger.info(f"  {directory}: {len(result.value)} workflows")

    if directories:
        logger.info(f"Imported {imported} workflows from {len(directories)} directories")
    return imported


async def create_app_context(with_scheduler: bool) -> AppContext:
    """Initialize store, catalog, driver and (optionally) the scheduler."""
    store = SQLiteRunStore()
    await store.init()

    registry = create_default_registry()
    plugins = registry.discover_entry_points()
    logger.info(f"Action catalog: {len(registry.list_types())} actions ({plugins} from plugins)")

    await import_workflows(store, get_workflow_paths())

    driver = RunDriver(store, registry)
    scheduler = None
    if with_scheduler:
        scheduler = RunScheduler(
            store,
            driver,
            max_concurrent_runs=get_max_concurrent_runs(),
            poll_interval=get_poll_interval(),
        )

    return AppContext(store=store, registry=registry, driver=driver, scheduler=scheduler)


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with resource initialization and cleanup.

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with initialized resources
    """
    logger.info("Initializing MCP server resources...")

    app_context = await create_app_context(with_scheduler=scheduler_enabled())

    if app_context.scheduler:
        await app_context.scheduler.start()
    else:
        logger.info("Run scheduler disabled (use autoflow-worker to drive runs)")

    try:
        yield app_context
    finally:
        logger.info("Shutting down MCP server...")

        if app_context.scheduler:
            await app_context.scheduler.stop(wait_for_completion=False)

        await app_context.store.close()


mcp = FastMCP("autoflow", lifespan=app_lifespan)


# =============================================================================
# Entry Points
# =============================================================================


def main() -> None:
    """Entry point for running the MCP server over stdio."""
    configure_logging()
    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


async def run_worker() -> None:
    """Drive runs until cancelled."""
    app_context = await create_app_context(with_scheduler=True)
    assert app_context.scheduler is not None

    await app_context.scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await app_context.scheduler.stop(wait_for_completion=False)
        await app_context.store.close()


def worker_main() -> None:
    """Entry point for the standalone run worker (no MCP transport)."""
    configure_logging()
    logger.info("Starting run worker (press Ctrl+C to stop)...")

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")

    logger.info("Worker shutdown complete")


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "mcp",
    "main",
    "worker_main",
    "app_lifespan",
    "create_app_context",
    "import_workflows",
]
