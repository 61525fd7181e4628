"""Shared context types for the MCP server.

This module contains context types used across server and tools modules,
separated to avoid circular imports.
"""

from dataclasses import dataclass

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import ActionRegistry, RunDriver, RunScheduler, RunStore


@dataclass
class AppContext:
    """Application context containing shared resources for MCP tools.

    Created during server startup and made available to all tools via the
    Context parameter.
    """

    store: RunStore
    registry: ActionRegistry
    driver: RunDriver
    scheduler: RunScheduler | None = None  # None when the poller runs in a separate worker


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
