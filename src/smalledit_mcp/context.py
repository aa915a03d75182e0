"""Shared context types for MCP server.

This module contains context types used across server and tools modules,
separated to avoid circular imports.
"""

from dataclasses import dataclass
from pathlib import Path

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import EditEngine, EngineConfig, PathResolver


@dataclass
class AppContext:
    """Application context containing shared resources for MCP tools.

    This context is created during server startup and made available to all tools
    via dependency injection through the Context parameter. One EditEngine is
    shared by every tool so that its path locks serialise edits across requests.
    """

    engine: EditEngine
    config: EngineConfig

    def resolve_path(self, path: str | Path) -> Path:
        """Resolve a tool-supplied path under the configured path policy.

        Raises:
            EditError: PERMISSION_DENIED for symlinks or paths escaping working_dir
        """
        return PathResolver.resolve_and_validate(
            path,
            working_dir=self.config.working_dir,
            allow_traversal=self.config.allow_path_traversal,
        )


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
