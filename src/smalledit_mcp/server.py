"""FastMCP server initialization for smalledit-mcp.

This module initializes the MCP server and manages shared resources via lifespan context.
All tool implementations are in the tools module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization and cleanup
- Context injection for tool access to shared resources
- FastMCP server with stdio transport
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import ConfigLoader, EditEngine, EngineConfig, create_default_registry

logger = logging.getLogger(__name__)

# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


def build_app_context(config: EngineConfig) -> AppContext:
    """Create the engine and its collaborators for one server lifetime.

    Third-party transformers registered under the ``smalledit.transformers``
    entry point group are loaded on top of the built-in ones.

    Args:
        config: Validated engine configuration

    Returns:
        AppContext holding a ready EditEngine
    """
    registry = create_default_registry()
    discovered = registry.discover_entry_points()
    if discovered:
        logger.info(f"Loaded {discovered} plugin transformer(s)")

    engine = EditEngine(config=config, registry=registry)
    return AppContext(engine=engine, config=config)


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with resource initialization and cleanup.

    This lifespan context manager:
    1. Loads engine configuration (YAML file plus environment overrides)
    2. Builds the transformer registry and the shared EditEngine
    3. Yields context to make resources available to tools

    Environment Variables:
        SMALLEDIT_CONFIG: Path to a YAML config file
        SMALLEDIT_BACKUP_STRATEGY: canonical | timestamped
        SMALLEDIT_TRANSFORM_TIMEOUT: Transformer deadline in seconds

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with initialized resources
    """
    logger.info("Initializing MCP server resources...")

    config = ConfigLoader().load_config()
    app_context = build_app_context(config)

    modes = ", ".join(mode.value for mode in app_context.engine.registry.list_modes())
    logger.info(f"Edit modes available: {modes}")

    try:
        yield app_context
    finally:
        app_context.engine.close()
        stats = app_context.engine.locks.get_stats()
        logger.info(
            f"Shutting down MCP server ({stats['acquisitions']} edits, "
            f"{stats['contended']} waited for a path lock)"
        )


# Initialize MCP server with lifespan management
# Following Python MCP naming convention: {service}_mcp
mcp = FastMCP("smalledit_mcp", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def main() -> None:
    """Entry point for running the MCP server.

    This function is called when the server is run directly via:
    - python -m smalledit_mcp
    - smalledit-mcp (console script from pyproject.toml)

    Defaults to stdio transport for MCP protocol communication.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("SMALLEDIT_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid SMALLEDIT_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    log_level = getattr(logging, log_level_str)

    # Configure logging to stderr (stdout carries the MCP protocol)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Server infrastructure
    "mcp",
    "main",
    "AppContext",
    "AppContextType",
    # Exposed for testing
    "build_app_context",
]
