"""Shared test configuration for smalledit-mcp tests.

Provides:
- A sample text file in a per-test temporary directory
- An EditEngine with default settings
- A mock MCP context wrapping a real AppContext for tool tests
"""

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from smalledit_mcp.context import AppContext
from smalledit_mcp.engine import EditEngine, EngineConfig

SAMPLE_CONTENT = "Hello World\nThis is a test file\nWith multiple lines\n"


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep user config and environment overrides out of every test."""
    for name in (
        "SMALLEDIT_CONFIG",
        "SMALLEDIT_BACKUP_STRATEGY",
        "SMALLEDIT_TRANSFORM_TIMEOUT",
        "SMALLEDIT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    """Create test.txt with three lines."""
    path = tmp_path / "test.txt"
    path.write_text(SAMPLE_CONTENT)
    return path


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def engine(config: EngineConfig) -> Iterator[EditEngine]:
    engine = EditEngine(config)
    yield engine
    engine.close()


@pytest.fixture
def mock_context(tmp_path: Path) -> MagicMock:
    """Create mock MCP context with AppContext for unit testing MCP tools.

    The working directory is the test's tmp_path and traversal outside it is
    rejected, so tool tests can use relative paths.

    Returns:
        Mock context object with request_context.lifespan_context structure
    """
    config = EngineConfig(working_dir=tmp_path, allow_path_traversal=False)
    app_context = AppContext(engine=EditEngine(config), config=config)

    mock_ctx = MagicMock()
    mock_ctx.request_context.lifespan_context = app_context
    return mock_ctx
