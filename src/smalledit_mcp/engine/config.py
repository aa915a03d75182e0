"""Engine configuration loaded from YAML with environment overrides.

Configuration file location priority:
1. Explicit path passed to ConfigLoader
2. SMALLEDIT_CONFIG environment variable
3. Standard location: ~/.smalledit/config.yml
4. Built-in defaults (if no config file found)

Example config file:
```yaml
backup_strategy: timestamped
create_backup: true
transform_timeout: 10
transform_workers: 4
encoding: utf-8
allow_path_traversal: false
working_dir: ~/projects
```

Environment overrides (applied after the file):
    SMALLEDIT_BACKUP_STRATEGY: canonical | timestamped
    SMALLEDIT_TRANSFORM_TIMEOUT: seconds (float)
"""

from __future__ import annotations

import codecs
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import BackupStrategy

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    """Settings shared by every edit the engine performs."""

    model_config = ConfigDict(extra="forbid")

    backup_strategy: BackupStrategy = Field(
        default=BackupStrategy.CANONICAL,
        description="Default backup naming strategy when an operation does not choose one",
    )
    create_backup: bool = Field(
        default=True, description="Default for tools that do not pass a backup flag"
    )
    transform_timeout: float = Field(
        default=30.0,
        ge=0.1,
        le=600.0,
        description="Seconds a transformer may run before the edit fails with TransformTimeout",
    )
    transform_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Threads reserved for transformers, separate from file I/O",
    )
    encoding: str = Field(default="utf-8", description="Text encoding of edited files")
    allow_path_traversal: bool = Field(
        default=True, description="Allow tool paths outside working_dir"
    )
    working_dir: Path | None = Field(
        default=None, description="Base directory for relative tool paths (defaults to cwd)"
    )

    @field_validator("encoding")
    @classmethod
    def _known_encoding(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as e:
            raise ValueError(f"Unknown encoding: {value}") from e
        return value

    @field_validator("working_dir")
    @classmethod
    def _expand_working_dir(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None


class ConfigLoader:
    """Loader for engine configuration.

    Usage:
        loader = ConfigLoader()
        config = loader.load_config()

    The loaded config is cached; call load_config() once during startup.
    """

    def __init__(self, config_path: str | Path | None = None):
        self._config: EngineConfig | None = None
        self._explicit_path = Path(config_path) if config_path else None

    def get_config_path(self) -> Path | None:
        """Determine config file path using priority order.

        Returns:
            Path to config file, or None if file doesn't exist
        """
        if self._explicit_path:
            if self._explicit_path.exists():
                return self._explicit_path
            logger.warning(f"Explicit config path does not exist: {self._explicit_path}")
            return None

        env_path_str = os.getenv("SMALLEDIT_CONFIG")
        if env_path_str:
            env_path = Path(env_path_str).expanduser()
            if env_path.exists():
                return env_path
            logger.warning(f"SMALLEDIT_CONFIG path does not exist: {env_path}")
            return None

        standard_path = Path.home() / ".smalledit" / "config.yml"
        if standard_path.exists():
            return standard_path

        return None

    def load_config(self) -> EngineConfig:
        """Load and validate configuration.

        Returns:
            Validated EngineConfig (defaults if no config file found)

        Raises:
            ValueError: If the config file or an environment override is invalid
        """
        if self._config is not None:
            return self._config

        raw_config: dict[str, Any] = {}
        config_path = self.get_config_path()

        if config_path is None:
            logger.info("No config file found. Using default engine settings.")
        else:
            logger.info(f"Loading config from: {config_path}")
            try:
                with open(config_path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise ValueError(f"Failed to load config from {config_path}: {e}") from e
            if loaded is not None:
                if not isinstance(loaded, dict):
                    raise ValueError(
                        f"Failed to load config from {config_path}: "
                        "config file must contain a YAML dictionary"
                    )
                raw_config.update(loaded)

        raw_config.update(self._env_overrides())

        try:
            config = EngineConfig(**raw_config)
        except ValidationError as e:
            source = config_path or "environment"
            raise ValueError(f"Invalid configuration from {source}: {e}") from e

        logger.info(
            f"Engine config: backup_strategy={config.backup_strategy.value}, "
            f"transform_timeout={config.transform_timeout}s, encoding={config.encoding}"
        )
        self._config = config
        return config

    @staticmethod
    def _env_overrides() -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        strategy = os.getenv("SMALLEDIT_BACKUP_STRATEGY")
        if strategy:
            overrides["backup_strategy"] = strategy.strip().lower()
        timeout = os.getenv("SMALLEDIT_TRANSFORM_TIMEOUT")
        if timeout:
            overrides["transform_timeout"] = timeout.strip()
        return overrides
