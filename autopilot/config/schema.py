"""
Configuration schema definitions.

Design principles:
    - Explicit structure
    - Predictable defaults
    - Environment override support
    - Strong typing + validation
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autopilot.utils.helpers import DEFAULT_ROOT, RuntimePaths


# =============================
# Paths
# =============================

class PathsConfig(BaseModel):
    """Root of the on-disk layout (jobs, logs, status file)."""
    root: str = str(DEFAULT_ROOT)


# =============================
# Daemon Runtime Config
# =============================

class DaemonConfig(BaseModel):
    """Scheduler loop and lifecycle parameters."""
    tick_interval_s: float = 1.0
    shutdown_reset_status: bool = True

    @field_validator("tick_interval_s")
    @classmethod
    def _positive_tick(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("tick_interval_s must be > 0")
        return value


# =============================
# Tasks Config
# =============================

class TasksConfig(BaseModel):
    """Shell task execution configuration."""
    timeout: int = 3600
    shell: Optional[str] = None
    working_dir: Optional[str] = None


# =============================
# Logging Config
# =============================

class LoggingConfig(BaseModel):
    """Log sink configuration."""
    level: str = "INFO"
    rotation: str = "10 MB"
    retention: int = 5


# =============================
# Root Config
# =============================

class Config(BaseSettings):
    """
    Root configuration schema.

    Priority:
        env > config.json > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOPILOT_",
        env_nested_delimiter="__",
    )

    paths: PathsConfig = Field(default_factory=PathsConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    tasks: TasksConfig = Field(default_factory=TasksConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Values from config.json arrive as init kwargs; env must win over them.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def runtime_paths(self) -> RuntimePaths:
        """Expanded on-disk layout."""
        return RuntimePaths.from_root(self.paths.root)

    @property
    def root_path(self) -> Path:
        return self.runtime_paths.root
