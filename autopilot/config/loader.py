"""
Configuration loading and persistence utilities.

Design goals:
    - Deterministic loading & fallback
    - Strict schema validation
    - Stable persistence format (camelCase on disk, snake_case in memory)
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from autopilot.config.schema import Config
from autopilot.errors import ConfigError
from autopilot.utils.helpers import DEFAULT_ROOT, write_json_atomic

ROOT_ENV_VAR = "AUTOPILOT_PATHS__ROOT"

# =============================
# Paths
# =============================

def get_config_path() -> Path:
    """
    Return default configuration file path.

    Default:
        ~/.config/auto-pilot/config.json
    """
    return DEFAULT_ROOT / "config.json"


# =============================
# Load & Save
# =============================

def load_config(config_path: Path | None = None, strict: bool = False) -> Config:
    """
    Load configuration from disk or fallback to defaults.

    Flow:
        1. Read raw JSON
        2. camelCase → snake_case
        3. Pydantic validation (environment overrides win)

    Args:
        config_path: Optional explicit path override.
        strict: Raise ConfigError instead of falling back to defaults.

    Returns:
        Validated Config object.
    """
    path = config_path or get_config_path()

    if not path.exists():
        logger.debug("Config file not found, using defaults | path={}", path)
        return _with_root_hint(Config(), config_path)

    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)

        if not isinstance(raw, dict):
            raise ConfigError(f"Config root must be an object: {path}")

        normalized = convert_keys(raw)
        config = Config(**normalized)

        logger.debug("Config loaded | path={}", path)
        return _with_root_hint(config, config_path, explicit_root="paths" in normalized)

    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("Invalid JSON in config | path={} err={}", path, e)
        if strict:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    except ValidationError as e:
        logger.error("Invalid config | path={} err={}", path, e)
        if strict:
            raise ConfigError(f"Invalid config in {path}: {e}") from e

    except ConfigError:
        if strict:
            raise
        logger.error("Config root is not an object | path={}", path)

    logger.warning("Falling back to default configuration")
    return _with_root_hint(Config(), config_path)


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """
    Persist configuration to disk.

    Behavior:
        - snake_case → camelCase
        - Pretty JSON formatting
        - Atomic overwrite
    """
    path = config_path or config.runtime_paths.config_file
    data = convert_to_camel(config.model_dump())
    write_json_atomic(path, data)
    logger.info("Config saved | path={}", path)
    return path


def _with_root_hint(
    config: Config,
    config_path: Path | None,
    explicit_root: bool = False,
) -> Config:
    """
    An explicit --config file without a paths section roots the layout
    next to itself.
    """
    if config_path is None or explicit_root or ROOT_ENV_VAR in os.environ:
        return config
    return config.model_copy(
        update={"paths": config.paths.model_copy(update={"root": str(config_path.parent)})}
    )


# =============================
# Key Conversion
# =============================

def convert_keys(data: Any) -> Any:
    """
    Convert camelCase → snake_case recursively.
    """
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(x) for x in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """
    Convert snake_case → camelCase recursively.
    """
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(x) for x in data]
    return data


# =============================
# Naming helpers
# =============================

def camel_to_snake(name: str) -> str:
    """
    Convert camelCase → snake_case.

    Example:
        tickIntervalS → tick_interval_s
    """
    buf = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0:
            buf.append("_")
        buf.append(ch.lower())
    return "".join(buf)


def snake_to_camel(name: str) -> str:
    """
    Convert snake_case → camelCase.

    Example:
        shutdown_reset_status → shutdownResetStatus
    """
    head, *tail = name.split("_")
    return head + "".join(w.capitalize() for w in tail)
