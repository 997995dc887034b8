"""
Configuration loader for testdaemon.

This module provides Pydantic models for the daemon's startup settings and a
loader function that merges an optional YAML file, environment variables and
command-line overrides into one immutable `Settings` object.

Design Principles:
- Built Once: `load_settings` is called exactly once by the driver and the
  resulting frozen `Settings` object is handed to every component. Nothing
  reads module-level flags.
- Environment Overrides: any setting can be overridden by an environment
  variable with the `TESTDAEMON_` prefix, nesting with `__`, e.g.
  `noise.max_bytes` is overridden by `TESTDAEMON_NOISE__MAX_BYTES`. Supervisor
  test suites use this to shrink the flood volume or swap the companion
  command without touching the CLI.
- Clear Errors: validation failures raise `ConfigError` with a readable list of
  offending locations.
"""

import os
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

ENV_PREFIX = "TESTDAEMON"

# Prints a monotonically increasing unix timestamp once per second, forever.
COMPANION_SCRIPT = (
    "import time\n"
    "while True:\n"
    "    print(int(time.time()), flush=True)\n"
    "    time.sleep(1)\n"
)

# --- Custom Exceptions ---

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

# --- Pydantic Models for Configuration Sections ---

class NoiseConfig(BaseModel):
    """Noise generator settings.

    `mode` is normally derived from the top-level `verbose` flag: flood when
    verbose, trickle otherwise. `max_bytes` only applies to flood mode and
    `interval_sec` only to trickle mode.
    """
    model_config = ConfigDict(frozen=True)

    mode: Literal["trickle", "flood"] = "trickle"
    # Whole hex-dump rows per block.
    chunk_size: int = Field(16 << 10, gt=0, multiple_of=16)
    max_bytes: int = Field(128 << 20, gt=0)
    interval_sec: float = Field(1.0, gt=0)
    message: str = "some log noise"


class CompanionSettings(BaseModel):
    """The one long-running child process launched at startup."""
    model_config = ConfigDict(frozen=True)

    command: List[str] = Field(
        default_factory=lambda: [sys.executable, "-u", "-c", COMPANION_SCRIPT],
        min_length=1,
    )


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    format: str = "{time:YYYY/MM/DD HH:mm:ss} {message}"


class Settings(BaseModel):
    """The root configuration model for the daemon."""
    model_config = ConfigDict(frozen=True)

    port: int = Field(8000, ge=0, le=65535)
    crash: bool = False
    verbose: bool = False
    noise: NoiseConfig = Field(default_factory=NoiseConfig)
    companion: CompanionSettings = Field(default_factory=CompanionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="before")
    @classmethod
    def derive_noise_mode(cls, data: Any) -> Any:
        # An explicit noise.mode wins; otherwise --verbose selects flood mode.
        if not isinstance(data, dict):
            return data
        noise = data.get("noise")
        if isinstance(noise, BaseModel):
            return data
        noise = dict(noise or {})
        if "mode" not in noise:
            noise["mode"] = "flood" if data.get("verbose") else "trickle"
        return {**data, "noise": noise}


# --- Helper Functions ---

def _load_config_from_yaml(path: Path) -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file at {path}: {e}") from e


def _parse_env_value(value: str) -> Any:
    # Lists, dicts, booleans, null and numbers are given as JSON.
    looks_like_json = (
        (value.startswith("[") and value.endswith("]"))
        or (value.startswith("{") and value.endswith("}"))
        or value.lower() in ("true", "false", "null")
        or value.replace(".", "", 1).isdigit()
    )
    if looks_like_json:
        try:
            return json.loads(value.lower() if value.lower() in ("true", "false", "null") else value)
        except json.JSONDecodeError:
            return value
    return value


def _get_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """
    Parses environment variables and converts them into a nested dict.
    e.g., TESTDAEMON_NOISE__MAX_BYTES=65536 becomes
    {'noise': {'max_bytes': 65536}}
    """
    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix + "_"):
            continue
        parts = key.removeprefix(prefix).strip("_").lower().split("__")
        d = overrides
        for part in parts[:-1]:
            d = d.setdefault(part, {})
        d[parts[-1]] = _parse_env_value(value)
    return overrides


def _merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merges the override dict into the base dict.
    Overwrites values, dictionaries, and lists.
    """
    for key, value in overrides.items():
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            base[key] = _merge_configs(base[key], value)
        else:
            base[key] = value
    return base

# --- Public API ---

def load_settings(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Loads, validates, and returns the daemon settings.

    Sources are merged lowest precedence first:
    1. Model defaults.
    2. The YAML file at `path`, when given.
    3. Environment variables prefixed with "TESTDAEMON_".
    4. `overrides` (command-line flags that were actually passed).

    Args:
        path: Optional path to a YAML configuration file.
        overrides: Optional nested dict applied last.

    Returns:
        A validated and immutable `Settings` object.

    Raises:
        ConfigError: If the file is not found, cannot be parsed, or if
                     validation fails.
    """
    config: Dict[str, Any] = {}
    if path:
        logger.debug(f"Loading settings from '{path}'...")
        config = _load_config_from_yaml(Path(path))
        if not isinstance(config, dict):
            raise ConfigError(f"YAML file '{path}' must contain a mapping at the top level.")

    config = _merge_configs(config, _get_env_overrides())
    config = _merge_configs(config, overrides or {})

    try:
        return Settings.model_validate(config)
    except ValidationError as e:
        error_details = e.errors()
        error_msg = f"Configuration validation failed with {len(error_details)} error(s):\n"
        for error in error_details:
            loc = " -> ".join(map(str, error['loc'])) if error['loc'] else "root"
            error_msg += f"  - Location: {loc}\n    Message: {error['msg']}\n"

        logger.error(error_msg)
        raise ConfigError("Failed to validate settings.") from e
