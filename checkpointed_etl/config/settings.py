"""Configuration for the pipeline engine.

Configuration can be loaded from a YAML file, overridden from the
environment and validated at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from checkpointed_etl.state.cleanup import DEFAULT_RETENTION
from checkpointed_etl.utils.memory import parse_memory_limit
from checkpointed_etl.utils.result import ConfigError, Err, Ok, Result

# Environment overrides
ENV_STATE_PATH = "CHECKPOINTED_ETL_STATE_PATH"
ENV_MEMORY_LIMIT = "CHECKPOINTED_ETL_MEMORY_LIMIT"

DEFAULT_CONFIG_FILE = Path("./config/pipeline.yaml")
DEFAULT_STATE_PATH = "./state"

STATE_DRIVERS = ("file", "memory")
LOG_LEVELS = ("debug", "info", "warn", "warning", "error")
LOG_FORMATS = ("json", "text")


@dataclass
class StateConfig:
    """Where and how run snapshots are stored."""

    driver: str = "file"
    path: str = DEFAULT_STATE_PATH

    # Seconds a completed snapshot is kept before cleanup may delete it
    cleanup_after: int = DEFAULT_RETENTION


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"


@dataclass
class PipelineConfig:
    """
    Complete engine configuration.

    ``driver`` names the source driver and is part of the state hash;
    ``driver_config`` is handed to every step handler.
    """

    memory_limit: str = "256M"
    strict_steps: bool = True
    driver: str = "csv"
    driver_config: dict[str, Any] = field(default_factory=dict)
    steps: list[str] = field(default_factory=list)
    use_temp_storage: bool = False

    state: StateConfig = field(default_factory=StateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> Result["PipelineConfig", ConfigError]:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Result with loaded config or error
        """
        path = Path(path)

        if not path.exists():
            return Err(ConfigError(
                field="path",
                message=f"Configuration file not found: {path}",
            ))

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            return Err(ConfigError(
                field="yaml",
                message=f"Failed to parse YAML: {e}",
            ))
        except OSError as e:
            return Err(ConfigError(
                field="file",
                message=f"Failed to read config file: {e}",
            ))

        if not isinstance(data, dict):
            return Err(ConfigError(
                field="yaml",
                message="Top-level YAML value must be a mapping",
            ))

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Result["PipelineConfig", ConfigError]:
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Result with loaded config or error
        """
        try:
            state_data = data.get("state", {}) or {}
            state = StateConfig(
                driver=str(state_data.get("driver", "file")),
                path=str(state_data.get("path", DEFAULT_STATE_PATH)),
                cleanup_after=int(state_data.get("cleanup_after", DEFAULT_RETENTION)),
            )

            logging_data = data.get("logging", {}) or {}
            logging_config = LoggingConfig(
                level=str(logging_data.get("level", "info")),
                format=str(logging_data.get("format", "json")),
            )

            config = cls(
                memory_limit=str(data.get("memory_limit", "256M")),
                strict_steps=bool(data.get("strict_steps", True)),
                driver=str(data.get("driver", "csv")),
                driver_config=dict(data.get("driver_config", {}) or {}),
                steps=[str(step) for step in data.get("steps", []) or []],
                use_temp_storage=bool(data.get("use_temp_storage", False)),
                state=state,
                logging=logging_config,
            )

            return Ok(config)

        except (TypeError, ValueError, AttributeError) as e:
            return Err(ConfigError(
                field="unknown",
                message=f"Failed to parse configuration: {e}",
            ))

    def with_env_overrides(self, environ: Optional[dict[str, str]] = None) -> "PipelineConfig":
        """Apply ``CHECKPOINTED_ETL_*`` environment overrides in place."""
        environ = os.environ if environ is None else environ

        state_path = environ.get(ENV_STATE_PATH)
        if state_path:
            self.state.path = state_path

        memory_limit = environ.get(ENV_MEMORY_LIMIT)
        if memory_limit:
            self.memory_limit = memory_limit

        return self

    def validate(self) -> Result[None, ConfigError]:
        """
        Validate configuration values.

        Returns:
            Result indicating success or validation error
        """
        try:
            parse_memory_limit(self.memory_limit)
        except ValueError as e:
            return Err(ConfigError(field="memory_limit", message=str(e)))

        if self.state.driver not in STATE_DRIVERS:
            return Err(ConfigError(
                field="state.driver",
                message=f"Must be one of {', '.join(STATE_DRIVERS)}, got {self.state.driver}",
            ))

        if self.state.driver == "file" and not self.state.path:
            return Err(ConfigError(
                field="state.path",
                message="Required for the file state driver",
            ))

        if self.state.cleanup_after < 0:
            return Err(ConfigError(
                field="state.cleanup_after",
                message=f"Must not be negative, got {self.state.cleanup_after}",
            ))

        if not self.driver:
            return Err(ConfigError(field="driver", message="Must not be empty"))

        if self.logging.level.lower() not in LOG_LEVELS:
            return Err(ConfigError(
                field="logging.level",
                message=f"Must be one of {', '.join(LOG_LEVELS)}, got {self.logging.level}",
            ))

        if self.logging.format.lower() not in LOG_FORMATS:
            return Err(ConfigError(
                field="logging.format",
                message=f"Must be one of {', '.join(LOG_FORMATS)}, got {self.logging.format}",
            ))

        return Ok(None)


def load_config(
    path: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
) -> Result[PipelineConfig, ConfigError]:
    """
    Load configuration from the standard location.

    Reads ``path`` (default ./config/pipeline.yaml; built-in defaults when
    that file does not exist), applies environment overrides and validates.

    Args:
        path: YAML configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Result with loaded config or error
    """
    if path is None and DEFAULT_CONFIG_FILE.exists():
        path = DEFAULT_CONFIG_FILE

    if path is None:
        config = PipelineConfig()
    else:
        result = PipelineConfig.from_yaml(Path(path))
        if result.is_err():
            return result
        config = result.unwrap()

    config.with_env_overrides(environ)

    # Validate final config
    validation_result = config.validate()
    if validation_result.is_err():
        return Err(validation_result.unwrap_err())

    return Ok(config)
