"""Configuration module for checkpointed-etl."""

from checkpointed_etl.config.settings import (
    LoggingConfig,
    PipelineConfig,
    StateConfig,
    load_config,
)

__all__ = ["PipelineConfig", "StateConfig", "LoggingConfig", "load_config"]
