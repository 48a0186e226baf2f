"""Checkpointed pipeline execution."""

from checkpointed_etl.pipeline.context import ExecutionContext
from checkpointed_etl.pipeline.executor import ImportPipeline
from checkpointed_etl.pipeline.result import ImportResult

__all__ = ["ExecutionContext", "ImportPipeline", "ImportResult"]
