"""Step handlers and the registry the pipeline resolves step names against."""

from checkpointed_etl.steps.base import (
    FunctionStep,
    NoOpStep,
    StepHandler,
    StepOutcome,
    StepRegistry,
    StepReturn,
)
from checkpointed_etl.steps.delimiter import detect_delimiter
from checkpointed_etl.steps.storage import TemporaryStorage
from checkpointed_etl.steps.tabular import (
    CreateStorage,
    DetectDelimiter,
    ParseHeaders,
    ProcessRows,
    ValidateSource,
    clean_column_name,
)

# Step registry mapping step names to built-in handler classes
STEP_REGISTRY: dict[str, type[StepHandler]] = {
    "validate": ValidateSource,
    "detect_delimiter": DetectDelimiter,
    "parse_headers": ParseHeaders,
    "create_storage": CreateStorage,
    "process_rows": ProcessRows,
}

# Default step order for delimited text imports
TABULAR_PIPELINE = [
    "validate",
    "detect_delimiter",
    "parse_headers",
    "create_storage",
    "process_rows",
]


def default_registry() -> StepRegistry:
    """
    Build a registry holding every built-in step.

    Returns:
        New StepRegistry; callers may register more handlers on it
    """
    return StepRegistry(handler_class() for handler_class in STEP_REGISTRY.values())


__all__ = [
    "STEP_REGISTRY",
    "TABULAR_PIPELINE",
    "default_registry",
    "StepHandler",
    "StepOutcome",
    "StepReturn",
    "StepRegistry",
    "FunctionStep",
    "NoOpStep",
    "ValidateSource",
    "DetectDelimiter",
    "ParseHeaders",
    "CreateStorage",
    "ProcessRows",
    "TemporaryStorage",
    "clean_column_name",
    "detect_delimiter",
]
