"""Utility modules for checkpointed-etl."""

from checkpointed_etl.utils.logging import (
    configure_logging,
    get_logger,
    log_step_timing,
    set_run_context,
    set_step,
)
from checkpointed_etl.utils.memory import (
    MemoryGovernor,
    MemoryWarning,
    format_bytes,
    parse_memory_limit,
)
from checkpointed_etl.utils.result import Err, Ok, Result

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "set_run_context",
    "set_step",
    "log_step_timing",
    # Memory
    "MemoryGovernor",
    "MemoryWarning",
    "format_bytes",
    "parse_memory_limit",
    # Result
    "Ok",
    "Err",
    "Result",
]
