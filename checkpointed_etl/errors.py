"""Exception hierarchy for the pipeline engine.

Step failures travel as ``Err(StepError)`` values inside the executor; the
exceptions below are reserved for conditions the caller must see.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline engine errors."""

    pass


class StateStoreError(PipelineError):
    """State location could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class MemoryLimitExceededError(PipelineError):
    """Resident memory went over the configured ceiling."""

    def __init__(self, usage: int, limit: int, message: str) -> None:
        self.usage = usage
        self.limit = limit
        super().__init__(message)


class UnknownStepError(PipelineError):
    """A step name has no registered handler."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown step: {name}")


class PipelineConfigError(PipelineError):
    """The declared step list cannot run as assembled."""

    pass


class PipelinePausedError(PipelineError):
    """The run is paused and must be resumed before processing continues."""

    def __init__(self, state_hash: str) -> None:
        self.state_hash = state_hash
        super().__init__(f"Pipeline run {state_hash[:16]} is paused; call resume() first")


class TransitionError(PipelineError):
    """Invalid run status transition."""

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status} -> {to_status}")
