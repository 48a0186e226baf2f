"""Persisted run state: status machine, step records and snapshots."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from checkpointed_etl.errors import TransitionError


class RunStatus(str, Enum):
    """Run-level status as written to the snapshot."""

    STARTED = "started"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        """Check if the run has finished, successfully or not."""
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


VALID_STATUSES = frozenset(status.value for status in RunStatus)

# Valid status transitions. Re-invoking process() on a completed or failed
# run is a resume and goes back to PROCESSING.
TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.STARTED: {
        RunStatus.PROCESSING,
        RunStatus.PAUSED,
        RunStatus.COMPLETED,
        RunStatus.FAILED,
    },
    RunStatus.PROCESSING: {
        RunStatus.PROCESSING,
        RunStatus.PAUSED,
        RunStatus.COMPLETED,
        RunStatus.FAILED,
    },
    RunStatus.PAUSED: {RunStatus.PAUSED, RunStatus.PROCESSING},
    RunStatus.COMPLETED: {RunStatus.COMPLETED, RunStatus.PROCESSING},
    RunStatus.FAILED: {RunStatus.FAILED, RunStatus.PROCESSING},
}


def check_transition(current: RunStatus, new: RunStatus) -> None:
    """
    Validate a status transition.

    Raises:
        TransitionError: If the transition is not allowed
    """
    if new not in TRANSITIONS.get(current, set()):
        raise TransitionError(current.value, new.value)


def now() -> int:
    """Current time as integer epoch seconds (snapshot timestamp unit)."""
    return int(time.time())


class StepStatus(str, Enum):
    """Final status of a single step."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StepRecord:
    """Outcome of one step as persisted under ``step_progress``."""

    status: StepStatus
    processed: int = 0
    imported: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    completed_at: Optional[int] = None
    failed_at: Optional[int] = None
    error: Optional[str] = None
    memory_usage: int = 0
    memory_peak: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status == StepStatus.COMPLETED

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "status": self.status.value,
            "processed": self.processed,
            "imported": self.imported,
            "failed": self.failed,
            "errors": list(self.errors),
            "memory_usage": self.memory_usage,
            "memory_peak": self.memory_peak,
        }
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at
        if self.failed_at is not None:
            data["failed_at"] = self.failed_at
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> StepRecord:
        """Create from dictionary, defaulting missing optional fields."""
        try:
            status = StepStatus(data.get("status", StepStatus.COMPLETED.value))
        except ValueError:
            status = StepStatus.FAILED
        return cls(
            status=status,
            processed=int(data.get("processed", 0) or 0),
            imported=int(data.get("imported", 0) or 0),
            failed=int(data.get("failed", 0) or 0),
            errors=list(data.get("errors", []) or []),
            completed_at=data.get("completed_at"),
            failed_at=data.get("failed_at"),
            error=data.get("error"),
            memory_usage=int(data.get("memory_usage", 0) or 0),
            memory_peak=int(data.get("memory_peak", 0) or 0),
        )


# Keys with a dedicated StateSnapshot attribute; everything else lands in extra
_KNOWN_KEYS = (
    "status",
    "current_step",
    "current_step_index",
    "step_progress",
    "context",
    "source",
    "source_mtime",
    "source_size",
    "options",
    "started_at",
    "updated_at",
    "completed_at",
    "cleanup_scheduled_at",
    "cleanup_after",
    "errors",
    "recovered",
)


@dataclass
class StateSnapshot:
    """Durable representation of a run's progress and context."""

    status: RunStatus = RunStatus.STARTED
    current_step: str = "initial"
    current_step_index: int = 0
    step_progress: dict[str, StepRecord] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    source_mtime: Optional[int] = None
    source_size: Optional[int] = None
    options: dict[str, Any] = field(default_factory=dict)
    started_at: Optional[int] = None
    updated_at: Optional[int] = None
    completed_at: Optional[int] = None
    cleanup_scheduled_at: Optional[int] = None
    cleanup_after: Optional[int] = None
    errors: list[str] = field(default_factory=list)
    recovered: bool = False

    # Unknown fields written by other tools or newer versions
    extra: dict[str, Any] = field(default_factory=dict)

    def completed_steps(self) -> list[str]:
        """Names of steps recorded as completed."""
        return [name for name, record in self.step_progress.items() if record.is_completed]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = dict(self.extra)
        data.update({
            "status": self.status.value,
            "current_step": self.current_step,
            "current_step_index": self.current_step_index,
            "step_progress": {
                name: record.to_dict() for name, record in self.step_progress.items()
            },
            "context": self.context,
            "source": self.source,
            "source_mtime": self.source_mtime,
            "source_size": self.source_size,
            "options": self.options,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "cleanup_scheduled_at": self.cleanup_scheduled_at,
            "cleanup_after": self.cleanup_after,
            "errors": list(self.errors),
            "recovered": self.recovered,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> StateSnapshot:
        """
        Create from a structurally valid dictionary.

        Missing optional fields default to empty/zero and unknown fields are
        kept in ``extra``.
        """
        progress = data.get("step_progress") or {}
        if not isinstance(progress, dict):
            progress = {}

        return cls(
            status=RunStatus(data["status"]),
            current_step=data.get("current_step") or "initial",
            current_step_index=int(data.get("current_step_index", 0) or 0),
            step_progress={
                str(name): StepRecord.from_dict(record)
                for name, record in progress.items()
                if isinstance(record, dict)
            },
            context=dict(data.get("context") or {}),
            source=data.get("source"),
            source_mtime=data.get("source_mtime"),
            source_size=data.get("source_size"),
            options=dict(data.get("options") or {}),
            started_at=data.get("started_at"),
            updated_at=data.get("updated_at"),
            completed_at=data.get("completed_at"),
            cleanup_scheduled_at=data.get("cleanup_scheduled_at"),
            cleanup_after=data.get("cleanup_after"),
            errors=list(data.get("errors") or []),
            recovered=bool(data.get("recovered", False)),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )


REQUIRED_KEYS = ("status", "updated_at")


def validate_structure(data: Any) -> bool:
    """
    Check that a decoded document can be read as a snapshot.

    Requires a mapping with every required key, a known status and a
    numeric ``updated_at``. Optional fields must have the types
    ``StateSnapshot.from_dict`` can read.
    """
    if not isinstance(data, dict):
        return False

    for key in REQUIRED_KEYS:
        if key not in data:
            return False

    if data["status"] not in VALID_STATUSES:
        return False

    updated_at = data["updated_at"]
    if isinstance(updated_at, bool) or not isinstance(updated_at, (int, float)):
        return False

    for key in ("step_progress", "context", "options"):
        if data.get(key) is not None and not isinstance(data[key], dict):
            return False

    if data.get("errors") is not None and not isinstance(data["errors"], list):
        return False

    progress = data.get("step_progress") or {}
    if not all(isinstance(record, dict) for record in progress.values()):
        return False

    try:
        StateSnapshot.from_dict(data)
    except (TypeError, ValueError):
        return False

    return True


def minimal_recovery_state() -> dict:
    """Fresh snapshot written in place of a corrupt one."""
    timestamp = now()
    return {
        "status": RunStatus.STARTED.value,
        "current_step": "recovery",
        "current_step_index": 0,
        "step_progress": {},
        "context": {},
        "started_at": timestamp,
        "updated_at": timestamp,
        "recovered": True,
        "recovery_at": timestamp,
    }
