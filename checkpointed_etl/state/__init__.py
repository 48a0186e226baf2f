"""Durable run state for the pipeline engine.

Snapshots are keyed by a state hash over the run's inputs:

    process(source, options) -> hash -> load snapshot -> valid? resume : start fresh

Storage goes through a StateRepository so file-backed and in-memory
backends behave identically, including corruption recovery.
"""

from checkpointed_etl.state.cleanup import cleanup_expired_states, schedule_cleanup
from checkpointed_etl.state.hashing import (
    SourceFingerprint,
    generate_state_hash,
    is_snapshot_valid,
)
from checkpointed_etl.state.repository import (
    FileStateRepository,
    InMemoryStateRepository,
    StateRepository,
    create_repository,
)
from checkpointed_etl.state.snapshot import (
    TRANSITIONS,
    RunStatus,
    StateSnapshot,
    StepRecord,
    StepStatus,
    validate_structure,
)

__all__ = [
    # Snapshot model
    "RunStatus",
    "StepStatus",
    "StepRecord",
    "StateSnapshot",
    "TRANSITIONS",
    "validate_structure",
    # Hashing
    "SourceFingerprint",
    "generate_state_hash",
    "is_snapshot_valid",
    # Repositories
    "StateRepository",
    "FileStateRepository",
    "InMemoryStateRepository",
    "create_repository",
    # Cleanup
    "schedule_cleanup",
    "cleanup_expired_states",
]
