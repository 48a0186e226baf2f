from __future__ import annotations

import pytest

from checkpointed_etl.errors import TransitionError
from checkpointed_etl.state.snapshot import (
    RunStatus,
    StateSnapshot,
    StepRecord,
    StepStatus,
    check_transition,
    minimal_recovery_state,
    validate_structure,
)


def test_validate_structure_accepts_minimal_document() -> None:
    assert validate_structure({"status": "processing", "updated_at": 1700000000})
    assert validate_structure({"status": "paused", "updated_at": 1700000000.5})


@pytest.mark.parametrize(
    "document",
    [
        None,
        [],
        "started",
        {"updated_at": 1},
        {"status": "started"},
        {"status": "running", "updated_at": 1},
        {"status": "started", "updated_at": "1"},
        {"status": "started", "updated_at": True},
        {"status": "processing", "updated_at": 1, "current_step_index": "abc"},
        {"status": "processing", "updated_at": 1, "context": "oops"},
        {"status": "processing", "updated_at": 1, "options": ["a"]},
        {"status": "processing", "updated_at": 1, "errors": "boom"},
        {"status": "processing", "updated_at": 1, "step_progress": []},
        {"status": "processing", "updated_at": 1, "step_progress": {"validate": "done"}},
        {"status": "processing", "updated_at": 1, "step_progress": {"validate": {"processed": "x"}}},
    ],
)
def test_validate_structure_rejects_invalid(document) -> None:
    assert not validate_structure(document)


def test_minimal_recovery_state_is_valid() -> None:
    state = minimal_recovery_state()

    assert validate_structure(state)
    assert state["status"] == "started"
    assert state["current_step"] == "recovery"
    assert state["current_step_index"] == 0
    assert state["step_progress"] == {}
    assert state["context"] == {}
    assert state["recovered"] is True
    assert isinstance(state["recovery_at"], int)


def test_snapshot_defaults_missing_fields_and_keeps_unknown() -> None:
    snapshot = StateSnapshot.from_dict({
        "status": "processing",
        "updated_at": 5,
        "memory_warning": True,
        "step_progress": {"validate": {"status": "completed", "processed": 3}},
    })

    assert snapshot.status == RunStatus.PROCESSING
    assert snapshot.current_step == "initial"
    assert snapshot.current_step_index == 0
    assert snapshot.context == {}
    assert snapshot.step_progress["validate"].processed == 3
    assert snapshot.step_progress["validate"].errors == []
    assert snapshot.extra == {"memory_warning": True}
    assert snapshot.completed_steps() == ["validate"]

    data = snapshot.to_dict()
    assert data["memory_warning"] is True
    assert data["step_progress"]["validate"]["status"] == "completed"


def test_step_record_round_trip_keeps_failure_details() -> None:
    record = StepRecord(status=StepStatus.FAILED, failed_at=10, error="boom", errors=["boom"])
    data = record.to_dict()

    assert "completed_at" not in data
    assert StepRecord.from_dict(data) == record
    assert not record.is_completed


def test_transitions() -> None:
    check_transition(RunStatus.STARTED, RunStatus.PROCESSING)
    check_transition(RunStatus.PAUSED, RunStatus.PROCESSING)
    check_transition(RunStatus.COMPLETED, RunStatus.PROCESSING)
    check_transition(RunStatus.FAILED, RunStatus.PROCESSING)

    with pytest.raises(TransitionError):
        check_transition(RunStatus.COMPLETED, RunStatus.PAUSED)
    with pytest.raises(TransitionError):
        check_transition(RunStatus.PAUSED, RunStatus.COMPLETED)

    assert RunStatus.FAILED.is_terminal()
    assert not RunStatus.PAUSED.is_terminal()
