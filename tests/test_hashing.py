from __future__ import annotations

import os
from pathlib import Path

from checkpointed_etl.state.hashing import (
    SourceFingerprint,
    generate_state_hash,
    is_snapshot_valid,
)
from checkpointed_etl.state.snapshot import StateSnapshot


def _snapshot_for(path: Path) -> StateSnapshot:
    fingerprint = SourceFingerprint.of(path)
    return StateSnapshot(
        source=str(path),
        source_mtime=fingerprint.mtime,
        source_size=fingerprint.size,
    )


def test_hash_is_deterministic_and_ignores_option_order(csv_file: Path) -> None:
    first = generate_state_hash(csv_file, {"a": 1, "b": 2}, {"delimiter": ","})
    second = generate_state_hash(csv_file, {"b": 2, "a": 1}, {"delimiter": ","})

    assert first == second
    assert len(first) == 64


def test_hash_changes_with_every_input(csv_file: Path, tmp_path: Path) -> None:
    base = generate_state_hash(csv_file, {"a": 1}, {"delimiter": ","}, driver="csv")

    other = tmp_path / "other.csv"
    other.write_bytes(csv_file.read_bytes())

    assert generate_state_hash(other, {"a": 1}, {"delimiter": ","}) != base
    assert generate_state_hash(csv_file, {"a": 2}, {"delimiter": ","}) != base
    assert generate_state_hash(csv_file, {"a": 1}, {"delimiter": ";"}) != base
    assert generate_state_hash(csv_file, {"a": 1}, {"delimiter": ","}, driver="tsv") != base


def test_hash_changes_when_source_is_modified(csv_file: Path) -> None:
    before = generate_state_hash(csv_file)

    stat = csv_file.stat()
    os.utime(csv_file, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    assert generate_state_hash(csv_file) != before


def test_fingerprint_of_missing_source(tmp_path: Path) -> None:
    fingerprint = SourceFingerprint.of(tmp_path / "missing.csv")

    assert not fingerprint.exists
    assert fingerprint.mtime is None
    assert fingerprint.size is None


def test_snapshot_valid_for_unchanged_source(csv_file: Path) -> None:
    assert is_snapshot_valid(_snapshot_for(csv_file), csv_file)


def test_snapshot_invalid_after_mtime_change(csv_file: Path) -> None:
    snapshot = _snapshot_for(csv_file)

    stat = csv_file.stat()
    os.utime(csv_file, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    assert not is_snapshot_valid(snapshot, csv_file)


def test_snapshot_invalid_after_size_change(csv_file: Path) -> None:
    snapshot = _snapshot_for(csv_file)
    mtime_ns = csv_file.stat().st_mtime_ns

    with open(csv_file, "a") as f:
        f.write("extra,row,1\n")
    os.utime(csv_file, ns=(mtime_ns, mtime_ns))

    assert not is_snapshot_valid(snapshot, csv_file)


def test_snapshot_invalid_for_missing_source(csv_file: Path) -> None:
    snapshot = _snapshot_for(csv_file)
    csv_file.unlink()

    assert not is_snapshot_valid(snapshot, csv_file)


def test_absent_recorded_fields_are_not_compared(csv_file: Path) -> None:
    assert is_snapshot_valid(StateSnapshot(), csv_file)
