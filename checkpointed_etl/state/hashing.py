"""State hash generation and resume-validity checks.

A run is identified by a fingerprint over its inputs. Modification time and
size stand in for a content digest so the resume check stays O(1) even for
very large sources.
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from checkpointed_etl.state.snapshot import StateSnapshot
from checkpointed_etl.utils.logging import get_logger

logger = get_logger("state.hashing")


@dataclass(frozen=True)
class SourceFingerprint:
    """Identity, modification time (ns) and size of a source file."""

    identity: str
    mtime: Optional[int]
    size: Optional[int]

    @classmethod
    def of(cls, source: str | Path) -> SourceFingerprint:
        """Fingerprint a source; mtime and size are None if it is missing."""
        path = Path(source)
        try:
            stat = path.stat()
        except OSError:
            return cls(identity=os.path.abspath(path), mtime=None, size=None)
        return cls(
            identity=os.path.realpath(path),
            mtime=stat.st_mtime_ns,
            size=stat.st_size,
        )

    @property
    def exists(self) -> bool:
        return self.size is not None


def canonical_json(data: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace, str() for the rest."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def generate_state_hash(
    source: str | Path,
    options: Optional[Mapping[str, Any]] = None,
    driver_config: Optional[Mapping[str, Any]] = None,
    driver: str = "csv",
) -> str:
    """
    Generate the state hash identifying a logical run.

    Args:
        source: Path of the data source
        options: Per-invocation options
        driver_config: Driver configuration
        driver: Driver name

    Returns:
        Full SHA256 hex digest
    """
    fingerprint = SourceFingerprint.of(source)
    payload = {
        "source": fingerprint.identity,
        "source_mtime": fingerprint.mtime,
        "source_size": fingerprint.size,
        "driver": driver,
        "options": dict(options or {}),
        "driver_config": dict(driver_config or {}),
    }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def is_snapshot_valid(snapshot: StateSnapshot, source: str | Path) -> bool:
    """
    Check whether a snapshot can be resumed against ``source``.

    False if the source is missing or its modification time or size differs
    from the fingerprint recorded when the snapshot was created.
    """
    fingerprint = SourceFingerprint.of(source)
    if not fingerprint.exists:
        logger.info("resume_rejected", reason="source_missing", source=str(source))
        return False

    if snapshot.source_mtime is not None and snapshot.source_mtime != fingerprint.mtime:
        logger.info("resume_rejected", reason="mtime_changed", source=str(source))
        return False

    if snapshot.source_size is not None and snapshot.source_size != fingerprint.size:
        logger.info("resume_rejected", reason="size_changed", source=str(source))
        return False

    return True
