"""Deferred deletion of completed run snapshots."""

from __future__ import annotations

import json
from typing import Optional

from checkpointed_etl.state.repository import StateRepository
from checkpointed_etl.state.snapshot import now as current_time
from checkpointed_etl.utils.logging import get_logger

logger = get_logger("state.cleanup")

# Default retention after completion, in seconds
DEFAULT_RETENTION = 3600


def schedule_cleanup(
    repository: StateRepository,
    key: str,
    retention_seconds: int = DEFAULT_RETENTION,
    now: Optional[int] = None,
) -> int:
    """
    Mark a snapshot for deletion ``retention_seconds`` from now.

    Returns:
        The scheduled deletion time (epoch seconds)
    """
    scheduled_at = (current_time() if now is None else now) + retention_seconds
    repository.update(key, {
        "cleanup_scheduled_at": scheduled_at,
        "cleanup_after": retention_seconds,
    })
    logger.debug("cleanup_scheduled", key=key[:16], scheduled_at=scheduled_at)
    return scheduled_at


def cleanup_expired_states(repository: StateRepository, now: Optional[int] = None) -> int:
    """
    Delete every snapshot whose scheduled deletion time has passed.

    Best effort: an entry that cannot be read or deleted is logged and
    skipped. Unparseable entries are left alone.

    Returns:
        Number of snapshots deleted
    """
    current = current_time() if now is None else now
    cleaned = 0

    for key in list(repository.keys()):
        try:
            content = repository.read_bytes(key)
            if not content:
                continue

            state = json.loads(content)
            if not isinstance(state, dict):
                continue

            scheduled_at = state.get("cleanup_scheduled_at")
            if scheduled_at and current >= scheduled_at:
                if repository.delete(key):
                    cleaned += 1
                    logger.info("state_cleaned", key=key[:16])
        except Exception as e:
            logger.warning("cleanup_entry_failed", key=key[:16], error=str(e))
            continue

    logger.info("cleanup_completed", cleaned=cleaned)
    return cleaned
