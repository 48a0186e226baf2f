"""Atomic file operations to prevent state corruption.

Writes go to a temporary file in the target directory which is then renamed
over the target, under an exclusive advisory lock held on a sidecar
``<name>.lock`` file. A crash mid-write never leaves a half-written file
visible to a later reader.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from checkpointed_etl.utils.logging import get_logger

logger = get_logger("utils.atomic")


class AtomicWriteError(Exception):
    """Raised when an atomic write operation fails."""

    pass


@contextmanager
def file_lock(path: Path) -> Generator[None, None, None]:
    """
    Hold an exclusive advisory lock for ``path`` for the duration of the block.

    The lock is taken on ``<path>.lock`` so the target itself can be replaced
    by rename while the lock is held. This serializes writers within one host;
    it is not a distributed lock.
    """
    lock_path = Path(f"{path}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def atomic_write(
    path: Path,
    mode: str = "w",
    encoding: str = "utf-8",
) -> Generator[Any, None, None]:
    """
    Context manager for atomic file writes.

    Writes to a temporary file first, then atomically renames to the target path.
    If any error occurs, the temp file is cleaned up and the original is untouched.

    Args:
        path: Target file path
        mode: File mode ('w' for text, 'wb' for binary)
        encoding: Text encoding (ignored for binary mode)

    Yields:
        File handle for writing

    Raises:
        AtomicWriteError: If the atomic write fails

    Example:
        with atomic_write(Path("state.json")) as f:
            json.dump(data, f)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )

    temp_path = Path(temp_name)
    success = False

    try:
        os.close(fd)

        with file_lock(path):
            if "b" in mode:
                with open(temp_path, mode) as f:
                    yield f
                    f.flush()
                    os.fsync(f.fileno())
            else:
                with open(temp_path, mode, encoding=encoding) as f:
                    yield f
                    f.flush()
                    os.fsync(f.fileno())

            temp_path.replace(path)
        success = True

        logger.debug("atomic_write_success", path=str(path))

    except Exception as e:
        logger.error("atomic_write_failed", path=str(path), error=str(e))
        raise AtomicWriteError(f"Failed to atomically write {path}: {e}") from e

    finally:
        if not success and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Atomically write text content to a file.

    Args:
        path: Target file path
        content: Text content to write
        encoding: Text encoding
    """
    with atomic_write(path, encoding=encoding) as f:
        f.write(content)
