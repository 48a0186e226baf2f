"""State repositories: durable storage of run snapshots keyed by state hash.

``StateRepository`` implements initialize/update/load and corruption
recovery on top of a handful of storage primitives, so the file-backed and
in-memory backends share exactly the same semantics.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, Optional

from checkpointed_etl.errors import StateStoreError
from checkpointed_etl.state.snapshot import (
    StateSnapshot,
    minimal_recovery_state,
    now,
    validate_structure,
)
from checkpointed_etl.utils.atomic import AtomicWriteError, atomic_write_text
from checkpointed_etl.utils.logging import get_logger

logger = get_logger("state.repository")


def _encode(data: dict) -> str:
    try:
        return json.dumps(data, indent=2)
    except (TypeError, ValueError) as e:
        raise StateStoreError(f"Failed to encode state data to JSON: {e}") from e


class StateRepository(ABC):
    """Snapshot storage keyed by state hash."""

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a snapshot is stored under ``key``."""

    @abstractmethod
    def read_bytes(self, key: str) -> Optional[bytes]:
        """Raw stored document, or None if absent."""

    @abstractmethod
    def write_text(self, key: str, content: str) -> None:
        """Replace the stored document atomically."""

    @abstractmethod
    def write_backup(self, key: str, content: bytes, timestamp: int) -> str:
        """Keep a copy of a corrupt document; returns its location."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a stored snapshot. Returns True if something was deleted."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """All stored state hashes."""

    # ------------------------------------------------------------------
    # Snapshot operations
    # ------------------------------------------------------------------

    def initialize(self, key: str, data: dict[str, Any]) -> None:
        """Write the first snapshot of a run, overwriting anything stored."""
        document = dict(data)
        document["updated_at"] = now()
        self.write_text(key, _encode(document))
        logger.debug("state_initialized", key=key[:16])

    def update(self, key: str, partial: dict[str, Any]) -> None:
        """Shallow-merge ``partial`` into the stored snapshot."""
        document = self.load_raw(key) or {}
        document.update(partial)
        document["updated_at"] = now()
        self.write_text(key, _encode(document))

    def load_raw(self, key: str) -> Optional[dict[str, Any]]:
        """
        Load the stored document as a dictionary.

        Corrupt documents (undecodable, unparseable, or failing
        ``validate_structure``) are backed up and replaced by a minimal
        recovery snapshot, which is then returned.
        Returns None if nothing is stored or the document is empty.
        """
        content = self.read_bytes(key)
        if not content:
            return None

        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("state_corrupt", key=key[:16], reason="invalid_encoding", error=str(e))
            return self._recover(key, content)

        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("state_corrupt", key=key[:16], reason="invalid_json", error=str(e))
            return self._recover(key, content)

        if not validate_structure(decoded):
            logger.warning("state_corrupt", key=key[:16], reason="invalid_structure")
            return self._recover(key, content)

        return decoded

    def load(self, key: str) -> Optional[StateSnapshot]:
        """Load the stored snapshot, recovering from corruption if needed."""
        document = self.load_raw(key)
        if document is None:
            return None
        return StateSnapshot.from_dict(document)

    def recover(self, key: str) -> bool:
        """
        Force the recovery path for a stored snapshot.

        Returns:
            False if nothing is stored or recovery could not be written
        """
        content = self.read_bytes(key)
        if content is None:
            return False
        try:
            self._recover(key, content)
        except StateStoreError as e:
            logger.error("state_recovery_failed", key=key[:16], error=str(e))
            return False
        return True

    def _recover(self, key: str, content: bytes) -> dict[str, Any]:
        timestamp = now()
        backup = self.write_backup(key, content, timestamp)

        recovered = minimal_recovery_state()
        self.write_text(key, _encode(recovered))
        logger.warning("state_recovered", key=key[:16], backup=backup)

        # Re-read what was written so callers see the persisted document
        reread = self.read_bytes(key)
        decoded = json.loads(reread) if reread else None
        if not validate_structure(decoded):
            raise StateStoreError(f"Recovery snapshot for {key[:16]} is unreadable")
        return decoded


class FileStateRepository(StateRepository):
    """One ``<hash>.json`` document per run inside a state directory."""

    def __init__(self, path: str | Path) -> None:
        """
        Initialize the repository.

        Args:
            path: State directory, created on first use
        """
        self.path = Path(path)

    def _ensure_dir(self) -> Path:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(
                f"Failed to create state directory: {self.path}: {e}",
                path=str(self.path),
            ) from e
        return self.path

    def state_path(self, key: str) -> Path:
        """File path for a state hash."""
        return self.path / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self.state_path(key).exists()

    def read_bytes(self, key: str) -> Optional[bytes]:
        path = self.state_path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StateStoreError(f"Failed to read state file: {path}: {e}", path=str(path)) from e

    def write_text(self, key: str, content: str) -> None:
        self._ensure_dir()
        path = self.state_path(key)
        try:
            atomic_write_text(path, content)
        except AtomicWriteError as e:
            raise StateStoreError(f"State save failed: {e}", path=str(path)) from e

    def write_backup(self, key: str, content: bytes, timestamp: int) -> str:
        backup = Path(f"{self.state_path(key)}.backup.{timestamp}")
        try:
            backup.write_bytes(content)
        except OSError as e:
            raise StateStoreError(f"Failed to back up state file: {backup}: {e}", path=str(backup)) from e
        return str(backup)

    def delete(self, key: str) -> bool:
        path = self.state_path(key)
        if not path.exists():
            return False
        path.unlink()
        lock = Path(f"{path}.lock")
        if lock.exists():
            lock.unlink()
        return True

    def keys(self) -> Iterator[str]:
        if not self.path.is_dir():
            return iter(())
        return iter(sorted(p.stem for p in self.path.glob("*.json")))

    def backups(self, key: str) -> list[Path]:
        """Backups written for a state hash, oldest first."""
        return sorted(self.path.glob(f"{key}.json.backup.*"))


class InMemoryStateRepository(StateRepository):
    """Dictionary-backed repository for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._documents: dict[str, bytes] = {}
        self.backup_documents: dict[str, bytes] = {}

    def exists(self, key: str) -> bool:
        return key in self._documents

    def read_bytes(self, key: str) -> Optional[bytes]:
        return self._documents.get(key)

    def write_text(self, key: str, content: str) -> None:
        self._documents[key] = content.encode("utf-8")

    def write_backup(self, key: str, content: bytes, timestamp: int) -> str:
        name = f"{key}.json.backup.{timestamp}"
        self.backup_documents[name] = content
        return name

    def delete(self, key: str) -> bool:
        return self._documents.pop(key, None) is not None

    def keys(self) -> Iterator[str]:
        return iter(sorted(self._documents))


def create_repository(driver: str = "file", path: Optional[str | Path] = None) -> StateRepository:
    """
    Build a repository for a configured state driver.

    Args:
        driver: "file" or "memory"
        path: State directory for the file driver

    Raises:
        ValueError: If the driver is unknown or the file driver has no path
    """
    if driver == "memory":
        return InMemoryStateRepository()
    if driver == "file":
        if path is None:
            raise ValueError("The file state driver requires a path")
        return FileStateRepository(path)
    raise ValueError(f"Unknown state driver: {driver}")
