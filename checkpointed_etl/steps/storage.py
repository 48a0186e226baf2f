"""SQLite-backed temporary storage for imported rows."""

from __future__ import annotations

import os
import sqlite3
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from checkpointed_etl.utils.logging import get_logger

logger = get_logger("steps.storage")

TABLE_NAME = "import_rows"


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class TemporaryStorage:
    """
    Single-table row store living in a SQLite file.

    The file path is what gets persisted in the run context; the open
    connection is rebuilt with ``open()`` after a resume.
    """

    def __init__(self, path: str | Path, columns: Sequence[str]) -> None:
        self.path = Path(path)
        self.columns = list(columns)
        self._conn: Optional[sqlite3.Connection] = None

    @classmethod
    def create(cls, columns: Sequence[str], path: Optional[str | Path] = None) -> TemporaryStorage:
        """Create a fresh storage file with one TEXT column per header."""
        if path is None:
            fd, name = tempfile.mkstemp(prefix="etl-storage-", suffix=".sqlite")
            os.close(fd)
            path = name

        storage = cls(path, columns)
        conn = storage.connection
        column_sql = ", ".join(f"{_quote(c)} TEXT" for c in storage.columns)
        conn.execute(f"DROP TABLE IF EXISTS {TABLE_NAME}")
        conn.execute(f"CREATE TABLE {TABLE_NAME} ({column_sql})")
        conn.commit()

        logger.info("storage_created", path=str(storage.path), columns=len(storage.columns))
        return storage

    @classmethod
    def open(cls, path: str | Path, columns: Sequence[str]) -> TemporaryStorage:
        """Reopen storage created by an earlier invocation."""
        if not Path(path).exists():
            raise FileNotFoundError(f"Temporary storage not found: {path}")
        return cls(path, columns)

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.path))
        return self._conn

    def insert_batch(self, rows: Sequence[Sequence[str]]) -> int:
        """
        Insert rows whose width matches the column count.

        Returns:
            Number of rows inserted
        """
        width = len(self.columns)
        valid = [tuple(row) for row in rows if len(row) == width]
        if not valid:
            return 0

        placeholders = ", ".join("?" for _ in range(width))
        self.connection.executemany(
            f"INSERT INTO {TABLE_NAME} VALUES ({placeholders})",
            valid,
        )
        self.connection.commit()
        return len(valid)

    def count(self) -> int:
        cursor = self.connection.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}")
        return int(cursor.fetchone()[0])

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
