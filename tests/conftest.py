from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

from checkpointed_etl.state.repository import InMemoryStateRepository
from checkpointed_etl.utils.logging import clear_run_context, configure_logging
from checkpointed_etl.utils.memory import MemoryGovernor

MB = 1024 * 1024


class FakeProbe:
    """Memory probe returning a settable resident size."""

    def __init__(self, usage: int = 10 * MB) -> None:
        self.usage = usage

    def __call__(self) -> int:
        return self.usage


@pytest.fixture(autouse=True)
def _logging() -> Iterator[None]:
    # CLI tests reconfigure logging onto a stream that is closed afterwards
    configure_logging(level="debug", stream=sys.stderr)
    yield
    clear_run_context()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def governor(probe: FakeProbe) -> MemoryGovernor:
    return MemoryGovernor("256M", probe=probe)


@pytest.fixture
def repository() -> InMemoryStateRepository:
    return InMemoryStateRepository()


@pytest.fixture
def csv_file(tmp_path: Path) -> Path:
    path = tmp_path / "people.csv"
    lines = ["First Name,Last Name,Age (years)"]
    lines += [f"name{i},surname{i},{20 + i}" for i in range(10)]
    path.write_text("\n".join(lines) + "\n")
    return path
