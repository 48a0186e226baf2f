"""Process memory governor.

Cooperative backpressure for the step loop: the executor checks memory at
least once per step (and step handlers may check between chunks through
the context checkpoint hook).
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import psutil

from checkpointed_etl.errors import MemoryLimitExceededError
from checkpointed_etl.utils.logging import get_logger

logger = get_logger("utils.memory")

# Peak usage above this share of the limit triggers a persisted warning
WARNING_THRESHOLD = 0.9

_UNITS = {
    "K": 1024,
    "M": 1024 * 1024,
    "G": 1024 * 1024 * 1024,
}


def parse_memory_limit(limit: str | int) -> int:
    """
    Parse a human-readable size ("256M", "1G", "512K", "1048576") into bytes.

    Raises:
        ValueError: If the value cannot be parsed or is not positive
    """
    if isinstance(limit, int):
        value = limit
    else:
        text = str(limit).strip().upper()
        if text.endswith("B"):
            text = text[:-1]
        if not text:
            raise ValueError(f"Invalid memory limit: {limit!r}")

        unit = text[-1]
        try:
            if unit in _UNITS:
                value = int(float(text[:-1]) * _UNITS[unit])
            else:
                value = int(text)
        except ValueError as e:
            raise ValueError(f"Invalid memory limit: {limit!r}") from e

    if value <= 0:
        raise ValueError(f"Memory limit must be positive, got {limit!r}")
    return value


def format_bytes(num_bytes: int) -> str:
    """Format a byte count as e.g. '256 MB' or '1.5 GB'."""
    units = ["B", "KB", "MB", "GB"]
    num_bytes = max(num_bytes, 0)
    power = int(math.floor(math.log(num_bytes) / math.log(1024))) if num_bytes else 0
    power = min(power, len(units) - 1)

    value = round(num_bytes / (1 << (10 * power)), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[power]}"


def _process_rss() -> int:
    return psutil.Process().memory_info().rss


@dataclass(frozen=True)
class MemoryWarning:
    """Peak usage came within the warning threshold of the limit."""

    usage: int
    peak: int
    limit: int
    at: int

    def to_state(self) -> dict:
        """Snapshot fields visible to external monitors."""
        return {
            "memory_warning": True,
            "memory_usage": self.usage,
            "memory_peak": self.peak,
            "memory_limit": self.limit,
            "warning_at": self.at,
        }


class MemoryGovernor:
    """
    Enforces a resident-memory ceiling on the running process.

    The limit is parsed once at construction. ``probe`` returns the current
    resident size in bytes and defaults to psutil; tests pass a fake.
    """

    def __init__(
        self,
        limit: str | int = "256M",
        probe: Optional[Callable[[], int]] = None,
    ) -> None:
        self.limit = parse_memory_limit(limit)
        self._probe = probe or _process_rss
        self._peak = 0

    def current(self) -> int:
        """Current resident usage in bytes; also advances the observed peak."""
        usage = int(self._probe())
        if usage > self._peak:
            self._peak = usage
        return usage

    @property
    def peak(self) -> int:
        """Highest usage observed by this governor."""
        return self._peak

    def check(self) -> Optional[MemoryWarning]:
        """
        Check memory against the ceiling.

        Returns:
            MemoryWarning if peak usage is above 90% of the limit, else None

        Raises:
            MemoryLimitExceededError: If current usage exceeds the limit
        """
        usage = self.current()

        if usage > self.limit:
            message = (
                f"Memory limit exceeded: Current usage {format_bytes(usage)} "
                f"exceeds limit {format_bytes(self.limit)}"
            )
            logger.error("memory_limit_exceeded", usage=usage, limit=self.limit)
            raise MemoryLimitExceededError(usage, self.limit, message)

        if self._peak > self.limit * WARNING_THRESHOLD:
            logger.warning(
                "memory_near_limit",
                usage=usage,
                peak=self._peak,
                limit=self.limit,
            )
            return MemoryWarning(
                usage=usage,
                peak=self._peak,
                limit=self.limit,
                at=int(time.time()),
            )

        return None

    def usage(self) -> dict:
        """Current/peak/limit figures for progress reporting."""
        current = self.current()
        return {
            "current": current,
            "current_formatted": format_bytes(current),
            "peak": self._peak,
            "peak_formatted": format_bytes(self._peak),
            "limit": self.limit,
            "limit_formatted": format_bytes(self.limit),
            "percentage": round(current / self.limit * 100, 2),
        }
