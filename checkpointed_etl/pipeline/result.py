"""Final outcome of a pipeline invocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ImportResult:
    """
    Aggregated result of one ``process()`` call.

    Attributes:
        success: True when no errors were accumulated
        processed: Records processed across completed steps
        imported: Records imported across completed steps
        failed: Records failed across completed steps
        errors: Partial errors from every step, plus the failure message
        meta: Run details (source, state_hash, resumed, step counts, ...)
    """

    success: bool
    processed: int = 0
    imported: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def state_hash(self) -> str:
        return self.meta.get("state_hash", "")

    @property
    def resumed(self) -> bool:
        return bool(self.meta.get("resumed", False))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "processed": self.processed,
            "imported": self.imported,
            "failed": self.failed,
            "errors": list(self.errors),
            "meta": dict(self.meta),
        }
