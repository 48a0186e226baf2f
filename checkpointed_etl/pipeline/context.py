"""Execution context: the cross-step data-passing store of one run."""

from __future__ import annotations

from typing import Any, Callable, Iterator, Optional


class ExecutionContext:
    """
    Ordered key/value store shared by the steps of a single run.

    Values set with ``transient=True`` (open handles, connections) are usable
    in-process but left out of ``to_dict()``, so the persisted context only
    holds what can be rebuilt on resume.
    """

    def __init__(self, data: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(data or {})
        self._transient: set[str] = set()
        self._checkpoint_hook: Optional[Callable[[], None]] = None

    def set(self, key: str, value: Any, transient: bool = False) -> ExecutionContext:
        self._data[key] = value
        if transient:
            self._transient.add(key)
        else:
            self._transient.discard(key)
        return self

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._data

    def forget(self, key: str) -> ExecutionContext:
        self._data.pop(key, None)
        self._transient.discard(key)
        return self

    def merge(self, data: dict[str, Any]) -> ExecutionContext:
        for key, value in data.items():
            self.set(key, value)
        return self

    def keys(self) -> Iterator[str]:
        return iter(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> dict[str, Any]:
        """Serializable view, without transient keys."""
        return {k: v for k, v in self._data.items() if k not in self._transient}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionContext:
        """Rebuild a context from a persisted snapshot."""
        return cls(data)

    def release(self) -> None:
        """Close and drop transient values that hold resources."""
        for key in list(self._transient):
            value = self._data.pop(key, None)
            close = getattr(value, "close", None)
            if callable(close):
                close()
        self._transient.clear()

    # -----------------------------
    # Checkpointing
    # -----------------------------
    def bind_checkpoint(self, hook: Optional[Callable[[], None]]) -> None:
        """Install the executor's persist-and-check hook."""
        self._checkpoint_hook = hook

    def checkpoint(self) -> None:
        """
        Persist the context mid-step and check memory.

        Step handlers call this between chunks to record fine-grained resume
        positions (e.g. ``last_processed_line``). No-op when unbound.
        """
        if self._checkpoint_hook is not None:
            self._checkpoint_hook()

    def __repr__(self) -> str:
        return f"ExecutionContext(keys={list(self._data)!r})"
