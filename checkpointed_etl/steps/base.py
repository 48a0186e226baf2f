"""Step handler contract and registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional

from checkpointed_etl.errors import UnknownStepError
from checkpointed_etl.utils.logging import get_logger
from checkpointed_etl.utils.result import Err, Ok, Result, StepError

if TYPE_CHECKING:
    from checkpointed_etl.pipeline.context import ExecutionContext

logger = get_logger("steps.base")


@dataclass
class StepOutcome:
    """Counts and partial errors reported by a step."""

    processed: int = 0
    imported: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> StepOutcome:
        """Outcome of a bookkeeping step: one failure per error message."""
        return cls(failed=len(errors), errors=list(errors))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StepOutcome:
        """Accept the plain-dict form ``{processed, imported, failed, errors}``."""
        return cls(
            processed=int(data.get("processed", 0) or 0),
            imported=int(data.get("imported", 0) or 0),
            failed=int(data.get("failed", 0) or 0),
            errors=list(data.get("errors", []) or []),
        )

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "imported": self.imported,
            "failed": self.failed,
            "errors": list(self.errors),
        }


StepReturn = Result[StepOutcome, StepError]


class StepHandler(ABC):
    """
    A single named unit of pipeline work.

    Handlers receive the source path, the invocation options, the driver
    configuration and the live execution context. They return
    ``Ok(StepOutcome)`` or ``Err(StepError)``; partial problems that should
    not stop the run belong in ``StepOutcome.errors``.

    ``requires`` and ``provides`` name the context keys a handler reads and
    writes, and are checked when a strict pipeline is assembled.
    """

    requires: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()

    @property
    @abstractmethod
    def name(self) -> str:
        """Step name used in pipeline declarations and snapshots."""
        ...

    @abstractmethod
    def execute(
        self,
        source: str,
        options: dict[str, Any],
        config: dict[str, Any],
        context: ExecutionContext,
    ) -> StepReturn:
        """Run the step once."""
        ...

    def fail(self, message: str, cause: Optional[Exception] = None) -> Err[StepError]:
        """Build the failure value for this step."""
        return Err(StepError(step=self.name, message=message, cause=cause))


class FunctionStep(StepHandler):
    """Adapts a plain callable into a StepHandler.

    The callable may return a StepOutcome, a Result or a plain mapping.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[..., Any],
        requires: Iterable[str] = (),
        provides: Iterable[str] = (),
    ) -> None:
        self._name = name
        self._fn = fn
        self.requires = tuple(requires)
        self.provides = tuple(provides)

    @property
    def name(self) -> str:
        return self._name

    def execute(self, source, options, config, context) -> StepReturn:
        value = self._fn(source, options, config, context)
        if isinstance(value, (Ok, Err)):
            return value
        if isinstance(value, StepOutcome):
            return Ok(value)
        if value is None:
            return Ok(StepOutcome())
        if isinstance(value, Mapping):
            return Ok(StepOutcome.from_mapping(value))
        raise TypeError(f"Step '{self._name}' returned unsupported value: {type(value).__name__}")


class NoOpStep(StepHandler):
    """Stands in for an unknown step name in non-strict pipelines."""

    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def execute(self, source, options, config, context) -> StepReturn:
        logger.warning("unknown_step_skipped", step=self._name)
        return Ok(StepOutcome())


class StepRegistry:
    """Maps step names to handlers."""

    def __init__(self, handlers: Iterable[StepHandler] = ()) -> None:
        self._handlers: dict[str, StepHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: StepHandler | str, fn: Optional[Callable[..., Any]] = None) -> StepHandler:
        """
        Register a handler, replacing any handler of the same name.

        Accepts a StepHandler, or a name plus a callable taking
        ``(source, options, config, context)``.
        """
        if isinstance(handler, str):
            if fn is None:
                raise ValueError(f"A callable is required to register step '{handler}'")
            handler = FunctionStep(handler, fn)

        name = handler.name
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Step name must be a non-empty string")

        self._handlers[name] = handler
        logger.debug("step_registered", step=name)
        return handler

    def has(self, name: str) -> bool:
        return name in self._handlers

    def get(self, name: str) -> StepHandler:
        """
        Get the handler for a step name.

        Raises:
            UnknownStepError: If the name is not registered
        """
        if name not in self._handlers:
            raise UnknownStepError(name)
        return self._handlers[name]

    def resolve(self, name: str, strict: bool = True) -> StepHandler:
        """Like get(), but unknown names map to a no-op when not strict."""
        if name in self._handlers or strict:
            return self.get(name)
        return NoOpStep(name)

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def copy(self) -> StepRegistry:
        return StepRegistry(self._handlers.values())
