from __future__ import annotations

import pytest

from checkpointed_etl.errors import UnknownStepError
from checkpointed_etl.pipeline.context import ExecutionContext
from checkpointed_etl.steps import STEP_REGISTRY, default_registry
from checkpointed_etl.steps.base import FunctionStep, NoOpStep, StepOutcome, StepRegistry
from checkpointed_etl.utils.result import Err, Ok, StepError


def _run(handler, context=None):
    return handler.execute("/data.csv", {}, {}, context or ExecutionContext())


def test_default_registry_has_tabular_steps() -> None:
    registry = default_registry()

    assert registry.names() == sorted(STEP_REGISTRY)
    assert registry.get("process_rows").requires == ("storage_path",)


def test_unknown_step_strict_and_lenient() -> None:
    registry = StepRegistry()

    with pytest.raises(UnknownStepError) as exc_info:
        registry.resolve("transform")
    assert exc_info.value.name == "transform"

    handler = registry.resolve("transform", strict=False)
    assert isinstance(handler, NoOpStep)
    assert _run(handler) == Ok(StepOutcome())


def test_register_callable_replaces_existing() -> None:
    registry = default_registry()
    registry.register("validate", lambda source, options, config, context: {"processed": 1})

    handler = registry.get("validate")
    assert isinstance(handler, FunctionStep)
    assert _run(handler).unwrap().processed == 1


def test_register_rejects_missing_callable() -> None:
    with pytest.raises(ValueError):
        StepRegistry().register("load")


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, StepOutcome()),
        (StepOutcome(imported=2), StepOutcome(imported=2)),
        ({"processed": 3, "errors": ["x"]}, StepOutcome(processed=3, errors=["x"])),
    ],
)
def test_function_step_normalizes_return_values(value, expected: StepOutcome) -> None:
    handler = FunctionStep("step", lambda *args: value)

    assert _run(handler) == Ok(expected)


def test_function_step_passes_results_through() -> None:
    error = StepError(step="step", message="bad input")
    handler = FunctionStep("step", lambda *args: Err(error))

    assert _run(handler) == Err(error)
    assert str(error) == "Step 'step' failed: bad input"


def test_function_step_rejects_unsupported_value() -> None:
    handler = FunctionStep("step", lambda *args: 42)

    with pytest.raises(TypeError):
        _run(handler)


def test_copy_is_independent() -> None:
    registry = default_registry()
    clone = registry.copy()
    clone.register("extra", lambda *args: None)

    assert clone.has("extra")
    assert not registry.has("extra")
