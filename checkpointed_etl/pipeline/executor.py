"""Checkpointed step executor.

Runs a declared list of steps against a source and persists progress after
every step, so an interrupted run resumes where it stopped:

    process(source, options)
        -> state hash -> snapshot valid? resume at current_step_index : initialize
        -> for each remaining step: persist position, check memory, execute,
           persist StepRecord + context
        -> completed, cleanup scheduled
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Optional

from checkpointed_etl.config.settings import PipelineConfig
from checkpointed_etl.errors import (
    MemoryLimitExceededError,
    PipelineConfigError,
    PipelineError,
    PipelinePausedError,
)
from checkpointed_etl.pipeline.context import ExecutionContext
from checkpointed_etl.pipeline.result import ImportResult
from checkpointed_etl.state.cleanup import cleanup_expired_states, schedule_cleanup
from checkpointed_etl.state.hashing import (
    SourceFingerprint,
    generate_state_hash,
    is_snapshot_valid,
)
from checkpointed_etl.state.repository import StateRepository, create_repository
from checkpointed_etl.state.snapshot import (
    RunStatus,
    StateSnapshot,
    StepRecord,
    StepStatus,
    check_transition,
    now,
)
from checkpointed_etl.steps import default_registry
from checkpointed_etl.steps.base import StepHandler, StepOutcome, StepRegistry
from checkpointed_etl.utils.logging import (
    clear_run_context,
    get_logger,
    log_step_timing,
    set_run_context,
    set_step,
)
from checkpointed_etl.utils.memory import MemoryGovernor, parse_memory_limit
from checkpointed_etl.utils.result import Err, StepError

logger = get_logger("pipeline.executor")


class ImportPipeline:
    """
    Checkpointed, resumable execution of named steps over one source.

    A run is identified by its state hash (source fingerprint, options,
    driver and driver config). Calling ``process()`` again with the same
    inputs resumes the stored run; steps already recorded as completed are
    never executed twice.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        repository: Optional[StateRepository] = None,
        registry: Optional[StepRegistry] = None,
        governor: Optional[MemoryGovernor] = None,
        strict: Optional[bool] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            config: Engine configuration (defaults apply when omitted)
            repository: Snapshot store; built from ``config.state`` if omitted
            registry: Step handlers; the built-in steps if omitted
            governor: Memory governor; built from ``config.memory_limit`` if omitted
            strict: Overrides ``config.strict_steps``
        """
        self.config = config or PipelineConfig()
        self.repository = repository or create_repository(
            self.config.state.driver,
            self.config.state.path,
        )
        self.registry = registry or default_registry()
        self.governor = governor or MemoryGovernor(self.config.memory_limit)
        self.strict = self.config.strict_steps if strict is None else strict

        self.driver = self.config.driver
        self.driver_config: dict[str, Any] = dict(self.config.driver_config)
        self.use_temp_storage = self.config.use_temp_storage
        self.cleanup_after = self.config.state.cleanup_after

        self._steps: list[StepHandler] = []
        self._state_hash: Optional[str] = None
        self._context = ExecutionContext()

        for name in self.config.steps:
            self.add_step(name)

    # -----------------------------
    # Assembly
    # -----------------------------
    def add_step(
        self,
        step: str | StepHandler,
        fn: Optional[Callable[..., Any]] = None,
    ) -> ImportPipeline:
        """
        Append a step to the pipeline.

        Args:
            step: Registered step name, a StepHandler, or a new name with ``fn``
            fn: Callable to register under ``step`` before adding it

        Raises:
            UnknownStepError: Unregistered name on a strict pipeline
            PipelineConfigError: Strict pipeline and an earlier step does not
                provide a context key this step requires
        """
        if isinstance(step, StepHandler) or fn is not None:
            handler = self.registry.register(step, fn)
        else:
            handler = self.registry.resolve(step, strict=self.strict)

        if self.strict:
            provided = {key for existing in self._steps for key in existing.provides}
            missing = [key for key in handler.requires if key not in provided]
            if missing:
                raise PipelineConfigError(
                    f"Step '{handler.name}' requires {', '.join(missing)}, "
                    f"which no earlier step provides"
                )

        self._steps.append(handler)
        return self

    def get_steps(self) -> list[str]:
        """Declared step names in execution order."""
        return [step.name for step in self._steps]

    def with_temp_storage(self) -> ImportPipeline:
        """Mark runs as using temporary storage (part of the state hash)."""
        self.use_temp_storage = True
        return self

    def set_driver_config(self, config: dict[str, Any]) -> ImportPipeline:
        self.driver_config = dict(config)
        return self

    def set_memory_limit(self, limit: str | int) -> ImportPipeline:
        """
        Change the memory ceiling.

        Raises:
            ValueError: If the limit cannot be parsed
        """
        self.governor.limit = parse_memory_limit(limit)
        return self

    # -----------------------------
    # Execution
    # -----------------------------
    def get_state_hash(
        self,
        source: Optional[str | Path] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        State hash for ``source`` and ``options``.

        Without a source, returns the hash of the last processed run.
        """
        if source is None:
            return self._state_hash
        return generate_state_hash(
            str(source),
            self._hash_options(options or {}),
            self.driver_config,
            self.driver,
        )

    def _hash_options(self, options: dict[str, Any]) -> dict[str, Any]:
        if not self.use_temp_storage:
            return dict(options)
        return {**options, "use_temp_storage": True}

    def process(
        self,
        source: str | Path,
        options: Optional[dict[str, Any]] = None,
    ) -> ImportResult:
        """
        Run (or resume) the pipeline over a source.

        Args:
            source: Path of the data source
            options: Per-invocation options passed to every step

        Returns:
            ImportResult with totals over the completed steps of the run

        Raises:
            PipelinePausedError: The stored run is paused
            MemoryLimitExceededError: Memory went over the ceiling mid-run
            StateStoreError: The state store could not be read or written
        """
        source = str(source)
        options = dict(options or {})
        state_hash = self.get_state_hash(source, options)
        self._state_hash = state_hash
        set_run_context(state_hash)

        try:
            return self._process(source, options, state_hash)
        finally:
            self._context.release()
            clear_run_context()

    def _process(self, source: str, options: dict[str, Any], state_hash: str) -> ImportResult:
        snapshot = self.repository.load(state_hash)

        if snapshot is not None and snapshot.status == RunStatus.PAUSED:
            raise PipelinePausedError(state_hash)

        if snapshot is not None and is_snapshot_valid(snapshot, source):
            resumed = True
            snapshot = self._resume_snapshot(state_hash, snapshot, source, options)
        else:
            resumed = False
            snapshot = self._initialize(state_hash, source, options)

        context = ExecutionContext.from_dict(snapshot.context)
        context.bind_checkpoint(lambda: self._checkpoint(state_hash, context))
        self._context = context
        progress = snapshot.step_progress

        logger.info(
            "pipeline_started",
            source=source,
            resumed=resumed,
            start_index=snapshot.current_step_index,
            total_steps=len(self._steps),
        )

        for index in range(snapshot.current_step_index, len(self._steps)):
            handler = self._steps[index]
            record = progress.get(handler.name)
            if record is not None and record.is_completed:
                logger.debug("step_skipped", skipped=handler.name, reason="already_completed")
                continue

            # pause() may have been called from a step or another process
            if self._stored_status(state_hash) == RunStatus.PAUSED.value:
                logger.info("run_stopped_paused", next_step=handler.name)
                raise PipelinePausedError(state_hash)

            failure = self._run_step(state_hash, index, handler, source, options, context, progress)
            if failure is not None:
                return self._build_result(
                    source, state_hash, resumed, progress,
                    failure=failure, failed_step=handler.name,
                )

        self._complete(state_hash, snapshot)
        result = self._build_result(source, state_hash, resumed, progress)

        logger.info(
            "pipeline_completed",
            success=result.success,
            processed=result.processed,
            imported=result.imported,
            failed=result.failed,
        )
        return result

    def _initialize(self, state_hash: str, source: str, options: dict[str, Any]) -> StateSnapshot:
        fingerprint = SourceFingerprint.of(source)
        data = {
            "source": source,
            "source_mtime": fingerprint.mtime,
            "source_size": fingerprint.size,
            "options": options,
            "status": RunStatus.STARTED.value,
            "current_step": "initial",
            "current_step_index": 0,
            "step_progress": {},
            "context": {},
            "started_at": now(),
        }
        self.repository.initialize(state_hash, data)
        logger.info("run_initialized", source=source)
        return self.repository.load(state_hash) or StateSnapshot.from_dict(data)

    def _resume_snapshot(
        self,
        state_hash: str,
        snapshot: StateSnapshot,
        source: str,
        options: dict[str, Any],
    ) -> StateSnapshot:
        check_transition(snapshot.status, RunStatus.PROCESSING)

        if snapshot.source is None:
            # Recovered snapshots carry no source fingerprint
            fingerprint = SourceFingerprint.of(source)
            self.repository.update(state_hash, {
                "source": source,
                "source_mtime": fingerprint.mtime,
                "source_size": fingerprint.size,
                "options": options,
            })

        logger.info(
            "run_resumed",
            status=snapshot.status.value,
            current_step=snapshot.current_step,
            completed_steps=len(snapshot.completed_steps()),
            recovered=snapshot.recovered,
        )
        return snapshot

    def _run_step(
        self,
        state_hash: str,
        index: int,
        handler: StepHandler,
        source: str,
        options: dict[str, Any],
        context: ExecutionContext,
        progress: dict[str, StepRecord],
    ) -> Optional[str]:
        """Execute one step; returns the failure message, or None on success."""
        name = handler.name
        set_step(name)
        self.repository.update(state_hash, {
            "current_step": name,
            "current_step_index": index,
            "status": RunStatus.PROCESSING.value,
        })
        logger.info("step_started", index=index)
        started = time.monotonic()

        try:
            self._check_memory(state_hash)
            result = handler.execute(source, options, self.driver_config, context)
        except MemoryLimitExceededError as e:
            self._record_failure(state_hash, index, name, str(e), context, progress)
            log_step_timing(name, time.monotonic() - started, "failed")
            raise
        except Exception as e:
            logger.exception("step_raised", error=str(e))
            result = Err(StepError(step=name, message=str(e), cause=e))

        duration = time.monotonic() - started

        if result.is_err():
            message = str(result.unwrap_err())
            self._record_failure(state_hash, index, name, message, context, progress)
            log_step_timing(name, duration, "failed")
            return message

        outcome = result.unwrap()
        if not isinstance(outcome, StepOutcome):
            outcome = StepOutcome.from_mapping(outcome)

        progress[name] = StepRecord(
            status=StepStatus.COMPLETED,
            processed=outcome.processed,
            imported=outcome.imported,
            failed=outcome.failed,
            errors=list(outcome.errors),
            completed_at=now(),
            memory_usage=self.governor.current(),
            memory_peak=self.governor.peak,
        )
        self.repository.update(state_hash, {
            "current_step_index": index + 1,
            "step_progress": _progress_dict(progress),
            "context": context.to_dict(),
        })

        logger.info(
            "step_completed",
            processed=outcome.processed,
            imported=outcome.imported,
            failed=outcome.failed,
            errors=len(outcome.errors),
        )
        log_step_timing(name, duration, "completed")
        return None

    def _record_failure(
        self,
        state_hash: str,
        index: int,
        name: str,
        message: str,
        context: ExecutionContext,
        progress: dict[str, StepRecord],
    ) -> None:
        progress[name] = StepRecord(
            status=StepStatus.FAILED,
            errors=[message],
            failed_at=now(),
            error=message,
            memory_usage=self.governor.current(),
            memory_peak=self.governor.peak,
        )
        self.repository.update(state_hash, {
            "status": RunStatus.FAILED.value,
            "current_step": name,
            "current_step_index": index,
            "step_progress": _progress_dict(progress),
            "context": context.to_dict(),
            "errors": [message],
        })
        logger.error("step_failed", error=message)

    def _stored_status(self, state_hash: str) -> Optional[str]:
        document = self.repository.load_raw(state_hash)
        return document.get("status") if document else None

    def _checkpoint(self, state_hash: str, context: ExecutionContext) -> None:
        self.repository.update(state_hash, {"context": context.to_dict()})
        self._check_memory(state_hash)

    def _check_memory(self, state_hash: str) -> None:
        warning = self.governor.check()
        if warning is not None:
            self.repository.update(state_hash, warning.to_state())

    def _complete(self, state_hash: str, snapshot: StateSnapshot) -> None:
        self.repository.update(state_hash, {
            "status": RunStatus.COMPLETED.value,
            "current_step_index": len(self._steps),
            "completed_at": snapshot.completed_at or now(),
        })
        schedule_cleanup(self.repository, state_hash, self.cleanup_after)

    def _build_result(
        self,
        source: str,
        state_hash: str,
        resumed: bool,
        progress: dict[str, StepRecord],
        failure: Optional[str] = None,
        failed_step: Optional[str] = None,
    ) -> ImportResult:
        completed = [record for record in progress.values() if record.is_completed]
        errors = [error for record in completed for error in record.errors]
        if failure is not None:
            errors.append(failure)

        meta: dict[str, Any] = {
            "source": source,
            "state_hash": state_hash,
            "resumed": resumed,
            "total_steps": len(self._steps),
            "completed_steps": len(completed),
            "step_progress": _progress_dict(progress),
        }
        if failure is not None:
            meta["failed_at_step"] = failed_step

        return ImportResult(
            success=not errors,
            processed=sum(record.processed for record in completed),
            imported=sum(record.imported for record in completed),
            failed=sum(record.failed for record in completed),
            errors=errors,
            meta=meta,
        )

    # -----------------------------
    # Run control
    # -----------------------------
    def _require_hash(self, state_hash: Optional[str]) -> str:
        state_hash = state_hash or self._state_hash
        if state_hash is None:
            raise PipelineError("No pipeline run selected; call process() or pass a state hash")
        return state_hash

    def _snapshot(self, state_hash: Optional[str] = None) -> Optional[StateSnapshot]:
        state_hash = state_hash or self._state_hash
        if state_hash is None:
            return None
        return self.repository.load(state_hash)

    def pause(self, state_hash: Optional[str] = None) -> bool:
        """
        Mark the run as paused.

        Returns:
            False if no snapshot is stored for the run

        Raises:
            TransitionError: The run already completed or failed
        """
        state_hash = self._require_hash(state_hash)
        snapshot = self.repository.load(state_hash)
        if snapshot is None:
            return False

        check_transition(snapshot.status, RunStatus.PAUSED)
        self.repository.update(state_hash, {
            "status": RunStatus.PAUSED.value,
            "paused_at": now(),
        })
        logger.info("run_paused", key=state_hash[:16])
        return True

    def resume(self, state_hash: Optional[str] = None) -> bool:
        """
        Clear a pause so the next ``process()`` call continues the run.

        Returns:
            False if the run is not paused
        """
        state_hash = self._require_hash(state_hash)
        snapshot = self.repository.load(state_hash)
        if snapshot is None or snapshot.status != RunStatus.PAUSED:
            return False

        self.repository.update(state_hash, {
            "status": RunStatus.PROCESSING.value,
            "resumed_at": now(),
        })
        logger.info("run_unpaused", key=state_hash[:16])
        return True

    def is_paused(self, state_hash: Optional[str] = None) -> bool:
        snapshot = self._snapshot(state_hash)
        return snapshot is not None and snapshot.status == RunStatus.PAUSED

    def is_completed(self, state_hash: Optional[str] = None) -> bool:
        snapshot = self._snapshot(state_hash)
        return snapshot is not None and snapshot.status == RunStatus.COMPLETED

    def is_failed(self, state_hash: Optional[str] = None) -> bool:
        snapshot = self._snapshot(state_hash)
        return snapshot is not None and snapshot.status == RunStatus.FAILED

    # -----------------------------
    # Introspection
    # -----------------------------
    def get_progress(self, state_hash: Optional[str] = None) -> dict[str, Any]:
        """
        Progress of the run.

        Returns:
            Dictionary with total_steps, completed_steps, current_step_index,
            percentage, step_details, memory_usage and memory_peak
        """
        snapshot = self._snapshot(state_hash)
        total = len(self._steps)

        if snapshot is None:
            completed = 0
            current_index = 0
            details: dict[str, Any] = {}
        else:
            completed = len(snapshot.completed_steps())
            current_index = snapshot.current_step_index
            details = _progress_dict(snapshot.step_progress)

        return {
            "total_steps": total,
            "completed_steps": completed,
            "current_step_index": current_index,
            "percentage": round(completed / total * 100, 2) if total else 0,
            "step_details": details,
            "memory_usage": self.governor.current(),
            "memory_peak": self.governor.peak,
        }

    def get_memory_usage(self) -> dict[str, Any]:
        return self.governor.usage()

    def get_context(self) -> ExecutionContext:
        """Context of the last processed run."""
        return self._context

    # -----------------------------
    # Maintenance
    # -----------------------------
    def recover_from_corruption(self, state_hash: Optional[str] = None) -> bool:
        """Replace the stored snapshot with a minimal recovery snapshot."""
        state_hash = state_hash or self._state_hash
        if state_hash is None:
            return False
        return self.repository.recover(state_hash)

    def cleanup_expired_states(self) -> int:
        """Delete stored snapshots past their scheduled cleanup time."""
        return cleanup_expired_states(self.repository)


def _progress_dict(progress: dict[str, StepRecord]) -> dict[str, dict]:
    return {name: record.to_dict() for name, record in progress.items()}
