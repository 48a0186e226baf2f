"""CLI entry point for checkpointed-etl."""

from __future__ import annotations

import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from checkpointed_etl import __version__
from checkpointed_etl.config.settings import PipelineConfig, load_config
from checkpointed_etl.errors import (
    MemoryLimitExceededError,
    PipelineError,
    PipelinePausedError,
    StateStoreError,
    TransitionError,
)
from checkpointed_etl.pipeline.executor import ImportPipeline
from checkpointed_etl.steps import TABULAR_PIPELINE
from checkpointed_etl.utils.logging import configure_logging, get_logger
from checkpointed_etl.utils.result import ExitCode


class Context:
    """CLI context for sharing state between commands."""

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self.logger = get_logger("cli")

    def build_pipeline(
        self,
        steps: tuple[str, ...] = (),
        memory_limit: Optional[str] = None,
        temp_storage: bool = False,
        strict: Optional[bool] = None,
    ) -> ImportPipeline:
        """Assemble a pipeline from the loaded config and command options."""
        pipeline = ImportPipeline(config=replace(self.config, steps=[]), strict=strict)

        for name in steps or self.config.steps or TABULAR_PIPELINE:
            pipeline.add_step(name)
        if memory_limit:
            pipeline.set_memory_limit(memory_limit)
        if temp_storage:
            pipeline.with_temp_storage()
        return pipeline


pass_context = click.make_pass_decorator(Context)


def output_json(data: dict) -> None:
    """Output JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


def parse_options(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Parse repeated ``key=value`` options; values are read as YAML scalars."""
    options: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--option")
        options[key.strip()] = yaml.safe_load(value) if value else ""
    return options


def fail(message: str, exit_code: int, **extra: Any) -> None:
    """Print an error document and exit."""
    output_json({"status": "error", "message": message, **extra})
    sys.exit(exit_code)


# Shared options of the run-targeting commands
source_argument = click.argument("source", type=click.Path(path_type=Path))
step_option = click.option(
    "--step",
    "steps",
    multiple=True,
    help="Step to run, in order (can be repeated; defaults to config or the tabular steps)",
)
option_option = click.option(
    "--option",
    "options",
    multiple=True,
    help="Run option as key=value (can be repeated; part of the state hash)",
)
temp_storage_option = click.option(
    "--temp-storage",
    is_flag=True,
    default=False,
    help="Run with temporary storage (part of the state hash)",
)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to YAML config file (default: ./config/pipeline.yaml if present)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "error"], case_sensitive=False),
    default=None,
    help="Logging level (overrides config)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default=None,
    help="Log format (overrides config)",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="State directory (overrides config and environment)",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    log_level: Optional[str],
    log_format: Optional[str],
    state_dir: Optional[Path],
) -> None:
    """
    checkpointed-etl - resumable ETL pipeline runs.

    Runs a sequence of named steps over a source file, checkpointing after
    every step so interrupted runs resume without reprocessing.
    """
    result = load_config(config)
    if result.is_err():
        configure_logging(level=log_level or "info", format_type=log_format or "json")
        fail(str(result.unwrap_err()), ExitCode.CONFIG_INVALID)

    pipeline_config = result.unwrap()
    if state_dir is not None:
        pipeline_config.state.path = str(state_dir)

    # Configure logging
    configure_logging(
        level=log_level or pipeline_config.logging.level,
        format_type=log_format or pipeline_config.logging.format,
    )

    ctx.obj = Context(pipeline_config)


@cli.command()
@source_argument
@step_option
@option_option
@temp_storage_option
@click.option("--memory-limit", default=None, help="Memory ceiling, e.g. 256M or 1G")
@click.option(
    "--strict/--lenient",
    default=None,
    help="Reject unknown step names (default from config)",
)
@pass_context
def run(
    ctx: Context,
    source: Path,
    steps: tuple[str, ...],
    options: tuple[str, ...],
    temp_storage: bool,
    memory_limit: Optional[str],
    strict: Optional[bool],
) -> None:
    """Run or resume the pipeline over SOURCE."""
    run_options = parse_options(options)

    try:
        pipeline = ctx.build_pipeline(steps, memory_limit, temp_storage, strict)
    except (PipelineError, ValueError) as e:
        fail(str(e), ExitCode.CONFIG_INVALID)

    ctx.logger.info("run_started", source=str(source), steps=pipeline.get_steps())

    try:
        result = pipeline.process(source, run_options)
    except PipelinePausedError as e:
        fail(str(e), ExitCode.RUN_PAUSED, state_hash=e.state_hash)
    except MemoryLimitExceededError as e:
        fail(str(e), ExitCode.MEMORY_EXCEEDED, state_hash=pipeline.get_state_hash())
    except StateStoreError as e:
        fail(str(e), ExitCode.STATE_IO, path=e.path)

    output_json({
        "status": "success" if result.success else "failed",
        **result.to_dict(),
    })

    if not result.success:
        sys.exit(ExitCode.RUN_FAILED)


@cli.command()
@source_argument
@step_option
@option_option
@temp_storage_option
@pass_context
def status(
    ctx: Context,
    source: Path,
    steps: tuple[str, ...],
    options: tuple[str, ...],
    temp_storage: bool,
) -> None:
    """Show the stored state and progress of the run over SOURCE."""
    pipeline = _pipeline_for(ctx, steps, temp_storage)
    state_hash = pipeline.get_state_hash(source, parse_options(options))

    try:
        snapshot = pipeline.repository.load(state_hash)
    except StateStoreError as e:
        fail(str(e), ExitCode.STATE_IO, path=e.path)

    if snapshot is None:
        output_json({"status": "not_started", "state_hash": state_hash})
        return

    output_json({
        "status": snapshot.status.value,
        "state_hash": state_hash,
        "current_step": snapshot.current_step,
        "progress": pipeline.get_progress(state_hash),
        "errors": snapshot.errors,
    })


@cli.command()
@source_argument
@step_option
@option_option
@temp_storage_option
@pass_context
def pause(
    ctx: Context,
    source: Path,
    steps: tuple[str, ...],
    options: tuple[str, ...],
    temp_storage: bool,
) -> None:
    """Pause the run over SOURCE."""
    pipeline = _pipeline_for(ctx, steps, temp_storage)
    state_hash = pipeline.get_state_hash(source, parse_options(options))

    try:
        paused = pipeline.pause(state_hash)
    except TransitionError as e:
        fail(str(e), ExitCode.GENERAL_ERROR, state_hash=state_hash)

    if not paused:
        fail("No stored run to pause", ExitCode.GENERAL_ERROR, state_hash=state_hash)

    output_json({"status": "paused", "state_hash": state_hash})


@cli.command()
@source_argument
@step_option
@option_option
@temp_storage_option
@pass_context
def resume(
    ctx: Context,
    source: Path,
    steps: tuple[str, ...],
    options: tuple[str, ...],
    temp_storage: bool,
) -> None:
    """Clear a pause on the run over SOURCE (the next `run` continues it)."""
    pipeline = _pipeline_for(ctx, steps, temp_storage)
    state_hash = pipeline.get_state_hash(source, parse_options(options))

    if not pipeline.resume(state_hash):
        fail("Run is not paused", ExitCode.GENERAL_ERROR, state_hash=state_hash)

    output_json({"status": "processing", "state_hash": state_hash})


@cli.command()
@source_argument
@step_option
@option_option
@temp_storage_option
@pass_context
def recover(
    ctx: Context,
    source: Path,
    steps: tuple[str, ...],
    options: tuple[str, ...],
    temp_storage: bool,
) -> None:
    """Replace the stored state of the run over SOURCE with a recovery snapshot."""
    pipeline = _pipeline_for(ctx, steps, temp_storage)
    state_hash = pipeline.get_state_hash(source, parse_options(options))

    if not pipeline.recover_from_corruption(state_hash):
        fail("No stored run to recover", ExitCode.GENERAL_ERROR, state_hash=state_hash)

    output_json({"status": "recovered", "state_hash": state_hash})


@cli.command()
@pass_context
def cleanup(ctx: Context) -> None:
    """Delete stored runs past their scheduled cleanup time."""
    pipeline = ImportPipeline(config=replace(ctx.config, steps=[]))
    cleaned = pipeline.cleanup_expired_states()

    output_json({
        "status": "success",
        "cleaned": cleaned,
    })


def _pipeline_for(ctx: Context, steps: tuple[str, ...], temp_storage: bool) -> ImportPipeline:
    # Unknown names only matter for progress counts here
    return ctx.build_pipeline(steps, temp_storage=temp_storage, strict=False)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        logger = get_logger("cli")
        logger.error("cli_error", error=str(e))
        sys.exit(ExitCode.GENERAL_ERROR)


if __name__ == "__main__":
    main()
