from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from checkpointed_etl.cli import cli
from checkpointed_etl.state.repository import FileStateRepository
from checkpointed_etl.utils.result import ExitCode


@pytest.fixture
def state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CHECKPOINTED_ETL_STATE_PATH", raising=False)
    monkeypatch.delenv("CHECKPOINTED_ETL_MEMORY_LIMIT", raising=False)
    return tmp_path / "state"


def invoke(state_dir: Path, *args: str):
    runner = CliRunner()
    result = runner.invoke(
        cli,
        ["--state-dir", str(state_dir), "--log-level", "error", *args],
        catch_exceptions=False,
    )
    return result, json.loads(result.stdout)


def test_run_then_resume(state_dir: Path, csv_file: Path) -> None:
    result, output = invoke(state_dir, "run", str(csv_file), "--option", "batch=2")

    assert result.exit_code == ExitCode.SUCCESS
    assert output["status"] == "success"
    assert output["imported"] == 10
    assert output["meta"]["resumed"] is False
    assert (state_dir / f"{output['meta']['state_hash']}.json").exists()

    result, output = invoke(state_dir, "run", str(csv_file), "--option", "batch=2")

    assert result.exit_code == ExitCode.SUCCESS
    assert output["meta"]["resumed"] is True
    assert output["imported"] == 10


def test_status(state_dir: Path, csv_file: Path) -> None:
    _, output = invoke(state_dir, "status", str(csv_file))
    assert output["status"] == "not_started"

    invoke(state_dir, "run", str(csv_file))
    result, output = invoke(state_dir, "status", str(csv_file))

    assert result.exit_code == ExitCode.SUCCESS
    assert output["status"] == "completed"
    assert output["progress"]["percentage"] == 100.0
    assert output["progress"]["total_steps"] == 5


def test_run_reports_failure_exit_code(state_dir: Path, tmp_path: Path) -> None:
    empty = tmp_path / "empty.csv"
    empty.write_text("")

    result, output = invoke(state_dir, "run", str(empty))

    assert result.exit_code == ExitCode.RUN_FAILED
    assert output["status"] == "failed"
    assert f"Source file is empty: {empty}" in output["errors"]


def test_run_rejects_unknown_step(state_dir: Path, csv_file: Path) -> None:
    result, output = invoke(state_dir, "run", str(csv_file), "--step", "transmogrify")

    assert result.exit_code == ExitCode.CONFIG_INVALID
    assert output["message"] == "Unknown step: transmogrify"


def test_pause_resume_cycle(state_dir: Path, csv_file: Path) -> None:
    _, output = invoke(state_dir, "status", str(csv_file))
    state_hash = output["state_hash"]
    FileStateRepository(state_dir).initialize(state_hash, {"status": "processing"})

    result, output = invoke(state_dir, "pause", str(csv_file))
    assert result.exit_code == ExitCode.SUCCESS
    assert output == {"status": "paused", "state_hash": state_hash}

    result, output = invoke(state_dir, "run", str(csv_file))
    assert result.exit_code == ExitCode.RUN_PAUSED

    result, _ = invoke(state_dir, "resume", str(csv_file))
    assert result.exit_code == ExitCode.SUCCESS

    result, output = invoke(state_dir, "run", str(csv_file))
    assert result.exit_code == ExitCode.SUCCESS
    assert output["meta"]["resumed"] is True


def test_pause_completed_run_fails(state_dir: Path, csv_file: Path) -> None:
    invoke(state_dir, "run", str(csv_file))

    result, output = invoke(state_dir, "pause", str(csv_file))

    assert result.exit_code == ExitCode.GENERAL_ERROR
    assert "Invalid transition" in output["message"]


def test_recover(state_dir: Path, csv_file: Path) -> None:
    result, output = invoke(state_dir, "recover", str(csv_file))
    assert result.exit_code == ExitCode.GENERAL_ERROR

    invoke(state_dir, "run", str(csv_file))
    result, output = invoke(state_dir, "recover", str(csv_file))

    assert result.exit_code == ExitCode.SUCCESS
    assert output["status"] == "recovered"
    assert len(FileStateRepository(state_dir).backups(output["state_hash"])) == 1


def test_cleanup_uses_configured_retention(state_dir: Path, tmp_path: Path, csv_file: Path) -> None:
    config = tmp_path / "pipeline.yaml"
    config.write_text("state:\n  cleanup_after: 0\n")

    invoke(state_dir, "--config", str(config), "run", str(csv_file))
    result, output = invoke(state_dir, "--config", str(config), "cleanup")

    assert result.exit_code == ExitCode.SUCCESS
    assert output == {"status": "success", "cleaned": 1}


def test_invalid_config_exit_code(state_dir: Path, tmp_path: Path) -> None:
    config = tmp_path / "pipeline.yaml"
    config.write_text("memory_limit: lots\n")

    result, output = invoke(state_dir, "--config", str(config), "cleanup")

    assert result.exit_code == ExitCode.CONFIG_INVALID
    assert output["status"] == "error"
