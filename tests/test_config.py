from __future__ import annotations

from pathlib import Path

from checkpointed_etl.config.settings import (
    ENV_MEMORY_LIMIT,
    ENV_STATE_PATH,
    PipelineConfig,
    load_config,
)


def test_defaults() -> None:
    config = PipelineConfig()

    assert config.memory_limit == "256M"
    assert config.strict_steps is True
    assert config.driver == "csv"
    assert config.state.driver == "file"
    assert config.state.cleanup_after == 3600
    assert config.logging.format == "json"
    assert config.validate().is_ok()


def test_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "memory_limit: 1G\n"
        "strict_steps: false\n"
        "driver: tsv\n"
        "driver_config:\n"
        "  delimiter: \"\\t\"\n"
        "  chunk_size: 500\n"
        "steps: [validate, detect_delimiter]\n"
        "state:\n"
        "  driver: memory\n"
        "  cleanup_after: 60\n"
        "logging:\n"
        "  level: debug\n"
        "  format: text\n"
    )

    config = PipelineConfig.from_yaml(path).unwrap()

    assert config.memory_limit == "1G"
    assert config.strict_steps is False
    assert config.driver == "tsv"
    assert config.driver_config == {"delimiter": "\t", "chunk_size": 500}
    assert config.steps == ["validate", "detect_delimiter"]
    assert config.state.driver == "memory"
    assert config.state.cleanup_after == 60
    assert config.logging.level == "debug"


def test_from_yaml_errors(tmp_path: Path) -> None:
    missing = PipelineConfig.from_yaml(tmp_path / "missing.yaml")
    assert missing.is_err()
    assert missing.unwrap_err().field == "path"

    broken = tmp_path / "broken.yaml"
    broken.write_text("state: [unclosed\n")
    assert PipelineConfig.from_yaml(broken).unwrap_err().field == "yaml"

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n")
    assert PipelineConfig.from_yaml(scalar).is_err()


def test_validate_rejects_bad_values() -> None:
    config = PipelineConfig(memory_limit="lots")
    assert config.validate().unwrap_err().field == "memory_limit"

    config = PipelineConfig()
    config.state.driver = "redis"
    assert config.validate().unwrap_err().field == "state.driver"

    config = PipelineConfig()
    config.logging.format = "xml"
    assert config.validate().unwrap_err().field == "logging.format"


def test_load_config_applies_env_overrides(tmp_path: Path) -> None:
    path = tmp_path / "pipeline.yaml"
    path.write_text("memory_limit: 1G\n")

    config = load_config(
        path,
        environ={ENV_STATE_PATH: str(tmp_path / "state"), ENV_MEMORY_LIMIT: "512M"},
    ).unwrap()

    assert config.state.path == str(tmp_path / "state")
    assert config.memory_limit == "512M"


def test_load_config_validates_overrides(tmp_path: Path) -> None:
    path = tmp_path / "pipeline.yaml"
    path.write_text("{}\n")

    result = load_config(path, environ={ENV_MEMORY_LIMIT: "huge"})

    assert result.is_err()
    assert "memory_limit" in str(result.unwrap_err())
