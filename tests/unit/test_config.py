"""Unit tests for configuration loading and environment overrides."""

import pytest
import yaml
from pathlib import Path

from pgsizer.core.config import (
    DEFAULT_SHARED_PRELOAD_LIBRARIES,
    AppConfig,
    EnvOverrides,
    FileConfig,
    get_example_config,
    init_config,
)
from pgsizer.core.exceptions import ConfigurationError, ValidationError


ENV_VARS = (
    "POSTGRES_MEMORY",
    "POSTGRES_WORKLOAD_TYPE",
    "POSTGRES_STORAGE_TYPE",
    "POSTGRES_SHARED_PRELOAD_LIBRARIES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the host environment out of these tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.dump(data))
    return path


class TestFileConfig:
    """Tests for the YAML configuration model."""

    def test_defaults(self):
        config = FileConfig()
        assert config.sizing.workload == "mixed"
        assert config.sizing.storage == "ssd"
        assert config.sizing.shared_preload_libraries == list(DEFAULT_SHARED_PRELOAD_LIBRARIES)
        assert config.sizing.strict_profiles is False
        assert config.sizing.min_ram_mb == 512
        assert config.output.format == "table"
        assert config.output.backup is True
        assert config.audit.enabled is True

    def test_load(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {
            "sizing": {"workload": " OLTP ", "shared_preload_libraries": "pg_cron, pgaudit"},
            "output": {"path": "/tmp/x.conf", "format": "JSON"},
        })

        config = FileConfig.load(path)

        assert config.sizing.workload == "oltp"
        assert config.sizing.shared_preload_libraries == ["pg_cron", "pgaudit"]
        assert config.output.path == Path("/tmp/x.conf")
        assert config.output.format == "json"
        assert config.sizing.storage == "ssd"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc:
            FileConfig.load(tmp_path / "missing.yaml")
        assert "not found" in str(exc.value)
        assert exc.value.exit_code == 2

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sizing: [unclosed\n")
        with pytest.raises(ConfigurationError) as exc:
            FileConfig.load(path)
        assert "Invalid YAML" in str(exc.value)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError) as exc:
            FileConfig.load(path)
        assert "mapping" in str(exc.value)

    def test_empty_file_is_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert FileConfig.load(path) == FileConfig()

    @pytest.mark.parametrize("data", [
        {"output": {"format": "xml"}},
        {"sizing": {"min_ram_mb": 0}},
        {"sizing": {"shared_preload_libraries": ["bad;name"]}},
    ])
    def test_invalid_values(self, tmp_path, data):
        path = write_yaml(tmp_path / "config.yaml", data)
        with pytest.raises(ConfigurationError) as exc:
            FileConfig.load(path)
        assert "Invalid configuration" in str(exc.value)
        assert exc.value.details

    def test_load_or_default(self, tmp_path):
        assert FileConfig.load_or_default(tmp_path / "missing.yaml") == FileConfig()

    def test_to_yaml_round_trip(self, tmp_path):
        config = FileConfig()
        path = tmp_path / "config.yaml"
        path.write_text(config.to_yaml())
        assert FileConfig.load(path) == config

    def test_example_config_is_valid(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(get_example_config())
        assert FileConfig.load(path) == FileConfig()


class TestEnvOverrides:
    """Tests for environment variable overrides."""

    def test_unset(self):
        env = EnvOverrides()
        assert env.memory_mb is None
        assert env.postgres_workload_type is None

    def test_memory_from_environment(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_MEMORY", "2048")
        assert EnvOverrides().memory_mb == 2048

    def test_blank_memory_ignored(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_MEMORY", "  ")
        assert EnvOverrides().memory_mb is None

    def test_invalid_memory(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_MEMORY", "4G")
        with pytest.raises(ValidationError) as exc:
            EnvOverrides().memory_mb
        assert "POSTGRES_MEMORY" in str(exc.value)


class TestAppConfig:
    """Tests for the combined configuration."""

    def test_file_values(self):
        config = AppConfig(
            config=FileConfig(sizing={"workload": "dw", "storage": "hdd"}),
            env=EnvOverrides(),
        )
        assert config.workload == "dw"
        assert config.storage == "hdd"
        assert config.shared_preload_libraries == DEFAULT_SHARED_PRELOAD_LIBRARIES

    def test_environment_overrides_file(self):
        config = AppConfig(
            config=FileConfig(sizing={"workload": "dw", "storage": "hdd"}),
            env=EnvOverrides(
                POSTGRES_WORKLOAD_TYPE="oltp",
                POSTGRES_STORAGE_TYPE="san",
                POSTGRES_SHARED_PRELOAD_LIBRARIES="timescaledb,pg_cron",
            ),
        )
        assert config.workload == "oltp"
        assert config.storage == "san"
        assert config.shared_preload_libraries == ("timescaledb", "pg_cron")

    def test_missing_file_uses_defaults(self, tmp_path):
        config = AppConfig(config_path=tmp_path / "missing.yaml")
        assert config.config == FileConfig()
        assert config.sizing.min_ram_mb == 512


class TestInitConfig:
    """Tests for init_config."""

    def test_creates_file(self, tmp_path):
        path = tmp_path / "etc" / "config.yaml"
        init_config(path)
        assert path.read_text() == get_example_config()

    def test_refuses_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("custom: true\n")
        with pytest.raises(ConfigurationError) as exc:
            init_config(path)
        assert exc.value.hint == "Use --force to overwrite"
        assert path.read_text() == "custom: true\n"

    def test_force_overwrites(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("custom: true\n")
        init_config(path, force=True)
        assert path.read_text() == get_example_config()
