from datetime import timedelta
from pathlib import Path

import pytest

from capo.config import ActuatorConfig, _deep_merge, load_config
from capo.constants import CREATE_TIMEOUT_ENV

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestDeepMerge:
    def test_shallow_override(self):
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"actuator": {"poll_interval": 5, "address_family": 4}}
        override = {"actuator": {"poll_interval": 2}}
        assert _deep_merge(base, override) == {"actuator": {"poll_interval": 2, "address_family": 4}}

    def test_empty_override(self):
        assert _deep_merge({"a": 1}, {}) == {"a": 1}


class TestEnvOverride:
    def test_default_timeout(self):
        assert ActuatorConfig.from_env({}).create_timeout == 300.0

    def test_minutes_from_env(self):
        assert ActuatorConfig.from_env({CREATE_TIMEOUT_ENV: "12"}).create_timeout == 720.0

    @pytest.mark.parametrize("raw", ["abc", "1.5", "0", "-3", "  "])
    def test_invalid_values_are_ignored(self, raw):
        assert ActuatorConfig.from_env({CREATE_TIMEOUT_ENV: raw}).create_timeout == 300.0


class TestLoadConfig:
    def test_defaults_without_files(self, tmp_path: Path):
        config = load_config(project_dir=tmp_path, global_path=tmp_path / "none.toml", environ={})
        assert config == ActuatorConfig()

    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "defaults.toml"
        global_toml.write_text("[actuator]\npoll_interval = 5\ntoken_ttl_minutes = 30\n")
        project = tmp_path / "project"
        project.mkdir()
        (project / "capo.toml").write_text("[actuator]\npoll_interval = 2\n")

        config = load_config(project_dir=project, global_path=global_toml, environ={})

        assert config.poll_interval == 2
        assert config.token_ttl == timedelta(minutes=30)

    def test_env_wins_over_files(self, tmp_path: Path):
        (tmp_path / "capo.toml").write_text("[actuator]\ncreate_timeout_minutes = 10\n")

        config = load_config(
            project_dir=tmp_path,
            global_path=tmp_path / "none.toml",
            environ={CREATE_TIMEOUT_ENV: "3"},
        )

        assert config.create_timeout == 180.0

    def test_unknown_key(self, tmp_path: Path):
        (tmp_path / "capo.toml").write_text("[actuator]\npoll_intervall = 2\n")

        with pytest.raises(ValueError, match="poll_intervall"):
            load_config(project_dir=tmp_path, global_path=tmp_path / "none.toml", environ={})
