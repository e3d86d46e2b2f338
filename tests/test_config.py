"""Tests for configuration and app setup."""

from pathlib import Path

import pytest

from slurm_manager.app import validate_config
from slurm_manager.config import Config, parse_args


class TestConfig:
    def test_defaults(self, config):
        assert config.history_days == 7
        assert config.confirm_threshold == 100
        assert config.validate() == []

    def test_from_args(self, tmp_path):
        args = parse_args([
            "--port", "8080",
            "--user", "bob",
            "--cache-dir", str(tmp_path),
            "--confirm-threshold", "50",
            "--log-level", "DEBUG",
        ])
        config = Config.from_args(args)

        assert config.port == 8080
        assert config.user == "bob"
        assert config.cache_dir == tmp_path.resolve()
        assert config.confirm_threshold == 50
        assert config.log_level == "DEBUG"

    def test_cache_dir_coerced_to_path(self):
        assert isinstance(Config(user="x", cache_dir="/tmp/c").cache_dir, Path)

    @pytest.mark.parametrize(
        "field,value",
        [("port", 0), ("history_days", 0), ("max_workers", 0), ("command_timeout", 0), ("confirm_threshold", 0)],
    )
    def test_invalid_values(self, config, field, value):
        setattr(config, field, value)
        assert len(config.validate()) == 1


class TestValidateConfig:
    def test_missing_cache_dir_warns(self, config):
        warnings = validate_config(config)
        assert any("creating" in w for w in warnings)

    def test_cache_path_is_a_file(self, config):
        config.cache_dir.parent.mkdir(parents=True, exist_ok=True)
        config.cache_dir.write_text("")
        with pytest.raises(ValueError, match="not a directory"):
            validate_config(config)

    def test_invalid_config_raises(self, config):
        config.port = 70000
        with pytest.raises(ValueError, match="Port"):
            validate_config(config)
