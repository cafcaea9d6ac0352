"""
Tests for ConnectionOptions, DriverConfig and ConfigLoader.
"""

import json
from pathlib import Path

import pytest

from quarry.config import MEMORY, ConfigLoader, ConnectionOptions, DriverConfig
from quarry.faults import ConfigInvalidFault


class TestConnectionOptions:
    """Per-database options."""

    def test_defaults(self):
        opts = ConnectionOptions("db.sqlite")
        assert opts.readonly is False
        assert opts.must_exist is False
        assert opts.timeout == 5000
        assert not opts.is_memory

    def test_memory(self):
        assert ConnectionOptions(MEMORY).is_memory

    def test_empty_path(self):
        with pytest.raises(ConfigInvalidFault):
            ConnectionOptions("")

    @pytest.mark.parametrize("timeout", [-1, "10", True])
    def test_bad_timeout(self, timeout):
        with pytest.raises(ConfigInvalidFault):
            ConnectionOptions("db.sqlite", timeout=timeout)

    @pytest.mark.parametrize("data,expected", [
        ({"must_exist": True}, True),
        ({"file_must_exist": True}, True),
        ({"create": False}, True),
        ({"create": True}, False),
        ({"create": "no"}, True),
        ({"must_exist": True, "file_must_exist": True, "create": False}, True),
    ])
    def test_must_exist_spellings(self, data, expected):
        opts = ConnectionOptions.from_mapping({"filepath": "x.sqlite", **data})
        assert opts.must_exist is expected

    def test_contradictory_spellings(self):
        with pytest.raises(ConfigInvalidFault, match="contradictory"):
            ConnectionOptions.from_mapping({"filepath": "x", "must_exist": True, "create": True})

    def test_unknown_option(self):
        with pytest.raises(ConfigInvalidFault, match="unknown option"):
            ConnectionOptions.from_mapping({"filepath": "x", "journal": "wal"})

    def test_not_a_boolean(self):
        with pytest.raises(ConfigInvalidFault, match="expected a boolean"):
            ConnectionOptions.from_mapping({"filepath": "x", "must_exist": "maybe"})


class TestDriverConfig:
    """Driver-level defaults and per-database resolution."""

    def test_coerce(self):
        assert DriverConfig.coerce(None) == DriverConfig()
        cfg = DriverConfig()
        assert DriverConfig.coerce(cfg) is cfg
        with pytest.raises(ConfigInvalidFault):
            DriverConfig.coerce(42)

    def test_default_path(self, tmp_path):
        cfg = DriverConfig.coerce({"storage_dir": str(tmp_path)})
        assert cfg.options_for("users").filepath == str(tmp_path / "users.sqlite")

    def test_mapped_path(self):
        cfg = DriverConfig.coerce({"databases": {"cache": MEMORY}})
        assert cfg.options_for("cache").is_memory

    def test_per_database_options_inherit_defaults(self, tmp_path):
        cfg = DriverConfig.coerce({
            "storage_dir": str(tmp_path),
            "timeout": 100,
            "readonly": True,
            "databases": {"logs": {"readonly": False}},
        })
        logs = cfg.options_for("logs")
        assert logs.readonly is False
        assert logs.timeout == 100
        assert logs.filepath == str(tmp_path / "logs.sqlite")
        assert cfg.options_for("other").readonly is True

    def test_overrides(self):
        cfg = DriverConfig()
        assert cfg.options_for("a", readonly=True).readonly is True

    def test_create_alias_at_driver_level(self):
        assert DriverConfig.coerce({"create": False}).must_exist is True

    def test_unknown_key(self):
        with pytest.raises(ConfigInvalidFault, match="unknown key"):
            DriverConfig.coerce({"storage": "./x"})

    def test_bad_database_entry_fails_early(self):
        with pytest.raises(ConfigInvalidFault):
            DriverConfig.coerce({"databases": {"a": 3}})

    def test_databases_must_be_mapping(self):
        with pytest.raises(ConfigInvalidFault, match="must be a mapping"):
            DriverConfig.coerce({"databases": ["a"]})

    def test_with_database(self):
        cfg = DriverConfig().with_database("x", MEMORY)
        assert cfg.databases == {"x": MEMORY}


class TestConfigLoader:
    """Layered loading."""

    def test_json_and_yaml_merge(self, tmp_path):
        (tmp_path / "base.json").write_text(json.dumps({
            "storage_dir": "/from/json",
            "databases": {"main": {"readonly": False}},
        }))
        (tmp_path / "local.yaml").write_text(
            "storage_dir: /from/yaml\n"
            "databases:\n"
            "  main:\n"
            "    timeout: 250\n"
        )
        loader = ConfigLoader.load(
            paths=[str(tmp_path / "base.json"), str(tmp_path / "local.yaml")],
            environ={},
        )
        assert loader.get("storage_dir") == "/from/yaml"
        assert loader.get("databases.main") == {"readonly": False, "timeout": 250}

    def test_env_file_then_environ_then_overrides(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "QUARRY_STORAGE_DIR=/from/dotenv\n"
            "QUARRY_TIMEOUT=42\n"
            "OTHER_VALUE=ignored\n"
        )
        loader = ConfigLoader.load(env_file=str(env_file), environ={})
        assert loader.get("storage_dir") == "/from/dotenv"
        assert loader.get("timeout") == 42
        assert loader.get("other_value") is None

        loader = ConfigLoader.load(
            env_file=str(env_file),
            environ={"QUARRY_STORAGE_DIR": "/from/environ"},
        )
        assert loader.get("storage_dir") == "/from/environ"

        loader = ConfigLoader.load(
            env_file=str(env_file),
            environ={"QUARRY_STORAGE_DIR": "/from/environ"},
            overrides={"storage_dir": "/from/overrides"},
        )
        assert loader.get("storage_dir") == "/from/overrides"

    def test_nested_env_keys(self):
        loader = ConfigLoader.load(environ={
            "QUARRY_DATABASES__USERS__READONLY": "true",
            "QUARRY_DATABASES__USERS__FILEPATH": "/tmp/users.db",
        })
        config = loader.driver_config()
        opts = config.options_for("users")
        assert opts.readonly is True
        assert opts.filepath == "/tmp/users.db"

    def test_custom_prefix(self):
        loader = ConfigLoader.load(env_prefix="APP_", environ={"APP_VERBOSE": "yes", "QUARRY_VERBOSE": "no"})
        assert loader.get("verbose") is True

    @pytest.mark.parametrize("key,raw,parsed", [
        ("readonly", "true", True),
        ("verbose", "No", False),
        ("timeout", "12", 12),
        ("timeout", "1.5", 1.5),
        ("storage_dir", "1.5", "1.5"),
        ("filepath", "12", "12"),
        ("databases", '{"a": 1}', {"a": 1}),
        ("databases", "[1, 2]", [1, 2]),
        ("storage_dir", "plain", "plain"),
    ])
    def test_parse_value(self, key, raw, parsed):
        assert ConfigLoader()._parse_value(raw, key) == parsed

    def test_numeric_looking_paths_stay_strings(self):
        loader = ConfigLoader.load(environ={"QUARRY_STORAGE_DIR": "1.5", "QUARRY_TIMEOUT": "250"})
        config = loader.driver_config()
        assert config.storage_dir == "1.5"
        assert config.timeout == 250

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigInvalidFault, match="does not exist"):
            ConfigLoader.load(paths=[str(tmp_path / "nope.json")], environ={})

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("a = 1")
        with pytest.raises(ConfigInvalidFault, match="unsupported config format"):
            ConfigLoader.load(paths=[str(path)], environ={})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(ConfigInvalidFault, match="invalid JSON"):
            ConfigLoader.load(paths=[str(path)], environ={})

    def test_missing_env_file_is_ignored(self, tmp_path):
        loader = ConfigLoader.load(env_file=str(tmp_path / ".env"), environ={})
        assert loader.to_dict() == {}

    def test_driver_config_validates(self):
        loader = ConfigLoader.load(environ={"QUARRY_BOGUS": "1"})
        with pytest.raises(ConfigInvalidFault, match="unknown key"):
            loader.driver_config()
