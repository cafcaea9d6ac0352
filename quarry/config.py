"""
Config system - layered driver configuration.

Sources are merged with precedence:
overrides > environment variables (QUARRY_*) > .env file > config files > defaults

    loader = ConfigLoader.load(paths=["quarry.yaml"], env_file=".env")
    config = loader.driver_config()

Environment keys use ``__`` for nesting, so
``QUARRY_DATABASES__USERS__READONLY=true`` sets
``databases.users.readonly``.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from dotenv import dotenv_values

from .faults.domains import ConfigInvalidFault


MEMORY = ":memory:"

# Environment values for these keys are parsed as numbers
NUMERIC_KEYS = frozenset({"timeout"})


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Options for one logical database handle.

    ``must_exist`` fails the open with DatabaseNotFoundFault when the file
    is absent instead of creating it. ``timeout`` is the busy timeout in
    milliseconds.
    """

    filepath: str
    readonly: bool = False
    must_exist: bool = False
    verbose: bool = False
    timeout: int = 5000

    def __post_init__(self) -> None:
        if not self.filepath:
            raise ConfigInvalidFault("filepath", "must be a non-empty path")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) or self.timeout < 0:
            raise ConfigInvalidFault("timeout", f"must be a non-negative number of milliseconds, got {self.timeout!r}")

    @property
    def is_memory(self) -> bool:
        return self.filepath == MEMORY

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **defaults: Any) -> "ConnectionOptions":
        """
        Build options from a mapping, resolving the spelling variants of
        ``must_exist``: ``file_must_exist`` means the same thing, and
        ``create`` is its inverse (``create=False`` means the file must exist).
        """
        data = dict(data)
        must_exist = _resolve_must_exist(data)
        values = {**defaults}
        for f in fields(cls):
            if f.name in data:
                values[f.name] = data.pop(f.name)
        if must_exist is not None:
            values["must_exist"] = must_exist
        if data:
            raise ConfigInvalidFault(
                "connection", f"unknown option(s) {sorted(data)}"
            )
        return cls(**values)


def _resolve_must_exist(data: Dict[str, Any]) -> Optional[bool]:
    spellings = {}
    if "must_exist" in data:
        spellings["must_exist"] = _as_bool("must_exist", data.pop("must_exist"))
    if "file_must_exist" in data:
        spellings["file_must_exist"] = _as_bool("file_must_exist", data.pop("file_must_exist"))
    if "create" in data:
        spellings["create"] = not _as_bool("create", data.pop("create"))
    if not spellings:
        return None
    if len(set(spellings.values())) > 1:
        raise ConfigInvalidFault(
            "must_exist",
            f"contradictory settings {sorted(spellings)}; "
            "create=False is the same as must_exist=True",
        )
    return next(iter(spellings.values()))


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "1", "false", "no", "0"):
        return value.lower() in ("true", "yes", "1")
    raise ConfigInvalidFault(key, f"expected a boolean, got {value!r}")


@dataclass
class DriverConfig:
    """
    Driver-level configuration.

    ``databases`` maps a logical database name to a file path or to a
    mapping of per-database ConnectionOptions. Names that are not mapped
    live at ``<storage_dir>/<name>.sqlite``.
    """

    storage_dir: str = "./data"
    databases: Dict[str, Union[str, Dict[str, Any]]] = field(default_factory=dict)
    readonly: bool = False
    must_exist: bool = False
    verbose: bool = False
    timeout: int = 5000

    @classmethod
    def coerce(cls, value: Any) -> "DriverConfig":
        if value is None:
            return cls()
        if isinstance(value, DriverConfig):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise ConfigInvalidFault("driver", f"cannot build DriverConfig from {type(value).__name__}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DriverConfig":
        data = dict(data)
        must_exist = _resolve_must_exist(data)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigInvalidFault("driver", f"unknown key(s) {unknown}")
        values = {k: v for k, v in data.items() if k in known}
        for key in ("readonly", "verbose"):
            if key in values:
                values[key] = _as_bool(key, values[key])
        if must_exist is not None:
            values["must_exist"] = must_exist
        databases = values.get("databases") or {}
        if not isinstance(databases, Mapping):
            raise ConfigInvalidFault("databases", "must be a mapping of name to path or options")
        values["databases"] = dict(databases)
        config = cls(**values)
        # fail early on bad per-database entries
        for name in config.databases:
            config.options_for(name)
        return config

    def options_for(self, name: str, **overrides: Any) -> ConnectionOptions:
        """Resolve the ConnectionOptions for a logical database name."""
        defaults = {
            "readonly": self.readonly,
            "must_exist": self.must_exist,
            "verbose": self.verbose,
            "timeout": self.timeout,
        }
        entry = self.databases.get(name)
        if entry is None:
            data: Dict[str, Any] = {"filepath": str(Path(self.storage_dir) / f"{name}.sqlite")}
        elif isinstance(entry, str):
            data = {"filepath": entry}
        elif isinstance(entry, Mapping):
            data = dict(entry)
            data.setdefault("filepath", str(Path(self.storage_dir) / f"{name}.sqlite"))
        else:
            raise ConfigInvalidFault(f"databases.{name}", "must be a path or an options mapping")
        data.update(overrides)
        return ConnectionOptions.from_mapping(data, **defaults)

    def with_database(self, name: str, entry: Union[str, Dict[str, Any]]) -> "DriverConfig":
        return replace(self, databases={**self.databases, name: entry})


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > config files > defaults
    """

    def __init__(self, env_prefix: str = "QUARRY_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[List[str]] = None,
        env_prefix: str = "QUARRY_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from multiple sources with proper merge strategy.

        Args:
            paths: Config file paths (.json, .yaml, .yml), merged in order
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
            environ: Environment mapping, defaults to ``os.environ``

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        for path in paths or []:
            loader._load_file(Path(path))

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env(os.environ if environ is None else environ)

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_file(self, path: Path):
        if not path.exists():
            raise ConfigInvalidFault(str(path), "config file does not exist")
        if path.suffix == ".json":
            self._load_json_file(path)
        elif path.suffix in (".yaml", ".yml"):
            self._load_yaml_file(path)
        else:
            raise ConfigInvalidFault(str(path), f"unsupported config format '{path.suffix}'")

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigInvalidFault(str(path), f"invalid JSON: {e}") from e
        self._merge_dict(self.config_data, data)

    def _load_yaml_file(self, path: Path):
        """Load config from YAML file."""
        import yaml
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigInvalidFault(str(path), f"invalid YAML: {e}") from e
        if data:
            self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        env_path = Path(path)
        if not env_path.exists():
            return
        for key, value in dotenv_values(env_path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self, environ: Mapping[str, str]):
        """Load config from environment variables."""
        for key, value in environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert QUARRY_DATABASES__MAIN__READONLY to nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value, parts[-1])

    def _parse_value(self, value: str, key: str = "") -> Any:
        """Parse string value to appropriate type; only numeric keys become numbers."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        if key in NUMERIC_KEYS:
            try:
                if "." in value:
                    return float(value)
                return int(value)
            except ValueError:
                pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def driver_config(self) -> DriverConfig:
        """Build a validated DriverConfig from the merged data."""
        return DriverConfig.from_dict(self.config_data)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.config_data)
