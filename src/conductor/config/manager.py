"""Configuration manager for loading and merging configs."""

from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from conductor.config.schema import ConductorConfig, get_config_file
from conductor.errors import ConductorError

PROJECT_CONFIG_NAME = ".conductor.toml"


class ConfigError(ConductorError):
    """A config file could not be parsed or failed validation."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Invalid config file {path}: {reason}")
        self.path = path


class ConfigManager:
    """Loads the layered configuration once and hands out the cached result.

    Layers, lowest to highest priority: built-in defaults, the user file, the
    nearest ``.conductor.toml`` at or above the working directory. Sections
    are merged key by key, so a project file only needs the keys it changes.
    """

    _instance: "ConfigManager | None" = None
    _config: ConductorConfig | None = None
    _sources: list[Path] = []

    def __new__(cls) -> "ConfigManager":
        """Singleton pattern for config manager."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_config(cls) -> ConductorConfig:
        """Get the current configuration, loading if necessary."""
        if cls._config is None:
            cls._config = cls.load_config()
        return cls._config

    @classmethod
    def load_config(cls) -> ConductorConfig:
        """Read every layer that exists and validate the merged result.

        Raises:
            ConfigError: a file is not valid TOML or holds values the schema rejects
        """
        merged: dict[str, Any] = {}
        sources = []
        for path in (get_config_file(), cls._find_project_config()):
            if path is None or not path.exists():
                continue
            layer = cls._read(path)
            cls._validate(path, layer)
            merged = cls._deep_merge(merged, layer)
            sources.append(path)

        cls._sources = sources
        return cls._validate(sources[-1], merged) if sources else ConductorConfig.default()

    @classmethod
    def load_file(cls, path: Path) -> ConductorConfig:
        """Load a single TOML file on top of the defaults."""
        return cls._validate(path, cls._read(path))

    @staticmethod
    def user_config_file() -> Path:
        return get_config_file()

    @classmethod
    def sources(cls) -> list[Path]:
        """Files that contributed to the current configuration, lowest priority first."""
        cls.get_config()
        return list(cls._sources)

    @classmethod
    def reload(cls) -> ConductorConfig:
        """Force reload configuration from disk."""
        cls._config = cls.load_config()
        return cls._config

    @classmethod
    def reset(cls) -> None:
        """Drop the cached configuration."""
        cls._config = None
        cls._sources = []

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            return toml.load(path)
        except toml.TomlDecodeError as e:
            raise ConfigError(path, str(e)) from e

    @staticmethod
    def _validate(path: Path, data: dict[str, Any]) -> ConductorConfig:
        try:
            return ConductorConfig.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise ConfigError(path, problems) from e

    @classmethod
    def _find_project_config(cls) -> Path | None:
        """Find project-level config file by searching up from cwd."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_file = parent / PROJECT_CONFIG_NAME
            if config_file.exists():
                return config_file
            if parent == Path.home():
                break
        return None

    @classmethod
    def _deep_merge(cls, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def get_value(cls, key_path: str, default: Any = None) -> Any:
        """Look up a dotted key such as ``coordinator.max_worker_retries``."""
        current: Any = cls.get_config().model_dump(by_alias=True)
        for key in key_path.split("."):
            if not isinstance(current, dict) or key not in current:
                return default
            current = current[key]
        return current
