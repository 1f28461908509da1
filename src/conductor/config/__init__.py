"""Configuration management."""

from conductor.config.manager import ConfigError, ConfigManager
from conductor.config.schema import ConductorConfig

__all__ = ["ConfigError", "ConfigManager", "ConductorConfig"]
