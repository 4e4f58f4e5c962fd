"""Layered configuration (bundled defaults, project file, environment)."""

from .manager import CONFIG_PATH_ENV, ENV_PREFIX, ConfigManager
from .merge import deep_merge

__all__ = ["ConfigManager", "CONFIG_PATH_ENV", "ENV_PREFIX", "deep_merge"]
