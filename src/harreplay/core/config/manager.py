"""
harreplay configuration management (YAML + environment overrides).
"""
from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import jsonschema
import yaml

from harreplay.core.exceptions import ConfigError
from harreplay.data import get_data_path, read_json

from .merge import deep_merge

logger = logging.getLogger(__name__)

ENV_PREFIX = "HARREPLAY_"
CONFIG_PATH_ENV = "HARREPLAY_CONFIG"
PROJECT_CONFIG_DIR = ".harreplay"


class ConfigManager:
    """Load, merge, and validate harreplay configuration.

    Configuration sources (highest to lowest priority):
    1. Environment variables: HARREPLAY_<section>__<key>
    2. Explicit file: ``$HARREPLAY_CONFIG``
    3. Project config: <repo_root>/.harreplay/config.yaml
    4. Bundled defaults: harreplay.data/config/defaults.yaml
    """

    def __init__(self, repo_root: Optional[Path] = None) -> None:
        self.repo_root = Path(repo_root).expanduser().resolve() if repo_root else Path.cwd().resolve()
        self.defaults_path = get_data_path("config", "defaults.yaml")
        self.project_config_path = self.repo_root / PROJECT_CONFIG_DIR / "config.yaml"

    def load_yaml(self, path: Path) -> Dict[str, Any]:
        # Fail closed: configuration must never silently ignore invalid YAML.
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}", context={"path": str(path)}) from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping", context={"path": str(path)})
        return data

    def _as_bool(self, v: str) -> Optional[bool]:
        low = v.strip().lower()
        if low in {"true", "false"}:
            return low == "true"
        return None

    def _as_int(self, v: str) -> Optional[int]:
        if re.fullmatch(r"[-+]?\d+", v.strip() or " "):
            return int(v)
        return None

    def _as_float(self, v: str) -> Optional[float]:
        s = v.strip()
        if re.fullmatch(r"[-+]?\d*\.\d+", s) or re.fullmatch(r"[-+]?\d+\.\d*", s):
            return float(s)
        return None

    def _as_json(self, v: str) -> Optional[Any]:
        s = v.strip()
        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                return json.loads(s)
            except ValueError:
                return None
        return None

    def _coerce_type(self, value: str) -> Any:
        if value.strip().lower() in {"null", "none"}:
            return None
        for caster in (self._as_bool, self._as_int, self._as_float, self._as_json):
            result = caster(value)
            if result is not None:
                return result
        return value.strip()

    def _iter_env_overrides(self) -> Iterator[Tuple[List[str], Any]]:
        for key in sorted(os.environ.keys()):
            if not key.startswith(ENV_PREFIX) or key == CONFIG_PATH_ENV:
                continue
            raw = key[len(ENV_PREFIX):]
            segs = [s.lower() for s in raw.split("__")]
            if not raw or any(s == "" for s in segs):
                raise ConfigError(f"Malformed {ENV_PREFIX}* key: '{key}'", context={"key": key})
            yield segs, self._coerce_type(os.environ[key])

    def apply_env_overrides(self, cfg: Dict[str, Any]) -> None:
        for path, value in self._iter_env_overrides():
            cur = cfg
            for part in path[:-1]:
                nxt = cur.get(part)
                if not isinstance(nxt, dict):
                    nxt = {}
                    cur[part] = nxt
                cur = nxt
            cur[path[-1]] = value
            logger.debug("config override from environment: %s", ".".join(path))

    def validate(self, cfg: Dict[str, Any]) -> None:
        schema = read_json("schemas", "config.schema.json")
        try:
            jsonschema.validate(instance=cfg, schema=schema)
        except jsonschema.ValidationError as exc:
            where = ".".join(str(p) for p in exc.absolute_path) or "<root>"
            raise ConfigError(
                f"Invalid configuration at {where}: {exc.message}",
                context={"path": where},
            ) from exc

    def load_config(self, validate: bool = True) -> Dict[str, Any]:
        """Return the merged configuration dictionary."""
        cfg = self.load_yaml(self.defaults_path)

        if self.project_config_path.exists():
            cfg = deep_merge(cfg, self.load_yaml(self.project_config_path))

        explicit = os.environ.get(CONFIG_PATH_ENV)
        if explicit:
            explicit_path = Path(explicit).expanduser()
            if not explicit_path.is_file():
                raise ConfigError(
                    f"{CONFIG_PATH_ENV} points to a missing file: {explicit_path}",
                    context={"path": str(explicit_path)},
                )
            cfg = deep_merge(cfg, self.load_yaml(explicit_path))

        self.apply_env_overrides(cfg)

        if validate:
            self.validate(cfg)
        return cfg

    def section(self, name: str) -> Dict[str, Any]:
        section = self.load_config().get(name)
        return dict(section) if isinstance(section, dict) else {}


__all__ = ["ConfigManager", "ENV_PREFIX", "CONFIG_PATH_ENV"]
