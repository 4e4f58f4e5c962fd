"""
harreplay data resource helpers.

Provides access to the bundled configuration defaults, schemas and the
embedded replay server archive using importlib.resources.
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any


def get_data_path(subpackage: str, filename: str = "") -> Path:
    """Absolute path of a packaged data file, or of a data directory when
    ``filename`` is empty.

    Example:
        >>> get_data_path("bundle", "server-replay-client.zip")
        PosixPath('.../harreplay/data/bundle/server-replay-client.zip')
    """
    pkg = resources.files("harreplay.data")
    base = Path(str(pkg / subpackage))
    return base / filename if filename else base


@lru_cache(maxsize=16)
def read_json(subpackage: str, filename: str) -> dict[str, Any]:
    """Read and parse a JSON data file (cached)."""
    path = get_data_path(subpackage, filename)
    return json.loads(path.read_text(encoding="utf-8"))


def clear_caches() -> None:
    """Clear all read caches."""
    read_json.cache_clear()


__all__ = [
    "get_data_path",
    "read_json",
    "clear_caches",
]
