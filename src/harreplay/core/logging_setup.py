from __future__ import annotations

import logging
import sys
from pathlib import Path

_CONFIGURED_LOG_PATH: str | None = None
_FILE_HANDLER: logging.Handler | None = None
_JSON_MODE_NULL_HANDLER_INSTALLED: bool = False


def _level_from_name(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_stdlib_logging(*, log_path: Path, level: str = "INFO") -> None:
    """Configure Python stdlib logging to write to `log_path` (no stderr handler).

    Idempotent per-process: if already configured for the same file, no-op.
    """
    global _CONFIGURED_LOG_PATH, _FILE_HANDLER

    resolved = str(Path(log_path).resolve())
    if _CONFIGURED_LOG_PATH == resolved and _FILE_HANDLER is not None:
        return

    Path(resolved).parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(_level_from_name(level))

    # FileHandler is also a StreamHandler, so only drop the stdout/stderr ones.
    for h in list(root.handlers):
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) in (sys.stdout, sys.stderr):
            root.removeHandler(h)
            h.close()

    # Replace our own file handler when switching paths.
    if _FILE_HANDLER is not None:
        root.removeHandler(_FILE_HANDLER)
        _FILE_HANDLER.close()
        _FILE_HANDLER = None

    fh = logging.FileHandler(resolved, encoding="utf-8")
    fh.setLevel(_level_from_name(level))
    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(fh)

    _FILE_HANDLER = fh
    _CONFIGURED_LOG_PATH = resolved


def reset_stdlib_logging_for_tests() -> None:
    """Test-only: clear configured handlers."""
    global _CONFIGURED_LOG_PATH, _FILE_HANDLER
    root = logging.getLogger()
    if _FILE_HANDLER is not None:
        root.removeHandler(_FILE_HANDLER)
        _FILE_HANDLER.close()
    _CONFIGURED_LOG_PATH = None
    _FILE_HANDLER = None


def suppress_lastresort_in_json_mode() -> None:
    """Keep stdlib logging's lastResort handler off stderr in ``--json`` mode.

    Installs a NullHandler on the root logger when it otherwise has none.
    """
    global _JSON_MODE_NULL_HANDLER_INSTALLED

    root = logging.getLogger()
    if root.handlers or _JSON_MODE_NULL_HANDLER_INSTALLED:
        return
    root.addHandler(logging.NullHandler())
    _JSON_MODE_NULL_HANDLER_INSTALLED = True


__all__ = [
    "configure_stdlib_logging",
    "reset_stdlib_logging_for_tests",
    "suppress_lastresort_in_json_mode",
]
