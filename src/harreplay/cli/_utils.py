"""Helpers shared by CLI commands."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict

from harreplay.core.config import ConfigManager
from harreplay.core.exceptions import HarReplayError, ReadinessError, SessionStartError
from harreplay.core.logging_setup import configure_stdlib_logging, suppress_lastresort_in_json_mode

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_STARTED = 2
EXIT_NOT_READY = 3
EXIT_INTERRUPTED = 130


def get_repo_root(args: argparse.Namespace) -> Path:
    if getattr(args, "repo_root", None):
        return Path(args.repo_root).expanduser().resolve()
    return Path.cwd().resolve()


def exit_code_for(error: HarReplayError) -> int:
    """Map an error to the CLI exit code for the phase it failed in."""
    if isinstance(error, ReadinessError):
        return EXIT_NOT_READY
    if isinstance(error, SessionStartError):
        return EXIT_NOT_STARTED
    return EXIT_ERROR


def setup_logging(args: argparse.Namespace, logging_cfg: Dict[str, Any]) -> None:
    """Route logs to a file when ``--log-file`` is given or logging is enabled in config."""
    log_file = getattr(args, "log_file", None) or (
        logging_cfg.get("path") if logging_cfg.get("enabled") else None
    )
    if log_file:
        configure_stdlib_logging(log_path=Path(log_file), level=str(logging_cfg.get("level") or "INFO"))
    elif getattr(args, "json", False):
        suppress_lastresort_in_json_mode()


def load_config(args: argparse.Namespace) -> Dict[str, Any]:
    return ConfigManager(get_repo_root(args)).load_config()


__all__ = [
    "EXIT_ERROR",
    "EXIT_INTERRUPTED",
    "EXIT_NOT_READY",
    "EXIT_NOT_STARTED",
    "EXIT_OK",
    "exit_code_for",
    "get_repo_root",
    "load_config",
    "setup_logging",
]
