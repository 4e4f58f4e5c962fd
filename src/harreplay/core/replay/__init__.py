"""Replay server sessions.

This module provides:
- Manager and session configuration values
- Command construction and launch of the replay server
- Readiness polling against the session port
- ``ReplayManager`` tying extraction, launch and readiness together
"""

from .launcher import build_command, launch, resolve_executable
from .manager import ReplayManager, ReplaySession
from .models import ReplayManagerConfig, ReplaySessionConfig, find_free_port
from .readiness import ReadinessOutcome, ReadinessResult, is_listening, wait_until_ready

__all__ = [
    "ReadinessOutcome",
    "ReadinessResult",
    "ReplayManager",
    "ReplayManagerConfig",
    "ReplaySession",
    "ReplaySessionConfig",
    "build_command",
    "find_free_port",
    "is_listening",
    "launch",
    "resolve_executable",
    "wait_until_ready",
]
