"""
Process inspection helpers backed by psutil.

Used to find a server's descendants before a forced kill, since a replay
server runtime may fork helpers that leave its process group.
"""

from __future__ import annotations

from typing import List

import psutil


def is_process_alive(pid: int) -> bool:
    """Check if a process is alive by PID.

    Zombies count as dead: they have exited and only await reaping.
    """
    if pid <= 0:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Permission denied implies the process exists but is protected
        return True


def descendants(pid: int) -> List[psutil.Process]:
    """Return every live descendant of ``pid`` (empty when it is gone)."""
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return []


__all__ = ["descendants", "is_process_alive"]
