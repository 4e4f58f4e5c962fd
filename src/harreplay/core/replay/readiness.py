"""Wait for a replay server to accept TCP connections.

Connecting and immediately closing is the only readiness signal; no protocol
handshake is assumed.
"""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from harreplay.core.exceptions import ProcessExitedEarlyError, ReadinessTimeoutError
from harreplay.core.process import ProcessHandle

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"


class ReadinessOutcome(str, Enum):
    READY = "ready"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReadinessResult:
    outcome: ReadinessOutcome
    attempts: int

    @property
    def ready(self) -> bool:
        return self.outcome is ReadinessOutcome.READY


def is_listening(port: int, *, host: str = DEFAULT_HOST, timeout: float = 0.25) -> bool:
    """True if a TCP connection to ``host:port`` succeeds right now."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def _raise_if_exited(handle: Optional[ProcessHandle], port: int, attempts: int) -> None:
    if handle is None:
        return
    returncode = handle.poll()
    if returncode is not None:
        raise ProcessExitedEarlyError(
            f"replay server exited with code {returncode} before accepting connections on port {port}",
            port=port,
            returncode=returncode,
            context={"attempts": attempts},
        )


def wait_until_ready(
    port: int,
    *,
    interval: float,
    max_polls: int,
    handle: Optional[ProcessHandle] = None,
    cancel: Optional[threading.Event] = None,
    host: str = DEFAULT_HOST,
) -> ReadinessResult:
    """Poll ``host:port`` until it accepts a connection.

    Waits ``interval`` seconds between attempts, at most ``max_polls`` attempts,
    so the worst case is roughly ``interval * max_polls``. Setting ``cancel``
    ends the wait within one interval with a CANCELLED result.

    Raises:
        ProcessExitedEarlyError: ``handle`` exited before the port opened.
        ReadinessTimeoutError: every attempt failed.
    """
    cancel = cancel or threading.Event()
    connect_timeout = max(interval, 0.001)
    for attempt in range(1, max_polls + 1):
        _raise_if_exited(handle, port, attempt - 1)
        if cancel.is_set():
            return ReadinessResult(ReadinessOutcome.CANCELLED, attempt - 1)
        if is_listening(port, host=host, timeout=connect_timeout):
            logger.debug("port %d ready after %d attempt(s)", port, attempt)
            return ReadinessResult(ReadinessOutcome.READY, attempt)
        if attempt < max_polls and cancel.wait(interval):
            return ReadinessResult(ReadinessOutcome.CANCELLED, attempt)

    # the server may have died during the last attempt
    _raise_if_exited(handle, port, max_polls)
    raise ReadinessTimeoutError(
        f"replay server did not accept connections on port {port} after {max_polls} attempts "
        f"({interval * max_polls:.2f}s)",
        port=port,
        attempts=max_polls,
    )


__all__ = [
    "DEFAULT_HOST",
    "ReadinessOutcome",
    "ReadinessResult",
    "is_listening",
    "wait_until_ready",
]
