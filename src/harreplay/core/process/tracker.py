"""Scope guard that owns server processes and terminates them on exit."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import TracebackType
from typing import Iterator, List, Optional, Tuple, Type

from harreplay.core.exceptions import TerminationError, TrackerClosedError, TrackerCloseError

from .handle import ProcessHandle, ProcessState
from .lifecycle import LifecycleController

logger = logging.getLogger(__name__)

# Ownership changes (register/deregister/transfer/close) take this lock before
# any tracker lock so a handle is never owned by two trackers at once.
_OWNERSHIP_LOCK = threading.Lock()

DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 5.0


@dataclass
class CleanupReport:
    """What a tracker close actually did."""

    attempted: int = 0
    terminated: List[int] = field(default_factory=list)
    failures: List[TerminationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ScopedProcessTracker:
    """Owns zero or more process handles for the duration of a scope.

    On close every handle that has not reached TERMINATED is driven through
    ``send_term_signal -> await_exit(bounded) -> kill -> await_kill``. A
    failure for one handle never stops cleanup of the others; failures are
    reported together afterwards.

    Example::

        with ScopedProcessTracker() as tracker:
            session = manager.start(tracker, session_config)
            ...
    """

    def __init__(
        self,
        shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
        *,
        name: str | None = None,
    ) -> None:
        if shutdown_timeout_seconds <= 0:
            raise ValueError(f"shutdown_timeout_seconds must be positive (got {shutdown_timeout_seconds})")
        self.shutdown_timeout_seconds = float(shutdown_timeout_seconds)
        self.name = name or f"tracker-{id(self):x}"
        self._lock = threading.Lock()
        self._handles: List[ProcessHandle] = []
        self._closed = False

    def __repr__(self) -> str:
        return f"ScopedProcessTracker(name={self.name!r}, handles={len(self)}, closed={self._closed})"

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return any(h is handle for h in self._handles)

    def __iter__(self) -> Iterator[ProcessHandle]:
        return iter(self.handles)

    @property
    def handles(self) -> Tuple[ProcessHandle, ...]:
        with self._lock:
            return tuple(self._handles)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def register(self, handle: ProcessHandle) -> ProcessHandle:
        """Take ownership of ``handle``.

        Raises:
            TrackerClosedError: the tracker has started closing.
            ValueError: another tracker owns the handle (use ``transfer``).
        """
        with _OWNERSHIP_LOCK, self._lock:
            if self._closed:
                raise TrackerClosedError(
                    f"{self.name} is closed; cannot register {handle.label}",
                    context={"pid": handle.pid},
                )
            if handle._owner is self:
                return handle
            if handle._owner is not None:
                raise ValueError(f"{handle.label} is already owned by {handle._owner.name}")
            self._handles.append(handle)
            handle._owner = self
        logger.debug("%s registered %s", self.name, handle.label)
        return handle

    def deregister(self, handle: ProcessHandle) -> bool:
        """Release ``handle`` without terminating it. Returns False if not owned."""
        with _OWNERSHIP_LOCK, self._lock:
            return self._remove_locked(handle)

    def transfer(self, handle: ProcessHandle, destination: ScopedProcessTracker) -> None:
        """Atomically move ``handle`` to ``destination``.

        Raises:
            KeyError: this tracker does not own the handle.
            TrackerClosedError: the destination has started closing.
        """
        if destination is self:
            return
        first, second = sorted((self, destination), key=id)
        with _OWNERSHIP_LOCK, first._lock, second._lock:
            if handle._owner is not self:
                raise KeyError(f"{handle.label} is not owned by {self.name}")
            if destination._closed:
                raise TrackerClosedError(
                    f"{destination.name} is closed; cannot receive {handle.label}",
                    context={"pid": handle.pid},
                )
            self._remove_locked(handle)
            destination._handles.append(handle)
            handle._owner = destination
        logger.debug("%s transferred %s to %s", self.name, handle.label, destination.name)

    def _remove_locked(self, handle: ProcessHandle) -> bool:
        for idx, h in enumerate(self._handles):
            if h is handle:
                del self._handles[idx]
                handle._owner = None
                return True
        return False

    def close(self) -> CleanupReport:
        """Terminate every owned handle and empty the registry.

        Idempotent: closing again returns an empty report.
        """
        with _OWNERSHIP_LOCK, self._lock:
            self._closed = True
            pending = list(self._handles)
            self._handles.clear()
            for handle in pending:
                handle._owner = None

        report = CleanupReport()
        for handle in pending:
            if handle.state is ProcessState.TERMINATED:
                continue
            report.attempted += 1
            try:
                LifecycleController(handle).shutdown(self.shutdown_timeout_seconds)
            except TerminationError as exc:
                report.failures.append(exc)
                continue
            except Exception as exc:  # remaining handles still get cleaned up
                logger.exception("unexpected error terminating %s", handle.label)
                report.failures.append(
                    TerminationError(f"unexpected error terminating {handle.label}: {exc}", pid=handle.pid)
                )
                continue
            report.terminated.append(handle.pid)

        if report.attempted:
            logger.info(
                "%s terminated %d of %d process(es)",
                self.name,
                len(report.terminated),
                report.attempted,
            )
        for failure in report.failures:
            logger.error("%s cleanup failure: %s", self.name, failure)
        return report

    def __enter__(self) -> ScopedProcessTracker:
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        report = self.close()
        if report.failures and exc is None:
            raise TrackerCloseError(report.failures)


__all__ = [
    "CleanupReport",
    "DEFAULT_SHUTDOWN_TIMEOUT_SECONDS",
    "ScopedProcessTracker",
]
