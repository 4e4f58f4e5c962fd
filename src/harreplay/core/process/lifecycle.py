"""Shutdown protocol for a single server process.

The protocol is an explicit state machine over ``ProcessHandle.state``::

    RUNNING --send_term_signal--> TERMINATING --exit observed--> TERMINATED
    RUNNING/TERMINATING --kill--> KILLED --exit observed--> TERMINATED

Every step is a no-op once the handle is TERMINATED, so the sequence may be
driven more than once (for example by the caller and then by tracker cleanup).
Escalation from graceful to forced is the caller's decision; only
``shutdown()`` escalates, and only after its graceful wait timed out.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from enum import Enum
from typing import Optional

import psutil

from harreplay.core.exceptions import TerminationError

from .handle import ProcessHandle, ProcessState
from .inspector import descendants

logger = logging.getLogger(__name__)

WAIT_SLICE_SECONDS = 0.05


class AwaitOutcome(str, Enum):
    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class LifecycleController:
    def __init__(self, handle: ProcessHandle) -> None:
        self.handle = handle

    @property
    def state(self) -> ProcessState:
        return self.handle.state

    def _signal(self, sig: int) -> None:
        proc = self.handle.popen
        if os.name == "posix":
            if self.handle.own_process_group:
                os.killpg(proc.pid, sig)
            else:
                os.kill(proc.pid, sig)
            return
        if sig == getattr(signal, "SIGKILL", None):
            proc.kill()
        else:
            proc.terminate()

    def send_term_signal(self) -> LifecycleController:
        """Ask the process to stop; RUNNING -> TERMINATING, otherwise no-op."""
        handle = self.handle
        with handle._lock:
            if handle._refresh_locked() is not ProcessState.RUNNING:
                return self
            try:
                self._signal(signal.SIGTERM)
            except ProcessLookupError:
                handle._refresh_locked()
                return self
            except OSError as exc:
                raise TerminationError(
                    f"failed to send SIGTERM to {handle.label}: {exc}", pid=handle.pid
                ) from exc
            handle._set_state_locked(ProcessState.TERMINATING)
        logger.debug("sent SIGTERM to %s", handle.label)
        return self

    def await_exit(
        self,
        timeout: Optional[float] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> AwaitOutcome:
        """Wait for the process to exit.

        A timeout leaves the state untouched and is not an error; the caller
        decides whether to escalate with ``kill()``.
        """
        outcome = self._wait(timeout, cancel)
        if outcome is AwaitOutcome.EXITED:
            logger.debug("%s exited with code %s", self.handle.label, self.handle.returncode)
        return outcome

    def kill(self) -> LifecycleController:
        """Forcibly kill the process and its descendants unless already TERMINATED."""
        handle = self.handle
        denied: list[int] = []
        with handle._lock:
            if handle._refresh_locked() is ProcessState.TERMINATED:
                return self
            children = descendants(handle.pid)
            try:
                self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
            except ProcessLookupError:
                pass
            except OSError as exc:
                raise TerminationError(f"failed to kill {handle.label}: {exc}", pid=handle.pid) from exc
            for child in children:
                try:
                    child.kill()
                except psutil.NoSuchProcess:
                    continue
                except psutil.AccessDenied:
                    denied.append(child.pid)
            handle.was_killed = True
            handle._set_state_locked(ProcessState.KILLED)
            handle._refresh_locked()
        logger.debug("killed %s", handle.label)
        if denied:
            raise TerminationError(
                f"killed {handle.label} but could not kill descendant(s) {denied}",
                pid=handle.pid,
                context={"descendants": denied},
            )
        return self

    def await_kill(
        self,
        timeout: Optional[float] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> AwaitOutcome:
        """Wait for a killed process to be reaped."""
        return self._wait(timeout, cancel)

    def shutdown(self, timeout: float) -> ProcessState:
        """Run signal -> await -> kill -> await_kill, escalating only on timeout.

        Raises:
            TerminationError: a signal failed, or the process survived SIGKILL
                for longer than ``timeout``.
        """
        self.send_term_signal()
        if self.await_exit(timeout) is AwaitOutcome.EXITED:
            return self.state
        logger.warning("%s did not exit within %.1fs of SIGTERM; killing", self.handle.label, timeout)
        self.kill()
        if self.await_kill(timeout) is not AwaitOutcome.EXITED:
            raise TerminationError(
                f"{self.handle.label} did not exit after SIGKILL", pid=self.handle.pid
            )
        return self.state

    def _wait(self, timeout: Optional[float], cancel: Optional[threading.Event]) -> AwaitOutcome:
        handle = self.handle
        proc = handle.popen
        deadline = None if timeout is None else time.monotonic() + max(0.0, float(timeout))
        while True:
            if handle.state is ProcessState.TERMINATED:
                return AwaitOutcome.EXITED
            if cancel is not None and cancel.is_set():
                return AwaitOutcome.CANCELLED
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return AwaitOutcome.TIMED_OUT
            slice_ = WAIT_SLICE_SECONDS if remaining is None else min(WAIT_SLICE_SECONDS, remaining)
            try:
                proc.wait(timeout=slice_)
            except subprocess.TimeoutExpired:
                continue


__all__ = ["AwaitOutcome", "LifecycleController", "WAIT_SLICE_SECONDS"]
