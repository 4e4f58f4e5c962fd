from __future__ import annotations

import subprocess
import threading
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .streams import StreamCapture

if TYPE_CHECKING:
    from .lifecycle import LifecycleController
    from .tracker import ScopedProcessTracker


class ProcessState(str, Enum):
    RUNNING = "running"
    TERMINATING = "terminating"
    KILLED = "killed"
    TERMINATED = "terminated"


class ProcessHandle:
    """One running external process plus its lifecycle state.

    State only moves forward: RUNNING -> TERMINATING -> TERMINATED, with the
    escalation edge to KILLED before TERMINATED. A process that exits on its
    own is observed as TERMINATED the next time the handle is polled.
    """

    def __init__(
        self,
        proc: subprocess.Popen[Any],
        *,
        args: Sequence[str],
        own_process_group: bool = False,
        stdout: Optional[StreamCapture] = None,
        stderr: Optional[StreamCapture] = None,
        label: str | None = None,
    ) -> None:
        self._proc = proc
        self.args = list(args)
        self.own_process_group = own_process_group
        self.stdout = stdout
        self.stderr = stderr
        self.label = label or f"pid-{proc.pid}"
        self.was_killed = False
        self._state = ProcessState.RUNNING
        self._lock = threading.RLock()
        self._owner: Optional[ScopedProcessTracker] = None

    def __repr__(self) -> str:
        return f"ProcessHandle(label={self.label!r}, pid={self.pid}, state={self.state.value})"

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def popen(self) -> subprocess.Popen[Any]:
        return self._proc

    @property
    def owner(self) -> Optional[ScopedProcessTracker]:
        return self._owner

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def state(self) -> ProcessState:
        with self._lock:
            return self._refresh_locked()

    def poll(self) -> int | None:
        """Return the exit code if the process has exited, else None."""
        with self._lock:
            self._refresh_locked()
            return self._proc.returncode

    def is_running(self) -> bool:
        return self.poll() is None

    def is_terminated(self) -> bool:
        return self.state is ProcessState.TERMINATED

    def destructor(self) -> LifecycleController:
        from .lifecycle import LifecycleController

        return LifecycleController(self)

    def _refresh_locked(self) -> ProcessState:
        if self._state is not ProcessState.TERMINATED and self._proc.poll() is not None:
            self._mark_exited_locked()
        return self._state

    def _mark_exited_locked(self) -> None:
        self._state = ProcessState.TERMINATED
        for capture in (self.stdout, self.stderr):
            if capture is not None:
                capture.join(timeout=1.0)

    def _set_state_locked(self, state: ProcessState) -> None:
        self._state = state


__all__ = ["ProcessHandle", "ProcessState"]
