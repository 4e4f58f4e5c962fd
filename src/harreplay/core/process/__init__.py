"""Server process handles, shutdown protocol and scoped tracking."""

from .handle import ProcessHandle, ProcessState
from .inspector import descendants, is_process_alive
from .lifecycle import AwaitOutcome, LifecycleController
from .streams import OutputMode, StreamCapture
from .tracker import CleanupReport, ScopedProcessTracker

__all__ = [
    "AwaitOutcome",
    "CleanupReport",
    "LifecycleController",
    "OutputMode",
    "ProcessHandle",
    "ProcessState",
    "ScopedProcessTracker",
    "StreamCapture",
    "descendants",
    "is_process_alive",
]
