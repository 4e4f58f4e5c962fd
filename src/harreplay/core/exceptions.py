from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence


class SessionPhase(str, Enum):
    """How far a replay session got before something went wrong."""

    NOT_STARTED = "not_started"
    NOT_READY = "not_ready"
    READY = "ready"


class HarReplayError(Exception):
    """Base exception for harreplay."""

    context: Dict[str, Any]

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        if context is not None:
            # Store a shallow copy to avoid accidental mutation.
            self.context = dict(context)
        else:
            self.context = {}

    def to_json_error(self) -> Dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.__class__.__name__,
            "context": self.context,
        }


class ConfigError(HarReplayError, ValueError):
    """Raised when the layered configuration is invalid."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        HarReplayError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class InvalidSessionConfigError(HarReplayError, ValueError):
    """Raised when a replay session configuration fails validation."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        HarReplayError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class ExtractionError(HarReplayError):
    """Raised when the server bundle cannot be materialized."""


class MalformedArchiveError(ExtractionError, ValueError):
    """Raised for archive entries that are unsafe or undecodable."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ExtractionError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class ExtractionIOError(ExtractionError, OSError):
    """Raised when writing the extracted bundle to disk fails."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ExtractionError.__init__(self, message, context=context)
        OSError.__init__(self, message)


class SessionStartError(HarReplayError):
    """Raised when a replay session could not be brought to readiness."""

    phase: SessionPhase = SessionPhase.NOT_STARTED

    def __init__(
        self,
        message: str = "",
        *,
        port: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if port is not None:
            ctx["port"] = port
        ctx["phase"] = self.phase.value
        super().__init__(message, context=ctx)


class LaunchError(SessionStartError):
    """The server process never started."""


class ExecutableNotFoundError(LaunchError, FileNotFoundError):
    """The server runtime executable could not be resolved."""

    def __init__(
        self,
        message: str = "",
        *,
        port: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        LaunchError.__init__(self, message, port=port, context=context)
        FileNotFoundError.__init__(self, message)


class PortInUseError(LaunchError):
    """The requested port is already taken by another session or listener."""


class ReadinessError(SessionStartError):
    """The server process started but never accepted connections."""

    phase = SessionPhase.NOT_READY


class ProcessExitedEarlyError(ReadinessError):
    """The server process exited before it became ready."""

    def __init__(
        self,
        message: str = "",
        *,
        port: int | None = None,
        returncode: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        ctx["returncode"] = returncode
        super().__init__(message, port=port, context=ctx)
        self.returncode = returncode


class ReadinessTimeoutError(ReadinessError, TimeoutError):
    """All readiness polls were used up without a successful connection."""

    def __init__(
        self,
        message: str = "",
        *,
        port: int | None = None,
        attempts: int = 0,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        ctx["attempts"] = attempts
        ReadinessError.__init__(self, message, port=port, context=ctx)
        TimeoutError.__init__(self, message)
        self.attempts = attempts


class SessionCancelledError(ReadinessError):
    """The caller cancelled session start while waiting for readiness."""


class SessionFailedError(HarReplayError):
    """Work inside a session failed after its server had become ready."""

    phase: SessionPhase = SessionPhase.READY

    def __init__(
        self,
        message: str = "",
        *,
        port: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if port is not None:
            ctx["port"] = port
        ctx["phase"] = self.phase.value
        super().__init__(message, context=ctx)


class TerminationError(HarReplayError):
    """A signal or kill call against a server process failed."""

    def __init__(
        self,
        message: str = "",
        *,
        pid: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if pid is not None:
            ctx["pid"] = pid
        super().__init__(message, context=ctx)
        self.pid = pid


class TrackerClosedError(HarReplayError, RuntimeError):
    """Raised when registering with a tracker that has already closed."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        HarReplayError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class TrackerCloseError(HarReplayError):
    """Aggregate of termination failures collected while closing a tracker."""

    def __init__(self, failures: Sequence[TerminationError]) -> None:
        self.failures: List[TerminationError] = list(failures)
        pids = [f.pid for f in self.failures]
        summary = "; ".join(str(f) for f in self.failures[:3])
        super().__init__(
            f"{len(self.failures)} process(es) could not be terminated: {summary}",
            context={"pids": pids},
        )


__all__ = [
    "SessionPhase",
    "HarReplayError",
    "ConfigError",
    "InvalidSessionConfigError",
    "ExtractionError",
    "MalformedArchiveError",
    "ExtractionIOError",
    "SessionStartError",
    "LaunchError",
    "ExecutableNotFoundError",
    "PortInUseError",
    "ReadinessError",
    "ProcessExitedEarlyError",
    "ReadinessTimeoutError",
    "SessionCancelledError",
    "SessionFailedError",
    "TerminationError",
    "TrackerClosedError",
    "TrackerCloseError",
]
