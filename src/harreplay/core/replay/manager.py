from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from harreplay.core.exceptions import (
    PortInUseError,
    SessionCancelledError,
    SessionFailedError,
    SessionPhase,
)
from harreplay.core.process import LifecycleController, ProcessHandle, ProcessState, ScopedProcessTracker

from .launcher import launch
from .models import ReplayManagerConfig, ReplaySessionConfig
from .readiness import DEFAULT_HOST, is_listening, wait_until_ready

logger = logging.getLogger(__name__)


@dataclass
class ReplaySession:
    """A replay server that has become ready."""

    config: ReplaySessionConfig
    handle: ProcessHandle
    server_dir: Path
    attempts: int
    host: str = DEFAULT_HOST
    phase: SessionPhase = SessionPhase.READY
    _release: Optional[Callable[[], None]] = field(default=None, repr=False)

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def proxy_address(self) -> str:
        return f"{self.host}:{self.port}"

    def destructor(self) -> LifecycleController:
        return self.handle.destructor()

    def stop(self, timeout: float = 5.0) -> ProcessState:
        """Gracefully stop the server, killing it if ``timeout`` passes."""
        try:
            return self.handle.destructor().shutdown(timeout)
        finally:
            self.release_port()

    def release_port(self) -> None:
        if self._release is not None:
            release, self._release = self._release, None
            release()


class ReplayManager:
    """Starts replay servers for sessions.

    Ports are reserved per manager while a session is live, so two sessions
    started through the same manager can never be launched on one port.
    """

    def __init__(self, config: Optional[ReplayManagerConfig] = None) -> None:
        self.config = config or ReplayManagerConfig.auto()
        self._ports_lock = threading.Lock()
        # port -> server handle; None while the server is still being launched
        self._reserved: dict[int, Optional[ProcessHandle]] = {}

    @property
    def reserved_ports(self) -> frozenset[int]:
        with self._ports_lock:
            return frozenset(
                port for port, handle in self._reserved.items() if handle is None or not handle.is_terminated()
            )

    def _reserve_port(self, port: int) -> None:
        with self._ports_lock:
            if port in self._reserved:
                holder = self._reserved[port]
                if holder is None or not holder.is_terminated():
                    raise PortInUseError(f"port {port} is already used by another replay session", port=port)
            if is_listening(port):
                raise PortInUseError(f"port {port} is already accepting connections", port=port)
            self._reserved[port] = None

    def _bind_port(self, port: int, handle: ProcessHandle) -> None:
        with self._ports_lock:
            self._reserved[port] = handle

    def _release_port(self, port: int, handle: Optional[ProcessHandle] = None) -> None:
        with self._ports_lock:
            if port in self._reserved and self._reserved[port] is handle:
                del self._reserved[port]

    def start(
        self,
        tracker: ScopedProcessTracker,
        session_config: ReplaySessionConfig,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ReplaySession:
        """Launch the server for ``session_config`` and wait until it is ready.

        The process is owned by ``tracker`` from the moment it spawns; any
        failure after that point leaves it registered so tracker cleanup
        terminates it.

        Raises:
            ExtractionError: the server directory could not be provided.
            LaunchError: the server never started (includes
                ExecutableNotFoundError and PortInUseError).
            ReadinessError: the server started but never became ready
                (ProcessExitedEarlyError, ReadinessTimeoutError,
                SessionCancelledError).
        """
        cfg = self.config
        port = session_config.port
        self._reserve_port(port)
        handle: Optional[ProcessHandle] = None
        try:
            server_dir = cfg.server_dir_provider.provide(session_config.scratch_dir)
            handle = launch(cfg, session_config, server_dir, tracker)
            self._bind_port(port, handle)
            result = wait_until_ready(
                port,
                interval=cfg.readiness_poll_interval_seconds,
                max_polls=cfg.readiness_max_polls,
                handle=handle,
                cancel=cancel,
            )
            if not result.ready:
                raise SessionCancelledError(
                    f"cancelled while waiting for replay server on port {port}",
                    port=port,
                    context={"attempts": result.attempts, "pid": handle.pid},
                )
        except BaseException:
            # A spawned server keeps the port until it is actually terminated.
            if handle is None:
                self._release_port(port)
            raise

        logger.info("replay server ready on port %d after %d poll(s)", port, result.attempts)
        return ReplaySession(
            config=session_config,
            handle=handle,
            server_dir=server_dir,
            attempts=result.attempts,
            _release=lambda: self._release_port(port, handle),
        )

    @contextmanager
    def session(
        self,
        session_config: ReplaySessionConfig,
        *,
        tracker: Optional[ScopedProcessTracker] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[ReplaySession]:
        """Run a ready replay session for the duration of a ``with`` block.

        Uses its own tracker unless one is given. On a clean exit the server is
        stopped here; if the block raises, the server stays registered, the
        tracker's cleanup terminates it, and the error is re-raised as
        ``SessionFailedError`` (phase READY) chained to the original.
        """
        scope_cm = nullcontext(tracker) if tracker is not None else ScopedProcessTracker(
            self.config.shutdown_timeout_seconds
        )
        with scope_cm as scope:
            session = self.start(scope, session_config, cancel=cancel)
            try:
                yield session
            except SessionFailedError:
                raise
            except Exception as exc:
                logger.error(
                    "replay session on port %d failed after the server was ready (phase=%s)",
                    session.port,
                    session.phase.value,
                )
                raise SessionFailedError(
                    f"replay session on port {session.port} failed after the server was ready: {exc}",
                    port=session.port,
                    context={"pid": session.handle.pid, "error": type(exc).__name__},
                ) from exc
            session.stop(self.config.shutdown_timeout_seconds)


__all__ = ["ReplayManager", "ReplaySession"]
