from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any

from harreplay.core.exceptions import ExecutableNotFoundError, LaunchError
from harreplay.core.process import OutputMode, ProcessHandle, ScopedProcessTracker, StreamCapture

from .models import ReplayManagerConfig, ReplaySessionConfig

logger = logging.getLogger(__name__)


def _popen_kwargs() -> dict[str, Any]:
    if os.name == "posix":
        return {"start_new_session": True}
    if os.name == "nt":
        creationflags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", None)
        if isinstance(creationflags, int):
            return {"creationflags": creationflags}
    return {}


def resolve_executable(config: ReplayManagerConfig) -> Path:
    """Return the server runtime to run.

    Raises:
        ExecutableNotFoundError: the configured path is missing/not executable,
            or the default name is not on PATH.
    """
    if config.executable is not None:
        exe = config.executable
        if not exe.is_file() or not os.access(exe, os.X_OK):
            raise ExecutableNotFoundError(
                f"configured executable does not exist or is not executable: {exe}",
                context={"executable": str(exe)},
            )
        return exe

    found = shutil.which(config.default_executable_name)
    if not found:
        raise ExecutableNotFoundError(
            f"'{config.default_executable_name}' was not found on PATH",
            context={"executable": config.default_executable_name},
        )
    return Path(found)


def build_command(
    executable: Path,
    config: ReplayManagerConfig,
    session: ReplaySessionConfig,
    server_dir: Path,
) -> list[str]:
    """``<exe> <server_dir>/<entry> --port N --har FILE [extra args]``."""
    return [
        str(executable),
        str(Path(server_dir) / config.entry_script),
        "--port",
        str(session.port),
        "--har",
        str(session.har_file),
        *session.server_args,
    ]


def launch(
    config: ReplayManagerConfig,
    session: ReplaySessionConfig,
    server_dir: Path,
    tracker: ScopedProcessTracker,
) -> ProcessHandle:
    """Start the replay server and hand it to ``tracker`` immediately.

    The handle is registered before anything waits on readiness so that an
    unready but running server is still cleaned up on error paths.

    Raises:
        ExecutableNotFoundError: see ``resolve_executable``.
        LaunchError: the process could not be spawned; nothing is registered.
        TrackerClosedError: the tracker closed before registration; the
            spawned process is killed before this propagates.
    """
    executable = resolve_executable(config)
    argv = build_command(executable, config, session, server_dir)

    try:
        proc = subprocess.Popen(  # noqa: S603
            argv,
            cwd=str(server_dir),
            env=dict(os.environ),
            stdin=subprocess.DEVNULL,
            stdout=config.stdout.popen_target(),
            stderr=config.stderr.popen_target(),
            **_popen_kwargs(),
        )
    except OSError as exc:
        raise LaunchError(
            f"failed to start replay server ({executable}): {exc}",
            port=session.port,
            context={"argv": argv, "cwd": str(server_dir)},
        ) from exc

    handle = ProcessHandle(
        proc,
        args=argv,
        own_process_group=os.name == "posix",
        stdout=StreamCapture(proc.stdout, name="stdout") if config.stdout is OutputMode.CAPTURE else None,
        stderr=StreamCapture(proc.stderr, name="stderr") if config.stderr is OutputMode.CAPTURE else None,
        label=f"replay-server:{session.port}",
    )
    try:
        tracker.register(handle)
    except Exception:
        handle.destructor().kill().await_kill(config.shutdown_timeout_seconds)
        raise

    logger.info("started %s (pid %d): %s", handle.label, handle.pid, " ".join(argv))
    return handle


__all__ = ["build_command", "launch", "resolve_executable"]
