"""
harreplay serve command.

SUMMARY: Replay a HAR file through a local proxy until interrupted

Arguments after ``--`` are passed to the replay server unchanged.
"""

from __future__ import annotations

import argparse
import logging
import signal
import tempfile
import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, ContextManager, Dict, Iterator, Optional

from harreplay.cli import (
    OutputFormatter,
    add_json_flag,
    add_log_file_flag,
    add_repo_root_flag,
    exit_code_for,
    load_config,
    setup_logging,
)
from harreplay.cli._utils import EXIT_ERROR, EXIT_OK
from harreplay.core.bundle import DirectoryProvider
from harreplay.core.exceptions import HarReplayError
from harreplay.core.process import ScopedProcessTracker
from harreplay.core.replay import ReplayManager, ReplayManagerConfig, ReplaySessionConfig

SUMMARY = "Replay a HAR file through a local proxy until interrupted"

logger = logging.getLogger(__name__)


def register_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--har", required=True, help="HAR file to replay")
    parser.add_argument("--port", type=int, help="Port to listen on (default: a free port)")
    parser.add_argument(
        "--scratch-dir",
        help="Directory for the extracted server (default: a new temporary directory)",
    )
    parser.add_argument(
        "--executable",
        help="Server runtime to run instead of the configured one",
    )
    parser.add_argument(
        "--server-dir",
        help="Use an existing server directory instead of the embedded bundle",
    )
    add_json_flag(parser)
    add_log_file_flag(parser)
    add_repo_root_flag(parser)


def _manager_config(args: argparse.Namespace, replay_cfg: Dict[str, Any]) -> ReplayManagerConfig:
    section = dict(replay_cfg)
    if getattr(args, "executable", None):
        section["executable"] = args.executable
    provider = DirectoryProvider(Path(args.server_dir)) if getattr(args, "server_dir", None) else None
    return ReplayManagerConfig.from_mapping(section, server_dir_provider=provider)


def _raise_interrupt(signum: int, frame: Any) -> None:
    raise KeyboardInterrupt


@contextmanager
def _sigterm_as_interrupt() -> Iterator[None]:
    """Treat SIGTERM like Ctrl-C while serving (main thread only)."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _scratch_dir(requested: Optional[str]) -> ContextManager[str]:
    """The caller's scratch dir, or a temporary one removed when serving ends."""
    if requested:
        return nullcontext(requested)
    return tempfile.TemporaryDirectory(prefix="harreplay-")


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    try:
        cfg = load_config(args)
        setup_logging(args, cfg.get("logging") or {})
        manager = ReplayManager(_manager_config(args, cfg.get("replay") or {}))

        with _scratch_dir(args.scratch_dir) as scratch_dir, _sigterm_as_interrupt():
            session_config = ReplaySessionConfig.build(
                args.har,
                port=args.port,
                scratch_dir=scratch_dir,
                server_args=getattr(args, "passthrough", None) or (),
            )
            with ScopedProcessTracker(manager.config.shutdown_timeout_seconds, name="serve") as tracker:
                session = manager.start(tracker, session_config)
                try:
                    formatter.success(
                        {
                            "proxy": session.proxy_address,
                            "port": session.port,
                            "pid": session.handle.pid,
                            "har": str(session_config.har_file),
                            "serverDir": str(session.server_dir),
                        },
                        f"Replaying {session_config.har_file} on {session.proxy_address} (pid {session.handle.pid})",
                        status="ready",
                    )
                    returncode: Optional[int] = session.handle.popen.wait()
                except KeyboardInterrupt:
                    logger.info("interrupted; stopping replay server on port %d", session.port)
                    returncode = None
                state = session.stop(manager.config.shutdown_timeout_seconds)
    except HarReplayError as exc:
        formatter.error(exc)
        return exit_code_for(exc)

    if returncode is None:
        formatter.success({"state": state.value}, "Replay server stopped.", status="stopped")
        return EXIT_OK
    formatter.success(
        {"state": state.value, "returncode": returncode},
        f"Replay server exited with code {returncode}.",
        status="exited",
    )
    return EXIT_OK if returncode == 0 else EXIT_ERROR


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=SUMMARY)
    register_args(parser)
    raise SystemExit(main(parser.parse_args()))
