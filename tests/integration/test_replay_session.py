"""
End-to-end replay sessions: launch, readiness, shutdown and cleanup.

IMPORTANT: These tests start REAL server processes and sockets (NO MOCKS).
The stand-in server is a Python script run by this interpreter; the last
class uses the bundled Node server when ``node`` is installed.
"""
from __future__ import annotations

import dataclasses
import os
import shutil
import socket
import threading
import urllib.error
import urllib.request
from pathlib import Path

import pytest

from harreplay.core.bundle import DirectoryProvider
from harreplay.core.exceptions import (
    ExecutableNotFoundError,
    ExtractionError,
    PortInUseError,
    ProcessExitedEarlyError,
    ReadinessTimeoutError,
    SessionCancelledError,
    SessionFailedError,
    SessionPhase,
)
from harreplay.core.process import AwaitOutcome, ProcessState, ScopedProcessTracker, is_process_alive
from harreplay.core.replay import ReplayManager, ReplayManagerConfig, ReplaySessionConfig, is_listening
from helpers.processes import wait_for

pytestmark = pytest.mark.skipif(os.name != "posix", reason="POSIX process groups")


def _session(har_file: Path, tmp_path: Path, *server_args: str, port: int | None = None) -> ReplaySessionConfig:
    return ReplaySessionConfig.build(
        har_file, port=port, scratch_dir=tmp_path / "scratch", server_args=server_args
    )


class TestHappyPath:
    def test_start_then_graceful_shutdown(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        session_config = _session(har_file, tmp_path)

        with ScopedProcessTracker(2.0) as tracker:
            session = manager.start(tracker, session_config)

            assert session.port == session_config.port
            assert session.proxy_address == f"localhost:{session_config.port}"
            assert session.phase is SessionPhase.READY
            assert session.attempts >= 1
            assert is_listening(session.port)
            assert session.handle in tracker

            ctl = session.destructor().send_term_signal()
            assert ctl.await_exit(2.0) is AwaitOutcome.EXITED
            assert session.handle.state is ProcessState.TERMINATED

            report = tracker.close()
            assert report.attempted == 0
            assert report.ok

        assert not is_listening(session_config.port)

    def test_stop_releases_the_port(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with ScopedProcessTracker(2.0) as tracker:
            session = manager.start(tracker, _session(har_file, tmp_path))
            assert session.port in manager.reserved_ports
            assert session.stop(2.0) is ProcessState.TERMINATED
            assert session.port not in manager.reserved_ports

    def test_context_manager_session(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with manager.session(_session(har_file, tmp_path)) as session:
            pid = session.handle.pid
            assert is_listening(session.port)
        assert session.handle.state is ProcessState.TERMINATED
        assert not session.handle.was_killed
        assert not is_process_alive(pid)
        assert manager.reserved_ports == frozenset()

    def test_failure_inside_session_still_cleans_up(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with pytest.raises(SessionFailedError, match="test body failed") as excinfo:
            with manager.session(_session(har_file, tmp_path)) as session:
                raise RuntimeError("test body failed")
        assert session.handle.state is ProcessState.TERMINATED
        err = excinfo.value
        assert err.phase is SessionPhase.READY
        assert isinstance(err.__cause__, RuntimeError)
        assert err.context == {
            "port": session.port,
            "phase": "ready",
            "pid": session.handle.pid,
            "error": "RuntimeError",
        }
        assert manager.reserved_ports == frozenset()

    def test_two_sessions_on_different_ports(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with ScopedProcessTracker(2.0) as tracker:
            first = manager.start(tracker, _session(har_file, tmp_path / "a"))
            second = manager.start(tracker, _session(har_file, tmp_path / "b"))
            assert first.port != second.port
            assert len(tracker) == 2
        assert first.handle.state is ProcessState.TERMINATED
        assert second.handle.state is ProcessState.TERMINATED

    def test_session_can_move_to_a_longer_lived_tracker(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        outer = ScopedProcessTracker(2.0, name="outer")
        with ScopedProcessTracker(2.0, name="inner") as inner:
            session = manager.start(inner, _session(har_file, tmp_path))
            inner.transfer(session.handle, outer)
        assert session.handle.is_running()
        assert outer.close().terminated == [session.handle.pid]

    def test_runaway_child_is_killed_on_cleanup(self, python_replay_config, har_file, tmp_path) -> None:
        cfg = dataclasses.replace(python_replay_config, shutdown_timeout_seconds=0.5)
        manager = ReplayManager(cfg)
        with ScopedProcessTracker(0.5) as tracker:
            session = manager.start(tracker, _session(har_file, tmp_path, "--ignore-term"))
        assert session.handle.was_killed
        assert session.handle.state is ProcessState.TERMINATED


class TestStartFailures:
    def test_missing_executable_leaves_nothing_behind(self, python_replay_config, har_file, tmp_path) -> None:
        cfg = dataclasses.replace(python_replay_config, executable=tmp_path / "missing-node")
        manager = ReplayManager(cfg)
        session_config = _session(har_file, tmp_path)

        with ScopedProcessTracker() as tracker:
            with pytest.raises(ExecutableNotFoundError) as excinfo:
                manager.start(tracker, session_config)
            assert len(tracker) == 0
        assert excinfo.value.phase is SessionPhase.NOT_STARTED
        assert session_config.port not in manager.reserved_ports

    def test_process_exits_before_ready(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with ScopedProcessTracker() as tracker:
            with pytest.raises(ProcessExitedEarlyError) as excinfo:
                manager.start(tracker, _session(har_file, tmp_path, "--exit-code", "3"))
            assert excinfo.value.returncode == 3
            assert excinfo.value.phase is SessionPhase.NOT_READY
            # Still owned by the tracker; close has nothing left to do.
            assert len(tracker) == 1
            assert tracker.close().attempted == 0

    def test_never_ready_times_out_and_tracker_kills_it(self, python_replay_config, har_file, tmp_path) -> None:
        cfg = dataclasses.replace(python_replay_config, readiness_poll_interval_seconds=0.02, readiness_max_polls=10)
        manager = ReplayManager(cfg)
        session_config = _session(har_file, tmp_path, "--never-listen")

        with ScopedProcessTracker(2.0) as tracker:
            with pytest.raises(ReadinessTimeoutError) as excinfo:
                manager.start(tracker, session_config)
            assert excinfo.value.attempts == 10
            (handle,) = tracker.handles
            assert handle.is_running()
            # The port stays reserved while the unready server is alive.
            assert session_config.port in manager.reserved_ports

        assert handle.state is ProcessState.TERMINATED
        assert session_config.port not in manager.reserved_ports

    def test_cancelled_start(self, python_replay_config, har_file, tmp_path) -> None:
        cfg = dataclasses.replace(python_replay_config, readiness_poll_interval_seconds=0.2)
        manager = ReplayManager(cfg)
        cancel = threading.Event()
        threading.Timer(0.3, cancel.set).start()

        with ScopedProcessTracker(2.0) as tracker:
            with pytest.raises(SessionCancelledError) as excinfo:
                manager.start(tracker, _session(har_file, tmp_path, "--never-listen"), cancel=cancel)
            assert excinfo.value.phase is SessionPhase.NOT_READY
            (handle,) = tracker.handles
        assert handle.state is ProcessState.TERMINATED

    def test_missing_server_dir(self, python_replay_config, har_file, tmp_path) -> None:
        cfg = dataclasses.replace(python_replay_config, server_dir_provider=DirectoryProvider(tmp_path / "gone"))
        manager = ReplayManager(cfg)
        session_config = _session(har_file, tmp_path)
        with ScopedProcessTracker() as tracker:
            with pytest.raises(ExtractionError):
                manager.start(tracker, session_config)
            assert len(tracker) == 0
        assert session_config.port not in manager.reserved_ports


class TestPortCollisions:
    def test_second_session_on_same_port_is_rejected(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with ScopedProcessTracker(2.0) as tracker:
            first = manager.start(tracker, _session(har_file, tmp_path / "a"))
            with pytest.raises(PortInUseError) as excinfo:
                manager.start(tracker, _session(har_file, tmp_path / "b", port=first.port))
            assert excinfo.value.context["port"] == first.port
            assert len(tracker) == 1

    def test_port_is_reusable_after_termination(self, python_replay_config, har_file, tmp_path) -> None:
        manager = ReplayManager(python_replay_config)
        with ScopedProcessTracker(2.0) as tracker:
            first = manager.start(tracker, _session(har_file, tmp_path / "a"))
            first.destructor().shutdown(2.0)
            assert wait_for(lambda: not is_listening(first.port))
            second = manager.start(tracker, _session(har_file, tmp_path / "b", port=first.port))
            assert second.port == first.port
            first.release_port()
            assert second.port in manager.reserved_ports

    def test_foreign_listener_is_detected(self, python_replay_config, har_file, tmp_path) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("localhost", 0))
            sock.listen(1)
            port = sock.getsockname()[1]
            manager = ReplayManager(python_replay_config)
            with ScopedProcessTracker() as tracker:
                with pytest.raises(PortInUseError, match="already accepting"):
                    manager.start(tracker, _session(har_file, tmp_path, port=port))
                assert len(tracker) == 0


@pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
class TestBundledServer:
    def test_replays_recorded_response(self, har_file, tmp_path) -> None:
        cfg = ReplayManagerConfig(
            readiness_poll_interval_seconds=0.05, readiness_max_polls=200, shutdown_timeout_seconds=2.0
        )
        manager = ReplayManager(cfg)
        with manager.session(_session(har_file, tmp_path)) as session:
            opener = urllib.request.build_opener(
                urllib.request.ProxyHandler({"http": f"http://{session.proxy_address}"})
            )
            with opener.open("http://example.test/hello", timeout=5) as resp:
                assert resp.status == 200
                assert resp.read() == b"hello from har"

            with pytest.raises(urllib.error.HTTPError) as excinfo:
                opener.open("http://example.test/missing", timeout=5)
            assert excinfo.value.code == 404
            excinfo.value.close()

        assert session.handle.state is ProcessState.TERMINATED
        assert not session.handle.was_killed
