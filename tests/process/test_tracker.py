"""
Scoped ownership of server processes.

IMPORTANT: These tests drive REAL child processes (NO MOCKS).
"""
from __future__ import annotations

import errno
import os
import signal
import threading

import pytest

from harreplay.core.exceptions import TrackerCloseError, TrackerClosedError
from harreplay.core.process import LifecycleController, ProcessState, ScopedProcessTracker
from helpers.processes import TERM_IGNORING_SLEEPER, wait_for

pytestmark = pytest.mark.skipif(os.name != "posix", reason="POSIX signals")


def test_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        ScopedProcessTracker(0)


class TestRegistration:
    def test_register_takes_ownership(self, spawn) -> None:
        tracker = ScopedProcessTracker(name="scope")
        handle = spawn()
        assert tracker.register(handle) is handle
        assert handle in tracker
        assert handle.owner is tracker
        assert len(tracker) == 1
        tracker.close()

    def test_register_twice_is_idempotent(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        handle = spawn()
        tracker.register(handle)
        tracker.register(handle)
        assert len(tracker) == 1
        tracker.close()

    def test_handle_cannot_have_two_owners(self, spawn) -> None:
        first, second = ScopedProcessTracker(name="first"), ScopedProcessTracker(name="second")
        handle = spawn()
        first.register(handle)
        with pytest.raises(ValueError, match="already owned by first"):
            second.register(handle)
        assert handle not in second
        first.close()

    def test_register_after_close_fails(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        tracker.close()
        handle = spawn()
        with pytest.raises(TrackerClosedError):
            tracker.register(handle)
        assert handle.owner is None
        assert tracker.closed

    def test_deregister_releases_without_terminating(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        handle = spawn()
        tracker.register(handle)
        assert tracker.deregister(handle)
        assert not tracker.deregister(handle)
        assert handle.owner is None
        report = tracker.close()
        assert report.attempted == 0
        assert handle.state is ProcessState.RUNNING

    def test_concurrent_registration(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        handles = [spawn() for _ in range(4)]
        threads = [threading.Thread(target=tracker.register, args=(h,)) for h in handles]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(tracker) == 4
        assert tracker.close().ok
        assert all(h.state is ProcessState.TERMINATED for h in handles)


class TestClose:
    def test_close_terminates_everything(self, spawn) -> None:
        tracker = ScopedProcessTracker(2.0)
        handles = [tracker.register(spawn()) for _ in range(2)]

        report = tracker.close()

        assert report.ok
        assert report.attempted == 2
        assert sorted(report.terminated) == sorted(h.pid for h in handles)
        assert all(h.state is ProcessState.TERMINATED for h in handles)
        assert all(h.owner is None for h in handles)
        assert len(tracker) == 0

    def test_close_escalates_to_kill(self, spawn) -> None:
        tracker = ScopedProcessTracker(0.3)
        stubborn = tracker.register(spawn(TERM_IGNORING_SLEEPER, sync=True))
        polite = tracker.register(spawn())

        report = tracker.close()

        assert report.ok
        assert stubborn.was_killed
        assert not polite.was_killed
        assert stubborn.state is ProcessState.TERMINATED
        assert polite.state is ProcessState.TERMINATED

    def test_already_exited_handles_are_skipped(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        handle = tracker.register(spawn("import sys; sys.exit(0)"))
        assert wait_for(lambda: handle.poll() is not None)
        report = tracker.close()
        assert report.attempted == 0
        assert report.ok

    def test_second_close_does_no_work(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        tracker.register(spawn())
        assert tracker.close().attempted == 1
        again = tracker.close()
        assert again.attempted == 0
        assert again.terminated == []

    def test_empty_tracker_close(self) -> None:
        report = ScopedProcessTracker().close()
        assert report.ok and report.attempted == 0


class TestContextManager:
    def test_exit_terminates_handles(self, spawn) -> None:
        with ScopedProcessTracker(2.0) as tracker:
            handle = tracker.register(spawn())
        assert handle.state is ProcessState.TERMINATED
        assert tracker.closed

    def test_body_exception_propagates_after_cleanup(self, spawn) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            with ScopedProcessTracker(2.0) as tracker:
                handle = tracker.register(spawn())
                raise RuntimeError("boom")
        assert handle.state is ProcessState.TERMINATED


def _deny_sigterm_for(monkeypatch, denied) -> None:
    real_signal = LifecycleController._signal

    def fake_signal(self, sig):
        if self.handle is denied and sig == signal.SIGTERM:
            raise PermissionError(errno.EPERM, "denied")
        return real_signal(self, sig)

    monkeypatch.setattr(LifecycleController, "_signal", fake_signal)


class TestCleanupFailures:
    def test_close_reports_failure_and_still_terminates_others(self, spawn, monkeypatch) -> None:
        tracker = ScopedProcessTracker(0.5)
        bad = tracker.register(spawn())
        good = tracker.register(spawn())
        _deny_sigterm_for(monkeypatch, bad)

        report = tracker.close()

        assert not report.ok
        assert report.attempted == 2
        assert len(report.failures) == 1
        assert report.failures[0].pid == bad.pid
        assert report.terminated == [good.pid]
        assert good.state is ProcessState.TERMINATED
        assert bad.state is ProcessState.RUNNING

    def test_exit_raises_aggregate(self, spawn, monkeypatch) -> None:
        with pytest.raises(TrackerCloseError) as excinfo:
            with ScopedProcessTracker(0.5) as tracker:
                bad = tracker.register(spawn())
                good = tracker.register(spawn())
                _deny_sigterm_for(monkeypatch, bad)
        assert [f.pid for f in excinfo.value.failures] == [bad.pid]
        assert excinfo.value.context["pids"] == [bad.pid]
        assert good.state is ProcessState.TERMINATED

    def test_body_exception_wins_over_aggregate(self, spawn, monkeypatch) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            with ScopedProcessTracker(0.5) as tracker:
                bad = tracker.register(spawn())
                good = tracker.register(spawn())
                _deny_sigterm_for(monkeypatch, bad)
                raise RuntimeError("boom")
        assert good.state is ProcessState.TERMINATED


class TestTransfer:
    def test_transfer_moves_ownership(self, spawn) -> None:
        source, dest = ScopedProcessTracker(name="source"), ScopedProcessTracker(name="dest")
        handle = source.register(spawn())

        source.transfer(handle, dest)

        assert handle not in source
        assert handle in dest
        assert handle.owner is dest
        assert source.close().attempted == 0
        assert handle.state is ProcessState.RUNNING
        assert dest.close().attempted == 1
        assert handle.state is ProcessState.TERMINATED

    def test_transfer_requires_ownership(self, spawn) -> None:
        source, dest = ScopedProcessTracker(), ScopedProcessTracker()
        handle = spawn()
        with pytest.raises(KeyError):
            source.transfer(handle, dest)

    def test_transfer_to_closed_tracker_keeps_handle(self, spawn) -> None:
        source, dest = ScopedProcessTracker(), ScopedProcessTracker()
        dest.close()
        handle = source.register(spawn())
        with pytest.raises(TrackerClosedError):
            source.transfer(handle, dest)
        assert handle in source
        assert source.close().attempted == 1

    def test_transfer_to_self_is_a_no_op(self, spawn) -> None:
        tracker = ScopedProcessTracker()
        handle = tracker.register(spawn())
        tracker.transfer(handle, tracker)
        assert handle in tracker
        tracker.close()
