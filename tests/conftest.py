import json
import os
import sys
from pathlib import Path

import pytest

# Keep the repository free of Python bytecode and __pycache__ artifacts during tests.
sys.dont_write_bytecode = True

TESTS_ROOT = Path(__file__).resolve().parent
REPO_ROOT = TESTS_ROOT.parent
SRC_ROOT = REPO_ROOT / "src"

# Make src/ importable as 'harreplay'
for p in (SRC_ROOT, TESTS_ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))


from harreplay.core.bundle import DirectoryProvider
from harreplay.core.logging_setup import reset_stdlib_logging_for_tests
from harreplay.core.replay import ReplayManagerConfig
from harreplay.data import clear_caches
from helpers.processes import ProcessSpawner
from helpers.replay_server import SERVER_SCRIPT_NAME, write_server_script


@pytest.fixture(autouse=True)
def _isolated_harreplay_env(tmp_path, monkeypatch):
    """Every test starts without HARREPLAY_* overrides and outside the repo.

    A developer shell exporting HARREPLAY_REPLAY__EXECUTABLE (or a stray
    .harreplay/config.yaml in the checkout) must not change test outcomes.
    """
    for key in list(os.environ):
        if key.startswith("HARREPLAY_"):
            monkeypatch.delenv(key, raising=False)
    work = tmp_path / "cwd"
    work.mkdir()
    monkeypatch.chdir(work)
    clear_caches()
    yield
    reset_stdlib_logging_for_tests()


@pytest.fixture
def har_file(tmp_path) -> Path:
    """A small but well-formed HAR file with one recorded GET."""
    path = tmp_path / "recording.har"
    path.write_text(
        json.dumps(
            {
                "log": {
                    "version": "1.2",
                    "creator": {"name": "harreplay-tests", "version": "1"},
                    "entries": [
                        {
                            "startedDateTime": "2024-01-01T00:00:00.000Z",
                            "time": 1,
                            "request": {
                                "method": "GET",
                                "url": "http://example.test/hello",
                                "httpVersion": "HTTP/1.1",
                                "headers": [],
                            },
                            "response": {
                                "status": 200,
                                "statusText": "OK",
                                "httpVersion": "HTTP/1.1",
                                "headers": [{"name": "Content-Type", "value": "text/plain"}],
                                "content": {"size": 14, "mimeType": "text/plain", "text": "hello from har"},
                            },
                        }
                    ],
                }
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def server_dir(tmp_path) -> Path:
    """Directory holding a stand-in replay server written in Python."""
    path = tmp_path / "fake-server"
    write_server_script(path)
    return path


@pytest.fixture
def python_replay_config(server_dir) -> ReplayManagerConfig:
    """Manager config that runs the stand-in server with this interpreter."""
    return ReplayManagerConfig(
        executable=Path(sys.executable),
        server_dir_provider=DirectoryProvider(server_dir),
        entry_script=SERVER_SCRIPT_NAME,
        readiness_poll_interval_seconds=0.05,
        readiness_max_polls=200,
        shutdown_timeout_seconds=2.0,
    )


@pytest.fixture
def spawn():
    """Start real child processes; anything still running is killed at teardown."""
    spawner = ProcessSpawner()
    yield spawner
    spawner.cleanup()
