from __future__ import annotations

import os
import socket
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from harreplay.core.bundle import BUNDLE_ROOT_NAME, EmbeddedBundleProvider, ServerDirProvider
from harreplay.core.config import ConfigManager
from harreplay.core.exceptions import ConfigError, InvalidSessionConfigError
from harreplay.core.process import OutputMode
from harreplay.core.process.tracker import DEFAULT_SHUTDOWN_TIMEOUT_SECONDS

DEFAULT_EXECUTABLE_NAME = "node"
DEFAULT_ENTRY_SCRIPT = "index.js"
DEFAULT_POLL_INTERVAL_SECONDS = 0.02
DEFAULT_MAX_POLLS = 50


@dataclass(frozen=True)
class ReplayManagerConfig:
    """Process-wide settings for launching replay servers.

    Built once and shared read-only by every session. ``executable`` may be
    None, in which case ``default_executable_name`` is looked up on PATH at
    launch time. The readiness poll interval and count are fixed per instance;
    the server starts listening shortly after launch, so the manager polls
    until a socket can be opened.
    """

    executable: Optional[Path] = None
    server_dir_provider: ServerDirProvider = field(default_factory=EmbeddedBundleProvider)
    default_executable_name: str = DEFAULT_EXECUTABLE_NAME
    entry_script: str = DEFAULT_ENTRY_SCRIPT
    readiness_poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    readiness_max_polls: int = DEFAULT_MAX_POLLS
    shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
    stdout: OutputMode = OutputMode.DISCARD
    stderr: OutputMode = OutputMode.DISCARD

    def __post_init__(self) -> None:
        if self.executable is not None:
            object.__setattr__(self, "executable", Path(self.executable).expanduser())
        object.__setattr__(self, "stdout", OutputMode.parse(self.stdout))
        object.__setattr__(self, "stderr", OutputMode.parse(self.stderr))
        if self.readiness_poll_interval_seconds <= 0:
            raise ValueError("readiness_poll_interval_seconds must be positive")
        if self.readiness_max_polls < 1:
            raise ValueError("readiness_max_polls must be at least 1")
        if self.shutdown_timeout_seconds <= 0:
            raise ValueError("shutdown_timeout_seconds must be positive")
        if not self.entry_script.strip():
            raise ValueError("entry_script must not be empty")

    @property
    def readiness_budget_seconds(self) -> float:
        """Worst-case readiness wait: interval x max polls."""
        return self.readiness_poll_interval_seconds * self.readiness_max_polls

    @classmethod
    def from_mapping(
        cls,
        section: Dict[str, Any],
        *,
        server_dir_provider: Optional[ServerDirProvider] = None,
    ) -> ReplayManagerConfig:
        """Build from a ``replay`` configuration section."""
        readiness = section.get("readiness") or {}
        bundle = section.get("bundle") or {}
        executable_raw = section.get("executable")
        executable = Path(str(executable_raw)) if executable_raw not in (None, "") else None
        provider = server_dir_provider or EmbeddedBundleProvider(
            root_name=str(bundle.get("root_name") or BUNDLE_ROOT_NAME)
        )
        try:
            return cls(
                executable=executable,
                server_dir_provider=provider,
                default_executable_name=str(section.get("default_executable_name") or DEFAULT_EXECUTABLE_NAME),
                entry_script=str(section.get("entry_script") or DEFAULT_ENTRY_SCRIPT),
                readiness_poll_interval_seconds=float(
                    readiness.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)
                ),
                readiness_max_polls=int(readiness.get("max_polls", DEFAULT_MAX_POLLS)),
                shutdown_timeout_seconds=float(
                    section.get("shutdown_timeout_seconds", DEFAULT_SHUTDOWN_TIMEOUT_SECONDS)
                ),
                stdout=section.get("stdout", OutputMode.DISCARD.value),
                stderr=section.get("stderr", OutputMode.DISCARD.value),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid replay configuration: {exc}") from exc

    @classmethod
    def auto(cls, repo_root: Optional[Path] = None) -> ReplayManagerConfig:
        """Best-guess configuration from bundled defaults plus overrides."""
        section = ConfigManager(repo_root).section("replay")
        return cls.from_mapping(section)


def find_free_port(host: str = "localhost") -> int:
    """Ask the OS for a currently unused TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


@dataclass(frozen=True)
class ReplaySessionConfig:
    """One replay session: which HAR to serve, on which port, from where."""

    har_file: Path
    port: int
    scratch_dir: Path
    server_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        har = Path(self.har_file).expanduser()
        if not har.is_file():
            raise InvalidSessionConfigError(f"HAR file does not exist: {har}", context={"har_file": str(har)})
        if not os.access(har, os.R_OK):
            raise InvalidSessionConfigError(f"HAR file is not readable: {har}", context={"har_file": str(har)})
        object.__setattr__(self, "har_file", har.resolve())

        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise InvalidSessionConfigError(
                f"port must be an integer in 1..65535 (got {self.port!r})", context={"port": self.port}
            )

        scratch = Path(self.scratch_dir).expanduser()
        try:
            scratch.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InvalidSessionConfigError(
                f"cannot create scratch directory {scratch}: {exc}", context={"scratch_dir": str(scratch)}
            ) from exc
        object.__setattr__(self, "scratch_dir", scratch.resolve())
        object.__setattr__(self, "server_args", tuple(str(a) for a in self.server_args))

    @classmethod
    def build(
        cls,
        har_file: Path | str,
        *,
        port: Optional[int] = None,
        scratch_dir: Path | str | None = None,
        server_args: Sequence[str] = (),
    ) -> ReplaySessionConfig:
        """Build a session config, picking a free port and temp scratch dir if omitted."""
        if scratch_dir is None:
            scratch_dir = tempfile.mkdtemp(prefix="harreplay-")
        return cls(
            har_file=Path(har_file),
            port=find_free_port() if port is None else port,
            scratch_dir=Path(scratch_dir),
            server_args=tuple(server_args),
        )

    @classmethod
    def using_temp_dir(
        cls,
        har_file: Path | str,
        *,
        port: Optional[int] = None,
        server_args: Sequence[str] = (),
    ) -> ReplaySessionConfig:
        return cls.build(har_file, port=port, scratch_dir=None, server_args=server_args)


__all__ = [
    "DEFAULT_ENTRY_SCRIPT",
    "DEFAULT_EXECUTABLE_NAME",
    "DEFAULT_MAX_POLLS",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "ReplayManagerConfig",
    "ReplaySessionConfig",
    "find_free_port",
]
