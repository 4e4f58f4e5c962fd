"""Where a server process's stdout/stderr go."""

from __future__ import annotations

import subprocess
import threading
from enum import Enum
from typing import IO, Any, Optional


class OutputMode(str, Enum):
    DISCARD = "discard"
    INHERIT = "inherit"
    CAPTURE = "capture"

    @classmethod
    def parse(cls, value: "OutputMode | str") -> "OutputMode":
        if isinstance(value, OutputMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"unknown output mode {value!r} (expected one of: {choices})") from None

    def popen_target(self) -> Any:
        if self is OutputMode.DISCARD:
            return subprocess.DEVNULL
        if self is OutputMode.CAPTURE:
            return subprocess.PIPE
        return None


class StreamCapture:
    """Drains a child pipe on a daemon thread into a bounded buffer.

    Only the most recent ``max_bytes`` are kept so a chatty server cannot grow
    the buffer without limit.
    """

    def __init__(self, stream: IO[bytes], *, name: str, max_bytes: int = 1024 * 1024) -> None:
        self.name = name
        self.max_bytes = max_bytes
        self._stream = stream
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._pump, name=f"harreplay-{name}", daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        try:
            for chunk in iter(lambda: self._stream.read1(8192), b""):
                with self._lock:
                    self._buffer.extend(chunk)
                    overflow = len(self._buffer) - self.max_bytes
                    if overflow > 0:
                        del self._buffer[:overflow]
        except (OSError, ValueError):
            # Pipe closed underneath us during shutdown.
            return
        finally:
            self._stream.close()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._buffer)

    def text(self, encoding: str = "utf-8") -> str:
        return self.getvalue().decode(encoding, errors="replace")


__all__ = ["OutputMode", "StreamCapture"]
