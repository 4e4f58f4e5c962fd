"""Text/JSON output for CLI commands.

Results go to stdout, errors to stderr. In ``--json`` mode every document is
flushed immediately so a parent process reading the pipe sees it while the
command keeps running.
"""
from __future__ import annotations

import json
import sys
from typing import Any, Dict, Optional, TextIO

from harreplay.core.exceptions import HarReplayError


class OutputFormatter:
    def __init__(self, json_mode: bool = False, indent: int = 2):
        self.json_mode = json_mode
        self.indent = indent

    def _emit(self, payload: Any, stream: TextIO) -> None:
        print(json.dumps(payload, indent=self.indent, default=str), file=stream, flush=True)

    def success(self, data: Dict[str, Any], message: str, *, status: str = "success") -> None:
        """Report a result: ``{"status": ..., **data}`` or the plain ``message``."""
        if self.json_mode:
            self._emit({"status": status, **data}, sys.stdout)
        else:
            print(message, flush=True)

    def error(self, error: Exception, message: Optional[str] = None, *, error_code: str = "error") -> None:
        """Report ``error`` on stderr.

        harreplay errors include their context (port, phase, pid...) in JSON
        mode.
        """
        msg = message or str(error)
        if not self.json_mode:
            print(f"Error: {msg}", file=sys.stderr)
            return
        payload: Dict[str, Any] = {"error": error_code, "message": msg}
        if isinstance(error, HarReplayError):
            details = error.to_json_error()
            payload["error"] = details["code"] if error_code == "error" else error_code
            if details["context"]:
                payload["context"] = details["context"]
        self._emit(payload, sys.stderr)

    def json_output(self, data: Any) -> None:
        self._emit(data, sys.stdout)

    def text(self, message: str) -> None:
        print(message)


__all__ = ["OutputFormatter"]
