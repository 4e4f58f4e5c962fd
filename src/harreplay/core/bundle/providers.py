from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from harreplay.core.exceptions import ExtractionError, ExtractionIOError, MalformedArchiveError
from harreplay.data import get_data_path

from .extract import extract_archive

logger = logging.getLogger(__name__)

BUNDLE_ROOT_NAME = "server-replay-client"
BUNDLE_ARCHIVE_NAME = "server-replay-client.zip"


@runtime_checkable
class ServerDirProvider(Protocol):
    """Supplies the replay server program directory for a scratch directory."""

    def provide(self, scratch_dir: Path) -> Path: ...


def _default_archive() -> Path:
    return get_data_path("bundle", BUNDLE_ARCHIVE_NAME)


@dataclass(frozen=True)
class EmbeddedBundleProvider:
    """Extracts the archive packaged with harreplay into the scratch directory.

    Each call produces a fresh copy under ``<scratch>/client-parent*/<root_name>``.
    Files are left in place; the scratch directory's owner cleans up.
    """

    archive_path: Path = field(default_factory=_default_archive)
    root_name: str = BUNDLE_ROOT_NAME

    def provide(self, scratch_dir: Path) -> Path:
        scratch_dir = Path(scratch_dir)
        try:
            scratch_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix="server-replay-client", suffix=".zip", dir=scratch_dir)
            with os.fdopen(fd, "wb") as dst, open(self.archive_path, "rb") as src:
                shutil.copyfileobj(src, dst)
            parent_dir = Path(tempfile.mkdtemp(prefix="client-parent", dir=scratch_dir))
        except OSError as exc:
            raise ExtractionIOError(
                f"cannot stage server bundle in {scratch_dir}: {exc}",
                context={"scratch_dir": str(scratch_dir), "archive": str(self.archive_path)},
            ) from exc

        manifest = extract_archive(Path(tmp_name), parent_dir)
        server_dir = parent_dir / self.root_name
        if not server_dir.is_dir():
            raise MalformedArchiveError(
                f"bundle has no '{self.root_name}' root directory",
                context={"archive": str(self.archive_path), "entries": len(manifest.entries)},
            )
        logger.info("server bundle extracted to %s (%d files)", server_dir, len(manifest.entries))
        return server_dir


@dataclass(frozen=True)
class DirectoryProvider:
    """Uses a server directory that already exists on disk."""

    path: Path

    def provide(self, scratch_dir: Path) -> Path:
        server_dir = Path(self.path).expanduser()
        if not server_dir.is_dir():
            raise ExtractionError(
                f"server directory does not exist: {server_dir}",
                context={"path": str(server_dir)},
            )
        return server_dir.resolve()


__all__ = [
    "BUNDLE_ARCHIVE_NAME",
    "BUNDLE_ROOT_NAME",
    "DirectoryProvider",
    "EmbeddedBundleProvider",
    "ServerDirProvider",
]
