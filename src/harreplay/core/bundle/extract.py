"""Safe extraction of the server bundle archive.

Archive entry names are treated as untrusted. Every entry is validated before
anything is written, so a tampered or corrupted archive never places a file
outside the destination directory.
"""

from __future__ import annotations

import logging
import posixpath
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from harreplay.core.exceptions import ExtractionIOError, MalformedArchiveError

logger = logging.getLogger(__name__)

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class ManifestEntry:
    name: str
    target: Path
    size: int


@dataclass
class ExtractionManifest:
    """Entries validated for one extraction call."""

    destination: Path
    entries: list[ManifestEntry] = field(default_factory=list)

    @property
    def paths(self) -> list[Path]:
        return [e.target for e in self.entries]


def _abbreviate(name: str, width: int = 32) -> str:
    return name if len(name) <= width else name[: width - 3] + "..."


def validate_entry_name(name: str, destination: Path) -> Path:
    """Return the on-disk target for ``name`` or raise MalformedArchiveError."""
    shown = _abbreviate(name)
    if not name or "\x00" in name:
        raise MalformedArchiveError(f"zip has malformed entry name {shown!r}", context={"entry": name})
    if name.startswith(("/", "\\")) or _DRIVE_PREFIX.match(name):
        raise MalformedArchiveError(
            f"zip has absolute entry name {shown!r}", context={"entry": name}
        )
    # Backslashes are separators on Windows; treat them as such everywhere.
    parts = name.replace("\\", "/").split("/")
    if ".." in parts:
        raise MalformedArchiveError(
            f"zip entry escapes destination: {shown!r}", context={"entry": name}
        )
    normalized = posixpath.normpath("/".join(parts))
    if normalized in ("", "."):
        raise MalformedArchiveError(f"zip has malformed entry name {shown!r}", context={"entry": name})

    root = destination.resolve()
    target = (root / normalized).resolve()
    if target == root or not target.is_relative_to(root):
        raise MalformedArchiveError(
            f"zip entry escapes destination: {shown!r}", context={"entry": name}
        )
    return target


def build_manifest(archive: zipfile.ZipFile, destination: Path) -> ExtractionManifest:
    manifest = ExtractionManifest(destination=destination)
    for info in archive.infolist():
        if info.is_dir():
            continue
        target = validate_entry_name(info.filename, destination)
        manifest.entries.append(ManifestEntry(name=info.filename, target=target, size=info.file_size))
    return manifest


def extract_archive(archive_path: Path, destination: Path) -> ExtractionManifest:
    """Extract every file entry of ``archive_path`` under ``destination``.

    Raises:
        MalformedArchiveError: the archive cannot be decoded or an entry name
            would land outside ``destination``. Nothing is written in that case.
        ExtractionIOError: reading an entry or writing to disk failed.
    """
    destination = Path(destination)
    try:
        archive = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as exc:
        raise MalformedArchiveError(
            f"not a valid zip archive: {archive_path}", context={"archive": str(archive_path)}
        ) from exc
    except OSError as exc:
        raise ExtractionIOError(
            f"cannot open archive {archive_path}: {exc}", context={"archive": str(archive_path)}
        ) from exc

    with archive:
        manifest = build_manifest(archive, destination)
        for entry in manifest.entries:
            try:
                entry.target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(entry.name) as src, open(entry.target, "wb") as dst:
                    while True:
                        chunk = src.read(64 * 1024)
                        if not chunk:
                            break
                        dst.write(chunk)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError) as exc:
                raise MalformedArchiveError(
                    f"cannot decode zip entry {_abbreviate(entry.name)!r}: {exc}",
                    context={"entry": entry.name},
                ) from exc
            except OSError as exc:
                raise ExtractionIOError(
                    f"failed writing {entry.target}: {exc}",
                    context={"entry": entry.name, "target": str(entry.target)},
                ) from exc

    logger.debug("extracted %d entries from %s into %s", len(manifest.entries), archive_path, destination)
    return manifest


__all__ = [
    "ExtractionManifest",
    "ManifestEntry",
    "build_manifest",
    "extract_archive",
    "validate_entry_name",
]
