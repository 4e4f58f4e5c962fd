"""Server bundle materialization.

Provides:
- A provider seam (``ServerDirProvider``) returning the replay server directory
- The embedded-archive provider and an on-disk directory provider
- Traversal-safe zip extraction
"""

from .extract import ExtractionManifest, ManifestEntry, extract_archive, validate_entry_name
from .providers import (
    BUNDLE_ARCHIVE_NAME,
    BUNDLE_ROOT_NAME,
    DirectoryProvider,
    EmbeddedBundleProvider,
    ServerDirProvider,
)

__all__ = [
    "BUNDLE_ARCHIVE_NAME",
    "BUNDLE_ROOT_NAME",
    "DirectoryProvider",
    "EmbeddedBundleProvider",
    "ExtractionManifest",
    "ManifestEntry",
    "ServerDirProvider",
    "extract_archive",
    "validate_entry_name",
]
