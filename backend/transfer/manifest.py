"""
Manifest construction for outbound transfers.

Walks a file or directory tree and describes every regular file it finds.
Files are keyed by basename, so two files sharing a name in different
sub-directories collapse into one entry (the later one in walk order wins).
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from config import PREVIEW_MAX_BYTES, TEXT_PREVIEW_EXTENSIONS
from security.crypto import compute_file_sha256
from transfer.models import DeviceInfo, FileMetadata, PrepareUploadRequest

logger = logging.getLogger(__name__)


@dataclass
class Manifest:
    """A manifest plus the local paths the entries were built from."""
    info: DeviceInfo
    files: dict[str, FileMetadata] = field(default_factory=dict)
    sources: dict[str, Path] = field(default_factory=dict)

    def to_request(self) -> PrepareUploadRequest:
        return PrepareUploadRequest(info=self.info, files=self.files)

    def __len__(self) -> int:
        return len(self.files)


def walk_files(root: str | Path) -> Iterator[Path]:
    """
    Yield every regular file under ``root`` in lexical depth-first order.

    Directory entries are sorted by name and sub-directories are entered
    at their sorted position. A root that is a file yields itself.
    """
    root = Path(root)
    if not root.is_dir():
        os.stat(root)  # surface a missing root as FileNotFoundError
        yield root
        return

    for entry in sorted(os.scandir(root), key=lambda e: e.name):
        # Symlinked directories are not entered; sockets and FIFOs are skipped
        if entry.is_dir(follow_symlinks=False):
            yield from walk_files(entry.path)
        elif entry.is_file():
            yield Path(entry.path)


def _read_preview(path: Path, size: int) -> str | None:
    if path.suffix.lower() not in TEXT_PREVIEW_EXTENSIONS or size > PREVIEW_MAX_BYTES:
        return None
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return None


def build_manifest(
    root: str | Path,
    info: DeviceInfo,
    include_preview: bool = False,
    hasher: Callable[[Path], str] = compute_file_sha256,
) -> Manifest:
    """
    Describe every regular file under ``root``.

    Raises OSError if any file cannot be stat'ed or read; no partial
    manifest is returned.
    """
    manifest = Manifest(info=info)

    for path in walk_files(root):
        size = path.stat().st_size
        file_id = path.name
        if file_id in manifest.files:
            logger.warning(
                f"Duplicate file name {file_id!r}: {path} replaces "
                f"{manifest.sources[file_id]}"
            )

        manifest.files[file_id] = FileMetadata(
            id=file_id,
            file_name=path.name,
            size=size,
            file_type=path.suffix,
            sha256=hasher(path),
            preview=_read_preview(path, size) if include_preview else None,
        )
        manifest.sources[file_id] = path

    logger.info(f"Built manifest with {len(manifest)} file(s) from {root}")
    return manifest
