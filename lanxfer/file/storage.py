"""
File Storage

Design Decision: Storage Strategy
==================================

Options Considered:
1. Write uploads straight to their final name
   - Simple, but a reader can see a half-written file
   - Two concurrent uploads of the same name interleave bytes

2. Write to a per-upload partial file, then rename
   - Final name only ever points at a complete upload
   - Concurrent uploads of the same name: last one to finish wins

Decision: Partial file + atomic rename
- storage/.partial/<random>.part while receiving
- os.replace() onto storage/<base name> when the connection closes
- Kept even when the checksum does not match (flagged by the caller)

Storage Layout:
```
storage/
├── report.pdf        # Completed uploads, served to downloads
├── photo.jpg
└── .partial/         # In-flight uploads
    └── 3f2a....part
```

Names coming off the wire are reduced to their base name before they touch
the filesystem, so "../../etc/passwd" resolves to "storage/passwd".
"""

import posixpath
import uuid
from pathlib import Path
from typing import List
from dataclasses import dataclass

import aiofiles.os

from ..errors import InvalidNameError

PARTIAL_DIR_NAME = '.partial'


@dataclass
class StoredFile:
    """A completed file in the storage directory."""
    name: str
    size: int


def sanitize_name(name: str) -> str:
    """
    Reduce a client-supplied path to its base name component.

    Both separators are honoured regardless of platform. Trailing separators
    are ignored, so "report.pdf/" names "report.pdf".

    Raises:
        InvalidNameError: if nothing usable is left (also a ValueError)
    """
    base = posixpath.basename(name.replace('\\', '/').rstrip('/'))
    if base in ('', '.', '..') or '\x00' in base:
        raise InvalidNameError(f"Invalid file name: {name!r}")
    return base


class FileStorage:
    """
    The directory a file server reads downloads from and writes uploads to.

    Shared by every session; no locking is applied.
    """

    def __init__(self, storage_dir: Path):
        self.storage_dir = Path(storage_dir)
        self.partial_dir = self.storage_dir / PARTIAL_DIR_NAME
        self._ensure_directories()

    def _ensure_directories(self):
        """Create storage directories if they don't exist."""
        for dir_path in [self.storage_dir, self.partial_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def resolve(self, name: str) -> Path:
        """Map a requested or uploaded name to its path inside storage."""
        return self.storage_dir / sanitize_name(name)

    def new_partial(self) -> Path:
        """Get a fresh, unique path for an in-flight upload."""
        return self.partial_dir / f"{uuid.uuid4().hex}.part"

    async def commit(self, partial_path: Path, name: str) -> Path:
        """Move a finished upload into place under its base name."""
        final_path = self.resolve(name)
        await aiofiles.os.replace(partial_path, final_path)
        return final_path

    async def discard(self, partial_path: Path):
        """Remove an abandoned partial upload, if it exists."""
        try:
            await aiofiles.os.remove(partial_path)
        except FileNotFoundError:
            pass

    def list_files(self) -> List[StoredFile]:
        """List completed files, name-sorted."""
        return [
            StoredFile(name=p.name, size=p.stat().st_size)
            for p in sorted(self.storage_dir.iterdir())
            if p.is_file()
        ]

    def get_stats(self) -> dict:
        files = self.list_files()
        return {
            'files': len(files),
            'bytes': sum(f.size for f in files),
            'storage_dir': str(self.storage_dir),
        }
