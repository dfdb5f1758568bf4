"""
File Checksums

Design Decision: Digest Algorithm
=================================

Options Considered:
1. CRC32 - Fast, but only detects accidental corruption
2. MD5 / SHA-1 - Fast, but broken for collision resistance
3. SHA-256 - Standard, 32-byte digest, fast enough for LAN speeds

Decision: SHA-256 over the whole file
- One digest per file, computed by the sender and recomputed by the receiver
- Equality of the two digests is the only integrity contract
- No chunked or partial hashing
"""

import hashlib
from pathlib import Path
from typing import BinaryIO, Iterable, Union

import aiofiles

CHECKSUM_SIZE = 32
READ_SIZE = 64 * 1024

ByteSource = Union[BinaryIO, Iterable[bytes]]


def digest(source: ByteSource) -> bytes:
    """
    Compute the SHA-256 digest of a byte source.

    Args:
        source: A binary file object (anything with ``read``) or an
                iterable of ``bytes`` chunks. Read until exhausted.

    Returns:
        The 32-byte digest
    """
    hasher = hashlib.sha256()

    if hasattr(source, 'read'):
        while True:
            chunk = source.read(READ_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    else:
        for chunk in source:
            hasher.update(chunk)

    return hasher.digest()


def compute_checksum(file_path: Path) -> bytes:
    """Compute the checksum of a file on disk (synchronous)."""
    with open(file_path, 'rb') as f:
        return digest(f)


async def compute_checksum_async(file_path: Path) -> bytes:
    """Compute the checksum of a file on disk without blocking on open/read."""
    hasher = hashlib.sha256()

    async with aiofiles.open(file_path, 'rb') as f:
        while True:
            chunk = await f.read(READ_SIZE)
            if not chunk:
                break
            hasher.update(chunk)

    return hasher.digest()


def checksum_to_hex(checksum: bytes) -> str:
    """Convert checksum bytes to hex string."""
    return checksum.hex()


class StreamHasher:
    """Hashes bytes as they pass through a transfer."""

    def __init__(self):
        self._hasher = hashlib.sha256()
        self.bytes_hashed = 0

    def update(self, data: bytes):
        self._hasher.update(data)
        self.bytes_hashed += len(data)

    def digest(self) -> bytes:
        return self._hasher.digest()

    def matches(self, expected: bytes) -> bool:
        return self.digest() == expected
