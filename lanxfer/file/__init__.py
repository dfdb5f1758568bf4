"""
File Module - Checksums and Storage

Whole-file SHA-256 checksums and the server's storage directory.
"""

from .checksum import (
    CHECKSUM_SIZE,
    StreamHasher,
    checksum_to_hex,
    compute_checksum,
    compute_checksum_async,
    digest,
)
from .storage import FileStorage, StoredFile, sanitize_name

__all__ = [
    'CHECKSUM_SIZE',
    'StreamHasher',
    'checksum_to_hex',
    'compute_checksum',
    'compute_checksum_async',
    'digest',
    'FileStorage',
    'StoredFile',
    'sanitize_name',
]
