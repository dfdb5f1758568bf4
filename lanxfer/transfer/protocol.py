"""
File Transfer Protocol

Design Decision: Transfer Framing
=================================

Options Considered:
1. HTTP - Standard, well-supported
   - Heavy, the browser front-end already covers it

2. Length-prefixed JSON header + binary body
   - Flexible, but needs a parser on both ends

3. Fixed binary header + raw stream
   - Every field has a known width and position
   - The file body follows the header with no framing at all

Decision: Opcode byte, fixed little-endian header, raw body
- One connection carries exactly one transfer
- The first byte selects download or upload; there is no version field
- Fields are read in exact order and length; a short read ends the session
- Only the file content is checksummed, not the header

Wire Format (little-endian):
```
[1 byte]   opcode              1 = DOWNLOAD, 2 = UPLOAD

Download request (client -> server):
[4 bytes]  name length   (u32)
[N bytes]  name

Header (server -> client for downloads, client -> server for uploads):
[4 bytes]  name length   (u32)
[8 bytes]  file size     (i64)
[32 bytes] checksum      (SHA-256)
[N bytes]  name
[M bytes]  file content
```
"""

import asyncio
import struct
import logging
from enum import IntEnum
from dataclasses import dataclass

from ..errors import FramingError
from ..file.checksum import CHECKSUM_SIZE

logger = logging.getLogger(__name__)

OPCODE = struct.Struct('<B')
NAME_LENGTH = struct.Struct('<I')
FILE_SIZE = struct.Struct('<q')

HEADER_FIXED_SIZE = NAME_LENGTH.size + FILE_SIZE.size + CHECKSUM_SIZE  # 44 bytes

# Larger lengths are treated as malformed rather than allocated
MAX_NAME_LENGTH = 4096

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class OpCode(IntEnum):
    """Operation selected by the first byte of a connection."""
    DOWNLOAD = 1
    UPLOAD = 2


def _encode_name(file_name: str) -> bytes:
    name_bytes = file_name.encode('utf-8')
    if len(name_bytes) > MAX_NAME_LENGTH:
        raise FramingError(f"File name too long: {len(name_bytes)} bytes")
    return name_bytes


def _decode_name(name_bytes: bytes) -> str:
    try:
        return name_bytes.decode('utf-8')
    except UnicodeDecodeError as e:
        raise FramingError(f"File name is not valid UTF-8: {e}") from e


def _check_name_length(length: int):
    if length > MAX_NAME_LENGTH:
        raise FramingError(f"Malformed name length: {length}")


@dataclass
class TransferHeader:
    """Metadata sent ahead of a file's content."""
    file_name: str
    file_size: int
    checksum: bytes

    def __post_init__(self):
        if len(self.checksum) != CHECKSUM_SIZE:
            raise FramingError(
                f"Checksum must be {CHECKSUM_SIZE} bytes, got {len(self.checksum)}"
            )
        if not INT64_MIN <= self.file_size <= INT64_MAX:
            raise FramingError(f"File size out of range: {self.file_size}")

    @property
    def file_name_length(self) -> int:
        return len(self.file_name.encode('utf-8'))

    def to_bytes(self) -> bytes:
        """Serialize header to bytes."""
        name_bytes = _encode_name(self.file_name)
        return (
            NAME_LENGTH.pack(len(name_bytes)) +
            FILE_SIZE.pack(self.file_size) +
            bytes(self.checksum) +
            name_bytes
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> 'TransferHeader':
        """Deserialize a complete header buffer."""
        if len(data) < HEADER_FIXED_SIZE:
            raise FramingError(f"Header too short: {len(data)} bytes")

        name_length, = NAME_LENGTH.unpack_from(data, 0)
        file_size, = FILE_SIZE.unpack_from(data, NAME_LENGTH.size)
        checksum = data[NAME_LENGTH.size + FILE_SIZE.size:HEADER_FIXED_SIZE]
        name_bytes = data[HEADER_FIXED_SIZE:]

        _check_name_length(name_length)
        if len(name_bytes) != name_length:
            raise FramingError(
                f"Name length mismatch: prefix says {name_length}, got {len(name_bytes)}"
            )

        return cls(
            file_name=_decode_name(name_bytes),
            file_size=file_size,
            checksum=checksum,
        )

    @classmethod
    async def from_reader(cls, reader: asyncio.StreamReader) -> 'TransferHeader':
        """Read a header field by field from a stream."""
        name_length, = NAME_LENGTH.unpack(
            await _read_exactly(reader, NAME_LENGTH.size, "filename length")
        )
        _check_name_length(name_length)

        file_size, = FILE_SIZE.unpack(
            await _read_exactly(reader, FILE_SIZE.size, "file size")
        )
        checksum = await _read_exactly(reader, CHECKSUM_SIZE, "checksum")
        name_bytes = await _read_exactly(reader, name_length, "filename")

        return cls(
            file_name=_decode_name(name_bytes),
            file_size=file_size,
            checksum=checksum,
        )


async def _read_exactly(reader: asyncio.StreamReader, n: int, field: str) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        raise FramingError(
            f"Failed to read {field}: got {len(e.partial)} of {n} bytes"
        ) from e
    except OSError as e:
        raise FramingError(f"Failed to read {field}: {e}") from e


async def _write(writer: asyncio.StreamWriter, data: bytes, field: str):
    try:
        writer.write(data)
        await writer.drain()
    except OSError as e:
        raise FramingError(f"Failed to write {field}: {e}") from e


# === Opcode ===

async def send_opcode(writer: asyncio.StreamWriter, op: OpCode):
    """Send the operation code, the first byte of every connection."""
    await _write(writer, OPCODE.pack(op), "operation code")


async def read_opcode(reader: asyncio.StreamReader) -> int:
    """
    Read the operation code byte.

    Returns the raw value; mapping it to an OpCode (and rejecting unknown
    values) is up to the caller.
    """
    value, = OPCODE.unpack(await _read_exactly(reader, OPCODE.size, "operation code"))
    return value


# === Download request ===

def encode_request(file_name: str) -> bytes:
    """Serialize a download request: u32 length + name."""
    name_bytes = _encode_name(file_name)
    return NAME_LENGTH.pack(len(name_bytes)) + name_bytes


async def send_request(writer: asyncio.StreamWriter, file_name: str):
    """Send a download request for a file name."""
    await _write(writer, encode_request(file_name), "download request")


async def read_request(reader: asyncio.StreamReader) -> str:
    """Read a download request and return the requested name."""
    name_length, = NAME_LENGTH.unpack(
        await _read_exactly(reader, NAME_LENGTH.size, "filename length")
    )
    _check_name_length(name_length)
    return _decode_name(await _read_exactly(reader, name_length, "filename"))


# === Header ===

async def send_header(writer: asyncio.StreamWriter, file_name: str,
                      file_size: int, checksum: bytes):
    """
    Send a transfer header.

    A failure part way through leaves the connection unusable; the caller
    must abandon it.
    """
    header = TransferHeader(file_name=file_name, file_size=file_size, checksum=checksum)
    await _write(writer, header.to_bytes(), "file header")


async def read_header(reader: asyncio.StreamReader) -> TransferHeader:
    """Read a transfer header."""
    return await TransferHeader.from_reader(reader)
