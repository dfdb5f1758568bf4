"""
Transfer Client

Design Decision: Bounded Download, Unbounded Upload
====================================================

A download reads exactly the number of bytes the server declared in its
header; the server is trusted to bound the copy. An upload is the reverse:
the client streams the whole file and then closes the connection, and the
server reads until that close, not trusting the declared size.

Download Flow:
1. Resolve the server address (explicit or via discovery)
2. TLS connect, send DOWNLOAD opcode and the requested name
3. Read the header (name, size, checksum)
4. Stream exactly `size` bytes to disk, hashing as they arrive
5. Compare checksums; delete the local copy on mismatch

Upload Flow:
1. Resolve the server address
2. Checksum the local file
3. TLS connect, send UPLOAD opcode and header
4. Stream the file, then close to mark the end of the stream

Nothing here retries. A failed transfer raises or reports failure and the
caller decides whether to start over.
"""

import asyncio
import logging
import ssl
import time
from pathlib import Path
from typing import Callable, Optional
from dataclasses import dataclass

import aiofiles
import aiofiles.os

from .protocol import OpCode, read_header, send_header, send_opcode, send_request
from ..config import Config
from ..discovery.broadcast import ServerAddress, find_server_address
from ..errors import DiscoveryError, FramingError, TransportError
from ..file.checksum import StreamHasher, checksum_to_hex, compute_checksum_async
from ..file.storage import sanitize_name
from ..security.tls import TransportContext

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DOWNLOAD_PREFIX = 'downloaded_'


@dataclass
class TransferProgress:
    """Progress of the transfer in flight."""
    file_name: str
    total: int
    transferred: int = 0

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.total <= 0:
            return 1.0
        return min(self.transferred / self.total, 1.0)


ProgressCallback = Callable[[TransferProgress], None]


@dataclass
class TransferResult:
    """What a finished client-side transfer produced."""
    operation: OpCode
    file_name: str
    path: Path
    size: int
    checksum: bytes
    remote_checksum: bytes
    verified: bool
    elapsed: float

    @property
    def speed_bytes_per_sec(self) -> float:
        if self.elapsed <= 0:
            return 0
        return self.size / self.elapsed


async def resolve_address(config: Config, explicit: Optional[str] = None) -> ServerAddress:
    """
    Work out which server to talk to.

    An explicit "host:port" (argument or config) wins; otherwise the LAN is
    searched. Raises DiscoveryError before any connection is attempted if
    nothing answers.
    """
    explicit = explicit or config.server_address
    if explicit:
        return ServerAddress.parse(explicit)

    address = await find_server_address(config)
    if address is None:
        raise DiscoveryError("No servers found. Discovery failed or timed out.")
    return address


class TransferConnection:
    """One TLS connection to a transfer server."""

    def __init__(self, address: ServerAddress, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter):
        self.address = address
        self.reader = reader
        self.writer = writer
        self._closed = False

    async def close(self):
        """Close the connection; for uploads this marks end of stream."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (OSError, ssl.SSLError) as e:
            logger.debug(f"Error while closing connection to {self.address}: {e}")

    async def __aenter__(self) -> 'TransferConnection':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class TransferClient:
    """
    Runs single-file uploads and downloads against a transfer server.

    Strictly sequential: one connection, one transfer, then close.
    """

    def __init__(self, transport: TransportContext,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 progress_callback: Optional[ProgressCallback] = None):
        self.transport = transport
        self.chunk_size = chunk_size
        self.progress_callback = progress_callback

    async def connect(self, address: ServerAddress) -> TransferConnection:
        """Open a TLS connection. The server certificate is not verified."""
        try:
            reader, writer = await asyncio.open_connection(
                address.host,
                address.port,
                ssl=self.transport.client,
                server_hostname='',
            )
        except (OSError, ssl.SSLError) as e:
            raise TransportError(f"Error connecting to server {address} (TLS): {e}") from e

        logger.info(f"Connected to server {address}")
        return TransferConnection(address, reader, writer)

    def _report(self, progress: TransferProgress):
        if self.progress_callback:
            self.progress_callback(progress)

    async def upload(self, address: ServerAddress, file_path: Path) -> TransferResult:
        """
        Upload a local file.

        Returns:
            TransferResult; ``verified`` only reflects that the whole file was
            sent, the server checks integrity on its side

        Raises:
            FileNotFoundError / OSError: the local file cannot be read
            TransportError: connection or handshake failed
            FramingError: the connection broke during the transfer
        """
        file_path = Path(file_path)
        file_size = file_path.stat().st_size
        file_name = file_path.name

        logger.info("Computing checksum...")
        checksum = await compute_checksum_async(file_path)

        start_time = time.time()
        progress = TransferProgress(file_name=file_name, total=file_size)

        async with await self.connect(address) as conn:
            await send_opcode(conn.writer, OpCode.UPLOAD)

            logger.info(f"Sending file header (Size: {file_size} bytes)")
            await send_header(conn.writer, file_name, file_size, checksum)

            async with aiofiles.open(file_path, 'rb') as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    try:
                        conn.writer.write(chunk)
                        await conn.writer.drain()
                    except OSError as e:
                        raise FramingError(f"Error sending file data: {e}") from e
                    progress.transferred += len(chunk)
                    self._report(progress)

        elapsed = time.time() - start_time
        logger.info(f"Successfully uploaded {file_name} ({progress.transferred} bytes)")

        return TransferResult(
            operation=OpCode.UPLOAD,
            file_name=file_name,
            path=file_path,
            size=progress.transferred,
            checksum=checksum,
            remote_checksum=checksum,
            verified=progress.transferred == file_size,
            elapsed=elapsed,
        )

    async def download(self, address: ServerAddress, file_name: str,
                       output_path: Optional[Path] = None) -> TransferResult:
        """
        Download a file and verify it against the server's checksum.

        Args:
            address: Server to download from
            file_name: Name to request; the server only looks at its base name
            output_path: Where to write (default: ./downloaded_<name>)

        Returns:
            TransferResult with ``verified`` False on checksum mismatch, in
            which case the local file has already been removed

        Raises:
            InvalidNameError: no output path was given and file_name has no
                usable base name
        """
        if output_path is None:
            output_path = Path.cwd() / f"{DOWNLOAD_PREFIX}{sanitize_name(file_name)}"
        output_path = Path(output_path)

        async with await self.connect(address) as conn:
            await send_opcode(conn.writer, OpCode.DOWNLOAD)

            logger.info(f"Requesting file: {file_name}")
            await send_request(conn.writer, file_name)

            logger.info("Waiting for response...")
            header = await read_header(conn.reader)
            logger.info(f"File found: {header.file_name} ({header.file_size} bytes)")
            logger.debug(f"Server checksum: {checksum_to_hex(header.checksum)}")

            start_time = time.time()
            hasher = await self._receive(conn, header.file_name, header.file_size, output_path)
            elapsed = time.time() - start_time

        client_checksum = hasher.digest()
        verified = hasher.matches(header.checksum)
        logger.info(f"Downloaded {hasher.bytes_hashed} bytes in {elapsed:.2f}s")

        if verified:
            logger.info("Integrity verified: checksum matches")
        else:
            logger.warning(
                f"Integrity failure: checksum mismatch for {header.file_name}, "
                f"removing {output_path}"
            )
            await _remove_quietly(output_path)

        return TransferResult(
            operation=OpCode.DOWNLOAD,
            file_name=header.file_name,
            path=output_path,
            size=hasher.bytes_hashed,
            checksum=client_checksum,
            remote_checksum=header.checksum,
            verified=verified,
            elapsed=elapsed,
        )

    async def _receive(self, conn: TransferConnection, file_name: str,
                       file_size: int, output_path: Path) -> StreamHasher:
        """Copy exactly file_size bytes to output_path, hashing on the way."""
        hasher = StreamHasher()
        progress = TransferProgress(file_name=file_name, total=file_size)
        remaining = max(file_size, 0)

        try:
            async with aiofiles.open(output_path, 'wb') as f:
                while remaining > 0:
                    chunk = await conn.reader.read(min(self.chunk_size, remaining))
                    if not chunk:
                        raise FramingError(
                            f"Connection closed after {hasher.bytes_hashed} of "
                            f"{file_size} bytes"
                        )
                    await f.write(chunk)
                    hasher.update(chunk)
                    remaining -= len(chunk)
                    progress.transferred += len(chunk)
                    self._report(progress)
        except (FramingError, OSError):
            await _remove_quietly(output_path)
            raise

        return hasher


async def _remove_quietly(path: Path):
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
