"""
Transfer Server

Serves downloads from and accepts uploads into the storage directory.

Session lifecycle, one per accepted connection:

    AWAIT_OPCODE -> DOWNLOADING -> CLOSED
                 -> UPLOADING -> VERIFYING -> CLOSED

Each connection runs in its own task (asyncio.start_server). Sessions share
nothing except the storage directory. Any error ends the session it happened
in and is logged; the listener keeps accepting.

Uploads are read until the client closes the connection. The declared size is
reported but does not bound the copy. The server never answers with an error
frame: a failed session simply closes.

Streaming has no deadline, so stop() closes the transports of sessions still
in flight instead of waiting for them. An upload cut short this way is
discarded.
"""

import asyncio
import logging
import ssl
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Set, Tuple
from dataclasses import dataclass, field

import aiofiles

from .protocol import OpCode, read_header, read_opcode, read_request, send_header
from ..errors import FramingError, InvalidNameError, TransportError
from ..file.checksum import checksum_to_hex, compute_checksum_async
from ..file.storage import FileStorage
from ..security.tls import TransportContext

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class SessionState(Enum):
    AWAIT_OPCODE = 'await_opcode'
    DOWNLOADING = 'downloading'
    UPLOADING = 'uploading'
    VERIFYING = 'verifying'
    CLOSED = 'closed'


class SessionOutcome(Enum):
    COMPLETED = 'completed'                  # download fully sent
    VERIFIED = 'verified'                    # upload stored, checksum matches
    CHECKSUM_MISMATCH = 'checksum_mismatch'  # upload stored, flagged
    REJECTED = 'rejected'                    # unknown opcode
    FAILED = 'failed'


@dataclass
class Session:
    """State of one accepted connection."""
    peer: Tuple[str, int]
    state: SessionState = SessionState.AWAIT_OPCODE
    operation: Optional[OpCode] = None
    file_name: Optional[str] = None
    declared_size: Optional[int] = None
    bytes_received: int = 0
    bytes_sent: int = 0
    outcome: Optional[SessionOutcome] = None
    stored_path: Optional[Path] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def peer_label(self) -> str:
        return f"{self.peer[0]}:{self.peer[1]}" if self.peer else "unknown"

    def fail(self, message: str):
        self.outcome = SessionOutcome.FAILED
        self.error = message

    def to_dict(self) -> dict:
        return {
            'peer': self.peer_label,
            'operation': self.operation.name if self.operation else None,
            'file_name': self.file_name,
            'declared_size': self.declared_size,
            'bytes_received': self.bytes_received,
            'bytes_sent': self.bytes_sent,
            'outcome': self.outcome.value if self.outcome else None,
            'error': self.error,
        }


SessionCallback = Callable[[Session], None]


class TransferServer:
    """
    TLS file server for single-file upload and download sessions.
    """

    def __init__(self, storage: FileStorage, transport: TransportContext,
                 host: str = '0.0.0.0', port: int = 9000,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 on_session_closed: Optional[SessionCallback] = None):
        self.storage = storage
        self.transport = transport
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.on_session_closed = on_session_closed

        self.server: Optional[asyncio.AbstractServer] = None
        self._writers: Set[asyncio.StreamWriter] = set()
        self._stopping = False

        # Statistics
        self.sessions_handled = 0
        self.bytes_uploaded = 0
        self.bytes_downloaded = 0
        self.integrity_failures = 0

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port (useful when started with port 0)."""
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self):
        """Start the transfer server."""
        self._stopping = False
        try:
            self.server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.port,
                ssl=self.transport.server,
            )
        except OSError as e:
            raise TransportError(f"Error starting TCP server on {self.host}:{self.port}: {e}") from e

        logger.info(f"Secure file server listening on {self.host}:{self.bound_port} (TLS enabled)")

    async def serve_forever(self):
        if not self.server:
            await self.start()
        await self.server.serve_forever()

    async def stop(self):
        """Stop the transfer server."""
        if self.server:
            self._stopping = True
            self.server.close()
            for writer in list(self._writers):
                writer.close()
            await self.server.wait_closed()
            self.server = None
            logger.info(f"Transfer server stopped. Handled {self.sessions_handled} sessions")

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        session = Session(peer=writer.get_extra_info('peername'))
        self._writers.add(writer)
        logger.info(f"Accepted connection from {session.peer_label}")

        try:
            raw_op = await read_opcode(reader)
            try:
                session.operation = OpCode(raw_op)
            except ValueError:
                logger.warning(f"Unknown operation code {raw_op} from {session.peer_label}")
                session.outcome = SessionOutcome.REJECTED
                return

            if session.operation == OpCode.DOWNLOAD:
                await self._handle_download(session, reader, writer)
            else:
                await self._handle_upload(session, reader)

        except FramingError as e:
            logger.error(f"Protocol error from {session.peer_label}: {e}")
            session.fail(str(e))
        except (OSError, ssl.SSLError) as e:
            logger.error(f"Error handling connection from {session.peer_label}: {e}")
            session.fail(str(e))
        finally:
            session.state = SessionState.CLOSED
            session.finished_at = time.time()
            await self._close_writer(writer)
            self._writers.discard(writer)
            self._record(session)
            logger.debug(f"Connection closed: {session.peer_label}")

    async def _handle_download(self, session: Session, reader: asyncio.StreamReader,
                               writer: asyncio.StreamWriter):
        session.state = SessionState.DOWNLOADING

        requested = await read_request(reader)
        try:
            path = self.storage.resolve(requested)
        except InvalidNameError as e:
            logger.warning(f"Rejected download request from {session.peer_label}: {e}")
            session.fail(str(e))
            return

        session.file_name = path.name
        logger.info(f"Client {session.peer_label} requested file: {path.name}")

        # Missing files end the session without a response
        if not path.is_file():
            logger.error(f"Error opening file {path.name}: not found")
            session.fail("file not found")
            return

        file_size = path.stat().st_size
        checksum = await compute_checksum_async(path)

        logger.info(f"Sending file header for {path.name} (Size: {file_size} bytes)")
        await send_header(writer, path.name, file_size, checksum)

        async with aiofiles.open(path, 'rb') as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                writer.write(chunk)
                await writer.drain()
                session.bytes_sent += len(chunk)

        session.outcome = SessionOutcome.COMPLETED
        self.bytes_downloaded += session.bytes_sent
        logger.info(f"Sent {session.bytes_sent} bytes for file {path.name}")

    async def _handle_upload(self, session: Session, reader: asyncio.StreamReader):
        session.state = SessionState.UPLOADING
        logger.info(f"Client {session.peer_label} initiating upload...")

        header = await read_header(reader)
        session.declared_size = header.file_size
        try:
            session.file_name = self.storage.resolve(header.file_name).name
        except InvalidNameError as e:
            logger.warning(f"Rejected upload from {session.peer_label}: {e}")
            session.fail(str(e))
            return

        logger.info(f"Receiving file: {session.file_name} ({header.file_size} bytes)")

        partial = self.storage.new_partial()
        try:
            # Copy until the client closes; the declared size is not a bound
            async with aiofiles.open(partial, 'wb') as f:
                while True:
                    chunk = await reader.read(self.chunk_size)
                    if not chunk:
                        break
                    await f.write(chunk)
                    session.bytes_received += len(chunk)

            if self._stopping:
                raise FramingError("Server stopped before the upload finished")

            session.state = SessionState.VERIFYING
            local_checksum = await compute_checksum_async(partial)
            session.stored_path = await self.storage.commit(partial, session.file_name)
        except BaseException:
            await self.storage.discard(partial)
            raise

        self.bytes_uploaded += session.bytes_received

        if session.bytes_received != header.file_size:
            logger.warning(
                f"Size mismatch for {session.file_name}: declared {header.file_size}, "
                f"received {session.bytes_received}"
            )

        if local_checksum == header.checksum:
            session.outcome = SessionOutcome.VERIFIED
            logger.info(
                f"Successfully received {session.file_name} "
                f"({session.bytes_received} bytes). Integrity verified."
            )
        else:
            session.outcome = SessionOutcome.CHECKSUM_MISMATCH
            self.integrity_failures += 1
            logger.warning(
                f"Checksum mismatch for {session.file_name}: expected "
                f"{checksum_to_hex(header.checksum)[:16]}..., got "
                f"{checksum_to_hex(local_checksum)[:16]}..."
            )

    async def _close_writer(self, writer: asyncio.StreamWriter):
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ssl.SSLError) as e:
            logger.debug(f"Error while closing connection: {e}")

    def _record(self, session: Session):
        self.sessions_handled += 1
        if self.on_session_closed:
            try:
                self.on_session_closed(session)
            except Exception as e:
                logger.error(f"Session callback error: {e}")

    def get_stats(self) -> dict:
        """Get transfer server statistics."""
        return {
            'port': self.bound_port,
            'sessions_handled': self.sessions_handled,
            'bytes_uploaded': self.bytes_uploaded,
            'bytes_downloaded': self.bytes_downloaded,
            'integrity_failures': self.integrity_failures,
        }
