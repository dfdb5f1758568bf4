"""
File Server Node - Main Controller

Runs everything a server host needs:
- TLS transfer server for uploads and downloads
- UDP discovery responder so clients can find it
- Storage directory the two share
"""

import logging
from collections import deque
from datetime import timedelta
from typing import Deque, List, Optional

from .config import Config
from .discovery import BroadcastResponder
from .file import FileStorage
from .security import TransportContext, create_transport_context
from .transfer import Session, SessionOutcome, TransferServer

logger = logging.getLogger(__name__)

SESSION_HISTORY = 100


class FileServerNode:
    """
    A complete LanXfer server.

    Discovery is best effort: if its port cannot be bound the transfer server
    still runs and clients must be given the address explicitly.
    """

    def __init__(self, config: Optional[Config] = None,
                 transport: Optional[TransportContext] = None):
        """
        Initialize a server node.

        Args:
            config: Node configuration (uses defaults if not provided)
            transport: TLS contexts (a fresh credential is generated if not provided)
        """
        self.config = config or Config()
        self.transport = transport or create_transport_context(
            organization=self.config.organization,
            validity=timedelta(hours=self.config.cert_validity_hours),
        )

        self.storage = FileStorage(self.config.storage_dir)

        self.server = TransferServer(
            storage=self.storage,
            transport=self.transport,
            host=self.config.host,
            port=self.config.transfer_port,
            chunk_size=self.config.chunk_size,
            on_session_closed=self._on_session_closed,
        )
        self.discovery: Optional[BroadcastResponder] = None

        self.sessions: Deque[Session] = deque(maxlen=SESSION_HISTORY)
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def transfer_port(self) -> Optional[int]:
        return self.server.bound_port

    async def start(self):
        """
        Start the node.

        The transfer server starts first so discovery can advertise the port
        it actually bound.
        """
        if self._running:
            return

        await self.server.start()

        self.discovery = BroadcastResponder(
            transfer_port=self.server.bound_port,
            discovery_port=self.config.discovery_port,
            token=self.config.discovery_token_bytes,
        )
        await self.discovery.start()

        self._running = True
        logger.info(f"Node started, serving {self.storage.storage_dir}")

    async def serve_forever(self):
        await self.start()
        await self.server.serve_forever()

    async def stop(self):
        """Stop the node."""
        if self.discovery:
            await self.discovery.stop()
        await self.server.stop()
        self._running = False
        logger.info("Node stopped")

    def _on_session_closed(self, session: Session):
        self.sessions.append(session)

    def recent_sessions(self, outcome: Optional[SessionOutcome] = None) -> List[Session]:
        return [s for s in self.sessions if outcome is None or s.outcome == outcome]

    def get_stats(self) -> dict:
        """Get node statistics."""
        return {
            'running': self._running,
            'certificate': self.transport.fingerprint,
            'transfer': self.server.get_stats(),
            'discovery': self.discovery.get_stats() if self.discovery else {'available': False},
            'storage': self.storage.get_stats(),
            'recent_sessions': [s.to_dict() for s in list(self.sessions)[-10:]],
        }
