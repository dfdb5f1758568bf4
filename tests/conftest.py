import asyncio
import socket

import pytest

from lanxfer.config import Config
from lanxfer.discovery import ServerAddress
from lanxfer.file import FileStorage
from lanxfer.security import create_transport_context
from lanxfer.transfer import TransferClient, TransferServer


def free_udp_port() -> int:
    """Find a UDP port nothing is bound to right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(('', 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port():
    return free_udp_port


@pytest.fixture(scope='session')
def transport():
    return create_transport_context()


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / 'storage')


@pytest.fixture
def config(tmp_path):
    return Config(
        host='127.0.0.1',
        transfer_port=0,
        discovery_port=free_udp_port(),
        discovery_timeout=1.0,
        storage_dir=tmp_path / 'storage',
    )


@pytest.fixture
def client(transport):
    return TransferClient(transport, chunk_size=16 * 1024)


class RunningServer:
    """A TransferServer on loopback plus a queue of finished sessions."""

    def __init__(self, server: TransferServer, sessions: asyncio.Queue):
        self.server = server
        self.sessions = sessions

    @property
    def address(self):
        return ServerAddress('127.0.0.1', self.server.bound_port)

    async def next_session(self, timeout: float = 10.0):
        return await asyncio.wait_for(self.sessions.get(), timeout=timeout)


@pytest.fixture
async def running_server(storage, transport):
    sessions = asyncio.Queue()
    server = TransferServer(
        storage=storage,
        transport=transport,
        host='127.0.0.1',
        port=0,
        chunk_size=16 * 1024,
        on_session_closed=sessions.put_nowait,
    )
    await server.start()
    yield RunningServer(server, sessions)
    await server.stop()
