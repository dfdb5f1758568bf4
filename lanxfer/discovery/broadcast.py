"""
UDP Broadcast Discovery

Design Decision: Discovery Mechanism
====================================

Options:
1. mDNS / DNS-SD
   - Standard, but needs a responder library on both hosts
   - Multicast is filtered on many guest/university networks

2. UDP Broadcast with a fixed token
   - One datagram each way
   - Doesn't cross routers (one server per segment)
   - Some environments refuse broadcast sends

Decision: UDP broadcast, loopback fallback
- Client broadcasts the token to 255.255.255.255:<discovery port>
- If the broadcast send itself fails, the same token is sent to 127.0.0.1
- Server answers with ":<transfer port>" to the sender
- Client pairs the reply's *source IP* with the port from the payload

Protocol:
- Request: the ASCII discovery token, nothing else
- Response: b":9000"
- Anything else on the port is ignored
- Only the first response is used; with two servers on a segment the
  client connects to whichever answers first
"""

import asyncio
import socket
import logging
from typing import Optional, Tuple
from dataclasses import dataclass

from ..config import Config
from ..errors import DiscoveryError

logger = logging.getLogger(__name__)

BROADCAST_ADDRESS = '255.255.255.255'
LOOPBACK_ADDRESS = '127.0.0.1'
MAX_DATAGRAM_SIZE = 1024


@dataclass(frozen=True)
class ServerAddress:
    """Where a file server accepts transfer connections."""
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_response(cls, source_ip: str, payload: bytes) -> 'ServerAddress':
        """
        Compose an address from a discovery response.

        The host comes from the datagram envelope, never from the payload.

        Raises:
            DiscoveryError: payload is not ":<port>"
        """
        try:
            text = payload.decode('ascii')
        except UnicodeDecodeError:
            raise DiscoveryError(f"Malformed discovery response from {source_ip}")

        if not text.startswith(':'):
            raise DiscoveryError(f"Malformed discovery response from {source_ip}: {text!r}")

        return cls(host=source_ip, port=_parse_port(text[1:]))

    @classmethod
    def parse(cls, value: str) -> 'ServerAddress':
        """Parse a "host:port" string."""
        host, sep, port = value.rpartition(':')
        if not sep or not host:
            raise DiscoveryError(f"Invalid server address: {value!r} (use host:port)")
        return cls(host=host, port=_parse_port(port))


def _parse_port(text: str) -> int:
    if not text.isdigit():
        raise DiscoveryError(f"Invalid port: {text!r}")
    port = int(text)
    if not 0 < port < 65536:
        raise DiscoveryError(f"Port out of range: {port}")
    return port


def format_port_payload(port: int) -> bytes:
    """Build the responder's reply payload, e.g. b":9000"."""
    return f":{port}".encode('ascii')


class DiscoveryResponder(asyncio.DatagramProtocol):
    """
    Answers discovery requests with the transfer port.

    Runs for the lifetime of the file server.
    """

    def __init__(self, token: bytes, transfer_port: int):
        self.token = token
        self.response = format_port_payload(transfer_port)
        self.transport: Optional[asyncio.DatagramTransport] = None

        # Statistics
        self.requests_answered = 0
        self.datagrams_ignored = 0

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        if data != self.token:
            self.datagrams_ignored += 1
            logger.debug(f"Ignoring {len(data)}-byte datagram from {addr[0]}:{addr[1]}")
            return

        logger.info(f"Received discovery request from {addr[0]}:{addr[1]}")
        self.transport.sendto(self.response, addr)
        self.requests_answered += 1

    def error_received(self, exc):
        logger.error(f"Error sending discovery response: {exc}")


class BroadcastResponder:
    """
    Owns the discovery socket on the server host.

    A failure to bind is not fatal: the file server keeps running and clients
    can still reach it by explicit address.
    """

    def __init__(self, transfer_port: int, discovery_port: int,
                 token: bytes, host: str = '0.0.0.0'):
        self.transfer_port = transfer_port
        self.discovery_port = discovery_port
        self.token = token
        self.host = host

        self._transport: Optional[asyncio.DatagramTransport] = None
        self._protocol: Optional[DiscoveryResponder] = None

    @property
    def available(self) -> bool:
        return self._transport is not None

    @property
    def bound_port(self) -> Optional[int]:
        if not self._transport:
            return None
        return self._transport.get_extra_info('sockname')[1]

    async def start(self):
        """Start answering discovery requests."""
        if self._transport:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.host, self.discovery_port))
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            logger.warning(f"UDP discovery disabled (error binding {self.discovery_port}: {e})")
            return

        loop = asyncio.get_running_loop()
        self._transport, self._protocol = await loop.create_datagram_endpoint(
            lambda: DiscoveryResponder(self.token, self.transfer_port),
            sock=sock,
        )
        logger.info(f"Discovery responder listening on UDP {self.bound_port}")

    async def stop(self):
        """Stop answering discovery requests."""
        if self._transport:
            self._transport.close()
            self._transport = None
            logger.info("Discovery responder stopped")

    def get_stats(self) -> dict:
        return {
            'available': self.available,
            'port': self.bound_port,
            'requests_answered': self._protocol.requests_answered if self._protocol else 0,
            'datagrams_ignored': self._protocol.datagrams_ignored if self._protocol else 0,
        }


async def find_server_address(config: Optional[Config] = None, *,
                              timeout: Optional[float] = None,
                              broadcast_address: str = BROADCAST_ADDRESS) -> Optional[ServerAddress]:
    """
    Locate a file server on the local network.

    Args:
        config: Supplies discovery port, token and default timeout
        timeout: Override for how long to wait for the response
        broadcast_address: Where to send the request

    Returns:
        The first responder's address, or None if discovery failed
    """
    config = config or Config()
    if timeout is None:
        timeout = config.discovery_timeout
    token = config.discovery_token_bytes
    port = config.discovery_port

    loop = asyncio.get_running_loop()
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(('', 0))
        sock.setblocking(False)

        logger.info("Broadcasting for servers...")
        try:
            await loop.sock_sendto(sock, token, (broadcast_address, port))
        except OSError as e:
            logger.warning(f"Broadcast failed ({e}), trying localhost...")
            try:
                await loop.sock_sendto(sock, token, (LOOPBACK_ADDRESS, port))
            except OSError as e:
                logger.error(f"Error sending discovery request: {e}")
                return None

        try:
            data, addr = await asyncio.wait_for(
                loop.sock_recvfrom(sock, MAX_DATAGRAM_SIZE),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Discovery timed out after {timeout}s")
            return None
        except OSError as e:
            logger.warning(f"Discovery failed: {e}")
            return None

        try:
            address = ServerAddress.from_response(addr[0], data)
        except DiscoveryError as e:
            logger.warning(str(e))
            return None

        logger.info(f"Found server at {address}")
        return address

    finally:
        sock.close()
