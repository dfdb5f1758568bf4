import asyncio
import socket

import pytest

from lanxfer.config import Config
from lanxfer.discovery import (
    BroadcastResponder,
    ServerAddress,
    find_server_address,
    format_port_payload,
)
from lanxfer.errors import DiscoveryError


@pytest.fixture
def discovery_config(free_port):
    return Config(discovery_port=free_port(), discovery_timeout=2.0)


@pytest.fixture
async def responder(discovery_config):
    responder = BroadcastResponder(
        transfer_port=9000,
        discovery_port=discovery_config.discovery_port,
        token=discovery_config.discovery_token_bytes,
    )
    await responder.start()
    yield responder
    await responder.stop()


def test_address_from_response_uses_envelope_host():
    address = ServerAddress.from_response('192.168.1.20', b':9000')
    assert address == ServerAddress('192.168.1.20', 9000)
    assert str(address) == '192.168.1.20:9000'


@pytest.mark.parametrize('payload', [b'9000', b':', b':abc', b':70000', b'\xff:1'])
def test_malformed_response_payload(payload):
    with pytest.raises(DiscoveryError):
        ServerAddress.from_response('10.0.0.1', payload)


def test_parse_explicit_address():
    assert ServerAddress.parse('10.0.0.5:9100') == ServerAddress('10.0.0.5', 9100)
    with pytest.raises(DiscoveryError):
        ServerAddress.parse('10.0.0.5')


def test_port_payload_format():
    assert format_port_payload(9000) == b':9000'


async def test_requester_finds_responder(responder, discovery_config):
    address = await find_server_address(discovery_config, broadcast_address='127.0.0.1')

    assert address == ServerAddress('127.0.0.1', 9000)
    assert responder.get_stats()['requests_answered'] == 1


async def test_back_to_back_requests_resolve_same_server(responder, discovery_config):
    first = await find_server_address(discovery_config, broadcast_address='127.0.0.1')
    second = await find_server_address(discovery_config, broadcast_address='127.0.0.1')

    assert first == second == ServerAddress('127.0.0.1', 9000)
    assert responder.get_stats()['requests_answered'] == 2


async def test_falls_back_to_loopback_when_broadcast_fails(responder, discovery_config,
                                                           monkeypatch):
    loop = asyncio.get_running_loop()
    real_sendto = loop.sock_sendto
    targets = []

    async def sendto(sock, data, addr):
        targets.append(addr[0])
        if addr[0] == '255.255.255.255':
            raise PermissionError("broadcast not permitted")
        return await real_sendto(sock, data, addr)

    monkeypatch.setattr(loop, 'sock_sendto', sendto)

    address = await find_server_address(discovery_config)

    assert targets == ['255.255.255.255', '127.0.0.1']
    assert address == ServerAddress('127.0.0.1', 9000)


async def test_no_response_returns_none(discovery_config):
    address = await find_server_address(
        discovery_config, timeout=0.3, broadcast_address='127.0.0.1'
    )
    assert address is None


async def test_responder_ignores_other_payloads(responder, discovery_config):
    loop = asyncio.get_running_loop()
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(('127.0.0.1', 0))
    sock.setblocking(False)

    try:
        await loop.sock_sendto(sock, b'HELLO?', ('127.0.0.1', discovery_config.discovery_port))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(loop.sock_recvfrom(sock, 1024), timeout=0.3)
    finally:
        sock.close()

    stats = responder.get_stats()
    assert stats['datagrams_ignored'] == 1
    assert stats['requests_answered'] == 0


async def test_bind_failure_degrades_instead_of_raising(free_port):
    port = free_port()
    blocker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    blocker.bind(('0.0.0.0', port))

    try:
        responder = BroadcastResponder(transfer_port=9000, discovery_port=port,
                                       token=b'DISCOVER_LANXFER')
        await responder.start()
        assert responder.available is False
        assert responder.get_stats()['requests_answered'] == 0
        await responder.stop()
    finally:
        blocker.close()
