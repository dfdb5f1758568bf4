"""
Discovery Module - Server Discovery on LAN

A client broadcasts a token; the file server answers with its transfer port.
"""

from .broadcast import (
    BroadcastResponder,
    DiscoveryResponder,
    ServerAddress,
    find_server_address,
    format_port_payload,
)

__all__ = [
    'BroadcastResponder',
    'DiscoveryResponder',
    'ServerAddress',
    'find_server_address',
    'format_port_payload',
]
