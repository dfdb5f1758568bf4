"""
Security Module - TLS Bootstrap

Ephemeral self-signed credentials for encrypted transfer connections.
"""

from .tls import TransportContext, create_transport_context

__all__ = ['TransportContext', 'create_transport_context']
